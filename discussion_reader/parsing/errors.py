from __future__ import annotations


class ParsingError(Exception):
    """
    Base class for errors raised by the parsing pipeline.
    """


class StructuralError(ParsingError):
    """
    The markup could not be turned into a tree or scanned. Fatal to the whole parse.
    """


class InvalidComment(ParsingError):
    """
    A signature could not be turned into a comment. Only that comment is dropped.
    """


class InvalidSection(ParsingError):
    """
    A heading could not be turned into a section. Only that section is dropped.
    """


class WorkerBusyError(RuntimeError):
    """
    A parse was requested while another one is still in flight.
    """
