"""
Discussion reader core package.

This package reconstructs comments and sections from the rendered markup of
discussion pages. It exposes dataclasses for parsed records, the parse
configuration, a pluggable parsing engine, and a worker that runs parses off
the host thread and exchanges plain-data messages with it.
"""
