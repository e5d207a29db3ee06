from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Tuple

if TYPE_CHECKING:
    from .markup import ParserContext

logger = logging.getLogger(__name__)

# Called with the parser context and an element.
ForeignComponentPredicate = Callable[["ParserContext", Any], bool]
ElementPredicate = Callable[[Any], bool]

DEFAULT_MONTHS: Tuple[str, ...] = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)
DEFAULT_MONTHS_SHORT: Tuple[str, ...] = tuple(name[:3] for name in DEFAULT_MONTHS)

DEFAULT_UNHIGHLIGHTABLE_CLASSES: Tuple[str, ...] = (
    "infobox",
    "ambox",
    "tmbox",
    "ombox",
    "fmbox",
    "cmbox",
    "imbox",
    "navbox",
    "mw-empty-elt",
)

DEFAULT_EXCLUDED_SELECTORS: Tuple[str, ...] = (
    "blockquote",
    "q",
    "cite",
    "pre",
    "code",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    ".cd-noSignature",
)

DEFAULT_FLOATING_SELECTORS: Tuple[str, ...] = (
    ".tright",
    ".tleft",
    ".floatright",
    ".floatleft",
)

_MEDIAWIKI_BOX_CLASSES = {"ambox", "tmbox", "ombox", "fmbox", "cmbox", "imbox", "navbox"}


def default_timestamp_pattern(months: Tuple[str, ...] = DEFAULT_MONTHS) -> str:
    """English MediaWiki signature date, e.g. ``10:00, 1 January 2020 (UTC)``."""
    month_alternatives = "|".join(re.escape(name) for name in months)
    return r"\b(\d{2}):(\d{2}), (\d{1,2}) (" + month_alternatives + r") (\d{4})(?: \(UTC\))?"


DEFAULT_MATCHING_GROUPS: Tuple[str, ...] = ("H", "i", "j", "F", "Y")


def _no_foreign_components(context: "ParserContext", node: Any) -> bool:
    return False


def _mediawiki_boxes(context: "ParserContext", node: Any) -> bool:
    return context.has_any_class(node, _MEDIAWIKI_BOX_CLASSES)


# Closed set of foreign-component detectors selectable by name from a parse request.
FOREIGN_COMPONENT_STRATEGIES: Dict[str, ForeignComponentPredicate] = {
    "none": _no_foreign_components,
    "mediawiki-boxes": _mediawiki_boxes,
}


def resolve_foreign_component_strategy(name: Optional[str]) -> ForeignComponentPredicate:
    if not name:
        return _no_foreign_components
    try:
        return FOREIGN_COMPONENT_STRATEGIES[name]
    except KeyError:
        raise ValueError(f"Unknown foreign component strategy: {name}") from None


@dataclass(frozen=True)
class ParseConfiguration:
    """
    Immutable configuration bundle for one parse.

    Field names are snake_case; `from_dict` accepts the camelCase keys used in
    host messages. Lookback windows are kept here rather than as constants so a
    deployment can tune them without code changes.
    """

    signature_scan_limit: int = 8
    signature_text_limit: int = 100
    timestamp_pattern: str = field(default_factory=default_timestamp_pattern)
    timestamp_matching_groups: Tuple[str, ...] = DEFAULT_MATCHING_GROUPS
    timestamp_parser: str = "mediawiki"
    months: Tuple[str, ...] = DEFAULT_MONTHS
    months_short: Tuple[str, ...] = DEFAULT_MONTHS_SHORT
    months_genitive: Tuple[str, ...] = ()
    timezone_offset_minutes: int = 0
    user_namespaces: Tuple[str, ...] = ("User", "User talk")
    contributions_page: str = "Special:Contributions"
    unsigned_classes: Tuple[str, ...] = ("autosigned",)
    outdent_classes: Tuple[str, ...] = ("outdent-template",)
    unhighlightable_element_classes: Tuple[str, ...] = DEFAULT_UNHIGHLIGHTABLE_CLASSES
    foreign_component_classes: Tuple[str, ...] = ()
    foreign_component_strategy: str = "none"
    excluded_selectors: Tuple[str, ...] = DEFAULT_EXCLUDED_SELECTORS
    floating_selectors: Tuple[str, ...] = DEFAULT_FLOATING_SELECTORS
    heading_wrapper_classes: Tuple[str, ...] = ("mw-heading",)
    root_selector: Optional[str] = ".mw-parser-output"

    _ALIASES = {
        "customForeignComponentPredicate": "foreign_component_strategy",
        "checkForCustomForeignComponents": "foreign_component_strategy",
        "foreignElementsClasses": "foreign_component_classes",
        "unhighlightableElementsClasses": "unhighlightable_element_classes",
    }

    def __post_init__(self):
        if self.signature_scan_limit < 1:
            raise ValueError("signature_scan_limit must be positive")
        if self.signature_text_limit < 1:
            raise ValueError("signature_text_limit must be positive")
        if len(self.months) != 12:
            raise ValueError("months must list twelve names")
        try:
            re.compile(self.timestamp_pattern)
        except re.error as exc:
            raise ValueError(f"Invalid timestamp pattern: {exc}") from exc
        resolve_foreign_component_strategy(self.foreign_component_strategy)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ParseConfiguration":
        if not data:
            return cls()
        known = {f.name: f for f in fields(cls) if not f.name.startswith("_")}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = cls._ALIASES.get(key) or _snake_case(key)
            if name not in known:
                logger.debug("Ignoring unknown configuration key %s", key)
                continue
            if isinstance(value, list):
                value = tuple(value)
            values[name] = value
        if "months" in values and "timestamp_pattern" not in values:
            values["timestamp_pattern"] = default_timestamp_pattern(values["months"])
        return cls(**values)

    def foreign_component_predicate(
        self, context: "ParserContext", custom: Optional[ForeignComponentPredicate] = None
    ) -> ElementPredicate:
        """
        Combine the class list, the named strategy and an optional callback
        injected by the worker owner into one predicate over elements of
        `context`.
        """
        strategy = resolve_foreign_component_strategy(self.foreign_component_strategy)
        classes = self.foreign_component_classes

        def predicate(node: Any) -> bool:
            if classes and context.has_any_class(node, classes):
                return True
            if strategy(context, node):
                return True
            return bool(custom and custom(context, node))

        return predicate


@dataclass(frozen=True)
class ParseGlobals:
    current_user_name: Optional[str] = None
    current_page_name: Optional[str] = None
    current_namespace: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ParseGlobals":
        if not data:
            return cls()
        data = dict(data)
        user = data.pop("currentUserName", None) or data.pop("CURRENT_USER_NAME", None)
        page = (
            data.pop("currentPageName", None)
            or data.pop("currentPage", None)
            or data.pop("CURRENT_PAGE", None)
        )
        namespace = data.pop("currentNamespace", None)
        if namespace is None:
            namespace = data.pop("CURRENT_NAMESPACE_NUMBER", None)
        return cls(
            current_user_name=user,
            current_page_name=page,
            current_namespace=int(namespace) if namespace is not None else None,
            extra=data,
        )


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()
