from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set
from urllib.parse import parse_qs, unquote, urlparse

from .config import ParseConfiguration
from .markup import ParserContext
from .models import Signature

logger = logging.getLogger(__name__)

SIGNATURE_CLASS = "cd-signature"


@dataclass
class TimestampMatch:
    node: Any
    text: str
    date: Optional[datetime]


def _month_number(value: str, names: Sequence[str]) -> Optional[int]:
    lowered = value.lower()
    for index, name in enumerate(names):
        if name.lower() == lowered:
            return index + 1
    return None


def parse_mediawiki_date(match: "re.Match[str]", config: ParseConfiguration) -> Optional[datetime]:
    """
    Interpret capture groups according to MediaWiki date-format codes listed in
    `config.timestamp_matching_groups`, in group order.
    """
    year = month = day = None
    hour = minute = second = 0
    for code, value in zip(config.timestamp_matching_groups, match.groups()):
        if value is None:
            continue
        if code in ("H", "G"):
            hour = int(value)
        elif code == "i":
            minute = int(value)
        elif code == "s":
            second = int(value)
        elif code in ("j", "d"):
            day = int(value)
        elif code in ("n", "m"):
            month = int(value)
        elif code == "F":
            month = _month_number(value, config.months)
        elif code == "M":
            month = _month_number(value, config.months_short)
        elif code == "xg":
            month = _month_number(value, config.months_genitive)
        elif code == "Y":
            year = int(value)
        elif code == "y":
            year = 2000 + int(value)
        else:
            logger.debug("Unsupported timestamp group code %s", code)
    if year is None or month is None or day is None:
        return None
    try:
        local = datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    except ValueError:
        return None
    return local - timedelta(minutes=config.timezone_offset_minutes)


def parse_iso_date(match: "re.Match[str]", config: ParseConfiguration) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(match.group(0))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc) - timedelta(minutes=config.timezone_offset_minutes)
    return parsed.astimezone(timezone.utc)


TIMESTAMP_PARSERS: Dict[str, Callable[["re.Match[str]", ParseConfiguration], Optional[datetime]]] = {
    "mediawiki": parse_mediawiki_date,
    "iso": parse_iso_date,
}


class AnchorRegistry:
    """
    Hands out comment anchors of the form ``YYYYMMDDHHMM_Author_Name``, suffixing
    ``_2``, ``_3``... when the same author signed twice in the same minute.
    Lives as long as one parse session.
    """

    def __init__(self):
        self._used: Set[str] = set()

    def generate(self, date: datetime, author_name: str) -> str:
        base = date.astimezone(timezone.utc).strftime("%Y%m%d%H%M") + "_" + author_name.replace(" ", "_")
        anchor = base
        counter = 2
        while anchor in self._used:
            anchor = f"{base}_{counter}"
            counter += 1
        self._used.add(anchor)
        return anchor

    def reserve(self, anchor: str) -> str:
        base = anchor
        counter = 2
        while anchor in self._used:
            anchor = f"{base}_{counter}"
            counter += 1
        self._used.add(anchor)
        return anchor


def normalize_user_name(name: str) -> str:
    name = " ".join(name.replace("_", " ").split())
    return name[:1].upper() + name[1:]


class SignatureScanner:
    """
    Finds timestamps in text nodes and attributes each one to the user link
    preceding it, looking back at most `signature_scan_limit` nodes and
    `signature_text_limit` characters.
    """

    def __init__(self, tree: ParserContext, config: ParseConfiguration, anchors: AnchorRegistry):
        self.tree = tree
        self.config = config
        self.anchors = anchors
        try:
            self._date_parser = TIMESTAMP_PARSERS[config.timestamp_parser]
        except KeyError:
            raise ValueError(f"Unknown timestamp parser: {config.timestamp_parser}") from None
        self._regex = re.compile(config.timestamp_pattern)
        self._unsigned_selectors = ["." + name for name in config.unsigned_classes]

    def find_timestamps(self) -> List[TimestampMatch]:
        """
        Return timestamps in document order. Text nodes holding several
        timestamps are split so each timestamp ends its own text node.
        """
        timestamps: List[TimestampMatch] = []
        for node in self.tree.all_text_nodes():
            text = self.tree.text(node)
            found = list(self._regex.finditer(text))
            if not found:
                continue
            if self.tree.closest(node, self.config.excluded_selectors) is not None:
                continue
            current = node
            consumed = 0
            for match in found:
                left, right = self.tree.split_text(current, match.end() - consumed)
                timestamps.append(
                    TimestampMatch(node=left, text=match.group(0), date=self._date_parser(match, self.config))
                )
                if right is None:
                    break
                current = right
                consumed = match.end()
        return timestamps

    def find_signatures(self, timestamps: List[TimestampMatch]) -> List[Signature]:
        """
        Resolve authors for `timestamps` and return signatures in reverse
        document order.
        """
        timestamp_ids = {id(timestamp.node) for timestamp in timestamps}
        claimed_links: Set[int] = set()
        signatures: List[Signature] = []
        for timestamp in timestamps:
            signature = self._resolve(timestamp, timestamp_ids, claimed_links)
            if signature is None:
                logger.debug("No author found for timestamp %r", timestamp.text)
                continue
            signatures.append(signature)
        signatures.sort(key=lambda signature: self.tree.position(signature.element), reverse=True)
        return signatures

    def _resolve(
        self,
        timestamp: TimestampMatch,
        timestamp_ids: Set[int],
        claimed_links: Set[int],
    ) -> Optional[Signature]:
        tree = self.tree
        current = timestamp.node
        text_length = len(tree.text(current)) - len(timestamp.text)
        scanned = 0
        author_name = None
        author_link = None
        first_node = None
        while True:
            previous = tree.previous_sibling(current)
            if previous is None:
                parent = tree.parent(current)
                if parent is None or parent is tree.root or tree.is_block(parent):
                    break
                current = parent
                continue
            current = previous
            scanned += 1
            if scanned > self.config.signature_scan_limit or text_length > self.config.signature_text_limit:
                break
            if tree.is_block(current) or self._contains_timestamp(current, timestamp_ids):
                break
            author_link, author_name = self._find_author(current)
            if author_name:
                first_node = self._extend_to_author_links(current, author_name, scanned, timestamp_ids)
                break
            text_length += len(tree.text(current))

        if not author_name or first_node is None:
            return None
        if id(author_link) in claimed_links:
            return None
        claimed_links.add(id(author_link))

        element = self._wrap_signature(first_node, timestamp.node)
        is_unsigned = tree.closest(element, self._unsigned_selectors) is not None
        anchor = self.anchors.generate(timestamp.date, author_name) if timestamp.date else None
        return Signature(
            author_name=author_name,
            timestamp_text=timestamp.text,
            date=timestamp.date,
            anchor=anchor,
            is_unsigned=is_unsigned,
            element=element,
            author_link=author_link,
        )

    def _contains_timestamp(self, node: Any, timestamp_ids: Set[int]) -> bool:
        if self.tree.is_text(node):
            return id(node) in timestamp_ids
        if not self.tree.is_element(node):
            return False
        return any(id(descendant) in timestamp_ids for descendant in self.tree.descendants(node))

    def _extend_to_author_links(self, node: Any, author_name: str, scanned: int, timestamp_ids: Set[int]) -> Any:
        """
        Move the start of a signature back over earlier links to the same user,
        as in "User (talk)", skipping the punctuation between them.
        """
        tree = self.tree
        first = current = node
        while True:
            previous = tree.previous_sibling(current)
            scanned += 1
            if previous is None or scanned > self.config.signature_scan_limit:
                break
            current = previous
            if tree.is_text(previous):
                if any(char.isalnum() for char in tree.text(previous)):
                    break
                continue
            if tree.is_block(previous) or self._contains_timestamp(previous, timestamp_ids):
                break
            _, name = self._find_author(previous)
            if name != author_name:
                break
            first = previous
        return first

    def _find_author(self, node: Any):
        if not self.tree.is_element(node):
            return None, None
        links = [node] if self.tree.tag_name(node) == "a" else self.tree.find_all(["a"], node)
        for link in reversed(links):
            name = self.user_name_from_link(link)
            if name:
                return link, name
        return None, None

    def user_name_from_link(self, link: Any) -> Optional[str]:
        """
        Extract a user name from a link to a user page, user talk page or
        contributions page. Subpages are cut off.
        """
        href = self.tree.get_attribute(link, "href") or ""
        parsed = urlparse(href)
        title = None
        query = parse_qs(parsed.query)
        if query.get("title"):
            title = query["title"][0]
        elif "/wiki/" in parsed.path:
            title = unquote(parsed.path.split("/wiki/", 1)[1])
        else:
            title = self.tree.get_attribute(link, "title")
            if title:
                title = re.sub(r" \([^()]*\)$", "", title)
        if not title:
            return None
        title = title.replace("_", " ")
        lowered = title.lower()

        for namespace in self.config.user_namespaces:
            prefix = namespace.lower() + ":"
            if lowered.startswith(prefix):
                name = title[len(prefix):].split("/")[0]
                return normalize_user_name(name) if name.strip() else None

        contributions = self.config.contributions_page.replace("_", " ").lower() + "/"
        if lowered.startswith(contributions):
            name = title[len(contributions):]
            return normalize_user_name(name) if name.strip() else None
        return None

    def _wrap_signature(self, first_node: Any, timestamp_node: Any):
        last_node = timestamp_node
        while self.tree.parent(last_node) is not self.tree.parent(first_node):
            last_node = self.tree.parent(last_node)
        nodes = []
        node = first_node
        while node is not None:
            nodes.append(node)
            if node is last_node:
                break
            node = self.tree.next_sibling(node)
        return self.tree.wrap(nodes, "span", [SIGNATURE_CLASS])
