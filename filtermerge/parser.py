"""
parser.py - Filter List Parsing

Turns a downloaded list into StoredRule records for the batch deduplication
path, and reads the "! Title:" style header most lists start with.
"""
from __future__ import annotations

import logging
import re
from typing import Callable, Final, Iterable, NamedTuple

from filtermerge.classifier import Classification, LineKind, RuleKind, classify
from filtermerge.metadata import StoredRule, create_rule_metadata

logger = logging.getLogger(__name__)

#: "! Title: EasyList" -> ("Title", "EasyList")
HEADER_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^!\s*(Title|Version|Homepage|Expires)\s*:\s*(.+)$", re.IGNORECASE
)


class ListHeader(NamedTuple):
    """Header fields found at the top of a filter list."""
    title: str | None = None
    version: str | None = None
    homepage: str | None = None
    expires: str | None = None


def parse_filter_list(
    content: str,
    source: str = "unknown",
    *,
    classifier: Callable[[str], Classification] = classify,
) -> list[StoredRule]:
    """
    Parse every rule line of a list into a StoredRule.

    Comments, directives, hints and unrecognised lines are dropped, and so are
    lines the classifier labels with a kind RuleKind does not know. Unlike
    RuleStore, nothing is deduplicated here.
    """
    rules: list[StoredRule] = []
    for line in content.splitlines():
        text = line.strip()
        if not text:
            continue
        kind = classifier(text)
        if kind is None or isinstance(kind, LineKind):
            continue
        try:
            kind = RuleKind(kind)
        except ValueError:
            logger.debug("Skipping %r from %s: unknown rule kind %r", text, source, kind)
            continue
        metadata = create_rule_metadata(source, kind, text)
        rules.append(StoredRule.from_text(text, kind, metadata))
    return rules


def extract_list_header(lines: Iterable[str]) -> ListHeader | None:
    """
    Read Title/Version/Homepage/Expires from the comment header.

    The first occurrence of each field wins.

    Example:
        >>> extract_list_header(["! Title: EasyList", "! Version: 202410", "||a.com^"])
        ListHeader(title='EasyList', version='202410', homepage=None, expires=None)
        >>> extract_list_header(["||a.com^"]) is None
        True
    """
    fields: dict[str, str] = {}
    for line in lines:
        match = HEADER_PATTERN.match(line.strip())
        if match:
            fields.setdefault(match.group(1).lower(), match.group(2).strip())
    if not fields:
        return None
    return ListHeader(**fields)
