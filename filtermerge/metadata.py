#!/usr/bin/env python3
"""
metadata.py - Stored Rule Records and Provenance Metadata

Every rule that survives classification is kept as a StoredRule carrying a
RuleMetadata record: which lists contributed it, when it was first seen, the
reputation of its primary source and the modifiers it uses. The records are
plain dataclasses with no behaviour beyond construction and copying.

Only metadata is ever mutated after a StoredRule is created. The raw text,
hash, kind, domain and selector are fixed at creation time.
"""
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Final

from filtermerge.classifier import RuleKind, extract_modifiers, is_exception_rule
from filtermerge.sources import SourceReputation, lookup_reputation, source_url


# =============================================================================
# REGEX PATTERNS
# =============================================================================

#: Leading @@ and | / || anchors
DOMAIN_PREFIX_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(?:@@)?\|*")

#: Element hiding / extended CSS selector (## #@# #?# #@?# #$?# #@$?#, or #. #,)
SELECTOR_PATTERN: Final[re.Pattern[str]] = re.compile(r"#@?(?:\$?\?)?#(.+)|#([.,].+)")

#: Kinds whose $ section holds request options worth recording
_NO_OPTION_KINDS: Final[frozenset[RuleKind]] = frozenset({
    RuleKind.COSMETIC,
    RuleKind.SCRIPTLET,
    RuleKind.EXTENDED_CSS,
    RuleKind.HTML_FILTERING,
})


# =============================================================================
# DATA STRUCTURES
# =============================================================================

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SourceInfo:
    """Reputation of the primary contributing source."""
    category: str = "unknown"
    trusted: bool = False
    url: str = ""
    priority: int = 0


@dataclass
class RuleMetadata:
    """
    Provenance and lifecycle record of a stored rule.

    Attributes:
        sources: Every list that contributed this rule
        date_added: Earliest time the rule was seen
        last_updated: Last time the record changed
        enabled: False to keep the rule but leave it out of exports
        source_info: Reputation of the primary source
        tags: Free-form labels, in insertion order
        modifiers: Option names used by the rule ($third-party, $important, ...)
        attribution: Author credit, if the source declares one
        alternatives: Raw text of duplicates folded into this rule
    """
    sources: set[str] = field(default_factory=set)
    date_added: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)
    enabled: bool = True
    source_info: SourceInfo = field(default_factory=SourceInfo)
    tags: list[str] = field(default_factory=list)
    modifiers: set[str] = field(default_factory=set)
    attribution: str | None = None
    alternatives: list[str] = field(default_factory=list)

    def copy(self) -> RuleMetadata:
        """Copy with independent sets and lists."""
        return replace(
            self,
            sources=set(self.sources or ()),
            tags=list(self.tags or ()),
            modifiers=set(self.modifiers or ()),
            alternatives=list(self.alternatives or ()),
        )


@dataclass
class StoredRule:
    """
    One stored rule.

    Attributes:
        raw_text: The original (trimmed) line, never modified
        content_hash: SHA-256 of raw_text
        kind: Rule kind from the classifier
        metadata: Provenance record
        is_exception: True for @@ rules
        domain: Target pattern, blocking/unblocking rules only
        selector: CSS selector, cosmetic rules only
    """
    raw_text: str
    content_hash: str
    kind: RuleKind
    metadata: RuleMetadata
    is_exception: bool = False
    domain: str | None = None
    selector: str | None = None

    @classmethod
    def from_text(cls, text: str, kind: RuleKind, metadata: RuleMetadata) -> StoredRule:
        """Build a record, deriving hash, exception flag, domain and selector."""
        domain = None
        selector = None
        if kind in (RuleKind.BLOCKING, RuleKind.UNBLOCKING):
            domain = clean_domain_pattern(text)
        elif kind is RuleKind.COSMETIC:
            selector = extract_selector(text)
        return cls(
            raw_text=text,
            content_hash=content_hash(text),
            kind=kind,
            metadata=metadata,
            is_exception=is_exception_rule(text),
            domain=domain,
            selector=selector,
        )


# =============================================================================
# HELPERS
# =============================================================================

def content_hash(text: str) -> str:
    """
    Stable digest of a rule's raw text.

    Example:
        >>> len(content_hash("||example.com^"))
        64
        >>> content_hash("||example.com^") == content_hash("||example.com^")
        True
    """
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def clean_domain_pattern(rule: str) -> str | None:
    """
    Extract the target pattern of a network rule.

    Strips the @@ prefix, | anchors, options and one trailing ^ separator.

    Args:
        rule: The rule to parse

    Returns:
        The pattern, or None for option-only rules and rules that carry
        cosmetic or scriptlet syntax

    Example:
        >>> clean_domain_pattern("@@||ads.example.com^$important")
        'ads.example.com'
        >>> clean_domain_pattern("$script,third-party") is None
        True
    """
    if not rule:
        return None
    rule = rule.strip()
    if rule.startswith("$") or "script:" in rule:
        return None
    pattern = DOMAIN_PREFIX_PATTERN.sub("", rule.split("$", 1)[0])
    if pattern.endswith("^"):
        pattern = pattern[:-1]
    pattern = pattern.strip()
    if "#" in pattern or "(" in pattern:
        return None
    return pattern or None


def extract_selector(rule: str) -> str | None:
    """
    Extract the CSS selector of a cosmetic rule.

    Example:
        >>> extract_selector("example.com##.ad-banner")
        '.ad-banner'
        >>> extract_selector("example.com#@#div[class$=\\"-ad\\"]")
        'div[class$="-ad"]'
        >>> extract_selector("||example.com^") is None
        True
    """
    if not rule:
        return None
    match = SELECTOR_PATTERN.search(rule)
    if not match:
        return None
    selector = (match.group(1) or match.group(2) or "").strip()
    return selector or None


# =============================================================================
# METADATA FACTORY
# =============================================================================

def create_rule_metadata(
    source: str,
    kind: RuleKind,
    rule: str,
    *,
    reputation: dict[str, SourceReputation] | None = None,
    now: datetime | None = None,
) -> RuleMetadata:
    """
    Build the metadata record for a rule seen in a source.

    Args:
        source: Friendly name or URL of the contributing list
        kind: Kind assigned by the classifier
        rule: The raw rule text
        reputation: Reputation table override (defaults to sources.SOURCE_REPUTATION)
        now: Timestamp to use for date_added/last_updated

    Returns:
        Fully populated RuleMetadata

    Example:
        >>> meta = create_rule_metadata("OISD Blocklist Small", RuleKind.BLOCKING, "||a.com^$important")
        >>> meta.sources, meta.modifiers, meta.source_info.trusted
        ({'OISD Blocklist Small'}, {'important'}, True)
    """
    timestamp = now or utcnow()
    rep = lookup_reputation(source, reputation)
    modifiers = set() if kind in _NO_OPTION_KINDS else extract_modifiers(rule)
    return RuleMetadata(
        sources={source} if source else set(),
        date_added=timestamp,
        last_updated=timestamp,
        source_info=SourceInfo(
            category=rep.category,
            trusted=rep.trusted,
            url=source_url(source) if source else "",
            priority=rep.priority,
        ),
        modifiers=modifiers,
        attribution=rep.attribution,
    )
