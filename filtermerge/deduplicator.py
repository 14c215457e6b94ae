#!/usr/bin/env python3
"""
deduplicator.py - Cross-Source Rule Deduplication

Batch consolidation of an already classified rule collection. Rules are
grouped by their canonical key (normalizer.py), one representative is chosen
per group by score, and the metadata of the whole group is merged into it.

TWO PASSES:
    1. Group   - key every rule, keep encounter order inside each group
    2. Resolve - groups of one pass through; larger groups get a
                 representative plus merged metadata

SCORING:
    Weights come from a plain name -> weight table so the ranking policy can
    be swapped without touching merge logic:

        per_source         x number of sources
        per_modifier       x number of modifiers
        has_date           valid date_added
        important          $important in the rule
        trusted            source_info.trusted
        maintainer         attribution names the list maintainer
        domain_restricted  $domain= in the rule
        exact_match        no * ^ | in the pattern part

    Ties go to the shorter rule, then to the rule seen first.

FAILURES:
    A group that fails to resolve keeps its representative (or its first
    member) with minimal metadata and is counted as a conflict. One bad group
    never aborts the batch and never drops data.
"""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, Final, Iterable, Mapping

from filtermerge.config import DEFAULT_MAINTAINER
from filtermerge.metadata import RuleMetadata, SourceInfo, StoredRule, utcnow
from filtermerge.normalizer import NormalizedKey, normalize_rule

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_SCORE_WEIGHTS: Final[Mapping[str, int]] = MappingProxyType({
    "per_source": 2,
    "per_modifier": 2,
    "has_date": 5,
    "important": 10,
    "trusted": 15,
    "maintainer": 20,
    "domain_restricted": 8,
    "exact_match": 5,
})

#: Wildcard/anchor characters; a pattern without them is an exact match
WILDCARD_PATTERN: Final[re.Pattern[str]] = re.compile(r"[*^|]")


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class DedupStats:
    """Statistics from one process_rules() call."""
    total: int = 0
    duplicates: int = 0
    merged: int = 0
    skipped: int = 0
    conflicts: int = 0
    degraded: int = 0
    unique_rules: int = 0
    duplicate_groups: int = 0
    duplicate_percent: str = "0.00%"

    def to_dict(self) -> dict[str, int | str]:
        return asdict(self)


def _parse_date(value: object) -> datetime | None:
    """datetime or ISO string -> aware datetime (naive values are taken as UTC)."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _fallback_metadata(metadata: RuleMetadata | None) -> RuleMetadata:
    """Pre-merge metadata with the required fields filled in."""
    if not isinstance(metadata, RuleMetadata):
        return RuleMetadata()
    fallback = metadata.copy()
    fallback.date_added = _parse_date(fallback.date_added) or utcnow()
    fallback.last_updated = _parse_date(fallback.last_updated) or utcnow()
    if fallback.enabled is None:
        fallback.enabled = True
    if fallback.source_info is None:
        fallback.source_info = SourceInfo()
    return fallback


# =============================================================================
# DEDUPLICATOR
# =============================================================================

class RuleDeduplicator:
    """Groups rules by canonical key and keeps one merged rule per group."""

    def __init__(
        self,
        weights: Mapping[str, int] | None = None,
        maintainer: str = DEFAULT_MAINTAINER,
        normalizer: Callable[[str], NormalizedKey] = normalize_rule,
    ) -> None:
        self.weights: Mapping[str, int] = {**DEFAULT_SCORE_WEIGHTS, **(weights or {})}
        self.maintainer = maintainer.lower()
        self._normalize = normalizer
        self._filtered: dict[str, StoredRule] = {}
        self._stats = DedupStats()

    # -------------------------------------------------------------------------
    # Batch processing
    # -------------------------------------------------------------------------

    def process_rules(self, rules: Iterable[StoredRule]) -> list[StoredRule]:
        """
        Deduplicate a rule collection.

        Args:
            rules: Classified rules, possibly from many sources and kinds

        Returns:
            One rule per canonical key, in first-seen order
        """
        rules = list(rules)
        self._stats = DedupStats(total=len(rules))
        self._filtered = {}
        if not rules:
            logger.warning("No rules to deduplicate")
            return []

        groups = self._group(rules)
        logger.info("Grouped %d rules into %d groups", len(rules), len(groups))

        for key, group in groups.items():
            self._filtered[key] = self._resolve(key, group)

        stats = self._stats
        stats.unique_rules = len(self._filtered)
        stats.duplicate_groups = sum(1 for group in groups.values() if len(group) > 1)
        stats.duplicate_percent = (
            f"{stats.duplicates / stats.total * 100:.2f}%" if stats.total else "0.00%"
        )
        logger.info(
            "Deduplication complete: %d -> %d rules (%d duplicates, %d conflicts)",
            stats.total, stats.unique_rules, stats.duplicates, stats.conflicts,
        )
        return list(self._filtered.values())

    def _group(self, rules: list[StoredRule]) -> dict[str, list[StoredRule]]:
        groups: dict[str, list[StoredRule]] = {}
        for rule in rules:
            raw = getattr(rule, "raw_text", None)
            if not raw or not isinstance(raw, str):
                self._stats.skipped += 1
                continue
            try:
                key, degraded = self._normalize(raw)
            except Exception as e:
                logger.warning("Failed to key rule %r: %s", raw, e)
                self._stats.skipped += 1
                continue
            if not key:
                self._stats.skipped += 1
                continue
            if degraded:
                self._stats.degraded += 1
            groups.setdefault(key, []).append(rule)
        return groups

    def _resolve(self, key: str, group: list[StoredRule]) -> StoredRule:
        if len(group) == 1:
            return group[0]

        self._stats.duplicates += len(group) - 1
        best = group[0]
        try:
            best = self.select_best_rule(group)
            best.metadata = self.merge_metadata(group, best)
            self._stats.merged += 1
        except Exception as e:
            logger.warning("Failed to merge rule group %r: %s", key, e)
            self._stats.conflicts += 1
            best.metadata = _fallback_metadata(best.metadata)
        return best

    # -------------------------------------------------------------------------
    # Scoring and merging
    # -------------------------------------------------------------------------

    def get_rule_score(self, rule: StoredRule) -> int:
        """Score a rule; higher wins when choosing a representative."""
        metadata = rule.metadata
        raw = rule.raw_text
        if metadata is None or not raw:
            return 0

        w = self.weights
        raw_lower = raw.lower()
        score = 0
        score += w["per_source"] * len(metadata.sources or ())
        score += w["per_modifier"] * len(metadata.modifiers or ())
        if _parse_date(metadata.date_added) is not None:
            score += w["has_date"]
        if "$important" in raw_lower:
            score += w["important"]
        if metadata.source_info is not None and metadata.source_info.trusted:
            score += w["trusted"]
        if metadata.attribution and self.maintainer in metadata.attribution.lower():
            score += w["maintainer"]
        if "$domain=" in raw_lower:
            score += w["domain_restricted"]

        pattern = raw.split("$", 1)[0].split("#", 1)[0].strip()
        if not WILDCARD_PATTERN.search(pattern):
            score += w["exact_match"]
        return score

    def select_best_rule(self, group: list[StoredRule]) -> StoredRule:
        """
        Pick the representative of a duplicate group.

        Raises:
            ValueError: If the group holds no usable rule
        """
        candidates = [rule for rule in group if rule is not None and rule.raw_text]
        if not candidates:
            raise ValueError("Cannot select best rule from an empty group")

        best = candidates[0]
        best_score = self.get_rule_score(best)
        for rule in candidates[1:]:
            score = self.get_rule_score(rule)
            if score > best_score or (
                score == best_score and len(rule.raw_text) < len(best.raw_text)
            ):
                best, best_score = rule, score
        return best

    def merge_metadata(self, group: list[StoredRule], best: StoredRule) -> RuleMetadata:
        """Merge the metadata of a whole group onto the representative's."""
        merged = best.metadata.copy() if best.metadata is not None else RuleMetadata()

        sources = set(merged.sources)
        modifiers = set(merged.modifiers)
        alternatives = list(merged.alternatives)
        dates: list[datetime] = []
        for rule in group:
            metadata = rule.metadata
            if metadata is not None:
                sources.update(s for s in metadata.sources or () if isinstance(s, str))
                modifiers.update(m for m in metadata.modifiers or () if isinstance(m, str))
                date = _parse_date(metadata.date_added)
                if date is not None:
                    dates.append(date)
            if rule is not best:
                alternatives.append(rule.raw_text)
                if metadata is not None:
                    alternatives.extend(metadata.alternatives or ())

        merged.sources = sources
        merged.modifiers = modifiers
        merged.alternatives = alternatives
        merged.date_added = min(dates) if dates else utcnow()

        if _parse_date(merged.last_updated) is None:
            merged.last_updated = utcnow()
        if merged.enabled is None:
            merged.enabled = True
        if merged.source_info is None:
            merged.source_info = SourceInfo()
        if merged.tags is None:
            merged.tags = []
        return merged

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def get_stats(self) -> DedupStats:
        """Statistics of the last process_rules() call."""
        return DedupStats(**asdict(self._stats))
