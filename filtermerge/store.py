#!/usr/bin/env python3
"""
store.py - Per-Kind Rule Store

Single-pass ingestion of filter-list lines. Each line is classified and then
filed into the partition for its kind, under a key chosen per kind:

    blocking / unblocking   ->  target pattern, or content hash if the rule
                                has a $ option section
    cosmetic                ->  CSS selector
    everything else         ->  content hash

MERGE POLICY:
    - Same key, same hash       -> duplicate; sources are unioned into the
                                   existing entry ("merged" if that added any)
    - Same key, different hash  -> last write wins, logged as a conflict. The
                                   replacement inherits the old sources and the
                                   earliest date_added.
    Hash keys can't conflict: the key IS the hash.

This is per-kind uniqueness only. Cross-kind, normalized deduplication is the
job of deduplicator.py.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Callable, Final, Iterable

from filtermerge.classifier import Classification, LineKind, RuleKind, classify
from filtermerge.metadata import (
    RuleMetadata,
    StoredRule,
    clean_domain_pattern,
    content_hash,
    create_rule_metadata,
    extract_selector,
)
from filtermerge.sources import SourceReputation

logger = logging.getLogger(__name__)


# =============================================================================
# PARTITIONS
# =============================================================================

#: Partition order is also the order of get_unique_rules()
STORED_KINDS: Final[tuple[RuleKind, ...]] = (
    RuleKind.BLOCKING,
    RuleKind.UNBLOCKING,
    RuleKind.COSMETIC,
    RuleKind.SCRIPTLET,
    RuleKind.CSP,
    RuleKind.REDIRECT,
    RuleKind.REPLACE,
    RuleKind.REMOVEHEADER,
    RuleKind.REMOVEPARAM,
    RuleKind.HTML_FILTERING,
    RuleKind.PERMISSIONS,
    RuleKind.EXTENDED_CSS,
)

PATTERN_KEYED_KINDS: Final[frozenset[RuleKind]] = frozenset({
    RuleKind.BLOCKING,
    RuleKind.UNBLOCKING,
})


@dataclass
class StoreStats:
    """Counters kept while ingesting. Per-kind counts live next to these."""
    total_processed: int = 0
    duplicates: int = 0
    merged: int = 0
    skipped: int = 0
    invalid: int = 0
    conflicts: int = 0
    unrecognized: int = 0
    preprocessor: int = 0
    hint: int = 0


def _coerce_kind(value: object) -> RuleKind | LineKind:
    if isinstance(value, (RuleKind, LineKind)):
        return value
    try:
        return LineKind(value)
    except ValueError:
        return RuleKind(value)


# =============================================================================
# RULE STORE
# =============================================================================

class RuleStore:
    """
    Partitioned store of classified rules.

    One store is built per pipeline run and handed to whatever needs to add
    rules. Nothing else touches its partitions.
    """

    def __init__(
        self,
        classifier: Callable[[str], Classification] = classify,
        reputation: dict[str, SourceReputation] | None = None,
    ) -> None:
        if not callable(classifier):
            raise TypeError("RuleStore requires a callable classifier")
        self._classify = classifier
        self._reputation = reputation
        self._partitions: dict[RuleKind, dict[str, StoredRule]] = {
            kind: {} for kind in STORED_KINDS
        }
        self._kind_counts: dict[RuleKind, int] = dict.fromkeys(STORED_KINDS, 0)
        self._stats = StoreStats()

    def __len__(self) -> int:
        return sum(len(partition) for partition in self._partitions.values())

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    def add_rule(self, text: str, source_name: str = "unknown") -> None:
        """Classify one line and file it. Never raises."""
        self._stats.total_processed += 1
        rule = text.strip() if isinstance(text, str) else ""
        if not rule:
            self._stats.skipped += 1
            return

        result = self._classify(rule)
        if result is None:
            self._stats.skipped += 1
            self._stats.unrecognized += 1
            logger.debug("Unrecognized rule from %s: %s", source_name, rule)
            return
        try:
            kind = _coerce_kind(result)
        except ValueError:
            kind = RuleKind.UNKNOWN

        if kind is LineKind.COMMENT:
            self._stats.skipped += 1
            return
        if kind is LineKind.PREPROCESSOR:
            self._stats.preprocessor += 1
            return
        if kind is LineKind.HINT:
            self._stats.hint += 1
            return

        partition = self._partitions.get(kind)
        if partition is None:
            logger.warning("No partition for %s rule from %s: %s", kind.value, source_name, rule)
            self._stats.invalid += 1
            return

        try:
            metadata = create_rule_metadata(
                source_name, kind, rule, reputation=self._reputation
            )
            key = self._key_for(kind, rule)
            if not key:
                logger.warning("Could not determine key for %s rule: %s", kind.value, rule)
                self._stats.invalid += 1
                return
            self._insert(partition, kind, key, rule, metadata)
        except Exception as e:
            logger.error("Error storing rule %r from %s: %s", rule, source_name, e)
            self._stats.invalid += 1

    def add_lines(self, lines: Iterable[str], source_name: str = "unknown") -> None:
        """Add every line, in order."""
        for line in lines:
            self.add_rule(line, source_name)

    def add_text(self, content: str, source_name: str = "unknown") -> None:
        """Add every line of a downloaded list."""
        self.add_lines(content.splitlines(), source_name)

    def _key_for(self, kind: RuleKind, rule: str) -> str | None:
        if kind in PATTERN_KEYED_KINDS:
            if "$" in rule and "#" not in rule:
                return content_hash(rule)
            return clean_domain_pattern(rule)
        if kind is RuleKind.COSMETIC:
            return extract_selector(rule)
        return content_hash(rule)

    def _insert(
        self,
        partition: dict[str, StoredRule],
        kind: RuleKind,
        key: str,
        rule: str,
        metadata: RuleMetadata,
    ) -> None:
        existing = partition.get(key)
        rule_hash = content_hash(rule)

        if existing is not None and existing.content_hash == rule_hash:
            self._stats.duplicates += 1
            known = existing.metadata.sources
            if not metadata.sources <= known:
                known |= metadata.sources
                existing.metadata.last_updated = metadata.last_updated
                self._stats.merged += 1
            return

        if existing is not None:
            logger.warning(
                "Overwriting %s rule with key %r. Old: %s, New: %s",
                kind.value, key, existing.raw_text, rule,
            )
            self._stats.conflicts += 1
            metadata.sources |= existing.metadata.sources
            metadata.date_added = min(metadata.date_added, existing.metadata.date_added)
        else:
            self._kind_counts[kind] += 1

        partition[key] = StoredRule.from_text(rule, kind, metadata)

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def rules_of_kind(self, kind: RuleKind) -> list[StoredRule]:
        """Live entries of one partition."""
        return list(self._partitions.get(RuleKind(kind), {}).values())

    def get_unique_rules(self) -> list[StoredRule]:
        """All live entries, partition by partition."""
        rules = [
            rule
            for kind in STORED_KINDS
            for rule in self._partitions[kind].values()
        ]
        logger.info("Combined %d rules from %d partitions", len(rules), len(STORED_KINDS))
        return rules

    def get_stats(self) -> dict[str, int]:
        """Snapshot of all counters, including one per stored kind."""
        stats = asdict(self._stats)
        stats.update({kind.value: count for kind, count in self._kind_counts.items()})
        return stats
