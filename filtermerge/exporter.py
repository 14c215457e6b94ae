#!/usr/bin/env python3
"""
exporter.py - Multi-Format Filter List Export

Writes the deduplicated rule set out in the formats downstream blockers read.

OUTPUT FORMATS:
    Browser-style lists keep the rule text as-is:

        adguard, abp, all    ->  ||ads.example.com^$third-party

    DNS-style formats only understand plain hostnames, so each rule is reduced
    to its target domain and rendered from a template:

        hosts          ->  0.0.0.0 ads.example.com
        dnsmasq        ->  address=/ads.example.com/0.0.0.0
        unbound        ->  local-zone: "ads.example.com" static
        bind           ->  zone "ads.example.com" { type master; file "null.zone.file"; };
        privoxy        ->  { +block { ads.example.com } }
        shadowrocket   ->  DOMAIN,ads.example.com,REJECT

    Exception rules (@@) have no DNS-style rendering and are left out there.
    So is anything whose target isn't a real hostname (wildcards, paths,
    ports, names without a public suffix).

FILTERING:
    Category, priority and tag filters run once over the whole rule set. The
    DNS/browser suitability filter then runs separately for each format, so
    exporting hosts never narrows what goes into the adguard file.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Final, Iterable, Mapping

import tldextract

from filtermerge.classifier import (
    BROWSER_ONLY_MODIFIERS,
    HOSTNAME_PATTERN,
    IPV4_PATTERN,
    RuleKind,
    extract_modifiers,
)
from filtermerge.config import DEFAULT_FILTER_META, FilterMeta
from filtermerge.metadata import StoredRule, utcnow

logger = logging.getLogger(__name__)

# Pre-configure tldextract for better performance (no updates check)
_tld_extract = tldextract.TLDExtract(suffix_list_urls=())


# =============================================================================
# FORMATS
# =============================================================================

DNS_TEMPLATES: Final[Mapping[str, str]] = {
    "hosts": "0.0.0.0 {domain}",
    "dnsmasq": "address=/{domain}/0.0.0.0",
    "unbound": 'local-zone: "{domain}" static',
    "bind": 'zone "{domain}" {{ type master; file "null.zone.file"; }};',
    "privoxy": "{{ +block {{ {domain} }} }}",
    "shadowrocket": "DOMAIN,{domain},REJECT",
}

DNS_FORMATS: Final[frozenset[str]] = frozenset(DNS_TEMPLATES)
BROWSER_FORMATS: Final[frozenset[str]] = frozenset({"adguard", "abp"})

SUPPORTED_FORMATS: Final[tuple[str, ...]] = (*DNS_TEMPLATES, "adguard", "abp", "all")

#: Formats whose header lines start with '!' instead of '#'
ADBLOCK_HEADER_FORMATS: Final[frozenset[str]] = frozenset({"adguard", "abp", "all"})

DNS_RULE_KINDS: Final[frozenset[RuleKind]] = frozenset({
    RuleKind.BLOCKING,
    RuleKind.UNBLOCKING,
})

BROWSER_RULE_KINDS: Final[frozenset[RuleKind]] = frozenset({
    RuleKind.BLOCKING,
    RuleKind.UNBLOCKING,
    RuleKind.COSMETIC,
    RuleKind.EXTENDED_CSS,
    RuleKind.HTML_FILTERING,
    RuleKind.SCRIPTLET,
    RuleKind.REMOVEPARAM,
    RuleKind.CSP,
    RuleKind.REDIRECT,
    RuleKind.REPLACE,
    RuleKind.REMOVEHEADER,
    RuleKind.PERMISSIONS,
})

#: ||domain anchoring, the only place a '/' is allowed in a DNS rule
DOMAIN_ANCHOR_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(?:@@)?\|\|")


# =============================================================================
# HOSTNAMES
# =============================================================================

@lru_cache(maxsize=65536)
def _extract_domain_parts(domain: str) -> tuple[str, str, str]:
    """Cached tldextract extraction. Returns (subdomain, domain, suffix)."""
    ext = _tld_extract(domain)
    return ext.subdomain, ext.domain, ext.suffix


def is_exportable_hostname(domain: str) -> bool:
    """
    True if a DNS blocker can take this as a hostname.

    Example:
        >>> is_exportable_hostname("ads.example.com")
        True
        >>> is_exportable_hostname("*.example.com"), is_exportable_hostname("localhost")
        (False, False)
    """
    if not domain or any(ch in domain for ch in "*/:?"):
        return False
    if not HOSTNAME_PATTERN.match(domain):
        return False
    _, name, suffix = _extract_domain_parts(domain)
    return bool(name and suffix)


def _dns_domain(rule: StoredRule) -> str | None:
    domain = rule.domain
    if not domain:
        return None
    # hosts-file lines ("0.0.0.0 example.com") keep their IP in the pattern
    parts = domain.split()
    if len(parts) == 2 and IPV4_PATTERN.match(parts[0]):
        domain = parts[1]
    domain = domain.lower().rstrip(".")
    return domain if is_exportable_hostname(domain) else None


def format_rule(rule: StoredRule, fmt: str) -> str:
    """
    Render one rule in an output format.

    Returns:
        The output line, or "" if the rule has no rendering in this format

    Raises:
        ValueError: If fmt is not one of SUPPORTED_FORMATS
    """
    if fmt not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported format: {fmt}")
    template = DNS_TEMPLATES.get(fmt)
    if template is None:
        return rule.raw_text
    if rule.is_exception:
        return ""
    domain = _dns_domain(rule)
    return template.format(domain=domain) if domain else ""


# =============================================================================
# RULE FILTERS
# =============================================================================

def is_dns_compatible(rule: StoredRule) -> bool:
    """True if a DNS-level blocker can apply the rule."""
    raw = rule.raw_text
    if rule.kind not in DNS_RULE_KINDS or not raw:
        return False
    if "#" in raw and "$denyallow" not in raw:
        return False
    if "$$" in raw:
        return False
    if "/" in raw and not DOMAIN_ANCHOR_PATTERN.match(raw):
        return False
    return not (extract_modifiers(raw) & BROWSER_ONLY_MODIFIERS)


def filter_dns_rules(rules: Iterable[StoredRule]) -> list[StoredRule]:
    return [rule for rule in rules if is_dns_compatible(rule)]


def filter_browser_rules(rules: Iterable[StoredRule]) -> list[StoredRule]:
    return [rule for rule in rules if rule.kind in BROWSER_RULE_KINDS]


def rules_for_format(rules: Iterable[StoredRule], fmt: str) -> list[StoredRule]:
    """The subset of rules that belongs in one output format."""
    if fmt in DNS_FORMATS:
        return filter_dns_rules(rules)
    if fmt in BROWSER_FORMATS:
        return filter_browser_rules(rules)
    return list(rules)


# =============================================================================
# HEADERS
# =============================================================================

def generate_header(
    meta: FilterMeta,
    fmt: str,
    stats: Mapping[str, int] | None = None,
    *,
    now: datetime | None = None,
) -> str:
    """
    Build the comment header of an output file.

    Args:
        meta: Title, description, licence, ...
        fmt: Output format; decides the comment character
        stats: Optional counts (total_rules, blocking_rules, exception_rules)
        now: Timestamp for the "Last modified" line

    Example:
        >>> generate_header(DEFAULT_FILTER_META, "hosts").splitlines()[0]
        '# Title: filtermerge Combined List'
    """
    mark = "!" if fmt in ADBLOCK_HEADER_FORMATS else "#"
    timestamp = (now or utcnow()).strftime("%Y-%m-%dT%H:%M:%SZ")

    fields = [
        ("Title", meta.title),
        ("Description", meta.description),
        ("Version", meta.version),
        ("Last modified", timestamp),
        ("Expires", f"{meta.expires} (update frequency)"),
        ("Homepage", meta.homepage),
        ("License", meta.license),
        ("Made by", meta.madeby),
        ("Format", fmt),
    ]
    lines = [f"{mark} {name}: {value}" for name, value in fields if value]

    if stats:
        lines.append(mark)
        lines.append(f"{mark} Total rules: {stats.get('total_rules', 0):,}")
        lines.append(f"{mark} Blocking rules: {stats.get('blocking_rules', 0):,}")
        lines.append(f"{mark} Exception rules: {stats.get('exception_rules', 0):,}")
    lines.append(mark)
    return "\n".join(lines) + "\n"


# =============================================================================
# EXPORT
# =============================================================================

@dataclass
class ExportOptions:
    """
    Which rules go where.

    Attributes:
        formats: Output formats, one file each
        categories: Keep only rules whose source category is listed
        exclude_categories: Drop rules whose source category is listed
        min_priority: Keep only rules whose source priority is at least this
        tags: Keep only rules carrying at least one of these tags
    """
    formats: tuple[str, ...] = ("all",)
    categories: list[str] = field(default_factory=list)
    exclude_categories: list[str] = field(default_factory=list)
    min_priority: int = 0
    tags: list[str] = field(default_factory=list)


def select_rules(rules: Iterable[StoredRule], options: ExportOptions) -> list[StoredRule]:
    """Apply the format-independent filters of options. Disabled rules are dropped."""
    selected = []
    for rule in rules:
        metadata = rule.metadata
        if not metadata.enabled:
            continue
        category = metadata.source_info.category
        if options.categories and category not in options.categories:
            continue
        if options.exclude_categories and category in options.exclude_categories:
            continue
        if options.min_priority and metadata.source_info.priority < options.min_priority:
            continue
        if options.tags and not any(tag in options.tags for tag in metadata.tags):
            continue
        selected.append(rule)
    return selected


def export_with_options(
    rules: Iterable[StoredRule],
    output_dir: str | Path,
    meta: FilterMeta = DEFAULT_FILTER_META,
    options: ExportOptions | None = None,
) -> dict[str, int]:
    """
    Write one <format>.txt file per requested format.

    Returns:
        Number of rules written per format

    Raises:
        ValueError: If a requested format is not supported
    """
    options = options or ExportOptions()
    unknown = [fmt for fmt in options.formats if fmt not in SUPPORTED_FORMATS]
    if unknown:
        raise ValueError(f"Unsupported format(s): {', '.join(unknown)}")

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    selected = select_rules(rules, options)
    now = utcnow()
    written: dict[str, int] = {}

    for fmt in options.formats:
        lines = []
        stats = {"total_rules": 0, "blocking_rules": 0, "exception_rules": 0}
        for rule in rules_for_format(selected, fmt):
            line = format_rule(rule, fmt)
            if not line:
                continue
            lines.append(line)
            stats["total_rules"] += 1
            if rule.kind is RuleKind.BLOCKING:
                stats["blocking_rules"] += 1
            elif rule.kind is RuleKind.UNBLOCKING:
                stats["exception_rules"] += 1

        file_path = output_path / f"{fmt}.txt"
        with open(file_path, "w", encoding="utf-8", newline="\n") as f:
            f.write(generate_header(meta, fmt, stats, now=now))
            for line in lines:
                f.write(line + "\n")

        written[fmt] = len(lines)
        logger.info("Exported %d rules to %s in %s format", len(lines), file_path, fmt)

    return written
