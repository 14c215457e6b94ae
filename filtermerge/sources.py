"""
sources.py - Known Filter Lists and Their Reputation

FILTER_LISTS is the built-in catalogue: the CLI fetches its enabled entries when
asked for the default sources. The reputation table is consulted only when
building rule metadata. A source can be referred to by its friendly name or by
its URL. Anything not listed gets DEFAULT_REPUTATION.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Iterable, NamedTuple

from filtermerge.config import DEFAULT_MAINTAINER


class FilterSource(NamedTuple):
    """A filter list the pipeline knows how to fetch."""
    name: str
    url: str
    enabled: bool = True


@dataclass(frozen=True)
class SourceReputation:
    """How much a source is trusted, and its priority tier."""
    category: str = "unknown"
    trusted: bool = False
    priority: int = 0
    attribution: str | None = None


DEFAULT_REPUTATION: Final[SourceReputation] = SourceReputation()

LOCAL_RULES_NAME: Final[str] = "Local Rules"


FILTER_LISTS: Final[tuple[FilterSource, ...]] = (
    FilterSource(LOCAL_RULES_NAME, "filters/input/local-rules.txt"),
    FilterSource("AdGuard DNS Filter", "https://filters.adtidy.org/extension/chromium/filters/15.txt"),
    FilterSource("uBlock Origin Filters", "https://raw.githubusercontent.com/uBlockOrigin/uAssets/master/filters/filters.txt"),
    FilterSource("uBlock Unbreak Filter", "https://raw.githubusercontent.com/uBlockOrigin/uAssets/master/filters/unbreak.txt"),
    FilterSource("AdGuard Base Filter", "https://adguardteam.github.io/HostlistsRegistry/assets/filter_1.txt"),
    FilterSource("AdGuard Annoyances Filter", "https://raw.githubusercontent.com/AdguardTeam/FiltersRegistry/master/filters/filter_14_Annoyances/filter.txt"),
    FilterSource("AdGuard Social Media Filter", "https://raw.githubusercontent.com/AdguardTeam/FiltersRegistry/master/filters/filter_4_Social/filter.txt"),
    FilterSource("AdGuard Mobile Filter", "https://raw.githubusercontent.com/AdguardTeam/AdguardFilters/master/MobileFilter/sections/adservers.txt"),
    FilterSource("AWAvenue Ads Rule", "https://raw.githubusercontent.com/TG-Twilight/AWAvenue-Ads-Rule/main/AWAvenue-Ads-Rule.txt"),
    FilterSource("AdGuard DNS Popup Hosts filter", "https://adguardteam.github.io/HostlistsRegistry/assets/filter_59.txt"),
    FilterSource("EasyList", "https://easylist.to/easylist/easylist.txt"),
    FilterSource("Fanboy's Annoyance List", "https://secure.fanboy.co.nz/fanboy-annoyance.txt"),
    FilterSource("OISD Blocklist Small", "https://adguardteam.github.io/HostlistsRegistry/assets/filter_5.txt"),
    FilterSource("Peter Lowes List", "https://pgl.yoyo.org/adservers/serverlist.php?hostformat=adblock&showintro=0&mimetype=plaintext"),
)

#: URL/path -> friendly name
SOURCE_NAMES: Final[dict[str, str]] = {src.url: src.name for src in FILTER_LISTS}

#: friendly name -> URL/path
SOURCE_URLS: Final[dict[str, str]] = {src.name: src.url for src in FILTER_LISTS}

SOURCE_REPUTATION: Final[dict[str, SourceReputation]] = {
    "AdGuard DNS Filter": SourceReputation("primary", True, 1),
    "uBlock Origin Filters": SourceReputation("primary", True, 1),
    "Peter Lowes List": SourceReputation("privacy", True, 2),
    "OISD Blocklist Small": SourceReputation("privacy", True, 2),
    "Fanboy's Annoyance List": SourceReputation("annoyance", True, 3),
    "AdGuard Annoyances Filter": SourceReputation("annoyance", True, 3),
    "AdGuard Social Media Filter": SourceReputation("social", True, 3),
    "AdGuard Mobile Filter": SourceReputation("mobile", True, 2),
    "AWAvenue Ads Rule": SourceReputation("mobile", True, 2),
    LOCAL_RULES_NAME: SourceReputation("custom", True, 0, attribution=DEFAULT_MAINTAINER),
}


def source_name(identifier: str) -> str:
    """Friendly name for a URL or path, or the identifier itself."""
    return SOURCE_NAMES.get(identifier, identifier)


def source_url(identifier: str) -> str:
    """URL/path for a source name, the identifier if it is already a URL, else ''."""
    if identifier in SOURCE_URLS:
        return SOURCE_URLS[identifier]
    if identifier in SOURCE_NAMES or identifier.startswith(("http://", "https://")):
        return identifier
    return ""


def lookup_reputation(
    name_or_url: str,
    table: dict[str, SourceReputation] | None = None,
) -> SourceReputation:
    """
    Find the reputation entry for a source.

    URLs are translated to friendly names first.

    Example:
        >>> lookup_reputation("https://easylist.to/easylist/easylist.txt")
        SourceReputation(category='unknown', trusted=False, priority=0, attribution=None)
        >>> lookup_reputation("OISD Blocklist Small").category
        'privacy'
    """
    table = SOURCE_REPUTATION if table is None else table
    if name_or_url in table:
        return table[name_or_url]
    return table.get(source_name(name_or_url), DEFAULT_REPUTATION)


def default_sources(lists: Iterable[FilterSource] = FILTER_LISTS) -> list[str]:
    """
    URLs/paths of the enabled lists, in table order.

    Example:
        >>> default_sources([FilterSource("A", "a.txt"), FilterSource("B", "b.txt", enabled=False)])
        ['a.txt']
    """
    return [src.url for src in lists if src.enabled]
