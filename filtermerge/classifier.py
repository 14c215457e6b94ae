#!/usr/bin/env python3
"""
classifier.py - Filter Rule Classification

Assigns every filter-list line one of the rule kinds understood by the rest of
the pipeline (blocking, cosmetic, scriptlet, csp, ...) or marks it as a
non-rule line (comment, preprocessor directive, hint).

Classification is a syntactic heuristic, not a grammar:
    The filter syntaxes used by AdGuard, uBlock Origin and ABP overlap heavily
    and are full of engine-specific extensions. Instead of parsing, each line
    is run through an ordered list of checks and the FIRST check that matches
    decides the kind. The order encodes precedence:

        example.com##.banner$script    -> cosmetic   (## wins over $script)
        ||ads.com^$csp=script-src      -> csp        (browser-only modifier)
        @@||ads.com^                   -> unblocking
        ||ads.com^$dnstype=AAAA        -> blocking   (DNS-only modifier)

Key Operations:
    1. Skip comments, headers, preprocessor directives and hints
    2. Scan the $modifier section once and flag DNS-only / browser-only options
    3. Walk CLASSIFICATION_STEPS until one of them returns a kind

The function never raises. Lines that fall through every check return None and
the caller decides how to count them.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Callable, Final, NamedTuple, Optional, Union


# =============================================================================
# KINDS
# =============================================================================

class RuleKind(str, Enum):
    """Kinds of rules that can be stored."""
    BLOCKING = "blocking"
    UNBLOCKING = "unblocking"
    COSMETIC = "cosmetic"
    SCRIPTLET = "scriptlet"
    CSP = "csp"
    REDIRECT = "redirect"
    REPLACE = "replace"
    REMOVEHEADER = "removeheader"
    REMOVEPARAM = "removeparam"
    HTML_FILTERING = "html-filtering"
    PERMISSIONS = "permissions"
    EXTENDED_CSS = "extended-css"
    DOMAIN = "domain"
    REGEX = "regex"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> Optional["RuleKind"]:
        # "parameter" is the older name for $removeparam rules
        if isinstance(value, str) and value.lower() == "parameter":
            return cls.REMOVEPARAM
        return None


class LineKind(str, Enum):
    """Non-rule lines. Never stored."""
    COMMENT = "comment"
    PREPROCESSOR = "preprocessor"
    HINT = "hint"


Classification = Union[RuleKind, LineKind, None]


# =============================================================================
# MODIFIER DEFINITIONS
# =============================================================================
# https://adguard-dns.io/kb/general/dns-filtering-syntax/
# https://adguard.com/kb/general/ad-filtering/create-own-filters/

#: Modifiers only a DNS-level blocker understands.
DNS_ONLY_MODIFIERS: Final[frozenset[str]] = frozenset({
    "client",
    "dnstype",
    "dnsrewrite",
    "ctag",
})

#: Modifiers only a browser extension can honour.
BROWSER_ONLY_MODIFIERS: Final[frozenset[str]] = frozenset({
    # -------------------------------------------------------------------------
    # Request context
    # -------------------------------------------------------------------------
    "app",
    "header",
    "method",
    "popup",
    "strict-first-party",
    "strict-third-party",
    "to",

    # -------------------------------------------------------------------------
    # Content types
    # -------------------------------------------------------------------------
    "document",
    "font",
    "image",
    "media",
    "object",
    "other",
    "ping",
    "script",
    "stylesheet",
    "subdocument",
    "websocket",
    "xmlhttprequest",
    "object-subrequest",
    "webrtc",

    # -------------------------------------------------------------------------
    # Exception-only options
    # -------------------------------------------------------------------------
    "content",
    "elemhide",
    "extension",
    "jsinject",
    "stealth",
    "urlblock",
    "genericblock",
    "generichide",
    "specifichide",

    # -------------------------------------------------------------------------
    # Response modification / redirects
    # -------------------------------------------------------------------------
    "all",
    "cookie",
    "csp",
    "hls",
    "inline-script",
    "inline-font",
    "jsonprune",
    "xmlprune",
    "network",
    "permissions",
    "redirect",
    "redirect-rule",
    "referrerpolicy",
    "removeheader",
    "removeparam",
    "replace",
    "urltransform",
    "noop",
    "empty",
    "mp4",
})

#: Step 7 precedence: first matching modifier group decides the kind.
ADVANCED_MODIFIER_KINDS: Final[tuple[tuple[frozenset[str], RuleKind], ...]] = (
    (frozenset({"csp"}), RuleKind.CSP),
    (frozenset({"redirect", "redirect-rule"}), RuleKind.REDIRECT),
    (frozenset({"replace"}), RuleKind.REPLACE),
    (frozenset({"removeparam"}), RuleKind.REMOVEPARAM),
    (frozenset({"removeheader"}), RuleKind.REMOVEHEADER),
    (frozenset({"permissions"}), RuleKind.PERMISSIONS),
)


# =============================================================================
# MARKERS AND REGEX PATTERNS
# =============================================================================

#: A line starting with '#' is a comment unless it contains one of these.
COMMENT_EXEMPT_MARKERS: Final[tuple[str, ...]] = (
    "##", "#?", "#@", "#$?#", "#$#", "#%#", "#.", "#,",
)

#: Element hiding, extended CSS and their exceptions.
COSMETIC_MARKERS: Final[tuple[str, ...]] = (
    "##", "#?#", "#@#", "#$?#", "#,", "#.", "#@?#", "#@$?#",
)

#: Scriptlet / JS injection and their exceptions.
SCRIPTLET_MARKERS: Final[tuple[str, ...]] = ("#$#", "#%#", "#@$#", "#@%#")

EXCEPTION_PREFIX: Final[str] = "@@"

#: Text after the last single '$' (a '$$' is HTML filtering, not modifiers).
MODIFIER_SECTION_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?<!\$)\$(?!\$)([^$]*)$")

MODIFIER_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-z0-9_-]+$")

HTML_FILTER_ATTRIBUTE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\[(?:tag-content|wildcards|max-length|min-length)=",
    re.IGNORECASE,
)

IPV4_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(?:[0-9]{1,3}\.){3}[0-9]{1,3}$")

DOMAIN_OR_WILDCARD_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(\*\.)?[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*\.[a-zA-Z]{2,}$"
)

HOSTNAME_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+\.?$"
)

#: Loose "name.tld" shape used on the pattern part of a rule.
SIMPLE_DOMAIN_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[a-z0-9_.-]+\.[a-z]{2,}$", re.IGNORECASE
)


# =============================================================================
# MODIFIER SCAN
# =============================================================================

class LineFeatures(NamedTuple):
    """
    Precomputed view of a stripped line shared by all classification steps.

    Attributes:
        line: The stripped line
        modifiers: Modifier names from the $ section (lowercase, no ~ or =value)
        has_dns_only: True if any modifier is in DNS_ONLY_MODIFIERS
        has_browser_only: True if any modifier is in BROWSER_ONLY_MODIFIERS
    """
    line: str
    modifiers: frozenset[str]
    has_dns_only: bool
    has_browser_only: bool


def extract_modifiers(rule: str) -> set[str]:
    """
    Extract modifier names from the $ section of a rule.

    Handles values (name=value) and negation (~name). Tokens that are not
    plain option names (regex fragments, selector leftovers) are ignored.

    Args:
        rule: The rule to parse

    Returns:
        Set of lowercase modifier names

    Example:
        >>> sorted(extract_modifiers("||example.com^$script,~third-party"))
        ['script', 'third-party']
        >>> extract_modifiers("||example.com^$dnstype=AAAA")
        {'dnstype'}
        >>> extract_modifiers("example.com$$script[tag-content=\\"ad\\"]")
        set()
    """
    match = MODIFIER_SECTION_PATTERN.search(rule)
    if not match:
        return set()

    modifiers: set[str] = set()
    for part in match.group(1).split(","):
        name = part.split("=", 1)[0].strip().lower()
        if name.startswith("~"):
            name = name[1:]
        if name and MODIFIER_NAME_PATTERN.match(name):
            modifiers.add(name)
    return modifiers


def line_features(line: str) -> LineFeatures:
    """Build the LineFeatures record for an already stripped line."""
    modifiers = frozenset(extract_modifiers(line))
    return LineFeatures(
        line=line,
        modifiers=modifiers,
        has_dns_only=bool(modifiers & DNS_ONLY_MODIFIERS),
        has_browser_only=bool(modifiers & BROWSER_ONLY_MODIFIERS),
    )


# =============================================================================
# CLASSIFICATION STEPS
# =============================================================================
# Each step returns a kind or None ("no opinion"). Order matters.

def _match_non_rule(f: LineFeatures) -> Classification:
    line = f.line
    if line.startswith("!"):
        if line.startswith("!#"):
            return LineKind.PREPROCESSOR
        if line.startswith("!+"):
            return LineKind.HINT
        return LineKind.COMMENT
    if line.startswith("#") and not any(m in line for m in COMMENT_EXEMPT_MARKERS):
        return LineKind.COMMENT
    if line.startswith("[") and line.endswith("]"):
        return LineKind.COMMENT
    return None


def _match_html_filtering(f: LineFeatures) -> Classification:
    if "$$" in f.line and HTML_FILTER_ATTRIBUTE_PATTERN.search(f.line):
        return RuleKind.HTML_FILTERING
    return None


def _match_extended_css(f: LineFeatures) -> Classification:
    return RuleKind.EXTENDED_CSS if "$$" in f.line else None


def _match_cosmetic(f: LineFeatures) -> Classification:
    if any(m in f.line for m in COSMETIC_MARKERS):
        return RuleKind.COSMETIC
    return None


def _match_scriptlet(f: LineFeatures) -> Classification:
    if any(m in f.line for m in SCRIPTLET_MARKERS):
        return RuleKind.SCRIPTLET
    return None


def _match_browser_modifier(f: LineFeatures) -> Classification:
    if not f.has_browser_only:
        return None
    for names, kind in ADVANCED_MODIFIER_KINDS:
        if f.modifiers & names:
            return kind
    if not f.line.startswith(EXCEPTION_PREFIX):
        return RuleKind.BLOCKING
    return None


def _match_exception(f: LineFeatures) -> Classification:
    return RuleKind.UNBLOCKING if f.line.startswith(EXCEPTION_PREFIX) else None


def _match_dns_modifier(f: LineFeatures) -> Classification:
    return RuleKind.BLOCKING if f.has_dns_only else None


def _match_engine_prefix(f: LineFeatures) -> Classification:
    # uBO "sponsor=" and "ext=" syntax
    if f.line.startswith(("sponsor=", "ext=")):
        return RuleKind.BLOCKING
    return None


def _match_network_syntax(f: LineFeatures) -> Classification:
    if f.line.startswith("|") or "^" in f.line:
        return RuleKind.BLOCKING
    return None


def _match_option_only(f: LineFeatures) -> Classification:
    return RuleKind.BLOCKING if f.line.startswith("$") else None


def _match_url_fragment(f: LineFeatures) -> Classification:
    line = f.line
    if (
        line.startswith("://")
        or (len(line) > 1 and line.startswith("/") and line.endswith("/"))
        or line.startswith(("&", "="))
    ):
        return RuleKind.BLOCKING
    return None


def _match_pattern_shape(f: LineFeatures) -> Classification:
    pattern = f.line.split("$", 1)[0]
    if any(ch in pattern for ch in "/*?_.-") or SIMPLE_DOMAIN_PATTERN.match(pattern):
        return RuleKind.BLOCKING
    return None


def _match_host(f: LineFeatures) -> Classification:
    line = f.line
    if (
        IPV4_PATTERN.match(line)
        or DOMAIN_OR_WILDCARD_PATTERN.match(line)
        or ("." in line and HOSTNAME_PATTERN.match(line))
    ):
        return RuleKind.BLOCKING
    return None


ClassificationStep = Callable[[LineFeatures], Classification]

CLASSIFICATION_STEPS: Final[tuple[ClassificationStep, ...]] = (
    _match_non_rule,
    _match_html_filtering,
    _match_extended_css,
    _match_cosmetic,
    _match_scriptlet,
    _match_browser_modifier,
    _match_exception,
    _match_dns_modifier,
    _match_engine_prefix,
    _match_network_syntax,
    _match_option_only,
    _match_url_fragment,
    _match_pattern_shape,
    _match_host,
)


# =============================================================================
# PUBLIC API
# =============================================================================

def classify(line: str) -> Classification:
    """
    Classify a single filter-list line.

    Args:
        line: Raw line (surrounding whitespace is ignored)

    Returns:
        A RuleKind for rules, a LineKind for comments/directives/hints,
        or None for empty or unrecognised input

    Example:
        >>> classify("@@||example.com^")
        <RuleKind.UNBLOCKING: 'unblocking'>
        >>> classify("example.com##.ad-banner")
        <RuleKind.COSMETIC: 'cosmetic'>
        >>> classify("!+ NOT_OPTIMIZED")
        <LineKind.HINT: 'hint'>
        >>> classify("   ") is None
        True
    """
    if not isinstance(line, str):
        return None
    stripped = line.strip()
    if not stripped:
        return None

    features = line_features(stripped)
    for step in CLASSIFICATION_STEPS:
        kind = step(features)
        if kind is not None:
            return kind
    return None


def is_exception_rule(rule: str) -> bool:
    """True if the rule allows rather than blocks (@@ prefix)."""
    return rule.startswith(EXCEPTION_PREFIX)
