#!/usr/bin/env python3
"""
normalizer.py - Canonical Dedup Keys for Filter Rules

Turns a rule into a composite key so that rules which differ only in casing,
scheme, www. prefix, trailing separators or modifier order land in the same
duplicate group:

    ||EXAMPLE.com^                 -> ||example.com
    ||example.com^$third-party,script  -> ||example.com|mods=script,third-party
    ||example.com^$script,third-party  -> ||example.com|mods=script,third-party
    @@||example.com^               -> @@||example.com

The key is NOT rule syntax and is never written out. It is built from:

    core | domain=<domain> | mods=<names> | sel=<selector> | extsel=<selector>

Only the non-empty components are joined. Modifier values are discarded, so
two rules with the same option names share a key. The exception is options
whose value IS the action (csp, redirect, replace, removeparam, ...): those
keep name=value, so $redirect=noopjs and $redirect=nooptext stay apart.

Cosmetic and injection exceptions (#@#, #@?#, #@$#, #@%#, #@$?#) are tagged
with the same @@ prefix as network exceptions, so a hiding rule and the rule
that unhides it never share a key:

    example.com##.ad               -> example.com|sel=.ad
    example.com#@#.ad              -> @@example.com|sel=.ad

Degraded keys:
    If building the key fails, the rule gets a key in its own namespace
    (DEGRADED_KEY_PREFIX + raw rule) and the result is flagged as degraded.
    Canonical keys can never start with '!' because everything from '!' on is
    stripped as a comment, so the two key spaces never collide.
"""
from __future__ import annotations

import logging
import re
from typing import Final, NamedTuple

from filtermerge.classifier import ADVANCED_MODIFIER_KINDS

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

#: Core used when only modifiers/selectors survive stripping.
PLACEHOLDER_CORE: Final[str] = "modifier_or_selector_rule"

#: Namespace for keys built after an internal failure.
DEGRADED_KEY_PREFIX: Final[str] = "!degraded:"

EXCEPTION_PREFIX: Final[str] = "@@"

#: Options whose value decides what the rule does; their values stay in the key.
VALUE_KEYED_MODIFIERS: Final[frozenset[str]] = frozenset().union(
    *(names for names, _ in ADVANCED_MODIFIER_KINDS)
)


# =============================================================================
# REGEX PATTERNS
# =============================================================================

#: Value of a domain= option, up to the next , $ or /
DOMAIN_OPTION_PATTERN: Final[re.Pattern[str]] = re.compile(r"[$,]domain=([^,$/]+)")

#: Everything after the first $ up to a cosmetic marker or end of rule
MODIFIERS_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$([^#]*?)(?:##|#\?#|#@#|$)")

#: Element hiding selector
SELECTOR_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?:##|#@#)(.+)")

#: Scriptlet, JS or CSS injection body (case-sensitive, kept as is)
INJECTION_PATTERN: Final[re.Pattern[str]] = re.compile(r"#@?(?:\$\??|%)#(.+)")

#: Extended CSS selector
EXTENDED_SELECTOR_PATTERN: Final[re.Pattern[str]] = re.compile(r"#@?\?#(.+)")

#: #@#, #@?#, #@$#, #@%# and #@$?# all undo a cosmetic or injection rule
COSMETIC_EXCEPTION_PATTERN: Final[re.Pattern[str]] = re.compile(r"#@(?:\$\??|%|\?)?#")

WHITESPACE_PATTERN: Final[re.Pattern[str]] = re.compile(r"\s+")

# Stripping the working copy down to its core target
STRIP_SELECTORS: Final[re.Pattern[str]] = re.compile(r"#@?(?:\$\??|%|\?)?#.*$")
STRIP_MODIFIERS: Final[re.Pattern[str]] = re.compile(r"\$.*$")
STRIP_COMMENT: Final[re.Pattern[str]] = re.compile(r"!\s*.*$")

# Core target normalization
STRIP_SCHEME: Final[re.Pattern[str]] = re.compile(r"^(?:https?://)?(?:www\.)?")
STRIP_QUERY: Final[re.Pattern[str]] = re.compile(r"[?#].*$")
STRIP_TRAILING_SEPARATORS: Final[re.Pattern[str]] = re.compile(r"[\^/]+$")
STRIP_TRAILING_DOTS: Final[re.Pattern[str]] = re.compile(r"\.+$")


# =============================================================================
# DATA STRUCTURES
# =============================================================================

class NormalizedKey(NamedTuple):
    """
    Result of normalizing a rule.

    Attributes:
        key: Canonical key, "" if the rule can't be deduplicated
        degraded: True if the key is a fallback built after an internal error

    Example:
        >>> normalize_rule("||example.com^")
        NormalizedKey(key='||example.com', degraded=False)
    """
    key: str
    degraded: bool = False


# =============================================================================
# HELPERS
# =============================================================================

def _collapse(text: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def _modifier_names(rule: str) -> str:
    match = MODIFIERS_PATTERN.search(rule)
    if not match:
        return ""
    names = set()
    for part in match.group(1).split(","):
        name, _, value = part.partition("=")
        name = name.strip().lower()
        if not name or name == "domain":
            continue
        if name in VALUE_KEYED_MODIFIERS and value.strip():
            name = f"{name}={value.strip()}"
        names.add(name)
    return ",".join(sorted(names))


def _selector(rule: str) -> str:
    match = SELECTOR_PATTERN.search(rule)
    if match:
        return _collapse(match.group(1).lower())
    match = INJECTION_PATTERN.search(rule)
    if match:
        return _collapse(match.group(1))
    return ""


def normalize_core(target: str) -> str:
    """
    Normalize the core target of a rule (the part left after stripping).

    Example:
        >>> normalize_core("https://www.Example.com/path/?q=1")
        'example.com/path'
        >>> normalize_core("||ads.example.com^")
        '||ads.example.com'
    """
    target = STRIP_SCHEME.sub("", target)
    target = STRIP_QUERY.sub("", target)
    target = STRIP_TRAILING_SEPARATORS.sub("", target)
    target = STRIP_TRAILING_DOTS.sub("", target)
    return target.lower().strip()


def _build_key(rule: str) -> str:
    working = rule
    is_exception = working.startswith(EXCEPTION_PREFIX)
    if is_exception:
        working = working[len(EXCEPTION_PREFIX):]
    elif COSMETIC_EXCEPTION_PATTERN.search(working):
        is_exception = True

    # Components come from the text before anything is stripped
    domain_match = DOMAIN_OPTION_PATTERN.search(working)
    domain = domain_match.group(1).lower().strip() if domain_match else ""
    modifiers = _modifier_names(STRIP_SELECTORS.sub("", working))
    selector = _selector(working)
    ext_match = EXTENDED_SELECTOR_PATTERN.search(working)
    extended_selector = _collapse(ext_match.group(1).lower()) if ext_match else ""

    # Selectors first: an injection body may itself contain '$'
    working = STRIP_SELECTORS.sub("", working)
    working = STRIP_MODIFIERS.sub("", working)
    working = STRIP_COMMENT.sub("", working)
    core = normalize_core(working)

    if not core:
        if not (domain or modifiers or selector or extended_selector):
            return ""
        core = PLACEHOLDER_CORE

    components = [
        core,
        domain and f"domain={domain}",
        modifiers and f"mods={modifiers}",
        selector and f"sel={selector}",
        extended_selector and f"extsel={extended_selector}",
    ]
    key = "|".join(c for c in components if c)
    return EXCEPTION_PREFIX + key if is_exception else key


# =============================================================================
# PUBLIC API
# =============================================================================

def normalize_rule(rule: str | None) -> NormalizedKey:
    """
    Build the canonical dedup key for a rule.

    Never raises. An internal failure yields a degraded key in its own
    namespace instead of a canonical one.

    Args:
        rule: Raw rule text

    Returns:
        NormalizedKey with the key and the degraded flag

    Example:
        >>> normalize_rule("@@||EXAMPLE.com^").key
        '@@||example.com'
        >>> normalize_rule("||a.com^$script,domain=B.com").key
        '||a.com|domain=b.com|mods=script'
        >>> normalize_rule("")
        NormalizedKey(key='', degraded=False)
    """
    if not rule:
        return NormalizedKey("")
    try:
        return NormalizedKey(_build_key(rule))
    except (AttributeError, TypeError, ValueError, re.error) as e:
        logger.warning("Failed to normalize rule %r: %s", rule, e)
        return NormalizedKey(f"{DEGRADED_KEY_PREFIX}{rule}", degraded=True)


def normalize(rule: str | None) -> str:
    """
    Canonical key as a plain string ("" = not dedupe-able).

    Example:
        >>> normalize("||example.com^$Script,important") == normalize("||example.com^$important,script")
        True
        >>> normalize("example.com##.Ad-Banner")
        'example.com|sel=.ad-banner'
    """
    return normalize_rule(rule).key


def is_degraded_key(key: str) -> bool:
    """True if the key was built on the degraded path."""
    return key.startswith(DEGRADED_KEY_PREFIX)
