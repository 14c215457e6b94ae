from filtermerge.normalizer import (
    DEGRADED_KEY_PREFIX,
    PLACEHOLDER_CORE,
    NormalizedKey,
    is_degraded_key,
    normalize,
    normalize_core,
    normalize_rule,
)


def test_normalize_is_pure() -> None:
    rule = "||Example.com^$third-party,script"
    assert normalize(rule) == normalize(rule)


def test_case_and_separator_insensitive() -> None:
    assert normalize("||EXAMPLE.com^") == "||example.com"
    assert normalize("||example.com") == normalize("||EXAMPLE.COM^")


def test_modifier_order_and_values_are_ignored() -> None:
    assert normalize("||a.com^$script,third-party") == normalize("||a.com^$third-party,script")
    assert normalize("||a.com^$dnstype=A") == normalize("||a.com^$dnstype=AAAA")


def test_action_modifier_values_are_kept() -> None:
    assert normalize("||a.com^$redirect=noopjs") == "||a.com|mods=redirect=noopjs"
    assert normalize("||a.com^$redirect=noopjs") != normalize("||a.com^$redirect=nooptext")
    assert normalize("||a.com^$csp=script-src") != normalize("||a.com^$csp=frame-src")
    assert normalize("||a.com^$important,removeparam=utm") == normalize("||a.com^$removeparam=utm,important")


def test_domain_option_component() -> None:
    assert normalize("||a.com^$script,domain=B.com") == "||a.com|domain=b.com|mods=script"


def test_exception_stays_distinct() -> None:
    assert normalize("@@||a.com^") == "@@||a.com"
    assert normalize("@@||a.com^") != normalize("||a.com^")


def test_scheme_and_www_are_dropped() -> None:
    assert normalize("https://www.example.com/") == normalize("example.com")


def test_cosmetic_selector_is_lowercased() -> None:
    assert normalize("example.com##.Ad-Banner") == "example.com|sel=.ad-banner"
    assert normalize("example.com##.ad-banner") == normalize("EXAMPLE.com##.AD-banner")


def test_scriptlet_body_keeps_case() -> None:
    key = normalize("example.com#$#abort-on-property-read Foo")
    assert key == "example.com|sel=abort-on-property-read Foo"
    assert key != normalize("example.com#$#abort-on-property-read foo")


def test_placeholder_core_for_option_only_rules() -> None:
    assert normalize("$script,third-party") == f"{PLACEHOLDER_CORE}|mods=script,third-party"
    assert normalize("##.ad") == f"{PLACEHOLDER_CORE}|sel=.ad"


def test_empty_key_for_empty_rules() -> None:
    assert normalize("") == ""
    assert normalize(None) == ""
    assert normalize("   ") == ""
    assert normalize_rule("") == NormalizedKey("", degraded=False)


def test_degraded_key_for_unusable_input() -> None:
    result = normalize_rule(12345)
    assert result.degraded
    assert result.key == f"{DEGRADED_KEY_PREFIX}12345"
    assert is_degraded_key(result.key)
    assert normalize_rule(b"||a.com^").degraded


def test_canonical_keys_are_never_degraded() -> None:
    for rule in ["||a.com^", "!degraded:x", "example.com##.ad", "$script"]:
        result = normalize_rule(rule)
        assert not result.degraded
        assert not is_degraded_key(result.key)


def test_normalize_core() -> None:
    assert normalize_core("https://www.Example.com/path/?q=1") == "example.com/path"
    assert normalize_core("example.com...") == "example.com"


def test_css_injection_body_is_part_of_the_key() -> None:
    key = normalize("example.com#$?#div.Ad { remove: true; }")
    assert key == "example.com|sel=div.Ad { remove: true; }"
    assert key != normalize("example.com")
    assert key != normalize("example.com#$?#div.banner { remove: true; }")


def test_css_injection_exception_is_part_of_the_key() -> None:
    key = normalize("example.com#@$?#div.ad { remove: true; }")
    assert key == "@@example.com|sel=div.ad { remove: true; }"
    assert key != normalize("example.com")


def test_cosmetic_exceptions_are_tagged() -> None:
    assert normalize("example.com#@#.ad") == "@@example.com|sel=.ad"
    assert normalize("example.com#@#.ad") != normalize("example.com##.ad")
    assert normalize("example.com#@?#div:has(> a)") == "@@example.com|extsel=div:has(> a)"
    assert normalize("example.com#@%#window.x = 1") != normalize("example.com#%#window.x = 1")


def test_injection_body_dollar_is_not_a_modifier() -> None:
    assert normalize("example.com#%#window.$ads = 1") == "example.com|sel=window.$ads = 1"
