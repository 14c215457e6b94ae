import pytest

from filtermerge.classifier import RuleKind
from filtermerge.store import RuleStore


def test_same_rule_from_two_sources_is_merged() -> None:
    store = RuleStore()
    store.add_rule("||ads.example.com^", "A")
    store.add_rule("||ads.example.com^", "B")

    rules = store.get_unique_rules()
    assert len(rules) == 1
    assert rules[0].metadata.sources == {"A", "B"}

    stats = store.get_stats()
    assert stats["duplicates"] == 1
    assert stats["merged"] == 1
    assert stats["blocking"] == 1


def test_same_rule_from_same_source_is_only_a_duplicate() -> None:
    store = RuleStore()
    store.add_rule("||ads.example.com^", "A")
    store.add_rule("||ads.example.com^", "A")

    stats = store.get_stats()
    assert stats["duplicates"] == 1
    assert stats["merged"] == 0
    assert len(store) == 1


def test_key_conflict_is_last_write_wins(caplog) -> None:
    store = RuleStore()
    store.add_rule("||ads.example.com^", "A")
    first = store.rules_of_kind(RuleKind.BLOCKING)[0]
    store.add_rule("||ads.example.com", "B")

    rules = store.rules_of_kind(RuleKind.BLOCKING)
    assert len(rules) == 1
    assert rules[0].raw_text == "||ads.example.com"
    assert rules[0].metadata.sources == {"A", "B"}
    assert rules[0].metadata.date_added <= first.metadata.date_added

    stats = store.get_stats()
    assert stats["conflicts"] == 1
    assert stats["blocking"] == 1
    assert "Overwriting" in caplog.text


def test_cosmetic_rules_are_keyed_by_selector() -> None:
    store = RuleStore()
    store.add_rule("a.com##.ad", "A")
    store.add_rule("b.com##.ad", "B")
    store.add_rule("b.com##.banner", "B")

    rules = store.rules_of_kind(RuleKind.COSMETIC)
    assert [r.raw_text for r in rules] == ["b.com##.ad", "b.com##.banner"]
    assert store.get_stats()["conflicts"] == 1


def test_rules_with_options_are_keyed_by_hash() -> None:
    store = RuleStore()
    store.add_rule("||a.com^$third-party", "A")
    store.add_rule("||a.com^$important", "A")
    store.add_rule("||a.com^$third-party", "B")

    rules = store.rules_of_kind(RuleKind.BLOCKING)
    assert len(rules) == 2
    assert rules[0].metadata.sources == {"A", "B"}
    assert store.get_stats()["conflicts"] == 0


def test_non_rule_lines_are_counted() -> None:
    store = RuleStore()
    store.add_text("! comment\n!+ NOT_OPTIMIZED\n!#if (adguard)\n\nfoo\n||a.com^", "A")

    stats = store.get_stats()
    assert stats["total_processed"] == 6
    assert stats["skipped"] == 3
    assert stats["unrecognized"] == 1
    assert stats["preprocessor"] == 1
    assert stats["hint"] == 1
    assert stats["blocking"] == 1


def test_rule_without_key_is_invalid(caplog) -> None:
    store = RuleStore()
    store.add_rule("||a.com#foo^", "A")

    assert len(store) == 0
    assert store.get_stats()["invalid"] == 1
    assert "Could not determine key" in caplog.text


def test_kind_without_partition_is_invalid() -> None:
    store = RuleStore(classifier=lambda line: RuleKind.DOMAIN)
    store.add_rule("example.com", "A")
    assert store.get_stats()["invalid"] == 1
    assert len(store) == 0


def test_unknown_kind_string_is_invalid() -> None:
    store = RuleStore(classifier=lambda line: "bogus")
    store.add_rule("example.com", "A")
    assert store.get_stats()["invalid"] == 1


def test_parameter_alias_from_classifier() -> None:
    store = RuleStore(classifier=lambda line: "parameter")
    store.add_rule("||a.com^$removeparam=utm_source", "A")
    assert len(store.rules_of_kind(RuleKind.REMOVEPARAM)) == 1
    assert store.get_stats()["removeparam"] == 1


def test_counters_never_exceed_total() -> None:
    store = RuleStore()
    store.add_lines(
        [
            "||a.com^",
            "||a.com^",
            "@@||b.com^",
            "example.com##.ad",
            "example.com#$#abort-on-property-read alert",
            "! comment",
            "",
            "foo",
            "||c.com#x^",
        ],
        "A",
    )
    stats = store.get_stats()
    assert stats["skipped"] + stats["invalid"] + len(store) <= stats["total_processed"]


def test_non_callable_classifier_is_rejected() -> None:
    with pytest.raises(TypeError):
        RuleStore(classifier="classify")


def test_unique_rules_follow_partition_order() -> None:
    store = RuleStore()
    store.add_rule("example.com##.ad", "A")
    store.add_rule("@@||b.com^", "A")
    store.add_rule("||a.com^", "A")

    kinds = [rule.kind for rule in store.get_unique_rules()]
    assert kinds == [RuleKind.BLOCKING, RuleKind.UNBLOCKING, RuleKind.COSMETIC]
