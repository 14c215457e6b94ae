from collections import Counter
from datetime import timedelta

import pytest

from filtermerge.classifier import RuleKind
from filtermerge.deduplicator import DEFAULT_SCORE_WEIGHTS, RuleDeduplicator
from filtermerge.metadata import RuleMetadata, StoredRule
from filtermerge.normalizer import DEGRADED_KEY_PREFIX, NormalizedKey
from filtermerge.sources import LOCAL_RULES_NAME
from filtermerge.store import RuleStore


def test_same_rule_from_two_sources(make_rule) -> None:
    dedup = RuleDeduplicator()
    rules = dedup.process_rules([
        make_rule("||example.com^", "X"),
        make_rule("||EXAMPLE.com^", "Y"),
    ])

    assert len(rules) == 1
    assert rules[0].metadata.sources == {"X", "Y"}

    stats = dedup.get_stats()
    assert stats.total == 2
    assert stats.duplicates == 1
    assert stats.merged == 1
    assert stats.unique_rules == 1
    assert stats.duplicate_groups == 1
    assert stats.duplicate_percent == "50.00%"


def test_trusted_source_wins_over_shorter_rule(make_rule) -> None:
    trusted = make_rule("||ads.example.com^", "OISD Blocklist Small")
    untrusted = make_rule("||ads.example.com", "random-list")

    rules = RuleDeduplicator().process_rules([untrusted, trusted])
    assert rules[0].raw_text == "||ads.example.com^"


def test_equal_scores_prefer_shorter_rule(make_rule) -> None:
    rules = RuleDeduplicator().process_rules([
        make_rule("||ads.example.com^", "a"),
        make_rule("||ads.example.com", "a"),
    ])
    assert rules[0].raw_text == "||ads.example.com"


def test_exact_tie_keeps_first_seen(make_rule) -> None:
    rules = RuleDeduplicator().process_rules([
        make_rule("||A.com^", "a"),
        make_rule("||a.com^", "a"),
    ])
    assert rules[0].raw_text == "||A.com^"


def test_alternatives_record_folded_rules(make_rule) -> None:
    rules = RuleDeduplicator().process_rules([
        make_rule("||ads.example.com^", "a"),
        make_rule("||ads.example.com", "a"),
        make_rule("||ADS.example.com^", "b"),
    ])
    assert rules[0].raw_text == "||ads.example.com"
    assert rules[0].metadata.alternatives == ["||ads.example.com^", "||ADS.example.com^"]


def test_merged_date_is_earliest(make_rule, fixed_now) -> None:
    later = make_rule("||a.com^", "a", now=fixed_now + timedelta(days=3))
    earlier = make_rule("||A.com^", "b", now=fixed_now)

    rules = RuleDeduplicator().process_rules([later, earlier])
    assert rules[0].metadata.date_added == fixed_now


def test_modifiers_are_unioned(make_rule) -> None:
    rules = RuleDeduplicator().process_rules([
        make_rule("||a.com^$script,third-party", "a"),
        make_rule("||A.com^$third-party,script", "b"),
    ])
    assert len(rules) == 1
    assert rules[0].metadata.modifiers == {"script", "third-party"}
    assert rules[0].metadata.sources == {"a", "b"}


def test_unrelated_rules_pass_through(make_rule) -> None:
    input_rules = [make_rule("||a.com^"), make_rule("||b.com^"), make_rule("a.com##.ad")]
    dedup = RuleDeduplicator()
    rules = dedup.process_rules(input_rules)

    assert rules == input_rules
    assert dedup.get_stats().duplicates == 0
    assert dedup.get_stats().duplicate_groups == 0


def test_group_failure_keeps_representative(make_rule, caplog) -> None:
    class BrokenMerge(RuleDeduplicator):
        def merge_metadata(self, group, best):
            raise RuntimeError("boom")

    dedup = BrokenMerge()
    rules = dedup.process_rules([make_rule("||a.com^", "a"), make_rule("||A.com^", "b")])

    assert len(rules) == 1
    assert isinstance(rules[0].metadata, RuleMetadata)
    stats = dedup.get_stats()
    assert stats.conflicts == 1
    assert stats.merged == 0
    assert "boom" in caplog.text


def test_rules_without_text_are_skipped(make_rule) -> None:
    empty = StoredRule(raw_text="", content_hash="", kind=RuleKind.BLOCKING, metadata=RuleMetadata())
    dedup = RuleDeduplicator()
    rules = dedup.process_rules([empty, make_rule("||a.com^"), make_rule("!", kind=RuleKind.BLOCKING)])

    assert [r.raw_text for r in rules] == ["||a.com^"]
    assert dedup.get_stats().skipped == 2


def test_degraded_keys_are_counted(make_rule) -> None:
    dedup = RuleDeduplicator(
        normalizer=lambda raw: NormalizedKey(DEGRADED_KEY_PREFIX + raw, degraded=True)
    )
    rules = dedup.process_rules([make_rule("||a.com^"), make_rule("||A.com^")])

    assert len(rules) == 2
    assert dedup.get_stats().degraded == 2


def test_score_weights_are_pluggable(make_rule) -> None:
    def group():
        trusted = make_rule("||ads.example.com^", "OISD Blocklist Small")
        popular = make_rule("||ADS.example.com^", "r", sources={f"r{i}" for i in range(9)})
        return [trusted, popular]

    default = RuleDeduplicator().process_rules(group())
    assert default[0].raw_text == "||ADS.example.com^"

    reweighted = RuleDeduplicator(weights={"trusted": 100}).process_rules(group())
    assert reweighted[0].raw_text == "||ads.example.com^"


def test_rule_score(make_rule) -> None:
    rule = make_rule("||a.com^$important", LOCAL_RULES_NAME)
    w = DEFAULT_SCORE_WEIGHTS
    expected = (
        w["per_source"] + w["per_modifier"] + w["has_date"]
        + w["important"] + w["trusted"] + w["maintainer"]
    )
    assert RuleDeduplicator().get_rule_score(rule) == expected


def test_exact_match_bonus(make_rule) -> None:
    dedup = RuleDeduplicator()
    exact = dedup.get_rule_score(make_rule("example.com", "a"))
    anchored = dedup.get_rule_score(make_rule("||example.com^", "a"))
    assert exact - anchored == DEFAULT_SCORE_WEIGHTS["exact_match"]


def test_select_best_rule_rejects_empty_group() -> None:
    with pytest.raises(ValueError):
        RuleDeduplicator().select_best_rule([])


def test_empty_input() -> None:
    dedup = RuleDeduplicator()
    assert dedup.process_rules([]) == []
    assert dedup.get_stats().total == 0
    assert dedup.get_stats().duplicate_percent == "0.00%"


def test_store_output_is_idempotent() -> None:
    store = RuleStore()
    store.add_text("||a.com^\n||A.com^\n@@||b.com^\nexample.com##.ad\n||a.com", "a")
    store.add_text("||a.com^\nexample.org##.ad\n", "b")

    dedup = RuleDeduplicator()
    first = dedup.process_rules(store.get_unique_rules())
    second = dedup.process_rules(first)

    assert [r.raw_text for r in second] == [r.raw_text for r in first]
    assert dedup.get_stats().duplicates == 0


def test_css_injection_is_not_folded_into_host_rule(make_rule) -> None:
    rules = RuleDeduplicator().process_rules([
        make_rule("example.com", "a"),
        make_rule("example.com#$?#div.ad { remove: true; }", "a"),
    ])
    assert sorted(r.raw_text for r in rules) == [
        "example.com",
        "example.com#$?#div.ad { remove: true; }",
    ]


def test_cosmetic_exception_survives_next_to_hiding_rule(make_rule) -> None:
    rules = RuleDeduplicator().process_rules([
        make_rule("example.com##.ad", "a"),
        make_rule("example.com#@#.ad", "b"),
    ])
    assert [r.raw_text for r in rules] == ["example.com##.ad", "example.com#@#.ad"]
    assert all(not r.metadata.alternatives for r in rules)


def test_hash_keyed_kind_counts_survive_deduplication() -> None:
    store = RuleStore()
    store.add_text(
        "||a.com^$redirect=noopjs\n"
        "||a.com^$redirect=nooptext\n"
        "||a.com^$csp=script-src 'self'\n"
        "||a.com^$csp=frame-src 'none'\n"
        "example.com#%#//scriptlet('abort-on-property-read', 'Foo')\n"
        "example.com#%#//scriptlet('abort-on-property-read', 'Bar')\n"
        "||a.com^$script\n"
        "||a.com^$image\n",
        "a",
    )
    stored = store.get_unique_rules()
    assert len(stored) == 8

    deduplicated = RuleDeduplicator().process_rules(stored)

    assert Counter(r.kind for r in deduplicated) == Counter(r.kind for r in stored)
    assert Counter(r.kind for r in deduplicated) == {
        RuleKind.REDIRECT: 2,
        RuleKind.CSP: 2,
        RuleKind.SCRIPTLET: 2,
        RuleKind.BLOCKING: 2,
    }
