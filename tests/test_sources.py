from filtermerge.sources import (
    FILTER_LISTS,
    LOCAL_RULES_NAME,
    SOURCE_URLS,
    FilterSource,
    default_sources,
    source_name,
    source_url,
)


def test_default_sources_skip_disabled_lists() -> None:
    lists = [
        FilterSource("A", "https://a.example/list.txt"),
        FilterSource("B", "https://b.example/list.txt", enabled=False),
        FilterSource("C", "c.txt"),
    ]
    assert default_sources(lists) == ["https://a.example/list.txt", "c.txt"]


def test_default_sources_follow_catalogue_order() -> None:
    expected = [src.url for src in FILTER_LISTS if src.enabled]
    assert default_sources() == expected
    assert default_sources()[0] == SOURCE_URLS[LOCAL_RULES_NAME]


def test_source_name_and_url_lookups() -> None:
    url = SOURCE_URLS["EasyList"]
    assert source_name(url) == "EasyList"
    assert source_url("EasyList") == url
    assert source_name("https://unknown.example/x.txt") == "https://unknown.example/x.txt"
    assert source_url("not-a-source") == ""
