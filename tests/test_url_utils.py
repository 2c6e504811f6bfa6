from reveries.models.research import Citation
from reveries.utils.url_utils import (
    dedupe_citations,
    extract_domain,
    normalize_source_key,
    normalize_url,
)


def test_normalize_url_strips_tracking_fragment_and_trailing_slash():
    assert normalize_url("https://Example.com/article/?utm_source=x&id=5#top") == "https://example.com/article?id=5"
    assert normalize_url("https://example.com/") == "https://example.com"
    assert normalize_url("not a url") == ""


def test_extract_domain_skips_malformed():
    assert extract_domain("https://News.Example.org/path") == "news.example.org"
    assert extract_domain("example.org/no-scheme") == ""
    assert extract_domain("") == ""


def test_dedupe_keeps_one_entry_for_tracking_and_slash_variants():
    sources = [
        Citation(url="https://example.com/paris", title="Paris"),
        Citation(url="https://example.com/paris/", title="Paris (slash)"),
        Citation(url="https://example.com/paris?utm_source=newsletter&fbclid=abc", title="Paris (tracked)"),
        Citation(url="https://example.com/lyon", title="Lyon"),
    ]
    unique = dedupe_citations(sources)
    assert [c.title for c in unique] == ["Paris", "Lyon"]


def test_source_key_falls_back_to_title_and_author():
    with_author = Citation(title="The Study!", authors=["Jane Doe"])
    title_only = Citation(title="The Study!")
    assert normalize_source_key(with_author) == "the study|jane doe"
    assert normalize_source_key(title_only) == "the study"


def test_dedupe_drops_citations_without_any_key():
    assert dedupe_citations([Citation()]) == []
