from types import SimpleNamespace

from app.services.search import search_bookmarks


def _bookmark(
    title: str,
    tags=None,
    description: str = "",
    url: str = "https://example.com",
):
    return SimpleNamespace(
        title=title,
        description=description,
        tags=list(tags or []),
        url=url,
    )


def test_search_filters_irrelevant_items():
    bookmarks = [
        _bookmark("Python docs"),
        _bookmark("Gardening tips"),
        _bookmark("Travel planning"),
    ]

    results = search_bookmarks(bookmarks, "python")

    assert [row["bookmark"].title for row in results] == ["Python docs"]


def test_search_keeps_high_confidence_fuzzy_matches():
    bookmarks = [
        _bookmark("Python documentation"),
        _bookmark("Rust cookbook"),
    ]

    results = search_bookmarks(bookmarks, "pythn")

    assert results
    assert results[0]["bookmark"].title == "Python documentation"


def test_search_matches_description_text():
    bookmarks = [
        _bookmark("Weekly roundup", description="Release notes for flask 3.1"),
        _bookmark("Other"),
    ]

    results = search_bookmarks(bookmarks, "flask 3.1")

    assert len(results) == 1
    assert results[0]["bookmark"].title == "Weekly roundup"


def test_search_matches_tags_and_url():
    bookmarks = [
        _bookmark("Cheat sheet", tags=["regex"]),
        _bookmark("Homepage", url="https://regex101.com"),
        _bookmark("Unrelated"),
    ]

    results = search_bookmarks(bookmarks, "regex")

    assert [row["bookmark"].title for row in results] == ["Cheat sheet", "Homepage"]
    assert "tag_match" in results[0]["reasons"]
    assert "url_contains" in results[1]["reasons"]


def test_search_ignores_blank_query():
    assert search_bookmarks([_bookmark("Anything")], "   ") == []
