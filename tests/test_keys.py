"""
Cache key policy tests.
"""
from discovery_cache.cache.keys import build_key, dimensions_from_key


def test_same_inputs_give_same_key():
    first = build_key("tmdb", "trending", {"category": "movie"})
    second = build_key("tmdb", "trending", {"category": "movie"})
    assert first == second == "tmdb:trending:movie"


def test_different_dimension_values_give_different_keys():
    assert build_key("tmdb", "trending", {"category": "movie"}) != build_key(
        "tmdb", "trending", {"category": "tv"}
    )


def test_dimensions_follow_fixed_order():
    key = build_key(
        "tmdb",
        "trending",
        {"day": "monday", "period": "week", "category": "movie", "filter": "x", "type": "t"},
    )
    assert key == "tmdb:trending:movie:week:t:x:monday"


def test_no_dimensions():
    assert build_key("deezer", "charts") == "deezer:charts"
    assert build_key("deezer", "charts", {}) == "deezer:charts"


def test_omitted_dimension_differs_from_empty_one():
    assert build_key("tmdb", "upcoming", {}) != build_key("tmdb", "upcoming", {"category": ""})
    assert build_key("tmdb", "upcoming", {"category": ""}) == "tmdb:upcoming:"


def test_none_values_are_omitted():
    assert build_key("jikan", "top", {"category": None}) == "jikan:top"


def test_unknown_dimensions_are_ignored():
    assert build_key("rawg", "popular", {"lang": "fr", "page": 2}) == "rawg:popular"


def test_dimensions_from_key_uses_columns_then_extras():
    options = dimensions_from_key(
        "tmdb:upcoming:tv:on-the-air",
        category="tv",
        extra_dimensions=("type",),
    )
    assert options == {"category": "tv", "type": "on-the-air"}


def test_dimensions_from_key_day_suffix():
    options = dimensions_from_key("jikan:schedule:monday", extra_dimensions=("day",))
    assert options == {"day": "monday"}


def test_dimensions_from_key_without_extras():
    options = dimensions_from_key("tmdb:trending:movie:week", category="movie", period="week")
    assert options == {"category": "movie", "period": "week"}
