from __future__ import annotations

import pytest

from cardsync.dependencies.origin import is_origin_allowed, normalize_origin


@pytest.mark.parametrize(
    "value, expected",
    [
        ("https://app.example.com", "https://app.example.com"),
        ("https://app.example.com/some/page?x=1", "https://app.example.com"),
        ("http://localhost:5173/", "http://localhost:5173"),
        (" null ", None),
        ("chrome-extension://abcdef", None),
        ("not a url", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_origin(value, expected):
    assert normalize_origin(value) == expected


def test_allow_list_matches_exact_origin():
    allowed = ["https://app.example.com/"]
    assert is_origin_allowed("https://app.example.com", allowed)
    assert not is_origin_allowed("https://app.example.com.evil.net", allowed)
    assert not is_origin_allowed("http://app.example.com", allowed)


def test_localhost_only_allowed_outside_prod():
    assert is_origin_allowed("http://localhost:3000", [], is_dev=True)
    assert not is_origin_allowed("http://localhost:3000", [], is_dev=False)
