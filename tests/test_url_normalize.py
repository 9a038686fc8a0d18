from __future__ import annotations

import pytest

from pipeline.url_normalize import hn_permalink, normalize_url, parse_hn_item_id
from utils.exceptions import InvalidUrlError


def test_normalize_url_strips_tracking_fragment_and_sorts_query() -> None:
    url = "HTTPS://Example.COM:443/a/b/?utm_source=x&b=2&a=1&fbclid=zz&empty=#section"
    assert normalize_url(url) == "https://example.com/a/b?a=1&b=2"


def test_normalize_url_keeps_root_slash_and_non_default_port() -> None:
    assert normalize_url("http://example.com") == "http://example.com/"
    assert normalize_url("http://example.com:8080/") == "http://example.com:8080/"
    assert normalize_url("http://example.com:80/x/") == "http://example.com/x"


def test_normalize_url_keeps_repeated_keys_in_original_order() -> None:
    assert normalize_url("https://e.com/p?z=1&k=b&k=a") == "https://e.com/p?k=b&k=a&z=1"


def test_normalize_url_is_idempotent() -> None:
    once = normalize_url("https://news.ycombinator.com/item?id=123&utm_medium=rss")
    assert normalize_url(once) == once


@pytest.mark.parametrize("value", ["", "   ", "ftp://example.com/file", "mailto:a@b.com", "not a url"])
def test_normalize_url_rejects_non_http(value: str) -> None:
    with pytest.raises(InvalidUrlError):
        normalize_url(value)


def test_parse_hn_item_id() -> None:
    assert parse_hn_item_id("https://news.ycombinator.com/item?id=4242") == 4242
    assert parse_hn_item_id("https://NEWS.ycombinator.com/item?id=7&p=2") == 7
    assert parse_hn_item_id("https://news.ycombinator.com/item?id=abc") is None
    assert parse_hn_item_id("https://news.ycombinator.com/user?id=pg") is None
    assert parse_hn_item_id("https://example.com/item?id=1") is None


def test_hn_permalink_round_trips_through_parser() -> None:
    assert parse_hn_item_id(hn_permalink(99)) == 99
