from __future__ import annotations

from typing import Any, Dict

import pytest

import scrapers.hackernews_scraper as hn_module
from core import Source
from scrapers import HackerNewsScraper
from utils.exceptions import DiscussionItemFetchError, HttpStatusError


FIREBASE = "https://fb.test/v0"
ALGOLIA = "https://algolia.test/api/v1"


def _scraper(monkeypatch, responses: Dict[str, Any]) -> tuple:
    monkeypatch.setattr(hn_module, "RETRY_BACKOFF", 0)
    scraper = HackerNewsScraper(firebase_url=FIREBASE, algolia_url=ALGOLIA)
    calls = []

    async def _fake_get_json(url: str) -> Any:
        calls.append(url)
        value = responses.get(url)
        if isinstance(value, Exception):
            raise value
        return value

    monkeypatch.setattr(scraper, "_get_json", _fake_get_json)
    return scraper, calls


@pytest.mark.asyncio
async def test_resolve_item_prefers_firebase(monkeypatch) -> None:
    scraper, calls = _scraper(
        monkeypatch,
        {f"{FIREBASE}/item/1.json": {"id": 1, "type": "story", "title": "Ask HN: X", "kids": [2, 3]}},
    )
    resolved = await scraper.resolve_item(1)

    assert resolved.source == "firebase"
    assert resolved.item.title == "Ask HN: X"
    assert resolved.item.kids == [2, 3]
    assert [a.method for a in resolved.attempts] == ["hn_item_api_firebase"]
    assert resolved.attempts[0].ok
    assert calls == [f"{FIREBASE}/item/1.json"]


@pytest.mark.asyncio
async def test_resolve_item_falls_back_to_algolia_after_retries(monkeypatch) -> None:
    scraper, calls = _scraper(
        monkeypatch,
        {
            f"{FIREBASE}/item/5.json": HttpStatusError("HTTP 503", status=503),
            f"{ALGOLIA}/items/5": {
                "id": 5,
                "type": "story",
                "title": "Show HN: Y",
                "url": "https://y.example/",
                "children": [{"id": 6}, {"id": 7}, {"nope": True}],
            },
        },
    )
    resolved = await scraper.resolve_item(5)

    assert resolved.source == "algolia"
    assert resolved.item.url == "https://y.example/"
    assert resolved.item.kids == [6, 7]
    methods = [(a.method, a.ok) for a in resolved.attempts]
    assert methods == [
        ("hn_item_api_firebase", False),
        ("hn_item_api_firebase", False),
        ("hn_item_api_firebase", False),
        ("hn_item_api_algolia", True),
    ]


@pytest.mark.asyncio
async def test_resolve_item_both_fail(monkeypatch) -> None:
    scraper, _ = _scraper(
        monkeypatch,
        {
            f"{FIREBASE}/item/9.json": None,
            f"{ALGOLIA}/items/9": HttpStatusError("HTTP 404", status=404),
        },
    )
    resolved = await scraper.resolve_item(9)

    assert resolved.item is None
    assert resolved.source is None
    assert all(not a.ok for a in resolved.attempts)
    assert resolved.attempts[-1].method == "hn_item_api_algolia"

    with pytest.raises(DiscussionItemFetchError):
        await scraper.fetch_item(9)


@pytest.mark.asyncio
async def test_discover_uses_story_url_or_permalink_and_skips_failures(monkeypatch) -> None:
    entry = f"{FIREBASE}/askstories.json"
    scraper, _ = _scraper(
        monkeypatch,
        {
            entry: [10, 11, "junk", 12, 13],
            f"{FIREBASE}/item/10.json": {"id": 10, "title": "Ask HN: A", "type": "story"},
            f"{FIREBASE}/item/11.json": {"id": 11, "title": "Link", "url": "https://link.example/a"},
            f"{FIREBASE}/item/12.json": HttpStatusError("HTTP 404", status=404),
            f"{ALGOLIA}/items/12": HttpStatusError("HTTP 404", status=404),
            f"{FIREBASE}/item/13.json": {"id": 13, "title": "Dup", "url": "https://link.example/a"},
        },
    )
    source = Source(id="hn", name="HN", entry_url=entry, discover_limit=10)
    results = await scraper.discover(source)

    assert [r.url for r in results] == [
        "https://news.ycombinator.com/item?id=10",
        "https://link.example/a",
    ]
    assert results[0].origin_id == "10"
    assert results[0].source_id == "hn"


@pytest.mark.asyncio
async def test_discover_respects_limit(monkeypatch) -> None:
    entry = f"{FIREBASE}/topstories.json"
    responses: Dict[str, Any] = {entry: [1, 2, 3]}
    for item_id in (1, 2, 3):
        responses[f"{FIREBASE}/item/{item_id}.json"] = {"id": item_id, "title": str(item_id)}
    scraper, calls = _scraper(monkeypatch, responses)

    results = await scraper.discover(Source(id="s", name="s", entry_url=entry, discover_limit=2))

    assert len(results) == 2
    assert f"{FIREBASE}/item/3.json" not in calls
