"""URL canonicalization used as the deduplication key, plus discussion item links."""

from __future__ import annotations

from typing import Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from utils.exceptions import InvalidUrlError


TRACKING_PARAMS = frozenset({"gclid", "fbclid", "yclid", "msclkid", "igshid", "mc_cid", "mc_eid"})
_DEFAULT_PORTS = {"http": 80, "https": 443}
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"

HN_HOST = "news.ycombinator.com"
HN_ITEM_PATH = "/item"


def _is_tracking_param(key: str) -> bool:
    lowered = key.lower()
    return lowered.startswith("utm_") or lowered in TRACKING_PARAMS


def normalize_url(value: str) -> str:
    """
    Canonical form of an http(s) URL.

    Drops the fragment, tracking and blank query params, sorts the rest by key,
    strips one trailing slash from non-root paths and elides default ports.
    Raises InvalidUrlError for anything that is not an absolute http(s) URL.
    """
    text = str(value or "").strip()
    if not text:
        raise InvalidUrlError("Invalid URL: empty", url=text)

    try:
        parsed = urlsplit(text)
        port = parsed.port
    except ValueError as exc:
        raise InvalidUrlError(f"Invalid URL: {text}", url=text) from exc

    scheme = (parsed.scheme or "").lower()
    if scheme not in _DEFAULT_PORTS:
        raise InvalidUrlError(f"Unsupported URL scheme: {scheme or '<none>'}", url=text)

    host = (parsed.hostname or "").lower()
    if not host:
        raise InvalidUrlError(f"Invalid URL: missing host in {text}", url=text)

    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"
    if parsed.username is not None:
        userinfo = parsed.username
        if parsed.password is not None:
            userinfo = f"{userinfo}:{parsed.password}"
        netloc = f"{userinfo}@{netloc}"

    path = quote(parsed.path or "/", safe=_PATH_SAFE)
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]

    pairs = [
        (key, val)
        for key, val in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key) and val.strip()
    ]
    # sorted() 是稳定排序, 同名参数保持原顺序
    pairs = sorted(pairs, key=lambda pair: pair[0])
    query = urlencode(pairs)

    return urlunsplit((scheme, netloc, path, query, ""))


def parse_hn_item_id(value: str) -> Optional[int]:
    """Numeric id of a Hacker News discussion URL, or None for anything else."""
    try:
        parsed = urlsplit(str(value or "").strip())
    except ValueError:
        return None
    if (parsed.hostname or "").lower() != HN_HOST:
        return None
    if parsed.path != HN_ITEM_PATH:
        return None
    for key, val in parse_qsl(parsed.query):
        if key == "id":
            raw = val.strip()
            return int(raw) if raw.isdigit() else None
    return None


def hn_permalink(item_id: int) -> str:
    return f"https://{HN_HOST}{HN_ITEM_PATH}?id={item_id}"
