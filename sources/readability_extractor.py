"""
Readability Extractor
readability-lxml 主体提取, BeautifulSoup 段落兜底
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup
from readability import Document

from utils.text import clean_text, truncate


logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTENT_CHARS = 12000
READABILITY_EMPTY = "READABILITY_EMPTY"
_STRIP_TAGS = ("script", "style", "noscript", "template")
_BLOCK_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "pre", "blockquote", "td", "dd", "dt"]


@dataclass
class ReadabilityResult:
    ok: bool
    title: Optional[str] = None
    text: str = ""
    error: Optional[str] = None
    error_name: Optional[str] = None


def _title_of(doc: Document, soup: BeautifulSoup) -> Optional[str]:
    title = (doc.short_title() or "").strip()
    if title and title != "[no-title]":
        return title
    if soup.title and soup.title.string:
        return soup.title.string.strip() or None
    return None


def _blocks_text(root) -> str:
    """按叶子块级元素拼接段落, 块内的行内标签不产生换行"""
    blocks = []
    for node in root.find_all(_BLOCK_TAGS):
        if node.find(_BLOCK_TAGS) is not None:
            continue
        text = node.get_text(" ", strip=True)
        if text:
            blocks.append(text)
    if blocks:
        return "\n\n".join(blocks)
    return root.get_text(" ", strip=True)


def _fallback_paragraphs(soup: BeautifulSoup) -> str:
    """readability 无输出时按 article / main / body 抽取"""
    container = soup.find("article") or soup.find("main") or soup.body or soup
    return _blocks_text(container)


def extract_readability(
    html: str,
    url: str,
    max_content_chars: int = DEFAULT_MAX_CONTENT_CHARS,
) -> ReadabilityResult:
    """
    提取页面主体文本

    Args:
        html: 页面 HTML
        url: 页面 URL (用于 readability 解析相对链接)
        max_content_chars: 截断长度

    Returns:
        ReadabilityResult; 无正文时 error="READABILITY_EMPTY"
    """
    if not str(html or "").strip():
        return ReadabilityResult(ok=False, error=READABILITY_EMPTY)

    try:
        soup = BeautifulSoup(html, "lxml")
        for node in soup(_STRIP_TAGS):
            node.decompose()

        doc = Document(str(soup), url=url)
        title = _title_of(doc, soup)

        summary_html = doc.summary(html_partial=True)
        text = clean_text(_blocks_text(BeautifulSoup(summary_html, "lxml")))
        if not text:
            text = clean_text(_fallback_paragraphs(soup))
    except Exception as exc:
        logger.debug("readability failed url=%s error=%s", url, exc)
        return ReadabilityResult(ok=False, error=str(exc) or exc.__class__.__name__, error_name=type(exc).__name__)

    if not text:
        return ReadabilityResult(ok=False, title=title, error=READABILITY_EMPTY)

    return ReadabilityResult(ok=True, title=title, text=truncate(text, max_content_chars))
