"""Versioned prompt templates for need card extraction."""

from __future__ import annotations

from typing import Optional


NEED_CARD_PROMPT_VERSION = "need_card_v1"

JSON_ONLY_SYSTEM_PROMPT = "Return JSON only. Do not include markdown."

_SCHEMA_LINES = [
    "Schema (strict):",
    "{",
    '  "kind": "DEMAND" | "NO_DEMAND",',
    '  "title": string,',
    '  "who": string,',
    '  "pain": string,',
    '  "trigger": string,',
    '  "workaround": string,',
    '  "wtp_signal": "STRONG" | "MEDIUM" | "WEAK" | "NONE",',
    '  "evidence_quote": string (40..240 chars, verbatim substring),',
    '  "source_url": string,',
    '  "tags": string[] (optional, max 5),',
    '  "no_demand_reason": string (only when kind=NO_DEMAND)',
    "}",
]

_RULE_LINES = [
    "Rules:",
    "- evidence_quote must be a verbatim substring from the extracted text.",
    "- If the text is mainly announcements/news/changelog with no actionable pain/workaround,",
    '  set kind="NO_DEMAND", wtp_signal="NONE", and fill no_demand_reason.',
    "- Avoid generic filler in trigger/workaround.",
    "- source_url must equal the provided source URL.",
]


def build_need_card_prompt(source_text: str, source_url: str, title: Optional[str]) -> str:
    """Deterministic prompt text for the same inputs."""
    page_title = (title or "").strip() or "Unknown"
    lines = [
        "You are an analyst. Read the extracted text and return JSON only.",
        "No markdown. No explanations. No extra keys.",
        "",
        *_SCHEMA_LINES,
        "",
        *_RULE_LINES,
        "",
        f"Source URL: {source_url}",
        f"Page Title: {page_title}",
        "",
        "Extracted Text:",
        "```",
        source_text,
        "```",
        "",
        "Return JSON only.",
    ]
    return "\n".join(lines)


def build_repair_prompt(
    original: str,
    schema_error: Optional[str] = None,
    parse_error: Optional[str] = None,
) -> str:
    lines = ["Fix the JSON to match the schema exactly. Return JSON only."]
    if schema_error:
        lines.append(f"Schema error: {schema_error}")
    if parse_error:
        lines.append(f"Parse error: {parse_error}")
    lines.append("Original JSON:")
    lines.append(original)
    return "\n".join(lines)
