"""Atlassian Document Format (ADF) rendering for issue descriptions."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

SUMMARY_MAX_LENGTH = 255

AdfNode = dict[str, Any]

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    if max_length <= 3:
        return text[:max_length]
    return text[: max_length - 3] + "..."


def format_summary(summary: str) -> str:
    return truncate(" ".join(summary.split()), SUMMARY_MAX_LENGTH)


def text_node(text: str, marks: list[dict[str, str]] | None = None) -> AdfNode:
    node: AdfNode = {"type": "text", "text": text}
    if marks:
        node["marks"] = marks
    return node


def paragraph(content: list[AdfNode]) -> AdfNode:
    return {"type": "paragraph", "content": content}


def heading(text: str, level: int = 2) -> AdfNode:
    return {"type": "heading", "attrs": {"level": level}, "content": [text_node(text)]}


def rule() -> AdfNode:
    return {"type": "rule"}


def bullet_list(items: list[str]) -> AdfNode:
    return {
        "type": "bulletList",
        "content": [{"type": "listItem", "content": [paragraph([text_node(item)])]} for item in items],
    }


def _narrative_paragraph(block: str) -> AdfNode:
    # ADF has no newline character inside text; soft breaks are hardBreak nodes.
    content: list[AdfNode] = []
    for index, line in enumerate(block.split("\n")):
        if index:
            content.append({"type": "hardBreak"})
        if line:
            content.append(text_node(line))
    return paragraph(content)


def build_description(narrative: str, context: Mapping[str, str] | None = None) -> AdfNode:
    """Render the user's narrative, then an optional "Context" bullet list.

    Blank lines separate paragraphs. Context entries (page URL, element
    selector and the like) render as ``Key: value`` bullets.
    """
    blocks = [b.strip("\n") for b in _PARAGRAPH_SPLIT_RE.split(narrative.strip())] if narrative.strip() else []
    content: list[AdfNode] = [_narrative_paragraph(b) for b in blocks if b.strip()]
    if not content:
        content.append(paragraph([text_node("No description provided.", [{"type": "em"}])]))
    if context:
        content.append(rule())
        content.append(heading("Context", 2))
        content.append(bullet_list([f"{key}: {value}" for key, value in context.items()]))
    return {"type": "doc", "version": 1, "content": content}
