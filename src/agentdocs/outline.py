from __future__ import annotations

from typing import Mapping

from agentdocs.json_types import JSONObject
from agentdocs.markdown import Document
from agentdocs.order_contract import ordered_or_sorted
from agentdocs.schema import OutlineDTO
from agentdocs.timeout_context import check_deadline


def outline(documents: Mapping[str, Document]) -> dict[str, list[JSONObject]]:
    rows: dict[str, list[JSONObject]] = {}
    for path in ordered_or_sorted(documents, source="agentdocs.outline"):
        check_deadline()
        rows[path] = [
            {
                "level": heading.level,
                "title": heading.title,
                "line": heading.line,
                "slug": heading.slug,
                "anchor": heading.anchor,
            }
            for heading in documents[path].headings
        ]
    return rows


def outline_payload(documents: Mapping[str, Document]) -> JSONObject:
    return OutlineDTO.model_validate({"documents": outline(documents)}).model_dump()


def render_outline_text(documents: Mapping[str, Document]) -> str:
    lines: list[str] = []
    for path, headings in outline(documents).items():
        check_deadline()
        lines.append(path)
        if not headings:
            lines.append("  (no headings)")
        for row in headings:
            indent = "  " * int(row["level"])
            lines.append(f"{int(row['line']):>5} {indent}{'#' * int(row['level'])} {row['title']}")
    return "\n".join(lines) + ("\n" if lines else "")


def render_outline_markdown(documents: Mapping[str, Document]) -> str:
    lines: list[str] = ["# Outline", ""]
    for path, headings in outline(documents).items():
        check_deadline()
        lines.append(f"## `{path}`")
        lines.append("")
        for row in headings:
            indent = "  " * (int(row["level"]) - 1)
            lines.append(f"{indent}- {row['title'] or '(empty)'} (line {row['line']})")
        if not headings:
            lines.append("- (no headings)")
        lines.append("")
    return "\n".join(lines)
