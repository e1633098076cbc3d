"""Merge several standards documents into one context bundle.

Sections are merged by their level-2 slug in first-seen order. Each source's
level-1 title is dropped because the bundle carries its own. Repeated list items
are dropped when deduplication is on, and every merged block keeps its
provenance so the bundle can be traced back to the files it came from.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from agentdocs.directives import CANONICAL_SOURCE
from agentdocs.exceptions import ConfigError
from agentdocs.json_types import JSONObject
from agentdocs.markdown import Document, ListItem, normalize_inline
from agentdocs.order_contract import ordered_or_sorted
from agentdocs.timeout_context import check_deadline

DEFAULT_TITLE = "Engineering Standards"
PRECEDENCE = (CANONICAL_SOURCE, "CLAUDE.md", "README.md", "CONTRIBUTING.md")


@dataclass(frozen=True)
class BundleBlock:
    source: str
    start: int
    lines: tuple[str, ...]


@dataclass
class BundleSection:
    slug: str
    title: str
    anchor: str | None = None
    blocks: list[BundleBlock] = field(default_factory=list)

    @property
    def sources(self) -> list[str]:
        seen: list[str] = []
        for block in self.blocks:
            if block.source not in seen:
                seen.append(block.source)
        return seen


@dataclass(frozen=True)
class DroppedItem:
    source: str
    line: int
    text: str
    first_source: str
    first_line: int


@dataclass(frozen=True)
class Bundle:
    title: str
    sources: tuple[str, ...]
    preambles: tuple[BundleBlock, ...]
    sections: tuple[BundleSection, ...]
    dropped: tuple[DroppedItem, ...]
    dedupe: bool

    @property
    def summary(self) -> dict[str, int]:
        return {
            "sources": len(self.sources),
            "sections": len(self.sections),
            "merged_sections": sum(1 for section in self.sections if len(section.sources) > 1),
            "dropped_items": len(self.dropped),
        }


def precedence_order(documents: Mapping[str, Document]) -> list[str]:
    """Root AGENTS/CLAUDE/README/CONTRIBUTING first, then scoped AGENTS, then the rest."""
    head = [path for path in PRECEDENCE if path in documents]
    scoped = ordered_or_sorted(
        (path for path in documents if path.endswith(f"/{CANONICAL_SOURCE}")),
        source="agentdocs.aggregate.precedence_order.scoped",
    )
    rest = ordered_or_sorted(
        (path for path in documents if path not in head and path not in scoped),
        source="agentdocs.aggregate.precedence_order.rest",
    )
    return head + scoped + rest


def _resolve_order(documents: Mapping[str, Document], order: Sequence[str] | None) -> list[str]:
    if not order:
        return precedence_order(documents)
    resolved: list[str] = []
    for path in order:
        check_deadline()
        if path not in documents:
            raise ConfigError("aggregate.order", f"unknown document {path!r}")
        if path not in resolved:
            resolved.append(path)
    return resolved


def _heading_lines(document: Document) -> dict[int, int]:
    """Map every line occupied by a heading (setext underline included) to its level."""
    lines: dict[int, int] = {}
    for heading in document.headings:
        for line in range(heading.line, heading.end_line + 1):
            lines[line] = heading.level
    return lines


def _section_anchor_lines(document: Document) -> set[int]:
    """Lines of `<a id>` anchors that belong to an H1 or H2 heading."""
    return {
        document.anchors[heading.anchor]
        for heading in document.headings
        if heading.level <= 2 and heading.anchor and heading.anchor in document.anchors
    }


def _trim_blank(lines: list[tuple[int, str]]) -> tuple[int, tuple[str, ...]]:
    """Drop leading/trailing blanks and collapse blank runs; return the first kept line number."""
    start = 0
    end = len(lines)
    while start < end and not lines[start][1].strip():
        start += 1
    while end > start and not lines[end - 1][1].strip():
        end -= 1
    collapsed: list[str] = []
    for _line_no, line in lines[start:end]:
        if not line.strip() and collapsed and not collapsed[-1].strip():
            continue
        collapsed.append(line.rstrip())
    first = lines[start][0] if start < end else 0
    return first, tuple(collapsed)


def _indent_width(raw: str) -> int:
    expanded = raw.expandtabs(4)
    return len(expanded) - len(expanded.lstrip(" "))


def _continuation_lines(document: Document, item: ListItem, item_lines: set[int]) -> set[int]:
    lines: set[int] = set()
    line_no = item.line + 1
    while line_no <= len(document.lines):
        check_deadline()
        raw = document.line_text(line_no)
        if not raw.strip() or line_no in item_lines or _indent_width(raw) <= item.indent:
            break
        lines.add(line_no)
        line_no += 1
    return lines


class _BundleBuilder:
    def __init__(self, *, dedupe: bool) -> None:
        self.dedupe = dedupe
        self.sections: dict[str, BundleSection] = {}
        self.preambles: list[BundleBlock] = []
        self.dropped: list[DroppedItem] = []
        self.seen_items: dict[str, tuple[str, int]] = {}

    def _dropped_lines(self, path: str, document: Document) -> set[int]:
        if not self.dedupe:
            return set()
        item_lines = {item.line for item in document.items}
        dropped: set[int] = set()
        for item in document.items:
            check_deadline()
            key = normalize_inline(item.text)
            if not key:
                continue
            first = self.seen_items.get(key)
            if first is None:
                self.seen_items[key] = (path, item.line)
                continue
            dropped.add(item.line)
            dropped.update(_continuation_lines(document, item, item_lines))
            self.dropped.append(
                DroppedItem(
                    source=path,
                    line=item.line,
                    text=item.text,
                    first_source=first[0],
                    first_line=first[1],
                )
            )
        return dropped

    def add(self, path: str, document: Document) -> None:
        dropped = self._dropped_lines(path, document)
        heading_lines = _heading_lines(document)
        anchor_lines = _section_anchor_lines(document)
        headings_by_line = {heading.line: heading for heading in document.headings}
        current: BundleSection | None = None
        section_line = 0
        buffer: list[tuple[int, str]] = []

        def _flush() -> None:
            first, lines = _trim_blank(buffer)
            if lines:
                block = BundleBlock(source=path, start=first, lines=lines)
                if current is None:
                    self.preambles.append(block)
                else:
                    current.blocks.append(block)
            elif current is not None and not any(b.source == path for b in current.blocks):
                # Keep provenance for a section whose content was entirely deduplicated.
                current.blocks.append(BundleBlock(source=path, start=section_line, lines=()))
            buffer.clear()

        for line_no in range(document.body_offset + 1, len(document.lines) + 1):
            check_deadline()
            level = heading_lines.get(line_no)
            if level is not None and level <= 2:
                heading = headings_by_line.get(line_no)
                if heading is None:
                    continue
                _flush()
                if level == 1:
                    current = None
                else:
                    current = self.sections.get(heading.slug)
                    if current is None:
                        current = BundleSection(slug=heading.slug, title=heading.title)
                        self.sections[heading.slug] = current
                    if current.anchor is None:
                        current.anchor = heading.anchor
                    section_line = heading.line
                continue
            if line_no in dropped or line_no in anchor_lines:
                continue
            buffer.append((line_no, document.line_text(line_no)))
        _flush()


def aggregate_documents(
    documents: Mapping[str, Document],
    *,
    order: Sequence[str] | None = None,
    title: str = DEFAULT_TITLE,
    dedupe: bool = True,
) -> Bundle:
    sources = _resolve_order(documents, order)
    builder = _BundleBuilder(dedupe=dedupe)
    for path in sources:
        check_deadline()
        builder.add(path, documents[path])
    return Bundle(
        title=title.strip() or DEFAULT_TITLE,
        sources=tuple(sources),
        preambles=tuple(builder.preambles),
        sections=tuple(builder.sections.values()),
        dropped=tuple(builder.dropped),
        dedupe=dedupe,
    )


_COMMENT_UNSAFE_RE = re.compile(r"--+")


def _comment(text: str) -> str:
    return f"<!-- {_COMMENT_UNSAFE_RE.sub('-', text)} -->"


def render_bundle_markdown(bundle: Bundle) -> str:
    lines: list[str] = [
        f"# {bundle.title}",
        "",
        _comment(f"agentdocs bundle; sources: {', '.join(bundle.sources)}"),
        "",
    ]
    for block in bundle.preambles:
        check_deadline()
        lines.append(_comment(f"source: {block.source}:{block.start}"))
        lines.extend(block.lines)
        lines.append("")
    for section in bundle.sections:
        check_deadline()
        if section.anchor:
            lines.append(f'<a id="{section.anchor}"></a>')
        lines.append(f"## {section.title}")
        lines.append("")
        for block in section.blocks:
            check_deadline()
            if not block.lines:
                continue
            lines.append(_comment(f"source: {block.source}:{block.start}"))
            lines.extend(block.lines)
            lines.append("")
    while lines and not lines[-1].strip():
        lines.pop()
    return "\n".join(lines) + "\n"


def bundle_payload(bundle: Bundle) -> JSONObject:
    return {
        "title": bundle.title,
        "dedupe": bundle.dedupe,
        "sources": list(bundle.sources),
        "summary": dict(bundle.summary),
        "preambles": [
            {"source": block.source, "start": block.start, "line_count": len(block.lines)}
            for block in bundle.preambles
        ],
        "sections": [
            {
                "slug": section.slug,
                "title": section.title,
                "anchor": section.anchor,
                "sources": section.sources,
                "line_count": sum(len(block.lines) for block in section.blocks),
            }
            for section in bundle.sections
        ],
        "dropped": [
            {
                "source": item.source,
                "line": item.line,
                "text": item.text,
                "first_source": item.first_source,
                "first_line": item.first_line,
            }
            for item in bundle.dropped
        ],
    }
