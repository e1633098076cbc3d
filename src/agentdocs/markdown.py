"""Markdown document model for standards documents.

Only the structure the audits need is modelled: YAML-like frontmatter, ATX and
setext headings, fenced code blocks, list/checklist items, and explicit HTML
anchors. Line numbers are always file line numbers, frontmatter included.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, TypeAlias

from agentdocs.exceptions import DocumentLoadError
from agentdocs.timeout_context import check_deadline

FrontmatterScalar: TypeAlias = str | int
FrontmatterValue: TypeAlias = (
    FrontmatterScalar | List["FrontmatterValue"] | dict[str, "FrontmatterValue"]
)
Frontmatter: TypeAlias = dict[str, FrontmatterValue]

_ATX_RE = re.compile(r"^ {0,3}(?P<hashes>#{1,6})(?=[ \t]|$)(?P<rest>.*)$")
_ATX_CLOSING_RE = re.compile(r"(?:^|[ \t]+)#+[ \t]*$")
_SETEXT_RE = re.compile(r"^ {0,3}(?P<rule>=+|-+)[ \t]*$")
_THEMATIC_BREAK_RE = re.compile(r"^ {0,3}([-*_])(?:[ \t]*\1){2,}[ \t]*$")
_FENCE_OPEN_RE = re.compile(r"^(?P<indent> {0,3})(?P<fence>`{3,}|~{3,})(?P<info>.*)$")
_LIST_ITEM_RE = re.compile(
    r"^(?P<indent>[ \t]*)(?P<marker>[-*+]|\d{1,9}[.)])(?P<gap>[ \t]*)(?P<rest>.*)$"
)
_CHECKBOX_RE = re.compile(r"^\[(?P<box>[^\]]{0,3})\](?P<after>.*)$")
_ANCHOR_RE = re.compile(r'^\s*<a\s+(?:id|name)="(?P<anchor>[^"]+)"\s*>\s*</a>\s*$')
_BLOCKQUOTE_RE = re.compile(r"^ {0,3}>")


@dataclass(frozen=True)
class Heading:
    level: int
    title: str
    line: int
    slug: str
    end_line: int
    anchor: str | None = None
    setext: bool = False


@dataclass(frozen=True)
class ListItem:
    line: int
    indent: int
    marker: str
    text: str
    checkbox: str | None
    spaced: bool
    checkbox_spaced: bool
    block: int

    @property
    def is_checklist(self) -> bool:
        return self.checkbox is not None

    @property
    def bullet(self) -> bool:
        return self.marker in {"-", "*", "+"}


@dataclass(frozen=True)
class Fence:
    line: int
    end_line: int | None
    marker: str
    info: str


@dataclass(frozen=True)
class Section:
    heading: Heading
    start: int
    end: int
    own_end: int
    lines: tuple[str, ...]
    own_lines: tuple[str, ...]


@dataclass(frozen=True)
class Document:
    path: str
    text: str
    frontmatter: Frontmatter
    frontmatter_error: str | None
    body_offset: int
    lines: tuple[str, ...]
    headings: tuple[Heading, ...] = ()
    fences: tuple[Fence, ...] = ()
    items: tuple[ListItem, ...] = ()
    anchors: dict[str, int] = field(default_factory=dict)

    @property
    def body(self) -> str:
        return "\n".join(self.lines[self.body_offset:])

    @property
    def body_lines(self) -> tuple[str, ...]:
        return self.lines[self.body_offset:]

    @property
    def name(self) -> str:
        return Path(self.path).name

    def line_text(self, line: int) -> str:
        if 1 <= line <= len(self.lines):
            return self.lines[line - 1]
        return ""


def slugify_heading(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "section"


def normalize_inline(text: str) -> str:
    lowered = text.strip().lower()
    lowered = re.sub(r"[`*_]", "", lowered)
    lowered = re.sub(r"\s+", " ", lowered)
    return lowered


def parse_frontmatter(text: str) -> tuple[Frontmatter, str, int, str | None]:
    """Split a leading ``---`` block off ``text``.

    Returns ``(frontmatter, body, offset, error)`` where ``offset`` is the
    number of file lines consumed by the block, delimiters included.
    """
    lines = text.split("\n")
    if not lines or lines[0].strip() != "---":
        return {}, text, 0, None
    fm_lines: List[str] = []
    idx = 1
    while idx < len(lines):
        check_deadline()
        line = lines[idx]
        if line.strip() == "---":
            body = "\n".join(lines[idx + 1:])
            return _parse_yaml_like(fm_lines), body, idx + 1, None
        fm_lines.append(line)
        idx += 1
    return {}, text, 0, "frontmatter opened on line 1 is never closed"


def _parse_yaml_like(lines: List[str]) -> Frontmatter:
    def _parse_scalar(raw: str) -> FrontmatterScalar:
        value = raw.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"\"", "'"}:
            return value[1:-1]
        return int(value) if value.isdigit() else value

    def _next_significant(start: int) -> tuple[int, str] | None:
        idx = start
        while idx < len(lines):
            check_deadline()
            candidate = lines[idx].rstrip()
            if not candidate.strip():
                idx += 1
                continue
            if candidate.lstrip().startswith("#"):
                idx += 1
                continue
            return idx, candidate
        return None

    def _nested_for(idx: int) -> object:
        lookahead = _next_significant(idx)
        if lookahead and lookahead[1].lstrip().startswith("- "):
            return []
        return {}

    data: Frontmatter = {}
    stack: list[tuple[int, object]] = [(0, data)]
    idx = 0
    while idx < len(lines):
        check_deadline()
        raw = lines[idx].rstrip()
        idx += 1
        if not raw.strip():
            continue
        if raw.lstrip().startswith("#"):
            continue
        indent = len(raw) - len(raw.lstrip(" "))
        line = raw.strip()
        while stack and indent < stack[-1][0]:
            check_deadline()
            stack.pop()
        if not stack:
            stack = [(0, data)]
        container = stack[-1][1]

        if line.startswith("- ") or line == "-":
            if not isinstance(container, list):
                continue
            item = line[1:].strip()
            if ":" in item and not item.startswith(("\"", "'")):
                key, value = item.split(":", 1)
                key = key.strip()
                value = value.strip()
                entry: dict[str, object] = {}
                if value == "":
                    nested = _nested_for(idx)
                    entry[key] = nested
                    container.append(entry)
                    stack.append((indent + 2, nested))
                else:
                    entry[key] = _parse_scalar(value)
                    container.append(entry)
                    lookahead = _next_significant(idx)
                    if lookahead and (len(lookahead[1]) - len(lookahead[1].lstrip(" "))) > indent:
                        stack.append((indent + 2, entry))
            elif item:
                container.append(_parse_scalar(item))
            continue

        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip()
        value = value.strip()
        if not isinstance(container, dict):
            continue
        if value == "":
            nested = _nested_for(idx)
            container[key] = nested
            stack.append((indent + 2, nested))
        elif value in ("[]", "[ ]"):
            container[key] = []
        elif value in ("{}", "{ }"):
            container[key] = {}
        elif value.startswith("[") and value.endswith("]"):
            container[key] = [
                _parse_scalar(part) for part in value[1:-1].split(",") if part.strip()
            ]
        else:
            container[key] = _parse_scalar(value)
    return data


def _atx_title(rest: str) -> str:
    title = rest.strip()
    return _ATX_CLOSING_RE.sub("", title).strip()


def _indent_width(raw: str) -> int:
    return len(raw.expandtabs(4)) - len(raw.expandtabs(4).lstrip(" "))


def _fence_closes(line: str, fence: str) -> bool:
    stripped = line.strip()
    if _indent_width(line) > 3 or not stripped:
        return False
    run = len(stripped) - len(stripped.lstrip(fence[0]))
    return run >= len(fence) and not stripped[run:].strip()


def parse_document(path: str, text: str) -> Document:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    frontmatter, _body, offset, fm_error = parse_frontmatter(text)
    lines = tuple(text.split("\n"))
    if lines and lines[-1] == "" and text.endswith("\n"):
        lines = lines[:-1]

    headings: list[Heading] = []
    fences: list[Fence] = []
    items: list[ListItem] = []
    anchors: dict[str, int] = {}
    pending_anchor: str | None = None
    paragraph: list[tuple[int, str]] = []
    open_fence: tuple[int, str, str] | None = None
    in_comment = False
    block = 0
    previous_blank = True

    def _flush_paragraph() -> None:
        paragraph.clear()

    for idx in range(offset, len(lines)):
        check_deadline()
        raw = lines[idx]
        line_no = idx + 1
        stripped = raw.strip()

        if open_fence is not None:
            start, fence, info = open_fence
            if _fence_closes(raw, fence):
                fences.append(Fence(line=start, end_line=line_no, marker=fence, info=info))
                open_fence = None
            continue

        if in_comment:
            if "-->" in raw:
                in_comment = False
            continue
        if stripped.startswith("<!--") and "-->" not in stripped:
            in_comment = True
            _flush_paragraph()
            continue

        if not stripped:
            _flush_paragraph()
            previous_blank = True
            continue

        fence_match = _FENCE_OPEN_RE.match(raw)
        if fence_match and not (
            fence_match.group("fence").startswith("`") and "`" in fence_match.group("info")
        ):
            open_fence = (line_no, fence_match.group("fence"), fence_match.group("info").strip())
            _flush_paragraph()
            block += 1
            previous_blank = False
            continue

        anchor_match = _ANCHOR_RE.match(raw)
        if anchor_match:
            pending_anchor = anchor_match.group("anchor")
            anchors[pending_anchor] = line_no
            _flush_paragraph()
            previous_blank = False
            continue

        atx = _ATX_RE.match(raw)
        if atx:
            title = _atx_title(atx.group("rest"))
            headings.append(
                Heading(
                    level=len(atx.group("hashes")),
                    title=title,
                    line=line_no,
                    slug=slugify_heading(title),
                    end_line=line_no,
                    anchor=pending_anchor,
                )
            )
            pending_anchor = None
            _flush_paragraph()
            block += 1
            previous_blank = False
            continue

        setext = _SETEXT_RE.match(raw)
        if setext and paragraph:
            title = " ".join(text_part.strip() for _, text_part in paragraph)
            level = 1 if setext.group("rule").startswith("=") else 2
            headings.append(
                Heading(
                    level=level,
                    title=title,
                    line=paragraph[0][0],
                    slug=slugify_heading(title),
                    end_line=line_no,
                    anchor=pending_anchor,
                    setext=True,
                )
            )
            pending_anchor = None
            _flush_paragraph()
            block += 1
            previous_blank = False
            continue

        if _THEMATIC_BREAK_RE.match(raw) or _BLOCKQUOTE_RE.match(raw):
            _flush_paragraph()
            block += 1
            previous_blank = False
            continue

        item = _list_item(raw, line_no, block)
        if item is not None:
            items.append(item)
            _flush_paragraph()
            previous_blank = False
            continue

        if previous_blank and _indent_width(raw) == 0:
            block += 1
        if not items or items[-1].block != block or _indent_width(raw) == 0:
            paragraph.append((line_no, raw))
        previous_blank = False

    if open_fence is not None:
        start, fence, info = open_fence
        fences.append(Fence(line=start, end_line=None, marker=fence, info=info))

    return Document(
        path=path,
        text=text,
        frontmatter=frontmatter,
        frontmatter_error=fm_error,
        body_offset=offset,
        lines=lines,
        headings=tuple(headings),
        fences=tuple(fences),
        items=tuple(items),
        anchors=anchors,
    )


def _list_item(raw: str, line_no: int, block: int) -> ListItem | None:
    match = _LIST_ITEM_RE.match(raw)
    if match is None:
        return None
    gap = match.group("gap")
    rest = match.group("rest")
    spaced = bool(gap)
    if not spaced:
        # "-[ ] task" is a malformed checklist item; anything else ("**bold**", "+1") is prose.
        if match.group("marker") not in {"-", "*", "+"} or not _CHECKBOX_RE.match(rest):
            return None
    checkbox: str | None = None
    checkbox_spaced = True
    text = rest
    box_match = _CHECKBOX_RE.match(rest)
    if box_match and not box_match.group("after").startswith(("(", "[", ":")):
        checkbox = box_match.group("box")
        after = box_match.group("after")
        checkbox_spaced = not after or after[0] in {" ", "\t"}
        text = after
    return ListItem(
        line=line_no,
        indent=_indent_width(match.group("indent")),
        marker=match.group("marker"),
        text=text.strip(),
        checkbox=checkbox,
        spaced=spaced,
        checkbox_spaced=checkbox_spaced,
        block=block,
    )


def sections(document: Document) -> list[Section]:
    total = len(document.lines)
    headings = document.headings
    result: list[Section] = []
    for index, heading in enumerate(headings):
        check_deadline()
        end = total
        own_end = total
        for follower in headings[index + 1:]:
            check_deadline()
            if own_end == total:
                own_end = follower.line - 1
            if follower.level <= heading.level:
                end = follower.line - 1
                break
        own_end = min(own_end, end)
        result.append(
            Section(
                heading=heading,
                start=heading.line,
                end=end,
                own_end=own_end,
                lines=tuple(document.lines[heading.end_line:end]),
                own_lines=tuple(document.lines[heading.end_line:own_end]),
            )
        )
    return result


def heading_parents(document: Document) -> list[Heading | None]:
    """The nearest enclosing heading of each heading, in document order."""
    parents: list[Heading | None] = []
    stack: list[Heading] = []
    for heading in document.headings:
        check_deadline()
        while stack and stack[-1].level >= heading.level:
            stack.pop()
        parents.append(stack[-1] if stack else None)
        stack.append(heading)
    return parents


def preamble_lines(document: Document) -> tuple[str, ...]:
    """Body lines before the first heading."""
    if not document.headings:
        return document.body_lines
    first = document.headings[0].line
    return tuple(document.lines[document.body_offset:first - 1])


def load_document(path: Path, root: Path) -> Document:
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise DocumentLoadError(path, f"cannot read: {exc.strerror or exc}") from exc
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise DocumentLoadError(path, f"not valid UTF-8 (byte {exc.start})") from exc
    try:
        rel = path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        rel = path.as_posix()
    return parse_document(rel, text)
