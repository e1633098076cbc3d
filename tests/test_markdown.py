from __future__ import annotations

from pathlib import Path

import pytest

from agentdocs.exceptions import DocumentLoadError
from agentdocs.markdown import (
    load_document,
    normalize_inline,
    parse_document,
    parse_frontmatter,
    preamble_lines,
    sections,
    slugify_heading,
)
from agentdocs.rules import lint_document


def test_parse_frontmatter_reads_scalars_lists_and_maps() -> None:
    text = (
        "---\n"
        "doc_revision: 3\n"
        "doc_role: \"standards\"\n"
        "doc_requires: [AGENTS.md, README.md]\n"
        "doc_authors:\n"
        "  - alice\n"
        "  - bob\n"
        "doc_sections:\n"
        "  overview: 2\n"
        "---\n"
        "# Title\n"
    )
    frontmatter, body, offset, error = parse_frontmatter(text)
    assert error is None
    assert offset == 10
    assert body == "# Title\n"
    assert frontmatter == {
        "doc_revision": 3,
        "doc_role": "standards",
        "doc_requires": ["AGENTS.md", "README.md"],
        "doc_authors": ["alice", "bob"],
        "doc_sections": {"overview": 2},
    }


def test_parse_frontmatter_without_block_returns_text() -> None:
    assert parse_frontmatter("# Title\n") == ({}, "# Title\n", 0, None)


def test_parse_frontmatter_unterminated_keeps_whole_text_as_body() -> None:
    text = "---\ndoc_revision: 1\n# Title\n"
    frontmatter, body, offset, error = parse_frontmatter(text)
    assert frontmatter == {}
    assert body == text
    assert offset == 0
    assert error == "frontmatter opened on line 1 is never closed"


def test_slugify_heading() -> None:
    assert slugify_heading("Hello, World!") == "hello-world"
    assert slugify_heading("  Required   behavior ") == "required-behavior"
    assert slugify_heading("!!!") == "section"


def test_normalize_inline_drops_emphasis_and_case() -> None:
    assert normalize_inline("  Use **`uv run`**   for  tooling ") == "use uv run for tooling"


def test_parse_document_headings_fences_and_anchors() -> None:
    text = (
        "# Title ##\n"
        "Intro paragraph\n"
        "\n"
        "Setext Two\n"
        "----------\n"
        "\n"
        "```bash\n"
        "# not a heading\n"
        "```\n"
        "\n"
        "<a id=\"custom\"></a>\n"
        "## Anchored\n"
        "#hashtag is prose\n"
    )
    document = parse_document("AGENTS.md", text)
    assert [(h.level, h.title, h.line) for h in document.headings] == [
        (1, "Title", 1),
        (2, "Setext Two", 4),
        (2, "Anchored", 12),
    ]
    setext = document.headings[1]
    assert setext.setext is True
    assert setext.end_line == 5
    assert document.headings[2].anchor == "custom"
    assert document.anchors == {"custom": 11}
    assert len(document.fences) == 1
    fence = document.fences[0]
    assert (fence.line, fence.end_line, fence.marker, fence.info) == (7, 9, "```", "bash")


def test_setext_equals_underline_is_level_one() -> None:
    document = parse_document("AGENTS.md", "Agent\nStandards\n=========\n\n## Rules\n")
    first = document.headings[0]
    assert (first.level, first.title, first.line, first.end_line, first.setext) == (
        1,
        "Agent Standards",
        1,
        3,
        True,
    )
    assert first.slug == "agent-standards"
    codes = {finding.code for finding in lint_document(document)}
    assert "AD101" not in codes
    assert "AD103" not in codes

    single = parse_document("README.md", "Title\n===\n")
    assert [(h.level, h.title, h.line, h.end_line) for h in single.headings] == [
        (1, "Title", 1, 2)
    ]


def test_parse_document_tracks_unclosed_fence() -> None:
    document = parse_document("README.md", "# T\n\n~~~~\n## inside\n~~~\n")
    assert [h.title for h in document.headings] == ["T"]
    assert document.fences[0].end_line is None


def test_parse_document_line_numbers_include_frontmatter() -> None:
    document = parse_document("AGENTS.md", "---\ndoc_revision: 1\n---\n# Title\n- item\n")
    assert document.body_offset == 3
    assert document.headings[0].line == 4
    assert document.items[0].line == 5
    assert document.frontmatter == {"doc_revision": 1}


def test_parse_document_normalizes_crlf() -> None:
    document = parse_document("AGENTS.md", "# Title\r\n- item\r\n")
    assert document.headings[0].title == "Title"
    assert document.items[0].text == "item"


def test_parse_document_list_items_and_checkboxes() -> None:
    text = (
        "- [ ] todo\n"
        "- [x] done\n"
        "-[ ] tight\n"
        "- [x]glued\n"
        "* other\n"
        "1. first\n"
        "**bold** text\n"
        "- [ok](x.md) link\n"
    )
    document = parse_document("docs/list.md", text)
    items = document.items
    assert [item.line for item in items] == [1, 2, 3, 4, 5, 6, 8]
    assert [item.checkbox for item in items] == [" ", "x", " ", "x", None, None, None]
    assert items[0].text == "todo"
    assert items[2].spaced is False
    assert items[3].checkbox_spaced is False
    assert items[3].text == "glued"
    assert items[5].marker == "1."
    assert items[5].bullet is False
    assert items[6].text == "[ok](x.md) link"


def test_thematic_break_is_not_a_heading() -> None:
    document = parse_document("README.md", "# T\n\n---\n- a\n")
    assert [h.title for h in document.headings] == ["T"]
    assert len(document.items) == 1


def test_html_comment_hides_headings() -> None:
    document = parse_document("README.md", "# T\n<!--\n## hidden\n-->\n## Shown\n")
    assert [h.title for h in document.headings] == ["T", "Shown"]


def test_sections_own_lines_stop_at_child_headings() -> None:
    text = "# Top\nintro\n## A\na body\n### A1\ndeep\n## B\nb body\n"
    result = sections(parse_document("AGENTS.md", text))
    assert [(s.heading.title, s.start, s.end, s.own_end) for s in result] == [
        ("Top", 1, 8, 2),
        ("A", 3, 6, 4),
        ("A1", 5, 6, 6),
        ("B", 7, 8, 8),
    ]
    assert result[0].own_lines == ("intro",)
    assert result[1].lines == ("a body", "### A1", "deep")
    assert result[1].own_lines == ("a body",)


def test_preamble_lines_skip_frontmatter() -> None:
    document = parse_document("README.md", "---\na: 1\n---\nlead\n# Title\n")
    assert preamble_lines(document) == ("lead",)


def test_load_document_reads_utf8_with_bom(tmp_path: Path) -> None:
    path = tmp_path / "docs" / "guide.md"
    path.parent.mkdir()
    path.write_bytes("\ufeff# Guide\n".encode("utf-8"))
    document = load_document(path, tmp_path)
    assert document.path == "docs/guide.md"
    assert document.headings[0].title == "Guide"


def test_load_document_rejects_undecodable_bytes(tmp_path: Path) -> None:
    path = tmp_path / "AGENTS.md"
    path.write_bytes(b"# Title\n\xff\xfe broken\n")
    with pytest.raises(DocumentLoadError) as excinfo:
        load_document(path, tmp_path)
    assert "not valid UTF-8" in str(excinfo.value)


def test_load_document_missing_file(tmp_path: Path) -> None:
    with pytest.raises(DocumentLoadError):
        load_document(tmp_path / "missing.md", tmp_path)
