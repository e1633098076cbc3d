from __future__ import annotations

import pytest

from agentdocs.aggregate import (
    aggregate_documents,
    bundle_payload,
    precedence_order,
    render_bundle_markdown,
)
from agentdocs.exceptions import ConfigError

_AGENTS = (
    "# Agent Standards\n"
    "\n"
    "Read this first.\n"
    "\n"
    "## Testing\n"
    "\n"
    "- Write tests first.\n"
    "- Keep tests fast.\n"
    "\n"
    "## Git\n"
    "\n"
    "- Small commits.\n"
)
_CLAUDE = (
    "# Claude\n"
    "\n"
    "## Testing\n"
    "\n"
    "- Keep **tests** fast.\n"
    "  continuation of the repeated item\n"
    "- Use fixtures.\n"
    "\n"
    "## Style\n"
    "\n"
    "- Tabs.\n"
)


def _docs(make_docs):
    return make_docs({"CLAUDE.md": _CLAUDE, "AGENTS.md": _AGENTS})


def test_precedence_order_puts_root_standards_first(make_docs) -> None:
    docs = make_docs(
        {
            "docs/x.md": "# X\n",
            "pkg/AGENTS.md": "# P\n",
            "README.md": "# R\n",
            "AGENTS.md": "# A\n",
            "CONTRIBUTING.md": "# C\n",
            "CLAUDE.md": "# L\n",
        }
    )
    assert precedence_order(docs) == [
        "AGENTS.md",
        "CLAUDE.md",
        "README.md",
        "CONTRIBUTING.md",
        "pkg/AGENTS.md",
        "docs/x.md",
    ]


def test_bundle_merges_sections_and_drops_repeated_items(make_docs) -> None:
    bundle = aggregate_documents(_docs(make_docs))
    assert bundle.sources == ("AGENTS.md", "CLAUDE.md")
    assert [section.slug for section in bundle.sections] == ["testing", "git", "style"]
    testing = bundle.sections[0]
    assert testing.sources == ["AGENTS.md", "CLAUDE.md"]
    assert [(b.source, b.start, b.lines) for b in testing.blocks] == [
        ("AGENTS.md", 7, ("- Write tests first.", "- Keep tests fast.")),
        ("CLAUDE.md", 7, ("- Use fixtures.",)),
    ]
    assert [(d.source, d.line, d.first_source, d.first_line) for d in bundle.dropped] == [
        ("CLAUDE.md", 5, "AGENTS.md", 8)
    ]
    assert bundle.summary == {
        "sources": 2,
        "sections": 3,
        "merged_sections": 1,
        "dropped_items": 1,
    }


def test_render_bundle_markdown_keeps_provenance(make_docs) -> None:
    rendered = render_bundle_markdown(aggregate_documents(_docs(make_docs), title="Team Rules"))
    assert rendered == (
        "# Team Rules\n"
        "\n"
        "<!-- agentdocs bundle; sources: AGENTS.md, CLAUDE.md -->\n"
        "\n"
        "<!-- source: AGENTS.md:3 -->\n"
        "Read this first.\n"
        "\n"
        "## Testing\n"
        "\n"
        "<!-- source: AGENTS.md:7 -->\n"
        "- Write tests first.\n"
        "- Keep tests fast.\n"
        "\n"
        "<!-- source: CLAUDE.md:7 -->\n"
        "- Use fixtures.\n"
        "\n"
        "## Git\n"
        "\n"
        "<!-- source: AGENTS.md:12 -->\n"
        "- Small commits.\n"
        "\n"
        "## Style\n"
        "\n"
        "<!-- source: CLAUDE.md:11 -->\n"
        "- Tabs.\n"
    )


def test_bundle_is_deterministic(make_docs) -> None:
    first = render_bundle_markdown(aggregate_documents(_docs(make_docs)))
    second = render_bundle_markdown(aggregate_documents(_docs(make_docs)))
    assert first == second


def test_no_dedupe_keeps_repeated_items_with_continuations(make_docs) -> None:
    bundle = aggregate_documents(_docs(make_docs), dedupe=False)
    assert bundle.dropped == ()
    claude_block = bundle.sections[0].blocks[1]
    assert claude_block.start == 5
    assert claude_block.lines == (
        "- Keep **tests** fast.",
        "  continuation of the repeated item",
        "- Use fixtures.",
    )


def test_explicit_order_changes_first_occurrence(make_docs) -> None:
    bundle = aggregate_documents(_docs(make_docs), order=["CLAUDE.md", "AGENTS.md"])
    assert [section.slug for section in bundle.sections] == ["testing", "style", "git"]
    assert [(d.source, d.line, d.first_source) for d in bundle.dropped] == [
        ("AGENTS.md", 8, "CLAUDE.md")
    ]


def test_fully_deduplicated_section_still_records_source(make_docs) -> None:
    docs = make_docs(
        {
            "AGENTS.md": "# A\n## Testing\n- Keep tests fast.\n",
            "CLAUDE.md": "# C\n## Testing\n- Keep tests fast.\n",
        }
    )
    bundle = aggregate_documents(docs)
    assert bundle.sections[0].sources == ["AGENTS.md", "CLAUDE.md"]
    assert bundle.sections[0].blocks[1].lines == ()


def test_unknown_order_entry_is_a_config_error(make_docs) -> None:
    with pytest.raises(ConfigError):
        aggregate_documents(_docs(make_docs), order=["MISSING.md"])


def test_bundle_payload_shape(make_docs) -> None:
    payload = bundle_payload(aggregate_documents(_docs(make_docs)))
    assert payload["title"] == "Engineering Standards"
    assert payload["sections"][0] == {
        "slug": "testing",
        "title": "Testing",
        "anchor": None,
        "sources": ["AGENTS.md", "CLAUDE.md"],
        "line_count": 3,
    }
    assert payload["dropped"][0]["text"] == "Keep **tests** fast."


def test_section_anchor_moves_with_its_heading(make_docs) -> None:
    docs = make_docs(
        {
            "AGENTS.md": (
                "# Doc\n"
                "\n"
                "## First\n"
                "\n"
                "text one\n"
                "\n"
                '<a id="second"></a>\n'
                "## Second\n"
                "\n"
                "text two\n"
            ),
            "CLAUDE.md": "# Claude\n\n## Second\n\ntext three\n",
        }
    )
    bundle = aggregate_documents(docs)
    assert [section.anchor for section in bundle.sections] == [None, "second"]
    assert render_bundle_markdown(bundle) == (
        "# Engineering Standards\n"
        "\n"
        "<!-- agentdocs bundle; sources: AGENTS.md, CLAUDE.md -->\n"
        "\n"
        "## First\n"
        "\n"
        "<!-- source: AGENTS.md:5 -->\n"
        "text one\n"
        "\n"
        '<a id="second"></a>\n'
        "## Second\n"
        "\n"
        "<!-- source: AGENTS.md:10 -->\n"
        "text two\n"
        "\n"
        "<!-- source: CLAUDE.md:5 -->\n"
        "text three\n"
    )
    assert bundle_payload(bundle)["sections"][1]["anchor"] == "second"
