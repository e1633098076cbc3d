from __future__ import annotations

from agentdocs.directives import (
    directive_stem,
    extract_directives,
    included_documents,
    instruction_graph,
    instruction_graph_payload,
    render_instruction_graph_md,
)
from agentdocs.markdown import parse_document


def _doc(
    *,
    revision: int,
    reviewed: dict[str, int],
    body: str,
    doc_sections: dict[str, int] | None = None,
) -> str:
    lines = ["---", f"doc_revision: {revision}"]
    if reviewed:
        lines.append("doc_reviewed_as_of:")
        lines.extend(f"  {key}: {value}" for key, value in reviewed.items())
    else:
        lines.append("doc_reviewed_as_of: {}")
    if doc_sections:
        lines.append("doc_sections:")
        lines.extend(f"  {key}: {value}" for key, value in doc_sections.items())
    lines.append("---")
    return "\n".join(lines) + "\n" + body


def test_agent_instruction_graph_reports_drift_categories(make_docs) -> None:
    docs = make_docs(
        {
            "AGENTS.md": _doc(
                revision=2,
                reviewed={"README.md#policy": 1},
                body=(
                    "## Required behavior\n"
                    "- Do not weaken runner protections.\n"
                    "- Use `mise exec -- python` for tooling.\n"
                ),
            ),
            "README.md": _doc(revision=2, reviewed={}, body="## Policy\n"),
            "CONTRIBUTING.md": _doc(
                revision=1,
                reviewed={},
                body=(
                    "## Contributing\n"
                    "- Do not weaken runner protections.\n"
                    "- Set `--policy-override` only for emergency workflows.\n"
                ),
            ),
            "in/AGENTS.md": _doc(
                revision=1,
                reviewed={"README.md#policy": 1},
                body="## Required behavior\n- Weaken runner protections.\n",
            ),
        }
    )

    graph = instruction_graph(docs)

    assert graph.warnings
    assert graph.violations
    assert graph.included_docs == ("AGENTS.md", "CONTRIBUTING.md", "README.md", "in/AGENTS.md")
    summary = graph.summary
    assert summary["duplicate_mandatory"] == 1
    assert summary["precedence_conflicts"] == 1
    assert summary["stale_dependency_revisions"] == 2
    assert summary["hidden_operational_toggles"] == 1
    assert summary["scoped_delta_violations"] == 1
    assert summary["broken_references"] == 0
    assert graph.hidden_operational_toggles == [
        {"source": "CONTRIBUTING.md", "token": "--policy-override"}
    ]
    assert graph.precedence_conflicts[0]["stem"] == "weaken runner protections"


def test_agent_instruction_graph_allows_explicit_scoped_delta(make_docs) -> None:
    docs = make_docs(
        {
            "AGENTS.md": _doc(
                revision=1,
                reviewed={"README.md#policy": 1},
                body="## Required behavior\n- Keep workflows pinned.\n",
            ),
            "README.md": _doc(revision=1, reviewed={}, body="# Policy\n"),
            "CONTRIBUTING.md": _doc(revision=1, reviewed={}, body="# Contributing\n"),
            "in/AGENTS.md": _doc(
                revision=1,
                reviewed={"README.md#policy": 1},
                body="## Required behavior\n- [delta] Run additional local checks.\n",
            ),
        }
    )

    graph = instruction_graph(docs)

    assert graph.warnings == []
    assert "scoped AGENTS directives must be canonical or explicit deltas" not in "\n".join(
        graph.violations
    )
    assert graph.violations == []


def test_agent_instruction_graph_uses_anchor_revision_when_available(make_docs) -> None:
    docs = make_docs(
        {
            "AGENTS.md": _doc(
                revision=1,
                reviewed={"CLAUDE.md#policy": 1},
                body="## Required behavior\n- Keep workflows pinned.\n",
            ),
            "CLAUDE.md": _doc(
                revision=42,
                reviewed={},
                body="# Policy\n",
                doc_sections={"policy": 1},
            ),
            "CONTRIBUTING.md": _doc(revision=1, reviewed={}, body="# Contributing\n"),
        }
    )

    graph = instruction_graph(docs)

    assert "stale dependency revisions detected" not in "\n".join(graph.violations)


def test_agent_instruction_graph_reports_broken_references(make_docs) -> None:
    docs = make_docs(
        {
            "AGENTS.md": (
                "# Agents\n"
                "\n"
                "See `docs/guide.md#setup` and [contrib](CONTRIBUTING.md#missing).\n"
                "Also `docs/gone.md#x`.\n"
                "```\n"
                "`docs/ignored.md#x`\n"
                "```\n"
            ),
            "pkg/AGENTS.md": "# Pkg\n\nSee `../docs/guide.md#setup` and `docs/guide.md#Setup`.\n",
            "CONTRIBUTING.md": "# Contributing\n",
            "docs/guide.md": "# Guide\n## Setup\n",
        }
    )

    graph = instruction_graph(docs)

    assert [(ref.source, ref.line, ref.target) for ref in graph.references] == [
        ("AGENTS.md", 3, "docs/guide.md"),
        ("AGENTS.md", 3, "CONTRIBUTING.md"),
        ("AGENTS.md", 4, "docs/gone.md"),
        ("pkg/AGENTS.md", 3, "../docs/guide.md"),
        ("pkg/AGENTS.md", 3, "docs/guide.md"),
    ]
    assert graph.broken_references == [
        {
            "source": "AGENTS.md",
            "line": 3,
            "reference": "CONTRIBUTING.md#missing",
            "reason": "missing anchor #missing in CONTRIBUTING.md",
        },
        {
            "source": "AGENTS.md",
            "line": 4,
            "reference": "docs/gone.md#x",
            "reason": "missing document docs/gone.md",
        },
    ]
    assert "instruction graph: broken document references detected" in graph.violations


def test_extract_directives_marks_mandatory_items(make_docs) -> None:
    docs = make_docs(
        {
            "AGENTS.md": (
                "# Agents\n"
                "## Notes\n"
                "- Prefer small commits.\n"
                "- Changelog lives in docs.\n"
                "## Required Behavior\n"
                "- Tabs for indentation.\n"
                "- delta: Tabs in Makefiles.\n"
            )
        }
    )
    directives = extract_directives("AGENTS.md", docs["AGENTS.md"])
    assert [(d.line, d.mandatory, d.delta_marked, d.section) for d in directives] == [
        (3, True, False, "Notes"),
        (4, False, False, "Notes"),
        (6, True, False, "Required Behavior"),
        (7, True, True, "Required Behavior"),
    ]
    assert all(d.scope_root == "." for d in directives)


def test_directive_stem_strips_polarity() -> None:
    assert directive_stem("Never push to `main`!") == "push to main"
    assert directive_stem("Always push to main.") == "push to main"


def test_included_documents_order(make_docs) -> None:
    docs = make_docs(
        {
            "README.md": "# R\n",
            "b/AGENTS.md": "# B\n",
            "AGENTS.md": "# A\n",
            "a/AGENTS.md": "# A2\n",
            "CLAUDE.md": "# C\n",
            "docs/x.md": "# X\n",
        }
    )
    assert included_documents(docs) == [
        "AGENTS.md",
        "CLAUDE.md",
        "README.md",
        "a/AGENTS.md",
        "b/AGENTS.md",
    ]


def test_clean_graph_payload_and_markdown(make_docs) -> None:
    docs = make_docs({"AGENTS.md": "# Agents\n\n## Required behavior\n- Keep workflows pinned.\n"})
    graph = instruction_graph(docs)
    payload = instruction_graph_payload(graph)
    assert payload["included_docs"] == ["AGENTS.md"]
    assert payload["summary"]["mandatory_directives"] == 1
    assert payload["canonical"]["directives"] == [
        {"line": 4, "text": "Keep workflows pinned.", "normalized": "keep workflows pinned."}
    ]
    rendered = render_instruction_graph_md(graph)
    assert rendered.startswith("# Agent Instruction Graph")
    assert "No instruction drift detected." in rendered


def test_required_behavior_covers_nested_subsections(make_docs) -> None:
    docs = make_docs(
        {
            "AGENTS.md": (
                "# Agents\n"
                "\n"
                "## Required behavior\n"
                "\n"
                "### Git\n"
                "\n"
                "- Sign every commit.\n"
                "\n"
                "## Notes\n"
                "\n"
                "### Tags\n"
                "\n"
                "- Sign release tags.\n"
            ),
            "pkg/AGENTS.md": "# Pkg\n\n## Required behavior\n\n- Sign every commit.\n",
        }
    )

    directives = extract_directives("AGENTS.md", docs["AGENTS.md"])
    assert [(item.text, item.section, item.mandatory) for item in directives] == [
        ("Sign every commit.", "Git", True),
        ("Sign release tags.", "Tags", False),
    ]

    graph = instruction_graph(docs)
    assert graph.summary["scoped_delta_violations"] == 0
    assert graph.summary["duplicate_mandatory"] == 1
    assert [item["text"] for item in graph.duplicate_mandatory[0]["occurrences"]] == [
        "Sign every commit.",
        "Sign every commit.",
    ]
