from __future__ import annotations

import json
from pathlib import Path

from agentdocs.aggregate import Bundle, bundle_payload
from agentdocs.directives import InstructionGraph, instruction_graph_payload
from agentdocs.duplicates import DuplicateReport
from agentdocs.json_types import JSONObject
from agentdocs.rules import RULES, LintResult, findings_by_path
from agentdocs.schema import (
    BundleDTO,
    DuplicateReportDTO,
    InstructionGraphDTO,
    LintReportDTO,
    RuleDTO,
)
from agentdocs.timeout_context import check_deadline

FORMATS = ("text", "markdown", "json")


def dump_json(payload: object) -> str:
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def write_output(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def render_report_md(report_id: str, lines: list[str]) -> str:
    frontmatter = [
        "---",
        "doc_revision: 1",
        f"doc_id: {report_id}",
        "doc_role: report",
        "doc_authority: informative",
        "doc_requires: []",
        "---",
        "",
        f'<a id="{report_id}"></a>',
        "",
    ]
    return "\n".join(frontmatter + lines) + "\n"


def lint_payload(result: LintResult) -> JSONObject:
    return LintReportDTO.model_validate(
        {
            "summary": result.summary,
            "findings": [
                {
                    "path": finding.path,
                    "line": finding.line,
                    "code": finding.code,
                    "severity": finding.severity,
                    "message": finding.message,
                }
                for finding in result.findings
            ],
        }
    ).model_dump()


def render_lint_text(result: LintResult) -> str:
    lines = [
        f"{finding.path}:{finding.line}: {finding.code} {finding.severity} {finding.message}"
        for finding in result.findings
    ]
    errors = result.count("error")
    warnings = result.count("warning")
    if result.findings:
        lines.append(
            f"{len(result.documents)} document(s) checked: {errors} error(s), {warnings} warning(s)"
        )
    else:
        lines.append(f"{len(result.documents)} document(s) checked: no issues detected.")
    return "\n".join(lines) + "\n"


def render_lint_markdown(result: LintResult) -> str:
    summary = result.summary
    lines = [
        "# Lint Report",
        "",
        f"- documents: {summary['documents']}",
        f"- errors: {summary['errors']}",
        f"- warnings: {summary['warnings']}",
        "",
    ]
    grouped = findings_by_path(result.findings)
    for path in sorted(grouped):
        check_deadline()
        lines.extend([f"## `{path}`", ""])
        for finding in grouped[path]:
            lines.append(
                f"- line {finding.line}: **{finding.code}** ({finding.severity}) {finding.message}"
            )
        lines.append("")
    if not grouped:
        lines.extend(["No issues detected.", ""])
    return render_report_md("lint_report", lines)


def render_lint(result: LintResult, output_format: str) -> str:
    if output_format == "json":
        return dump_json(lint_payload(result))
    if output_format == "markdown":
        return render_lint_markdown(result)
    return render_lint_text(result)


def rules_payload() -> list[JSONObject]:
    return [
        RuleDTO(
            code=rule.code,
            name=rule.name,
            severity=rule.severity,
            summary=rule.summary,
        ).model_dump()
        for rule in RULES
    ]


def render_rules_text() -> str:
    return "\n".join(
        f"{rule.code}  {rule.severity:<7}  {rule.name}: {rule.summary}" for rule in RULES
    ) + "\n"


def duplicates_payload(report: DuplicateReport) -> JSONObject:
    return DuplicateReportDTO.model_validate(
        {
            "threshold": report.threshold,
            "min_section_lines": report.min_section_lines,
            "documents": list(report.documents),
            "summary": report.summary,
            "exact": [
                {"fingerprint": group.fingerprint, "paths": list(group.paths)}
                for group in report.exact
            ],
            "near": [
                {"left": pair.left, "right": pair.right, "ratio": pair.ratio}
                for pair in report.near
            ],
            "sections": [
                {
                    "fingerprint": section.fingerprint,
                    "slug": section.slug,
                    "line_count": section.line_count,
                    "occurrences": [
                        {"path": item.path, "line": item.line, "title": item.title}
                        for item in section.occurrences
                    ],
                }
                for section in report.sections
            ],
        }
    ).model_dump()


def _duplicate_lines(report: DuplicateReport) -> list[str]:
    lines: list[str] = []
    for group in report.exact:
        check_deadline()
        lines.append(f"exact duplicate files: {', '.join(group.paths)}")
    for pair in report.near:
        check_deadline()
        lines.append(f"near duplicate files ({pair.ratio:.2f}): {pair.left}, {pair.right}")
    for section in report.sections:
        check_deadline()
        where = ", ".join(f"{item.path}:{item.line}" for item in section.occurrences)
        lines.append(f"duplicate section '{section.slug}' ({section.line_count} lines): {where}")
    return lines


def render_duplicates_text(report: DuplicateReport) -> str:
    lines = _duplicate_lines(report)
    if not lines:
        lines.append(f"{len(report.documents)} document(s) checked: no duplicates detected.")
    return "\n".join(lines) + "\n"


def render_duplicates_markdown(report: DuplicateReport) -> str:
    summary = report.summary
    lines = [
        "# Duplicate Report",
        "",
        f"- documents: {summary['documents']}",
        f"- similarity threshold: {report.threshold}",
        f"- exact groups: {summary['exact_groups']}",
        f"- near pairs: {summary['near_pairs']}",
        f"- duplicate sections: {summary['duplicate_sections']}",
        "",
    ]
    body = _duplicate_lines(report)
    if body:
        lines.extend(f"- {line}" for line in body)
    else:
        lines.append("No duplicates detected.")
    lines.append("")
    return render_report_md("duplicate_report", lines)


def render_duplicates(report: DuplicateReport, output_format: str) -> str:
    if output_format == "json":
        return dump_json(duplicates_payload(report))
    if output_format == "markdown":
        return render_duplicates_markdown(report)
    return render_duplicates_text(report)


def graph_payload(graph: InstructionGraph) -> JSONObject:
    return InstructionGraphDTO.model_validate(instruction_graph_payload(graph)).model_dump()


def bundle_json(bundle: Bundle) -> JSONObject:
    return BundleDTO.model_validate(bundle_payload(bundle)).model_dump()
