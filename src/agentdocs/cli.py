from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Optional

import typer

from agentdocs import config
from agentdocs.aggregate import DEFAULT_TITLE, aggregate_documents, render_bundle_markdown
from agentdocs.deadline_runtime import audit_deadline_scope
from agentdocs.directives import instruction_graph, render_instruction_graph_md
from agentdocs.discovery import discover_documents
from agentdocs.duplicates import (
    DEFAULT_MIN_SECTION_LINES,
    DEFAULT_THRESHOLD,
    DuplicateReport,
    find_duplicate_files,
)
from agentdocs.exceptions import AgentdocsError, NeverRaise
from agentdocs.markdown import Document
from agentdocs.outline import outline_payload, render_outline_markdown, render_outline_text
from agentdocs.report import (
    FORMATS,
    bundle_json,
    dump_json,
    graph_payload,
    render_duplicates,
    render_lint,
    render_rules_text,
    rules_payload,
    write_output,
)
from agentdocs.rules import ERROR, WARNING, LintResult, lint_documents, lint_options_from_config
from agentdocs.schema import CheckReportDTO
from agentdocs.timeout_context import TimeoutExceeded

app = typer.Typer(add_completion=False, help="Lint, deduplicate and bundle agent standards documents.")


@dataclass(frozen=True)
class CliSettings:
    gas_limit: int | None = None
    config_path: Path | None = None
    verbose: bool = False


def _settings(ctx: typer.Context) -> CliSettings:
    obj = ctx.obj
    if isinstance(obj, Mapping):
        candidate = obj.get("settings")
        if isinstance(candidate, CliSettings):
            return candidate
    return CliSettings()


@app.callback()
def main(
    ctx: typer.Context,
    gas_limit: Optional[int] = typer.Option(
        None,
        "--gas-limit",
        min=1,
        help="Logical tick budget for one run (default: AGENTDOCS_GAS_LIMIT or 50000000).",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Config file (default: <root>/agentdocs.toml).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Echo discovery details to stderr."),
) -> None:
    obj = dict(ctx.obj) if isinstance(ctx.obj, Mapping) else {}
    obj["settings"] = CliSettings(gas_limit=gas_limit, config_path=config_path, verbose=verbose)
    ctx.obj = obj


def _run_guarded(settings: CliSettings, body: Callable[[], int]) -> None:
    try:
        with audit_deadline_scope(gas_limit=settings.gas_limit) as meter:
            exit_code = body()
            if settings.verbose:
                typer.echo(meter.usage().describe(), err=True)
    except (AgentdocsError, TimeoutExceeded, NeverRaise) as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc
    raise typer.Exit(code=exit_code)


def _check_format(output_format: str, allowed: tuple[str, ...] = FORMATS) -> str:
    value = output_format.strip().lower()
    if value not in allowed:
        raise typer.BadParameter(
            f"unknown format {output_format!r}; expected one of {', '.join(allowed)}",
            param_hint="--format",
        )
    return value


def _explicit_paths(root: Path, paths: List[Path]) -> list[str]:
    resolved: list[str] = []
    for path in paths:
        if not path.is_absolute() and (root / path).exists():
            resolved.append(str((root / path).resolve()))
        elif path.exists():
            resolved.append(str(path.resolve()))
        else:
            raise typer.BadParameter(f"path not found: {path}", param_hint="PATHS")
    return resolved


def _load(
    settings: CliSettings,
    root: Path,
    paths: List[Path] | None = None,
) -> dict[str, Document]:
    if not root.is_dir():
        raise typer.BadParameter(f"root is not a directory: {root}", param_hint="--root")
    section = config.discovery_defaults(root=root, config_path=settings.config_path)
    extra_paths = config.name_list(section, "extra_paths")
    defaults = True
    if paths:
        extra_paths = _explicit_paths(root, paths)
        defaults = False
    documents = discover_documents(
        root,
        extra_paths,
        include=config.name_list(section, "include"),
        exclude=config.name_list(section, "exclude"),
        defaults=defaults,
    )
    if settings.verbose:
        typer.echo(f"discovered {len(documents)} document(s) under {root}", err=True)
        for path in documents:
            typer.echo(f"  {path}", err=True)
    return documents


def _emit(text: str, output: Path | None, *, label: str) -> None:
    if output is None:
        typer.echo(text, nl=False)
        return
    write_output(output, text)
    typer.echo(f"Wrote {label}: {output}")


def _lint(
    settings: CliSettings,
    root: Path,
    documents: Mapping[str, Document],
    *,
    select: list[str] | None = None,
    ignore: list[str] | None = None,
) -> tuple[LintResult, bool]:
    section = config.lint_defaults(root=root, config_path=settings.config_path)
    options = lint_options_from_config(section, select=select, ignore=ignore)
    fail_on_warnings = config.bool_option(section, "fail_on_warnings", False)
    return lint_documents(documents, options), fail_on_warnings


def _lint_exit_code(result: LintResult, *, fail_on_warnings: bool) -> int:
    if result.count(ERROR):
        return 1
    if fail_on_warnings and result.count(WARNING):
        return 1
    return 0


def _duplicates(
    settings: CliSettings,
    root: Path,
    documents: Mapping[str, Document],
    *,
    threshold: float | None = None,
    min_section_lines: int | None = None,
) -> DuplicateReport:
    section = config.duplicates_defaults(root=root, config_path=settings.config_path)
    merged = config.merge_payload(
        {"threshold": threshold, "min_section_lines": min_section_lines},
        section,
    )
    value = config.float_option(merged, "threshold", DEFAULT_THRESHOLD)
    if not 0.0 < value <= 1.0:
        raise typer.BadParameter(
            f"threshold must be in (0, 1], got {value}", param_hint="--threshold"
        )
    lines = config.int_option(
        merged, "min_section_lines", DEFAULT_MIN_SECTION_LINES, minimum=1
    )
    return find_duplicate_files(documents, threshold=value, min_section_lines=lines)


@app.command("lint")
def lint(
    ctx: typer.Context,
    paths: List[Path] = typer.Argument(None, help="Documents or directories to lint."),
    root: Path = typer.Option(Path("."), "--root"),
    output_format: str = typer.Option("text", "--format", help="text|markdown|json"),
    select: Optional[List[str]] = typer.Option(None, "--select", help="Rule codes or names to run."),
    ignore: Optional[List[str]] = typer.Option(None, "--ignore", help="Rule codes or names to skip."),
    output: Optional[Path] = typer.Option(None, "--output"),
    fail_on_warnings: Optional[bool] = typer.Option(
        None, "--fail-on-warnings/--no-fail-on-warnings"
    ),
) -> None:
    """Check heading structure, fences and checklist formatting."""
    settings = _settings(ctx)
    fmt = _check_format(output_format)

    def _body() -> int:
        documents = _load(settings, root, paths)
        result, configured = _lint(
            settings,
            root,
            documents,
            select=config.normalize_name_list(select),
            ignore=config.normalize_name_list(ignore),
        )
        _emit(render_lint(result, fmt), output, label="lint report")
        strict = configured if fail_on_warnings is None else fail_on_warnings
        return _lint_exit_code(result, fail_on_warnings=strict)

    _run_guarded(settings, _body)


@app.command("duplicates")
def duplicates(
    ctx: typer.Context,
    root: Path = typer.Option(Path("."), "--root"),
    threshold: Optional[float] = typer.Option(
        None, "--threshold", help="Near-duplicate similarity ratio in (0, 1]."
    ),
    min_section_lines: Optional[int] = typer.Option(None, "--min-section-lines", min=1),
    output_format: str = typer.Option("text", "--format", help="text|markdown|json"),
    output: Optional[Path] = typer.Option(None, "--output"),
    fail_on_duplicates: bool = typer.Option(
        True, "--fail-on-duplicates/--no-fail-on-duplicates"
    ),
) -> None:
    """Report duplicate and near-duplicate documents and sections."""
    settings = _settings(ctx)
    fmt = _check_format(output_format)

    def _body() -> int:
        documents = _load(settings, root)
        report = _duplicates(
            settings,
            root,
            documents,
            threshold=threshold,
            min_section_lines=min_section_lines,
        )
        _emit(render_duplicates(report, fmt), output, label="duplicate report")
        return 1 if fail_on_duplicates and report.has_duplicates else 0

    _run_guarded(settings, _body)


@app.command("directives")
def directives(
    ctx: typer.Context,
    root: Path = typer.Option(Path("."), "--root"),
    json_output: Optional[Path] = typer.Option(None, "--json-output"),
    md_output: Optional[Path] = typer.Option(None, "--md-output"),
    fail_on_violations: bool = typer.Option(
        True, "--fail-on-violations/--no-fail-on-violations"
    ),
) -> None:
    """Build the agent instruction graph and report its violations."""
    settings = _settings(ctx)

    def _body() -> int:
        documents = _load(settings, root)
        graph = instruction_graph(documents, root=root)
        if json_output is not None:
            write_output(json_output, dump_json(graph_payload(graph)))
            typer.echo(f"Wrote instruction graph JSON: {json_output}")
        if md_output is not None:
            write_output(md_output, render_instruction_graph_md(graph))
            typer.echo(f"Wrote instruction graph markdown: {md_output}")
        for warning in graph.warnings:
            typer.echo(f"warning: {warning}", err=True)
        for violation in graph.violations:
            typer.secho(violation, err=True, fg=typer.colors.RED)
        if not graph.warnings and not graph.violations:
            typer.echo(
                f"instruction graph: {len(graph.included_docs)} document(s), no violations."
            )
        return 1 if fail_on_violations and graph.violations else 0

    _run_guarded(settings, _body)


@app.command("aggregate")
def aggregate(
    ctx: typer.Context,
    root: Path = typer.Option(Path("."), "--root"),
    order: Optional[List[str]] = typer.Option(
        None, "--order", help="Relative document paths in bundle order."
    ),
    title: Optional[str] = typer.Option(None, "--title"),
    no_dedupe: bool = typer.Option(False, "--no-dedupe", help="Keep repeated list items."),
    output: Optional[Path] = typer.Option(None, "--output"),
    output_format: str = typer.Option("markdown", "--format", help="markdown|json"),
) -> None:
    """Merge the standards documents into one context bundle."""
    settings = _settings(ctx)
    fmt = _check_format(output_format, ("markdown", "json"))

    def _body() -> int:
        documents = _load(settings, root)
        section = config.aggregate_defaults(root=root, config_path=settings.config_path)
        merged = config.merge_payload(
            {
                "order": config.normalize_name_list(order) or None,
                "title": title,
                "dedupe": False if no_dedupe else None,
            },
            section,
        )
        bundle = aggregate_documents(
            documents,
            order=config.name_list(merged, "order"),
            title=config.str_option(merged, "title", DEFAULT_TITLE),
            dedupe=config.bool_option(merged, "dedupe", True),
        )
        if fmt == "json":
            text = dump_json(bundle_json(bundle))
        else:
            text = render_bundle_markdown(bundle)
        _emit(text, output, label="context bundle")
        return 0

    _run_guarded(settings, _body)


@app.command("outline")
def outline(
    ctx: typer.Context,
    root: Path = typer.Option(Path("."), "--root"),
    output_format: str = typer.Option("text", "--format", help="text|markdown|json"),
) -> None:
    """Print the heading tree of every document."""
    settings = _settings(ctx)
    fmt = _check_format(output_format)

    def _body() -> int:
        documents = _load(settings, root)
        if fmt == "json":
            typer.echo(dump_json(outline_payload(documents)), nl=False)
        elif fmt == "markdown":
            typer.echo(render_outline_markdown(documents), nl=False)
        else:
            typer.echo(render_outline_text(documents), nl=False)
        return 0

    _run_guarded(settings, _body)


@app.command("rules")
def rules(
    output_format: str = typer.Option("text", "--format", help="text|json"),
) -> None:
    """List lint rule codes, default severities and summaries."""
    fmt = _check_format(output_format, ("text", "json"))
    if fmt == "json":
        typer.echo(dump_json(rules_payload()), nl=False)
    else:
        typer.echo(render_rules_text(), nl=False)


@app.command("check")
def check(
    ctx: typer.Context,
    root: Path = typer.Option(Path("."), "--root"),
    output_format: str = typer.Option("text", "--format", help="text|json"),
) -> None:
    """Run lint, duplicates and directives in one pass."""
    settings = _settings(ctx)
    fmt = _check_format(output_format, ("text", "json"))

    def _body() -> int:
        documents = _load(settings, root)
        result, fail_on_warnings = _lint(settings, root, documents)
        report = _duplicates(settings, root, documents)
        graph = instruction_graph(documents, root=root)

        violations: list[str] = []
        warnings = list(graph.warnings)
        if _lint_exit_code(result, fail_on_warnings=fail_on_warnings):
            violations.append(
                f"lint: {result.count(ERROR)} error(s), {result.count(WARNING)} warning(s)"
            )
        elif result.count(WARNING):
            warnings.append(f"lint: {result.count(WARNING)} warning(s)")
        if report.exact or report.sections:
            violations.append(
                f"duplicates: {len(report.exact)} exact group(s), "
                f"{len(report.sections)} duplicate section(s)"
            )
        if report.near:
            warnings.append(f"duplicates: {len(report.near)} near-duplicate pair(s)")
        violations.extend(graph.violations)
        exit_code = 1 if violations else 0

        if fmt == "json":
            payload = CheckReportDTO.model_validate(
                {
                    "lint": result.summary,
                    "duplicates": report.summary,
                    "directives": graph.summary,
                    "warnings": warnings,
                    "violations": violations,
                    "exit_code": exit_code,
                }
            ).model_dump()
            typer.echo(dump_json(payload), nl=False)
        else:
            typer.echo(
                f"{len(documents)} document(s): "
                f"{result.count(ERROR)} lint error(s), {result.count(WARNING)} lint warning(s), "
                f"{len(report.exact) + len(report.near) + len(report.sections)} duplicate finding(s), "
                f"{len(graph.violations)} directive violation(s)"
            )
            for warning in warnings:
                typer.echo(f"warning: {warning}", err=True)
            for violation in violations:
                typer.secho(violation, err=True, fg=typer.colors.RED)
        return exit_code

    _run_guarded(settings, _body)
