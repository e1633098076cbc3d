from __future__ import annotations

from fnmatch import fnmatch
from pathlib import Path
from typing import Callable, Iterable

from agentdocs.exceptions import DocumentLoadError
from agentdocs.markdown import Document, load_document
from agentdocs.order_contract import ordered_or_sorted
from agentdocs.timeout_context import check_deadline, deadline_loop_iter

STANDARDS_DOC_NAMES = (
    "AGENTS.md",
    "CLAUDE.md",
    "README.md",
    "CONTRIBUTING.md",
)
DOCS_DIR = "docs"
SKIP_DIR_NAMES = frozenset(
    {
        "node_modules",
        "venv",
        "__pycache__",
        "site-packages",
        "build",
        "dist",
    }
)


def _sorted(values: Iterable[object], *, key: Callable[[object], object] | None = None) -> list[object]:
    return ordered_or_sorted(values, source="agentdocs.discovery", key=key)


def _relative(path: Path, root: Path) -> str:
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return path.as_posix()


def _skipped(path: Path, root: Path) -> bool:
    rel = _relative(path, root)
    parts = rel.split("/")[:-1]
    return any(part.startswith(".") or part in SKIP_DIR_NAMES for part in parts)


def _excluded(rel: str, exclude: list[str]) -> bool:
    return any(fnmatch(rel, pattern) for pattern in exclude)


def _walk_markdown(directory: Path, root: Path) -> list[Path]:
    found: list[Path] = []
    for doc in directory.rglob("*.md"):
        check_deadline()
        if doc.is_file() and not _skipped(doc, root):
            found.append(doc)
    return found


def default_document_paths(root: Path) -> list[Path]:
    paths: list[Path] = []
    for name in STANDARDS_DOC_NAMES:
        check_deadline()
        for doc in root.rglob(name):
            check_deadline()
            if doc.is_file() and not _skipped(doc, root):
                paths.append(doc)
    docs_dir = root / DOCS_DIR
    if docs_dir.is_dir():
        paths.extend(_walk_markdown(docs_dir, root))
    return paths


def iter_document_paths(
    root: Path,
    extra_paths: list[str] | None = None,
    *,
    include: list[str] | None = None,
    exclude: list[str] | None = None,
    defaults: bool = True,
) -> list[Path]:
    """Collect standards documents under ``root``.

    ``include`` globs add matches relative to ``root``; ``exclude`` globs are
    matched against relative POSIX paths and always win. An extra path that
    is neither a file nor a directory raises ``DocumentLoadError``. The result
    is ordered by relative path and contains each file once.
    """
    candidates: list[Path] = default_document_paths(root) if defaults else []
    for pattern in include or []:
        check_deadline()
        candidates.extend(path for path in root.glob(pattern) if path.is_file())
    for entry in extra_paths or []:
        check_deadline()
        if not entry:
            continue
        raw = Path(entry)
        path = raw if raw.is_absolute() else root / raw
        if path.is_dir():
            candidates.extend(_walk_markdown(path, root))
        elif path.is_file():
            candidates.append(path)
        else:
            raise DocumentLoadError(path, "not found")

    seen: set[str] = set()
    unique: list[tuple[str, Path]] = []
    for path in candidates:
        check_deadline()
        rel = _relative(path, root)
        if rel in seen or _excluded(rel, exclude or []):
            continue
        seen.add(rel)
        unique.append((rel, path))
    return [path for _rel, path in _sorted(unique, key=lambda item: item[0])]


def load_documents(root: Path, paths: Iterable[Path]) -> dict[str, Document]:
    docs: dict[str, Document] = {}
    for path in deadline_loop_iter(paths):
        document = load_document(path, root)
        docs[document.path] = document
    return docs


def discover_documents(
    root: Path,
    extra_paths: list[str] | None = None,
    *,
    include: list[str] | None = None,
    exclude: list[str] | None = None,
    defaults: bool = True,
) -> dict[str, Document]:
    paths = iter_document_paths(
        root,
        extra_paths,
        include=include,
        exclude=exclude,
        defaults=defaults,
    )
    return load_documents(root, paths)
