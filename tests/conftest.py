from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT / "src", ROOT):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

from agentdocs.deadline_clock import GasMeter
from agentdocs.markdown import Document, parse_document
from agentdocs.timeout_context import Deadline, deadline_clock_scope, deadline_scope
from tests.env_helpers import restore_env as _restore_env
from tests.env_helpers import set_env as _set_env


@pytest.fixture(autouse=True)
def _deadline_scope_fixture():
    with deadline_scope(Deadline.from_timeout_ms(120_000)):
        with deadline_clock_scope(GasMeter(limit=100_000_000)):
            yield


@pytest.fixture
def env_scope():
    return _set_env


@pytest.fixture
def restore_env():
    return _restore_env


@pytest.fixture
def make_docs():
    def _make(files: dict[str, str]) -> dict[str, Document]:
        return {path: parse_document(path, text) for path, text in files.items()}

    return _make


@pytest.fixture
def write_tree(tmp_path: Path):
    def _write(files: dict[str, str], *, root: Path | None = None) -> Path:
        base = root if root is not None else tmp_path
        for rel, text in files.items():
            path = base / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        return base

    return _write
