"""Invariant markers for agentdocs."""

from __future__ import annotations

from typing import NoReturn

from agentdocs.exceptions import NeverThrown


def _raise_marker(marker_kind: str, reason: str = "", **env: object) -> NoReturn:
    message = reason or f"{marker_kind}() marker reached"
    raise NeverThrown(message, env={"marker_kind": marker_kind, **env})


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The optional env payload is attached to the raised exception for
    diagnostics; it is not evaluated.
    """
    _raise_marker("never", reason, **env)
