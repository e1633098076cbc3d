"""Exception types for agentdocs."""

from __future__ import annotations

from pathlib import Path


class NeverRaise(RuntimeError):
    """Sentinel exception that should be statically unreachable.

    Raising this exception signals that a code path believed to be impossible
    was reached. Callers should treat it as a bug, not as a user error.
    """

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.reason = message
        self.env = dict(env or {})


class NeverThrown(NeverRaise):
    """Alias for NeverRaise used by the explicit never() marker."""


class AgentdocsError(Exception):
    """Base class for errors reported to the user."""


class DocumentLoadError(AgentdocsError):
    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class ConfigError(AgentdocsError):
    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"config {key}: {reason}")
        self.key = key
        self.reason = reason
