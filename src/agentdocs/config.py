from __future__ import annotations

from datetime import date, datetime, time
from pathlib import Path
from typing import TypeAlias
import tomllib

from agentdocs.exceptions import ConfigError

DEFAULT_CONFIG_NAME = "agentdocs.toml"
SEVERITIES = ("error", "warning")

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError:
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def _section(data: TomlTable, name: str) -> TomlTable:
    section = data.get(name, {})
    return section if isinstance(section, dict) else {}


def discovery_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    return _section(load_config(root=root, config_path=config_path), "discovery")


def lint_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    return _section(load_config(root=root, config_path=config_path), "lint")


def duplicates_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    return _section(load_config(root=root, config_path=config_path), "duplicates")


def aggregate_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    return _section(load_config(root=root, config_path=config_path), "aggregate")


def normalize_name_list(value: TomlValue) -> list[str]:
    items: list[str] = []
    if value is None:
        return items
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            if isinstance(item, str):
                items.extend([part.strip() for part in item.split(",") if part.strip()])
    return [item for item in items if item]


def _as_bool(value: TomlValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def name_list(section: TomlTable | None, key: str) -> list[str]:
    if not isinstance(section, dict):
        return []
    return normalize_name_list(section.get(key))


def bool_option(section: TomlTable | None, key: str, default: bool) -> bool:
    if not isinstance(section, dict) or section.get(key) is None:
        return default
    return _as_bool(section.get(key))


def int_option(
    section: TomlTable | None, key: str, default: int, *, minimum: int = 0
) -> int:
    if not isinstance(section, dict) or section.get(key) is None:
        return default
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(key, f"expected integer, got {value!r}")
    if value < minimum:
        raise ConfigError(key, f"must be >= {minimum}, got {value}")
    return value


def float_option(section: TomlTable | None, key: str, default: float) -> float:
    if not isinstance(section, dict) or section.get(key) is None:
        return default
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(key, f"expected number, got {value!r}")
    return float(value)


def str_option(section: TomlTable | None, key: str, default: str) -> str:
    if not isinstance(section, dict) or section.get(key) is None:
        return default
    value = section.get(key)
    if not isinstance(value, str):
        raise ConfigError(key, f"expected string, got {value!r}")
    return value


def severity_overrides(section: TomlTable | None) -> dict[str, str]:
    if not isinstance(section, dict):
        return {}
    raw = section.get("severity")
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("lint.severity", "expected a table of code = severity")
    overrides: dict[str, str] = {}
    for code, severity in raw.items():
        if not isinstance(severity, str) or severity.strip().lower() not in SEVERITIES:
            raise ConfigError(
                f"lint.severity.{code}",
                f"expected one of {', '.join(SEVERITIES)}, got {severity!r}",
            )
        overrides[str(code).strip().upper()] = severity.strip().lower()
    return overrides


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged
