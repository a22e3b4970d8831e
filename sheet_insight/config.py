from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from sheet_insight.dataset import IMPORT_FORMATS, MAX_GRID_ROWS

CONFIG_FILE_NAME = "sheet-insight.yml"
HOME_ENV_VAR = "SHEET_INSIGHT_HOME"
DEFAULT_HOME = Path.home() / ".sheet-insight"
STORE_DIR_NAME = "store"

DEFAULT_CONFIG_TEXT = f"""store:
  path: {DEFAULT_HOME / STORE_DIR_NAME}

import:
  max_rows: {MAX_GRID_ROWS}
  preferred_sheet: null
  format: auto
  canonical_status: false
"""


@dataclass
class Settings:
    store_path: Path
    max_rows: int = MAX_GRID_ROWS
    preferred_sheet: Optional[str] = None
    import_format: str = "auto"
    canonical_status: bool = False


def default_store_path() -> Path:
    home = os.environ.get(HOME_ENV_VAR)
    base = Path(home).expanduser() if home else DEFAULT_HOME
    return base / STORE_DIR_NAME


def _section(payload: dict, name: str) -> dict:
    section = payload.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    return section


def settings_from_mapping(payload: Optional[dict[str, Any]]) -> Settings:
    payload = payload or {}
    if not isinstance(payload, dict):
        raise ValueError("Config root must be a mapping")
    store = _section(payload, "store")
    importing = _section(payload, "import")

    import_format = importing.get("format", "auto")
    if import_format not in IMPORT_FORMATS:
        raise ValueError(
            f"import.format must be one of {', '.join(IMPORT_FORMATS)}; got {import_format!r}"
        )
    max_rows = importing.get("max_rows", MAX_GRID_ROWS)
    if not isinstance(max_rows, int) or isinstance(max_rows, bool) or max_rows <= 0:
        raise ValueError(f"import.max_rows must be a positive integer; got {max_rows!r}")

    store_path = Path(store["path"]).expanduser() if store.get("path") else default_store_path()
    # SHEET_INSIGHT_HOME overrides store.path.
    if os.environ.get(HOME_ENV_VAR):
        store_path = default_store_path()

    return Settings(
        store_path=store_path,
        max_rows=max_rows,
        preferred_sheet=importing.get("preferred_sheet"),
        import_format=import_format,
        canonical_status=bool(importing.get("canonical_status", False)),
    )


def find_config_file(explicit: "str | Path | None" = None) -> Optional[Path]:
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        return path
    candidate = Path.cwd() / CONFIG_FILE_NAME
    return candidate if candidate.exists() else None


def load_settings(config_path: "str | Path | None" = None) -> Settings:
    """Settings from ``config_path``, or ``./sheet-insight.yml`` when present, else defaults."""
    path = find_config_file(config_path)
    if path is None:
        return settings_from_mapping({})
    try:
        with open(path, encoding="utf-8") as yaml_file:
            payload = yaml.safe_load(yaml_file)
    except OSError as exc:
        raise FileNotFoundError(f"Cannot read configuration file '{path}': {exc}") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in configuration file '{path}': {exc}") from exc
    return settings_from_mapping(payload)
