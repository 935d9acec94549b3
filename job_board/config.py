"""
Runtime configuration for the job board.

Settings are resolved in three layers: built-in defaults, an optional YAML
file, then environment variables. The YAML file is a flat mapping of
setting names, e.g.::

    api_url: https://data.cityofnewyork.us/resource/kpav-sd4t.json
    dataset_ttl_seconds: 3600
    filter_row_cap: 1000
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

DEFAULT_API_URL = "https://data.cityofnewyork.us/resource/kpav-sd4t.json"

DEV_ORIGINS = [
    "http://localhost",
    "http://localhost:8000",
    "http://127.0.0.1:8000",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

# setting name -> environment variable
ENV_VARS: Dict[str, str] = {
    "api_url": "NYC_JOBS_API_URL",
    "dataset_ttl_seconds": "JOBBOARD_DATASET_TTL_SECONDS",
    "query_ttl_seconds": "JOBBOARD_QUERY_TTL_SECONDS",
    "batch_size": "JOBBOARD_BATCH_SIZE",
    "max_records": "JOBBOARD_MAX_RECORDS",
    "filter_row_cap": "JOBBOARD_FILTER_ROW_CAP",
    "max_attempts": "JOBBOARD_MAX_ATTEMPTS",
    "backoff_seconds": "JOBBOARD_BACKOFF_SECONDS",
    "batch_timeout": "JOBBOARD_BATCH_TIMEOUT",
    "record_timeout": "JOBBOARD_RECORD_TIMEOUT",
    "db_path": "DB_PATH",
    "environment": "JOBBOARD_ENV",
    "allowed_origins": "JOBBOARD_ALLOWED_ORIGINS",
}


@dataclass(frozen=True)
class Settings:
    """All tunables of the upstream feed, the caches and the HTTP app."""

    api_url: str = DEFAULT_API_URL
    dataset_ttl_seconds: int = 60 * 60
    query_ttl_seconds: int = 5 * 60
    batch_size: int = 1000
    max_records: int = 50_000
    # Undocumented row cap the feed applies to $where queries
    filter_row_cap: int = 1000
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    batch_timeout: float = 30
    record_timeout: float = 10
    db_path: str = "job_board.db"
    environment: str = "development"
    allowed_origins: List[str] = field(default_factory=lambda: list(DEV_ORIGINS))

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def _coerce(name: str, raw: Any, template: Any) -> Any:
    """Convert a raw YAML/env value to the type of the default."""
    if isinstance(template, list):
        if isinstance(raw, str):
            return [item.strip() for item in raw.split(",") if item.strip()]
        if isinstance(raw, list):
            return [str(item).strip() for item in raw if str(item).strip()]
        raise ValueError(f"Setting '{name}' must be a list or comma-separated string")
    if isinstance(template, bool):
        return str(raw).strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(template, (int, float)):
        try:
            value = type(template)(raw)
        except (TypeError, ValueError):
            raise ValueError(f"Setting '{name}' must be a number, got {raw!r}") from None
        if value < 0:
            raise ValueError(f"Setting '{name}' must not be negative")
        return value
    return str(raw)


def _load_yaml(path: Path) -> Dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at the top of {path}, got {type(data).__name__}")
    return data


def load_settings(path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> Settings:
    """Build ``Settings`` from defaults, an optional YAML file and the environment.

    Args:
        path: YAML file to read. Falls back to ``JOBBOARD_CONFIG`` when not given.
        environ: Environment mapping, ``os.environ`` by default.

    Returns:
        A frozen ``Settings`` instance.

    Raises:
        ValueError: If a setting cannot be converted to its expected type.
    """
    env = os.environ if environ is None else environ
    base = Settings()
    defaults = {f.name: getattr(base, f.name) for f in fields(Settings)}
    overrides: Dict[str, Any] = {}

    if path is None and env.get("JOBBOARD_CONFIG"):
        path = Path(env["JOBBOARD_CONFIG"])
    if path is not None:
        for key, raw in _load_yaml(Path(path)).items():
            if key not in defaults:
                raise ValueError(f"Unknown setting '{key}' in {path}")
            overrides[key] = _coerce(key, raw, defaults[key])

    for name, var in ENV_VARS.items():
        raw = env.get(var)
        if raw is not None and raw != "":
            overrides[name] = _coerce(name, raw, defaults[name])

    settings = replace(base, **overrides)
    if settings.is_production and "allowed_origins" not in overrides:
        # No wildcard fallback in production; an empty list makes misconfiguration obvious
        settings = replace(settings, allowed_origins=[])
    return settings
