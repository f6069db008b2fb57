"""
rollcall.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for **non-secret** service settings: identity, port,
log level and the upper bounds the API enforces on batch and page sizes.
Secrets (``DATABASE_URL``, ``JWT_SECRET``) stay in the environment / ``.env``.

Usage::

    from rollcall.config import load_config

    cfg = load_config()            # reads ./config.yaml by default
    print(cfg.service_name)        # "Rollcall"
    print(cfg.bulk_attendance_limit)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from rollcall.constants import (
    DEFAULT_BULK_ATTENDANCE_LIMIT,
    DEFAULT_HISTORY_PAGE_LIMIT,
    DEFAULT_ROSTER_PAGE_LIMIT,
)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RollcallConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    service_name: str

    # API
    api_port: int
    log_level: str

    # Request bounds
    bulk_attendance_limit: int = DEFAULT_BULK_ATTENDANCE_LIMIT
    roster_page_limit: int = DEFAULT_ROSTER_PAGE_LIMIT
    history_page_limit: int = DEFAULT_HISTORY_PAGE_LIMIT

    # Optional
    cors_origins: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> RollcallConfig:
    """Read *path* and return a :class:`RollcallConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return RollcallConfig(
        service_name=raw["service_name"],
        api_port=int(raw["api_port"]),
        log_level=str(raw["log_level"]).upper(),
        bulk_attendance_limit=int(raw.get("bulk_attendance_limit", DEFAULT_BULK_ATTENDANCE_LIMIT)),
        roster_page_limit=int(raw.get("roster_page_limit", DEFAULT_ROSTER_PAGE_LIMIT)),
        history_page_limit=int(raw.get("history_page_limit", DEFAULT_HISTORY_PAGE_LIMIT)),
        cors_origins=tuple(raw.get("cors_origins") or ()),
    )
