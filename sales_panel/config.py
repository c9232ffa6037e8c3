"""Configuration management for sales-panel.

This module centralizes file-system paths, environment variables, and the JSON
configuration loaders used by the panel-building pipeline.

Configuration files
-------------------
* ``config.json``: workbook layout (sheet names, label axes, markers) and
  pipeline parameters (gap thresholds, distance cutoff, split window)
* ``entity_overrides.json``: manual entity-name overrides and the list of
  entities known to have no counterpart

Environment variables
---------------------
``DATA_DIR``, ``AUDIT_DIR``, and ``LOGS_DIR`` override default directories.
Directories are created eagerly on import so downstream callers can rely on
their existence.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, cast

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
DATA_DIR = Path(os.getenv("DATA_DIR", PROJECT_ROOT / "data"))
AUDIT_DIR = Path(os.getenv("AUDIT_DIR", PROJECT_ROOT / "audit"))
LOGS_DIR = Path(os.getenv("LOGS_DIR", PROJECT_ROOT / "logs"))

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
AUDIT_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


def setup_logging(name: str = "sales_panel") -> logging.Logger:
    """Configure a console+file logger if not already present.

    Parameters
    ----------
    name : str, optional
        Logger namespace; reused to avoid duplicate handlers.

    Returns
    -------
    logging.Logger
        Logger with INFO-level console handler and DEBUG-level file handler
        under ``LOGS_DIR``.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(logging.DEBUG)

        # Console handler
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_format = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
        console_handler.setFormatter(console_format)
        logger.addHandler(console_handler)

        # File handler
        log_filename = f"{datetime.now(UTC).strftime('%Y-%m-%d')}_run.log"
        file_handler = logging.FileHandler(LOGS_DIR / log_filename)
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)

    return logger


def _load_json_config(filename: str) -> dict[str, Any]:
    """Load a JSON file from ``CONFIG_DIR``.

    Parameters
    ----------
    filename
        Config filename (e.g., ``"config.json"``).

    Returns
    -------
    dict[str, Any]
        Parsed JSON configuration.

    Raises
    ------
    FileNotFoundError
        If the config file cannot be located.
    json.JSONDecodeError
        If the file exists but is not valid JSON.
    """
    config_path = CONFIG_DIR / filename
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open(encoding="utf-8") as f:
        return cast("dict[str, Any]", json.load(f))


def get_config() -> dict[str, Any]:
    """Load the primary project configuration.

    Returns
    -------
    dict[str, Any]
        Parsed contents of ``config/config.json`` with ``workbook`` and
        ``pipeline`` sections.
    """
    return _load_json_config("config.json")


def get_workbook_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return the workbook layout section of the configuration."""
    if config is None:
        config = get_config()
    return cast("dict[str, Any]", config.get("workbook", {}))


def get_pipeline_settings(config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return pipeline parameters merged over built-in defaults.

    Parameters
    ----------
    config
        Optional configuration dictionary. When ``None``, configuration is
        loaded from disk.

    Returns
    -------
    dict[str, Any]
        Settings with keys such as ``max_gap_days``, ``max_distance``,
        ``correlation_cutoff``, ``variance_target``, and ``test_periods``.
    """
    if config is None:
        config = get_config()

    defaults: dict[str, Any] = {
        "max_gap_days": {"quarterly": 92, "annual": 371},
        "min_observations": 8,
        "min_observations_annual": 3,
        "max_missing_share": 0.2,
        "max_distance": 0.3,
        "correlation_cutoff": 0.6,
        "variance_target": 0.95,
        "test_periods": 4,
        "target_column": "sales",
    }
    return _deep_merge(defaults, config.get("pipeline", {}))


def get_entity_overrides() -> tuple[dict[str, str], set[str]]:
    """Load the manual override table and the unresolvable-entity list.

    Returns
    -------
    tuple[dict[str, str], set[str]]
        ``(overrides, exclude)`` where ``overrides`` maps a sales entity name
        to its balance-sheet counterpart and ``exclude`` names sales entities
        that must never be mapped.
    """
    data = _load_json_config("entity_overrides.json")
    overrides = cast("dict[str, str]", data.get("overrides", {}))
    exclude = set(cast("list[str]", data.get("exclude", [])))
    return overrides, exclude


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries, allowing overrides in ``overlay``.

    Parameters
    ----------
    base : dict[str, Any]
        Original mapping.
    overlay : dict[str, Any]
        Values that override or extend ``base``.

    Returns
    -------
    dict[str, Any]
        New merged mapping.
    """
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
