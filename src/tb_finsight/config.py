# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for TB FinSight.

This module is responsible for:
- loading the main application configuration from a TOML file
  (``tb_finsight_config.toml`` by default),
- resolving every relative path against the directory of that file,
- exposing typed dataclasses used by the rest of the application.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import tomllib

from .db import DatabaseConfig

DEFAULT_CONFIG_FILE = "tb_finsight_config.toml"


@dataclass(frozen=True)
class MappingConfig:
    """
    Options for mapping suggestions.

    Attributes
    ----------
    auto_apply_threshold:
        Minimum confidence (inclusive) for a suggestion to be bulk-applied.
    default_confidence:
        Confidence given to rule-based suggestions when the ledger entry
        carries no classifier confidence of its own (plain CSV rows).
    """

    auto_apply_threshold: float = 0.8
    default_confidence: float = 0.6


@dataclass(frozen=True)
class ReportsConfig:
    """Options for statement rendering (materiality filter)."""

    materiality_threshold: float = 1_000_000.0
    show_immaterial: bool = False


@dataclass(frozen=True)
class AppConfig:
    """
    Application-wide configuration for TB FinSight.

    This aggregates:
    - the database configuration,
    - the Schedule III taxonomy file and the ratio definitions file,
    - mapping and report options,
    - the active user (for benchmark overrides),
    - display and logging options.
    """

    database: DatabaseConfig
    taxonomy_file: Path
    ratios_file: Path
    ratio_decimals: int
    mapping: MappingConfig
    reports: ReportsConfig
    user_id: str
    display_mode: str
    log_level: str


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    """Return a top-level table, or an empty mapping when absent/invalid."""
    value = raw.get(name) or {}
    if not isinstance(value, Mapping):
        return {}
    return value


def _float_option(section: Mapping[str, Any], key: str, default: float) -> float:
    raw = section.get(key, default)
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(
            f"Invalid value for '{key}' in the configuration: {raw!r}. "
            "Expected a number."
        ) from exc


def _parse_mapping(raw: Mapping[str, Any]) -> MappingConfig:
    section = _section(raw, "mapping")
    threshold = _float_option(section, "auto_apply_threshold", 0.8)
    default_conf = _float_option(section, "default_confidence", 0.6)

    for key, value in (
        ("auto_apply_threshold", threshold),
        ("default_confidence", default_conf),
    ):
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"[mapping].{key} must be between 0 and 1, got {value}.")

    return MappingConfig(
        auto_apply_threshold=threshold,
        default_confidence=default_conf,
    )


def _parse_reports(raw: Mapping[str, Any]) -> ReportsConfig:
    section = _section(raw, "reports")
    threshold = _float_option(section, "materiality_threshold", 1_000_000.0)
    if threshold < 0:
        raise ValueError("[reports].materiality_threshold cannot be negative.")
    return ReportsConfig(
        materiality_threshold=threshold,
        show_immaterial=bool(section.get("show_immaterial", False)),
    )


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the TB FinSight application configuration from a TOML file.

    Expected top-level sections in the TOML file
    --------------------------------------------
    [database]
        Database engine and SQLite file path.
    [taxonomy]
        ``line_items``: CSV file with the Schedule III line items.
    [ratios]
        ``definitions``: TOML file with ratio definitions;
        ``decimals``: rounding used for display.
    [mapping]
        ``auto_apply_threshold`` and ``default_confidence``.
    [reports]
        ``materiality_threshold`` (default 10 lakhs) and ``show_immaterial``.
    [user]
        ``id`` of the user whose benchmark overrides apply.
    [display]
        ``mode``: "table", "csv" or "both".
    [logging]
        ``level``: standard logging level name.

    All sections are optional. All file paths in the TOML are resolved
    relative to the directory of the TOML file itself.

    Parameters
    ----------
    config_path:
        Path to the TOML configuration file. Defaults to
        ``tb_finsight_config.toml`` in the current directory.

    Returns
    -------
    AppConfig
        Parsed and validated application configuration.
    """
    config_file = Path(config_path or DEFAULT_CONFIG_FILE).resolve()

    raw = _load_toml(config_file)
    base_dir = config_file.parent

    database_section = _section(raw, "database")
    db_engine = str(database_section.get("engine") or "sqlite")
    db_path_raw = database_section.get("path") or "data/db/tb_finsight.sqlite"
    database = DatabaseConfig(
        engine=db_engine, path=(base_dir / str(db_path_raw)).resolve()
    )

    taxonomy_section = _section(raw, "taxonomy")
    taxonomy_raw = (
        taxonomy_section.get("line_items") or "data/taxonomy/schedule3_line_items.csv"
    )

    ratios_section = _section(raw, "ratios")
    ratios_raw = ratios_section.get("definitions") or "ratios/ratio_definitions.toml"
    decimals_raw = ratios_section.get("decimals", 2)
    if isinstance(decimals_raw, bool) or not isinstance(decimals_raw, int):
        raise ValueError(
            f"Invalid value for 'decimals' in [ratios]: {decimals_raw!r}. "
            "Expected an integer."
        )
    ratio_decimals = decimals_raw

    display_mode = str(_section(raw, "display").get("mode", "table"))
    if display_mode not in ("table", "csv", "both"):
        raise ValueError(
            f"Invalid [display].mode {display_mode!r}, expected table, csv or both."
        )

    return AppConfig(
        database=database,
        taxonomy_file=(base_dir / str(taxonomy_raw)).resolve(),
        ratios_file=(base_dir / str(ratios_raw)).resolve(),
        ratio_decimals=ratio_decimals,
        mapping=_parse_mapping(raw),
        reports=_parse_reports(raw),
        user_id=str(_section(raw, "user").get("id") or "default"),
        display_mode=display_mode,
        log_level=str(_section(raw, "logging").get("level", "WARNING")).upper(),
    )
