"""Load, normalise, and save solver configuration from DefaultSolverConfig.yaml."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "DefaultSolverConfig.yaml"

DEFAULT_TOLERANCE = 1e-9
DEFAULT_MASS_RATIO_TOLERANCE = 5e-3

LOG_LEVEL_NAMES = ("SILENT", "MINIMAL", "SUMMARY", "DETAILED", "DEBUG", "TRACE")


class RatioBasis(str, Enum):
    """What a protein or salt ratio is measured against."""
    FLOUR = "flour"  # baker's percentage
    DOUGH = "dough"  # share of total dough mass


@dataclass
class RatioConventions:
    protein: RatioBasis = RatioBasis.FLOUR
    salt: RatioBasis = RatioBasis.FLOUR


@dataclass
class SolverConfig:
    tolerance: float = DEFAULT_TOLERANCE  # relative to the scale of the system
    mass_ratio_tolerance: float = DEFAULT_MASS_RATIO_TOLERANCE  # relative; mass vs ratio of one ingredient
    ratio_basis: RatioConventions = field(default_factory=RatioConventions)
    count_flour_moisture: bool = False  # split declared flour moisture out as water
    volume_density_g_per_ml: float = 1.0  # used to convert ml/l inputs to grams
    check_nonnegative_completion: bool = True  # LP check for under-determined problems
    log_level: str = "SILENT"
    catalog_path: Optional[Path] = None  # None = packaged catalog


def _parse_basis(raw: Any, key: str) -> RatioBasis:
    if raw is None:
        return RatioBasis.FLOUR
    try:
        return RatioBasis(str(raw).strip().lower())
    except ValueError as exc:
        choices = ", ".join(b.value for b in RatioBasis)
        raise ConfigError(f"Invalid ratio basis for '{key}': {raw!r} (expected one of {choices})") from exc


def _parse_positive_float(raw: Any, key: str, default: float) -> float:
    if raw is None:
        return default
    if isinstance(raw, bool):
        raise ConfigError(f"Invalid number for '{key}': {raw!r}")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid number for '{key}': {raw!r}") from exc
    if not math.isfinite(value) or value <= 0:
        raise ConfigError(f"'{key}' must be a positive number, got {raw!r}")
    return value


def _parse_bool(raw: Any, key: str, default: bool) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Invalid boolean value for '{key}': {raw!r}")


def config_from_dict(raw: Dict[str, Any], base_dir: Optional[Path] = None) -> SolverConfig:
    """Normalise a raw mapping (camelCase keys, as in the YAML file) into SolverConfig."""
    basis_raw = raw.get("ratioBasis", {}) or {}
    if not isinstance(basis_raw, dict):
        raise ConfigError(f"'ratioBasis' must be a mapping, got {basis_raw!r}")

    catalog_raw = raw.get("catalogPath")
    catalog_path: Optional[Path] = None
    if catalog_raw:
        catalog_path = Path(str(catalog_raw))
        if not catalog_path.is_absolute() and base_dir is not None:
            catalog_path = (base_dir / catalog_path).resolve()

    log_level = str(raw.get("logLevel", "SILENT")).strip().upper()
    if log_level not in LOG_LEVEL_NAMES:
        raise ConfigError(f"Invalid logLevel {raw.get('logLevel')!r} (expected one of {', '.join(LOG_LEVEL_NAMES)})")

    return SolverConfig(
        tolerance=_parse_positive_float(raw.get("tolerance"), "tolerance", DEFAULT_TOLERANCE),
        mass_ratio_tolerance=_parse_positive_float(
            raw.get("massRatioTolerance"), "massRatioTolerance", DEFAULT_MASS_RATIO_TOLERANCE
        ),
        ratio_basis=RatioConventions(
            protein=_parse_basis(basis_raw.get("protein"), "ratioBasis.protein"),
            salt=_parse_basis(basis_raw.get("salt"), "ratioBasis.salt"),
        ),
        count_flour_moisture=_parse_bool(raw.get("countFlourMoisture"), "countFlourMoisture", False),
        volume_density_g_per_ml=_parse_positive_float(
            raw.get("volumeDensity"), "volumeDensity", 1.0
        ),
        check_nonnegative_completion=_parse_bool(
            raw.get("checkNonNegativeCompletion"), "checkNonNegativeCompletion", True
        ),
        log_level=log_level,
        catalog_path=catalog_path,
    )


def load_config(path: Optional[Path] = None) -> SolverConfig:
    """Load and normalise configuration YAML into SolverConfig."""
    cfg_path = path or DEFAULT_CONFIG_PATH
    if not cfg_path.exists():
        if path is not None:
            raise ConfigError(f"Configuration file not found: {cfg_path}")
        return SolverConfig()

    try:
        with cfg_path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {cfg_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration root in {cfg_path} must be a mapping")
    return config_from_dict(raw, base_dir=cfg_path.parent)


def save_config(config: SolverConfig, path: Optional[Path] = None) -> None:
    """
    Save SolverConfig back to a YAML file.

    Parameters
    ----------
    config : SolverConfig
        The configuration to save
    path : Path, optional
        Path to save to. Defaults to DefaultSolverConfig.yaml
    """
    cfg_path = path or DEFAULT_CONFIG_PATH

    data: Dict[str, Any] = {
        "tolerance": config.tolerance,
        "massRatioTolerance": config.mass_ratio_tolerance,
        "ratioBasis": {
            "protein": config.ratio_basis.protein.value,
            "salt": config.ratio_basis.salt.value,
        },
        "countFlourMoisture": config.count_flour_moisture,
        "volumeDensity": config.volume_density_g_per_ml,
        "checkNonNegativeCompletion": config.check_nonnegative_completion,
        "logLevel": config.log_level,
    }
    if config.catalog_path is not None:
        data["catalogPath"] = str(config.catalog_path)

    with cfg_path.open("w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, allow_unicode=True, sort_keys=False)
