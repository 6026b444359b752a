"""
Central configuration for the procurement engine.

All paths, the tax rate and the reception policy are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. Environment variables
  2. config/procurement_settings.json  (admin-editable, persisted)
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

# Default data locations (relative to project root)
DEFAULT_PRODUCTS_CSV   = PROJECT_ROOT / "data" / "products.csv"
DEFAULT_SUPPLIERS_CSV  = PROJECT_ROOT / "data" / "suppliers.csv"
DEFAULT_OUTPUT_DIR     = PROJECT_ROOT / "output"
DEFAULT_DB_PATH        = DEFAULT_OUTPUT_DIR / "procurement.db"

# Settings that may be overridden from procurement_settings.json, with their types.
_TUNABLE: dict[str, type] = {
    "require_reception":     bool,
    "tax_rate":              float,
    "order_number_prefix":   str,
    "generic_supplier_name": str,
}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() not in ("false", "0", "no")


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no", "")
    return bool(value)


@dataclass
class Config:
    # --- Data source paths ---
    products_csv:   Path = field(
        default_factory=lambda: Path(os.getenv("PRODUCTS_CSV", str(DEFAULT_PRODUCTS_CSV)))
    )
    suppliers_csv:  Path = field(
        default_factory=lambda: Path(os.getenv("SUPPLIERS_CSV", str(DEFAULT_SUPPLIERS_CSV)))
    )

    # --- Output settings ---
    output_dir: Path = field(default_factory=lambda: DEFAULT_OUTPUT_DIR)
    db_path:    Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )

    # --- Order policy ---
    require_reception: bool = field(
        default_factory=lambda: _env_flag("REQUIRE_RECEPTION", "true")
    )
    # require_reception=True  → receiving captures per-line quantities and
    #                           records discrepancies
    # require_reception=False → orders are finalized with ordered == received
    tax_rate: float = field(
        default_factory=lambda: float(os.getenv("TAX_RATE", "0.18"))
    )
    order_number_prefix: str = field(
        default_factory=lambda: os.getenv("ORDER_NUMBER_PREFIX", "OC-")
    )
    generic_supplier_name: str = field(
        default_factory=lambda: os.getenv("GENERIC_SUPPLIER_NAME", "Proveedor Genérico")
    )

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from procurement_settings.json if present."""
        config_dir = Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))
        settings_file = config_dir / "procurement_settings.json"
        if not settings_file.exists():
            return
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to load procurement_settings.json: %s", exc)
            return

        for key, val in overrides.items():
            if key not in _TUNABLE:
                logger.warning("Ignoring unknown setting %r in %s", key, settings_file)
                continue
            # Environment variables win over the settings file
            if os.getenv(key.upper()) is not None:
                continue
            cast = _to_bool if _TUNABLE[key] is bool else _TUNABLE[key]
            setattr(self, key, cast(val))

    def ensure_output_dir(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
