"""
Central configuration for the LPO reconciliation pipeline.

All paths, thresholds, and outbound sync settings are defined here.
A Config instance is built once at process start (CLI command or dashboard
factory) and handed to every component; nothing below the entry points
reads the environment directly.

Settings priority (highest wins):
  1. Environment variables
  2. config/pipeline_settings.json  (admin-editable, persisted)
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

# Default data locations (relative to project root)
DEFAULT_OUTPUT_DIR     = PROJECT_ROOT / "output"
DEFAULT_CONFIG_DIR     = PROJECT_ROOT / "config"
DEFAULT_INBOX_DIR      = PROJECT_ROOT / "lpos"
DEFAULT_DB_PATH        = DEFAULT_OUTPUT_DIR / "lpo.db"

# Containment needle (upper-case) -> canonical trading partner name
DEFAULT_KNOWN_SUPPLIERS = {
    "QUADRANT INTERNATIONAL": "QUADRANT INTERNATIONAL (L.L.C)",
}


@dataclass
class Config:
    # --- Storage ---
    output_dir:   Path = field(
        default_factory=lambda: Path(os.getenv("OUTPUT_DIR", str(DEFAULT_OUTPUT_DIR)))
    )
    db_path:      Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )
    config_dir:   Path = field(
        default_factory=lambda: Path(os.getenv("CONFIG_DIR", str(DEFAULT_CONFIG_DIR)))
    )
    inbox_dir:    Path = field(
        default_factory=lambda: Path(os.getenv("LPO_INBOX_DIR", str(DEFAULT_INBOX_DIR)))
    )

    # --- Extraction defaults ---
    # The LPO template is fixed per trading partner, so these are plain defaults
    # rather than anything read from the document.
    default_customer: str = field(
        default_factory=lambda: os.getenv("DEFAULT_CUSTOMER", "Talabat")
    )
    default_delivery_location: str = field(
        default_factory=lambda: os.getenv("DEFAULT_DELIVERY_LOCATION", "Talabat 3PL")
    )
    known_suppliers: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_KNOWN_SUPPLIERS)
    )

    # --- Spreadsheet header mapping ---
    header_fuzzy_threshold: int = 90      # Minimum rapidfuzz score (0-100)

    # --- Reconciliation thresholds ---
    line_amount_tolerance: float = 0.05   # qty x cost vs printed amount, in AED
    match_tolerance_qty:   float = 2      # |ordered - delivered| still "MATCHED"

    # --- Brand performance sync (outbound projection) ---
    brand_sync_url: Optional[str] = field(
        default_factory=lambda: os.getenv("BRAND_SYNC_URL")
    )
    brand_sync_method: str = field(
        default_factory=lambda: os.getenv("BRAND_SYNC_METHOD", "POST")
    )
    brand_sync_headers_json: Optional[str] = field(
        default_factory=lambda: os.getenv("BRAND_SYNC_HEADERS")
    )
    brand_sync_template: str = field(
        default_factory=lambda: os.getenv("BRAND_SYNC_TEMPLATE", "brand_sync_template.json.j2")
    )
    brand_sync_timeout: int = field(
        default_factory=lambda: int(os.getenv("BRAND_SYNC_TIMEOUT", "30"))
    )

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from pipeline_settings.json if present."""
        settings_file = self.config_dir / "pipeline_settings.json"
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "default_customer":          str,
            "default_delivery_location": str,
            "known_suppliers":           dict,
            "header_fuzzy_threshold":    int,
            "line_amount_tolerance":     float,
            "match_tolerance_qty":       float,
            "brand_sync_url":            str,
            "brand_sync_method":         str,
            "brand_sync_headers_json":   str,
            "brand_sync_template":       str,
            "brand_sync_timeout":        int,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                if key in _type_map and hasattr(self, key):
                    setattr(self, key, _type_map[key](val))
        except Exception as exc:
            logger.warning("Failed to load pipeline_settings.json: %s", exc)

    def ensure_output_dir(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
