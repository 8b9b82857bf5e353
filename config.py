"""
Central configuration for the procurement engine.

Store credentials, load limits, and retry bounds are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. config/settings.json  (admin-editable, persisted)
  2. Environment variables
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

DEFAULT_CONFIG_DIR = PROJECT_ROOT / "config"


@dataclass
class Config:
    # --- Backend store (Supabase / PostgREST) ---
    supabase_url: Optional[str] = field(
        default_factory=lambda: os.getenv("SUPABASE_URL")
    )
    supabase_key: Optional[str] = field(
        default_factory=lambda: os.getenv("SUPABASE_KEY", os.getenv("SUPABASE_ANON_KEY"))
    )
    supabase_schema: str = field(
        default_factory=lambda: os.getenv("SUPABASE_SCHEMA", "public")
    )

    # --- Tenant ---
    default_company_id: Optional[str] = field(
        default_factory=lambda: os.getenv("DEFAULT_COMPANY_ID")
    )

    # --- Load / refresh ---
    load_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("LOAD_TIMEOUT", "30"))
    )
    # The whole load races against this deadline; a late result is discarded.
    fetch_workers: int = field(
        default_factory=lambda: int(os.getenv("FETCH_WORKERS", "8"))
    )

    # Most-recent-N page sizes per collection
    cart_page_size:    int = 100
    order_page_size:   int = 100
    product_page_size: int = 500

    # --- Work order IDs ---
    work_order_max_attempts: int = 10

    # --- Billback ---
    billback_batch_size: int = 5   # ids per existence query during sync

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from settings.json if present."""
        config_dir = Path(os.getenv("CONFIG_DIR", str(DEFAULT_CONFIG_DIR)))
        settings_file = config_dir / "settings.json"
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "supabase_schema":          str,
            "default_company_id":       str,
            "load_timeout_seconds":     float,
            "fetch_workers":            int,
            "cart_page_size":           int,
            "order_page_size":          int,
            "product_page_size":        int,
            "work_order_max_attempts":  int,
            "billback_batch_size":      int,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
        except (OSError, ValueError, AttributeError) as exc:
            logger.warning("Failed to load settings.json: %s", exc)
            return
        for key, val in overrides.items():
            if key not in _type_map or not hasattr(self, key):
                continue
            try:
                setattr(self, key, _type_map[key](val))
            except (TypeError, ValueError) as exc:
                logger.warning("Ignoring settings.json value for %s: %s", key, exc)

    @property
    def store_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)
