"""Configuration management for the FINZN ledger.

This module centralizes all configuration values including paths,
defaults, and environment variable overrides.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

# Base project root - assumes this file is in finzn/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = Path(os.getenv("FINZN_DATA_DIR", _PROJECT_ROOT / "data"))
EXPORTS_DIR = DATA_DIR / "exports"

# Database
DB_PATH = Path(
    os.getenv("FINZN_DB_PATH", DATA_DIR / "finzn.db")
).resolve()

# Every record belongs to exactly one owner
USER_ID = os.getenv("FINZN_USER_ID", "default")

LOG_LEVEL = os.getenv("FINZN_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Ledger defaults
DEFAULT_WARNING_PERCENTAGE = 80.0
DEFAULT_CURRENCY_SYMBOL = "$"
FALLBACK_CATEGORY = "Otros"
EXTRA_INCOME_CATEGORY = "other"


def ensure_data_directories() -> None:
    """Create all required data directories if they don't exist."""
    for directory in [DATA_DIR, EXPORTS_DIR]:
        directory.mkdir(parents=True, exist_ok=True)


def configure_logging(level: Optional[str] = None) -> None:
    """Install a basic root handler for scripts and the Streamlit page."""
    logging.basicConfig(level=(level or LOG_LEVEL), format=LOG_FORMAT)
