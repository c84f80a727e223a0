"""Central configuration loader for Stock Quant."""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

# Project root is the parent of the stock_quant/ package directory
PROJECT_ROOT = Path(__file__).resolve().parent.parent

load_dotenv(PROJECT_ROOT / ".env")

SETTINGS_ENV = "STOCK_QUANT_SETTINGS"


# --- Paths ---
class Paths:
    ROOT = PROJECT_ROOT
    CONFIGS = PROJECT_ROOT / "configs"


def settings_path() -> Path:
    """Location of settings.yaml; ``STOCK_QUANT_SETTINGS`` overrides it."""
    override = os.getenv(SETTINGS_ENV)
    if override:
        return Path(override)
    return Paths.CONFIGS / "settings.yaml"


def load_settings(path: Path | None = None) -> dict:
    """Load settings from configs/settings.yaml.

    A missing or empty file yields an empty dict; every consumer carries its
    own defaults.
    """
    path = path or settings_path()
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


SETTINGS = load_settings()


def section(name: str) -> dict:
    """Return one top-level settings block (empty dict when absent)."""
    value = SETTINGS.get(name, {})
    return value if isinstance(value, dict) else {}
