"""FormPilot configuration: paths, defaults, and environment loading.

All paths hang off APP_DIR, which honours the FORMPILOT_DIR environment
variable so tests and multi-tenant workers can isolate their state.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

log = logging.getLogger(__name__)


def _app_dir() -> Path:
    override = os.environ.get("FORMPILOT_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".formpilot"


APP_DIR = _app_dir()
MANUALS_DIR = APP_DIR / "manuals"
ENV_PATH = APP_DIR / ".env"
ENGINE_CONFIG_PATH = APP_DIR / "engine.yaml"

# Bundled cookbooks shipped alongside the package (optional).
PACKAGE_DIR = Path(__file__).resolve().parent
SEED_DIR = PACKAGE_DIR / "cookbooks"

DEFAULTS: dict[str, Any] = {
    "task_budget_usd": 0.50,
    "max_pages": 15,
    "act_timeout_s": 90.0,
    "mutex_grace_s": 0.5,
    "max_consecutive_failures": 3,
    "min_step_health": 0.3,
    "health_alpha": 0.3,
    "failure_penalty": 0.05,
    "blocker_confidence": 0.7,
    "catalog_url": "https://api.actionbook.dev",
}


def load_env(path: Path | None = None) -> None:
    """Load KEY=VALUE pairs from the FormPilot .env file.

    Variables already present in the process environment are left alone.
    """
    env_path = path or ENV_PATH
    if env_path.exists():
        load_dotenv(env_path, override=False)


def load_engine_config(path: Path | None = None) -> dict[str, Any]:
    """Return DEFAULTS overlaid with values from engine.yaml.

    A missing file yields the defaults. A malformed file is logged and
    ignored rather than aborting the worker.
    """
    cfg = dict(DEFAULTS)
    cfg_path = path or ENGINE_CONFIG_PATH
    if not cfg_path.exists():
        return cfg

    try:
        data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        log.warning("Failed to load engine config %s: %s", cfg_path, e)
        return cfg

    if not isinstance(data, dict):
        log.warning("Engine config %s is not a mapping, ignoring", cfg_path)
        return cfg

    for key, value in data.items():
        if key not in DEFAULTS:
            log.warning("Unknown engine config key '%s' in %s", key, cfg_path)
            continue
        cfg[key] = value
    return cfg
