from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

_HERE = Path(__file__).resolve()
DEFAULTS_PATH = _HERE.parent / "config" / "defaults.yaml"

# Environment variable -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "EXPORT_DB_PATH": "storage.database_path",
    "EXPORT_OUTPUT_DIR": "storage.output_dir",
    "EXPORT_STORAGE_BACKEND": "storage.backend",
    "S3_BUCKET_NAME": "storage.s3_bucket",
    "EXPORT_MAX_WORKERS": "exports.max_workers",
    "EXPORT_SETTLE_INTERVAL_MS": "renderer.settle_interval_ms",
    "LOG_LEVEL": "logging.level",
}


@lru_cache(maxsize=1)
def _load_defaults() -> DictConfig:
    if not DEFAULTS_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {DEFAULTS_PATH}")
    return OmegaConf.load(DEFAULTS_PATH)


def _env_config() -> DictConfig:
    dotlist = [f"{key}={os.environ[name]}" for name, key in ENV_OVERRIDES.items() if os.environ.get(name)]
    return OmegaConf.from_dotlist(dotlist)


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Build the runtime configuration.

    Layers, lowest precedence first: packaged defaults, the YAML file named by
    ``PHOTOBOOK_CONFIG``, environment variables (a ``.env`` file is honoured),
    then ``overrides``. The result is struct-locked so a misspelt key fails
    loudly instead of being silently ignored.

    Args:
        overrides: Nested mapping of explicit values, e.g.
            ``{"renderer": {"settle_interval_ms": 0}}``

    Returns:
        Merged DictConfig
    """
    load_dotenv()

    base = OmegaConf.create(OmegaConf.to_container(_load_defaults(), resolve=False))
    OmegaConf.set_struct(base, True)

    layers = []
    config_file = os.environ.get("PHOTOBOOK_CONFIG")
    if config_file:
        layers.append(OmegaConf.load(config_file))
    layers.append(_env_config())
    if overrides:
        layers.append(OmegaConf.create(overrides))

    return DictConfig(OmegaConf.merge(base, *layers))


def configure_logging(settings: DictConfig) -> None:
    logging.basicConfig(
        level=str(settings.logging.level).upper(),
        format=settings.logging.format,
    )
