"""Data directory resolution.

Recordings and ``config.toml`` live under one data directory. Its location
comes from the ``storage.data_dir`` config value, then the
``SCREENREC_DATA_DIR`` environment variable, then the platform default.
"""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_data_dir

from screenrec.constants import APP_NAME

ENV_DATA_DIR = "SCREENREC_DATA_DIR"


def get_data_dir(config_override: str = "") -> Path:
    if config_override:
        return Path(config_override).expanduser()

    env_dir = os.environ.get(ENV_DATA_DIR)
    if env_dir:
        return Path(env_dir).expanduser()

    return Path(user_data_dir(APP_NAME))


def get_recordings_dir(data_dir: Path) -> Path:
    return data_dir / "recordings"


def get_config_path(data_dir: Path) -> Path:
    return data_dir / "config.toml"


def ensure_dirs(data_dir: Path) -> Path:
    """Create the recordings directory. Returns it."""
    recordings = get_recordings_dir(data_dir)
    recordings.mkdir(parents=True, exist_ok=True)
    return recordings


def load_config():
    """Load the config and resolve the data directory it points at.

    The default location's config may relocate the data directory through
    ``storage.data_dir``; in that case the relocated config is loaded.
    Returns ``(config, data_dir, config_path)``.
    """
    from screenrec.config import ScreenrecConfig

    cfg = ScreenrecConfig.load(get_config_path(get_data_dir()))
    data_dir = get_data_dir(cfg.storage.data_dir)
    config_path = get_config_path(data_dir)
    if cfg.storage.data_dir:
        cfg = ScreenrecConfig.load(config_path)
    return cfg, data_dir, config_path
