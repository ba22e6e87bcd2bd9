from __future__ import annotations

import os

PRIMARY_PREFIX = "ACTION_TRACKER_"


def get_env(name: str, default: str | None = None) -> str | None:
    """
    Resolve configuration environment variables.

    Every setting is read from ``ACTION_TRACKER_<NAME>`` so deployments can
    tune the engine without touching the TOML file.
    """
    value = os.getenv(f"{PRIMARY_PREFIX}{name}")
    if value is not None:
        return value
    return default

