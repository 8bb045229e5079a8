from __future__ import annotations

import os

PRIMARY_PREFIX = "PULSE_DASH_"
LEGACY_PREFIX = "CAMERA_RUNNER_"


def get_env(name: str, default: str | None = None) -> str | None:
    """
    Resolve configuration environment variables.

    Prefers the Pulse Dash prefix while still honouring the older Camera Runner
    names so existing launch scripts keep working.
    """
    for prefix in (PRIMARY_PREFIX, LEGACY_PREFIX):
        value = os.getenv(f"{prefix}{name}")
        if value is not None:
            return value
    return default
