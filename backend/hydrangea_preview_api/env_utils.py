from __future__ import annotations

import os
from pathlib import Path


ENV_PREFIX = "HYDRANGEA_PREVIEW_"


def env_name(suffix: str) -> str:
    s = (suffix or "").strip().upper()
    if not s:
        raise ValueError("empty env suffix")
    return f"{ENV_PREFIX}{s}"


def env_str(suffix: str, default: str | None = None) -> str | None:
    value = os.getenv(env_name(suffix))
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def env_int(suffix: str, default: int) -> int:
    raw = env_str(suffix, None)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_choice(suffix: str, default: str, choices: set[str]) -> str:
    raw = (env_str(suffix, default) or default).strip().lower()
    return raw if raw in choices else default


def env_list(suffix: str, default: str = "") -> list[str]:
    raw = env_str(suffix, default) or ""
    return [item.strip() for item in raw.split(",") if item.strip()]


def env_path(suffix: str) -> Path | None:
    raw = env_str(suffix, None)
    if not raw:
        return None
    return Path(raw).expanduser().resolve()
