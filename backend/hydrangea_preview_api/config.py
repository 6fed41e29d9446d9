from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .env_utils import env_choice, env_int, env_list, env_path, env_str


@dataclass(frozen=True)
class Settings:
    app_root: Path
    storage_base_url: str
    acquisition_transport: str
    acquisition_timeout_seconds: int
    local_files_dir: Path | None
    public_base_url: str
    cors_origins: list[str]
    session_ttl_minutes: int
    max_sessions: int
    log_level: str


def load_settings() -> Settings:
    repo_root = Path(__file__).resolve().parents[2]

    return Settings(
        app_root=repo_root,
        storage_base_url=(env_str("STORAGE_BASE_URL", "http://localhost:8080/api") or "").rstrip("/"),
        acquisition_transport=env_choice("ACQUISITION_TRANSPORT", "base64", {"base64", "binary"}),
        acquisition_timeout_seconds=max(1, env_int("ACQUISITION_TIMEOUT_SECONDS", 30)),
        local_files_dir=env_path("LOCAL_FILES_DIR"),
        public_base_url=(env_str("PUBLIC_BASE_URL", "") or "").rstrip("/"),
        cors_origins=env_list("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"),
        session_ttl_minutes=env_int("SESSION_TTL_MINUTES", 30),
        max_sessions=env_int("MAX_SESSIONS", 200),
        log_level=env_choice("LOG_LEVEL", "info", {"debug", "info", "warning", "error", "critical"}).upper(),
    )
