from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

from .app_factory import create_app
from .config import load_settings


_REPO_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=_REPO_ROOT / ".env", override=True)
settings = load_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app(settings)
