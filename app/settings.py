import logging
import os
import secrets
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    supabase_url: str
    supabase_anon_key: str
    session_secret: str
    environment: str = "development"
    # seconds allowed for any single auth or profile call
    request_timeout: float = 10.0
    log_level: str = "INFO"
    sign_in_max_attempts: int = 10
    sign_in_window_seconds: float = 60.0
    # per-browser session stores held in memory
    session_max_stores: int = 1000
    session_idle_seconds: float = 1800.0
    trainer_home: str = "/trainer/dashboard"
    client_home: str = "/client/dashboard"
    anonymous_path: str = "/"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def _coerce_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _coerce_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def load_settings() -> Settings:
    """Read settings from the environment (and ``.env``); missing Supabase keys are fatal."""
    load_dotenv()
    supabase_url = os.getenv("SUPABASE_URL")
    supabase_key = os.getenv("SUPABASE_ANON_KEY")

    if not supabase_url or not supabase_key:
        raise ValueError(
            "SUPABASE_URL and SUPABASE_ANON_KEY environment variables must be set"
        )

    environment = os.getenv("APP_ENV", "development")
    session_secret = os.getenv("SESSION_SECRET")
    if not session_secret:
        if environment.lower() == "production":
            raise ValueError("SESSION_SECRET must be set in production")
        logger.warning("SESSION_SECRET not set, sessions will not survive a restart")
        session_secret = secrets.token_urlsafe(32)

    return Settings(
        supabase_url=supabase_url,
        supabase_anon_key=supabase_key,
        session_secret=session_secret,
        environment=environment,
        request_timeout=_coerce_float(os.getenv("AUTH_REQUEST_TIMEOUT"), 10.0),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        sign_in_max_attempts=_coerce_int(os.getenv("SIGN_IN_MAX_ATTEMPTS"), 10),
        sign_in_window_seconds=_coerce_float(os.getenv("SIGN_IN_WINDOW_SECONDS"), 60.0),
        session_max_stores=_coerce_int(os.getenv("SESSION_MAX_STORES"), 1000),
        session_idle_seconds=_coerce_float(os.getenv("SESSION_IDLE_SECONDS"), 1800.0),
        trainer_home=os.getenv("TRAINER_HOME", "/trainer/dashboard"),
        client_home=os.getenv("CLIENT_HOME", "/client/dashboard"),
        anonymous_path=os.getenv("ANONYMOUS_PATH", "/"),
    )
