import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env from current directory so PROVIDER and PORT are set automatically.
load_dotenv()


class Settings(BaseModel):
    """Runtime configuration loaded from environment variables."""

    provider_name: str
    cors_origins: str = "*"
    request_timeout: float = 60.0
    default_max_steps: int = 50
    log_level: str = "INFO"
    host: str = "0.0.0.0"

    service_name: str = "agent-gateway"
    http_port: int = 8081


@lru_cache(maxsize=1)
def _base_settings() -> Settings:
    """
    Base settings lookup.

    Only defaults live here; `get_settings` overlays the current environment.
    """

    return Settings(provider_name="")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_settings() -> Settings:
    """
    Return Settings built from the *current* environment.

    Tests mutate os.environ at runtime, so we read the environment on each
    call instead of caching.
    """

    base = _base_settings()
    provider_name: Optional[str] = os.getenv("PROVIDER")
    return Settings(
        provider_name=(provider_name or base.provider_name).strip().lower(),
        cors_origins=os.getenv("CORS_ORIGINS") or base.cors_origins,
        request_timeout=_float_env("PROVIDER_TIMEOUT", base.request_timeout),
        default_max_steps=max(1, _int_env("DEFAULT_MAX_STEPS", base.default_max_steps)),
        log_level=(os.getenv("LOG_LEVEL") or base.log_level).upper(),
        host=os.getenv("HOST") or base.host,
        service_name=base.service_name,
        http_port=_int_env("PORT", base.http_port),
    )
