import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


def _parse_origins(env: Mapping[str, str]) -> Tuple[str, ...]:
    origins = [o.strip() for o in (env.get("ALLOWED_ORIGINS") or "").split(",")]
    app_url = (env.get("APP_URL") or "").strip()
    if app_url:
        origins.append(app_url)
    # An empty prefix would match every origin
    return tuple(dict.fromkeys(o for o in origins if o))


def _get_env_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = env.get(key)
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Invalid value for {key}: {value}. Using default: {default}")
        return default
    if parsed < 1:
        logger.warning(f"Invalid value for {key}: {value}. Must be >= 1. Using default: {default}")
        return default
    return parsed


@dataclass(frozen=True)
class AppSettings:
    """Application-level settings; provider settings live in fallback_library."""

    rate_limit_per_hour: int = 60
    rate_limit_burst: int = 10
    rate_limit_window_seconds: int = 60 * 60
    rate_limit_burst_window_seconds: int = 60
    log_dir: str = "logs"
    debug_errors: bool = False
    allowed_origins: Tuple[str, ...] = ()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppSettings":
        env = os.environ if environ is None else environ
        return cls(
            rate_limit_per_hour=_get_env_int(env, "RATE_LIMIT_PER_HOUR", 60),
            rate_limit_burst=_get_env_int(env, "RATE_LIMIT_BURST", 10),
            rate_limit_window_seconds=_get_env_int(env, "RATE_LIMIT_WINDOW_SECONDS", 3600),
            rate_limit_burst_window_seconds=_get_env_int(
                env, "RATE_LIMIT_BURST_WINDOW_SECONDS", 60
            ),
            log_dir=env.get("LOG_DIR") or "logs",
            debug_errors=(env.get("DEBUG_ERRORS", "false").lower() == "true"),
            allowed_origins=_parse_origins(env),
        )
