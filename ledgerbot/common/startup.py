"""Startup-time helpers for safe config logging."""

from ledgerbot.common.config import Settings
from ledgerbot.common.logging import logger


SECRET_MARKERS = ("TOKEN", "SECRET", "PASSWORD", "KEY")


def redacted_config(config: Settings) -> dict:
    """Return settings as a dict with secret-like values masked."""

    values = {}
    for name, value in config.model_dump().items():
        if any(marker in name.upper() for marker in SECRET_MARKERS):
            values[name] = "<redacted>" if value else "<unset>"
        elif name == "database_url" and "@" in str(value):
            # Keep driver and host, drop credentials.
            scheme, _, rest = str(value).partition("://")
            values[name] = f"{scheme}://<redacted>@{rest.rpartition('@')[2]}"
        else:
            values[name] = value
    return values


def log_startup_config(config: Settings) -> None:
    """Log the effective configuration for quick troubleshooting."""

    logger.info("startup_config=%s", redacted_config(config))
