"""Configuration management for UsagePulse."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import TypeAdapter, ValidationError

from .models import ProviderBudget, ProviderLimits

load_dotenv()

logger = logging.getLogger("usagepulse")


def _expand(path: str) -> Path:
    return Path(os.path.expanduser(path))


STORAGE_DIR = _expand(os.getenv("USAGEPULSE_STORAGE_DIR", "~/.local/share/opencode/storage"))
CONFIG_DIR = _expand(os.getenv("USAGEPULSE_CONFIG_DIR", "~/.config/opencode-usage"))
LOG_FILE = _expand(os.getenv("USAGEPULSE_LOG_FILE", "~/.usagepulse/live.log"))

# Month-to-date boundaries are computed in this zone, not the host's
TIMEZONE = os.getenv("USAGEPULSE_TIMEZONE", "Europe/Bratislava")

# Poll / refresh intervals (seconds)
MESSAGE_POLL_INTERVAL = float(os.getenv("USAGEPULSE_MESSAGE_POLL_INTERVAL", "8"))
RATE_LIMIT_POLL_INTERVAL = float(os.getenv("USAGEPULSE_RATE_LIMIT_POLL_INTERVAL", "5"))
REFRESH_INTERVAL = float(os.getenv("USAGEPULSE_REFRESH_INTERVAL", "10"))

# Health windows (milliseconds)
MINUTE_MS = 60 * 1000
RATE_LIMIT_WINDOW_MS = 5 * MINUTE_MS
STALE_THRESHOLD_MS = 30 * MINUTE_MS
ALERT_WINDOW_MS = 30 * MINUTE_MS
PRUNE_MAX_AGE_MS = 90 * 24 * 60 * MINUTE_MS

THROTTLE_THRESHOLD = 3

_budgets_adapter = TypeAdapter(dict[str, ProviderBudget])
_limits_adapter = TypeAdapter(dict[str, ProviderLimits])


def _load_json_mapping(path: Path, adapter: TypeAdapter) -> dict:
    if not path.exists():
        logger.debug("No config file at %s", path)
        return {}
    try:
        return adapter.validate_json(path.read_bytes())
    except (OSError, ValidationError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return {}


def load_budgets_config(path: str | Path | None = None) -> dict[str, ProviderBudget]:
    """Load per-provider monthly budgets. Any failure yields an empty mapping."""
    return _load_json_mapping(Path(path) if path else CONFIG_DIR / "budgets.json", _budgets_adapter)


def load_limits_config(path: str | Path | None = None) -> dict[str, ProviderLimits]:
    """Load per-provider rolling limits. Any failure yields an empty mapping."""
    return _load_json_mapping(Path(path) if path else CONFIG_DIR / "limits.json", _limits_adapter)
