"""
Scrape configuration.

Values come from environment variables (optionally loaded from backend/.env)
and are handed to the orchestrator as a ScrapeConfig instance.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigError
from .models import ScrapeTargetType


# Load .env from backend directory
_backend_dir = Path(__file__).parent.parent
_env_path = _backend_dir / ".env"

DEFAULT_BASE_URL = "https://www.worldofbooks.com"
DEFAULT_LOCALE_PATH = "/en-gb"


@dataclass(frozen=True)
class Timeouts:
    """Per-page timeouts in seconds."""
    navigation_secs: float
    handler_secs: float


# (navigation timeout, request handler timeout) per scrape kind
DEFAULT_TIMEOUTS: Dict[ScrapeTargetType, Timeouts] = {
    ScrapeTargetType.NAVIGATION: Timeouts(navigation_secs=30, handler_secs=60),
    ScrapeTargetType.CATEGORY: Timeouts(navigation_secs=60, handler_secs=90),
    ScrapeTargetType.PRODUCT_LIST: Timeouts(navigation_secs=60, handler_secs=90),
    ScrapeTargetType.PRODUCT_DETAIL: Timeouts(navigation_secs=30, handler_secs=60),
}

# Playwright load state to wait for before reading the page
WAIT_UNTIL: Dict[ScrapeTargetType, str] = {
    ScrapeTargetType.NAVIGATION: "domcontentloaded",
    ScrapeTargetType.CATEGORY: "networkidle",
    ScrapeTargetType.PRODUCT_LIST: "networkidle",
    ScrapeTargetType.PRODUCT_DETAIL: "domcontentloaded",
}


@dataclass
class ScrapeConfig:
    """Everything the orchestrator needs to know about the target site."""
    base_url: str = DEFAULT_BASE_URL
    locale_path: str = DEFAULT_LOCALE_PATH
    requests_per_minute: int = 30
    settle_delay_ms: int = 2000
    max_retries: int = 3
    cache_ttl_hours: float = 24
    headless: bool = True
    use_browser: bool = True
    verbose: bool = True
    timeouts: Dict[ScrapeTargetType, Timeouts] = field(
        default_factory=lambda: dict(DEFAULT_TIMEOUTS)
    )

    @property
    def site_root(self) -> str:
        """Base URL with the locale prefix, e.g. https://host/en-gb"""
        return f"{self.base_url.rstrip('/')}{self.locale_path}"

    def timeouts_for(self, target_type: ScrapeTargetType) -> Timeouts:
        return self.timeouts.get(target_type, DEFAULT_TIMEOUTS[target_type])

    def wait_until_for(self, target_type: ScrapeTargetType) -> str:
        return WAIT_UNTIL.get(target_type, "domcontentloaded")

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "ScrapeConfig":
        """Build a config from environment variables.

        Raises:
            ConfigError: If a numeric or boolean variable cannot be parsed
        """
        load_dotenv(env_path or _env_path)

        return cls(
            base_url=os.getenv("SCRAPE_BASE_URL", DEFAULT_BASE_URL),
            locale_path=os.getenv("SCRAPE_LOCALE_PATH", DEFAULT_LOCALE_PATH),
            requests_per_minute=_env_int("SCRAPE_REQUESTS_PER_MINUTE", 30),
            settle_delay_ms=_env_int("SCRAPE_DELAY_MS", 2000),
            max_retries=_env_int("SCRAPE_MAX_RETRIES", 3),
            cache_ttl_hours=_env_float("CACHE_TTL_HOURS", 24),
            headless=_env_bool("SCRAPE_HEADLESS", True),
            use_browser=_env_bool("SCRAPE_USE_BROWSER", True),
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")
