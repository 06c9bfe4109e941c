"""
Scrape service for the API.

Builds a ScrapeOrchestrator per request. Playwright's sync API is bound to
the thread that started it, and sync routes run in a threadpool, so each
request gets its own session; the rate limiter is shared by all of them.

Also tracks which targets are being scraped so a second trigger for the same
target is rejected instead of racing the first.
"""

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Optional

from catalog.browser import PlaywrightSession, RateLimiter, StaticSession
from catalog.config import ScrapeConfig
from catalog.orchestrator import ScrapeOrchestrator

from .database import db_pool


_config: Optional[ScrapeConfig] = None
_rate_limiter: Optional[RateLimiter] = None
_setup_lock = threading.Lock()

# Track in-flight scrapes: target key -> started at
in_flight: Dict[str, datetime] = {}
_in_flight_lock = threading.Lock()


class ScrapeInProgress(Exception):
    """A scrape for the same target is already running."""

    def __init__(self, target: str, started_at: datetime):
        self.target = target
        self.started_at = started_at
        super().__init__(
            f"Scrape of {target} already running since {started_at:%H:%M:%S}"
        )


def get_config() -> ScrapeConfig:
    """Config from the environment, loaded once."""
    global _config, _rate_limiter
    with _setup_lock:
        if _config is None:
            _config = ScrapeConfig.from_env()
            _rate_limiter = RateLimiter(_config.requests_per_minute)
        return _config


def get_orchestrator():
    """
    Dependency yielding an orchestrator bound to the shared connection.

    The browser session is closed when the request finishes.
    """
    config = get_config()
    if config.use_browser:
        session = PlaywrightSession(config, rate_limiter=_rate_limiter)
    else:
        session = StaticSession(config, rate_limiter=_rate_limiter)

    with db_pool.get_connection() as conn:
        orchestrator = ScrapeOrchestrator(conn, config, session=session)
        try:
            yield orchestrator
        finally:
            session.close()


@contextmanager
def claim_target(target: str):
    """
    Mark target as being scraped for the duration of the block.

    Raises:
        ScrapeInProgress: If another request holds the same target
    """
    with _in_flight_lock:
        if target in in_flight:
            raise ScrapeInProgress(target, in_flight[target])
        in_flight[target] = datetime.now()
    try:
        yield
    finally:
        with _in_flight_lock:
            in_flight.pop(target, None)
