"""
Page fetching for the scrape orchestrator.

Two session drivers share one interface:

    session.fetch(url, handler, timeouts, wait_until) -> handler(html, final_url)

PlaywrightSession renders pages in Chromium (the catalog pages build their
product grids with JavaScript). StaticSession uses requests and is meant for
--no-playwright runs and tests. Both throttle through a RateLimiter.
"""

import threading
import time
from typing import Callable, Optional, TypeVar

import requests

from .config import ScrapeConfig, Timeouts
from .errors import ScrapeError, ScrapeTimeoutError

T = TypeVar('T')

USER_AGENT = ('Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
              '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36')

HEADERS = {
    'User-Agent': USER_AGENT,
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-GB,en;q=0.9',
    'Connection': 'keep-alive',
}


class RateLimiter:
    """
    Ceiling on outbound requests per minute, shared by every target of a session.

    Callers reserve the next free slot under a lock and sleep outside it.
    """

    def __init__(self, requests_per_minute: int,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.min_interval = 60.0 / requests_per_minute if requests_per_minute > 0 else 0.0
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def wait(self) -> float:
        """Block until a request may be sent; returns seconds waited."""
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.min_interval
        delay = slot - now
        if delay > 0:
            self._sleep(delay)
        return delay


def _check_handler_deadline(url: str, started: float, timeouts: Timeouts) -> None:
    elapsed = time.monotonic() - started
    if elapsed > timeouts.handler_secs:
        raise ScrapeTimeoutError(
            f"Request handler for {url} exceeded {timeouts.handler_secs:.0f}s "
            f"({elapsed:.1f}s)",
            url=url,
        )


class PlaywrightSession:
    """Chromium via the Playwright sync API, one fresh page per fetch."""

    def __init__(self, config: ScrapeConfig, rate_limiter: Optional[RateLimiter] = None):
        self.config = config
        self.rate_limiter = rate_limiter or RateLimiter(config.requests_per_minute)
        self._playwright = None
        self._browser = None

    def _ensure_browser(self):
        if self._browser is None:
            from playwright.sync_api import sync_playwright

            print("  Launching Chromium...", flush=True)
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(
                headless=self.config.headless,
                args=['--disable-blink-features=AutomationControlled'],
            )
        return self._browser

    def fetch(self, url: str, handler: Callable[[str, str], T], timeouts: Timeouts,
              wait_until: str = 'domcontentloaded') -> T:
        from playwright.sync_api import Error as PlaywrightError
        from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

        self.rate_limiter.wait()
        started = time.monotonic()
        browser = self._ensure_browser()
        context = browser.new_context(
            viewport={'width': 1280, 'height': 800},
            user_agent=USER_AGENT,
            locale='en-GB',
        )
        try:
            page = context.new_page()
            page.set_default_timeout(timeouts.handler_secs * 1000)
            response = page.goto(url, wait_until=wait_until,
                                 timeout=timeouts.navigation_secs * 1000)
            if response is not None and response.status >= 400:
                raise ScrapeError(f"HTTP {response.status} for {url}", url=url)
            if self.config.settle_delay_ms:
                page.wait_for_timeout(self.config.settle_delay_ms)
            html = page.content()
            final_url = page.url
        except PlaywrightTimeoutError as e:
            raise ScrapeTimeoutError(f"Timed out loading {url}: {e}", url=url) from e
        except PlaywrightError as e:
            raise ScrapeError(f"Failed to load {url}: {e}", url=url) from e
        finally:
            context.close()

        result = handler(html, final_url)
        _check_handler_deadline(url, started, timeouts)
        return result

    def close(self) -> None:
        """Shut down the browser and the Playwright driver."""
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class StaticSession:
    """Plain HTTP fetch with requests; no JavaScript is executed."""

    def __init__(self, config: ScrapeConfig, rate_limiter: Optional[RateLimiter] = None,
                 http: Optional[requests.Session] = None):
        self.config = config
        self.rate_limiter = rate_limiter or RateLimiter(config.requests_per_minute)
        self.http = http or requests.Session()
        self.http.headers.update(HEADERS)

    def fetch(self, url: str, handler: Callable[[str, str], T], timeouts: Timeouts,
              wait_until: str = 'domcontentloaded') -> T:
        self.rate_limiter.wait()
        started = time.monotonic()
        try:
            response = self.http.get(url, timeout=timeouts.navigation_secs)
        except requests.Timeout as e:
            raise ScrapeTimeoutError(f"Timed out loading {url}: {e}", url=url) from e
        except requests.RequestException as e:
            raise ScrapeError(f"Failed to load {url}: {e}", url=url) from e

        if response.status_code >= 400:
            raise ScrapeError(f"HTTP {response.status_code} for {url}", url=url)

        result = handler(response.text, response.url or url)
        _check_handler_deadline(url, started, timeouts)
        return result

    def close(self) -> None:
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def create_session(config: ScrapeConfig):
    """Session driver selected by config.use_browser."""
    if config.use_browser:
        return PlaywrightSession(config)
    return StaticSession(config)
