"""
Exception types raised by the scrape core.
"""


class CatalogError(Exception):
    """Base class for scrape core errors."""


class ConfigError(CatalogError):
    """Invalid configuration value."""


class NotFoundError(CatalogError):
    """Requested entity does not exist."""

    def __init__(self, entity: str, key: str, value):
        self.entity = entity
        self.key = key
        self.value = value
        super().__init__(f'{entity} with {key} "{value}" not found')


class ScrapeError(CatalogError):
    """Page could not be loaded or rendered."""

    def __init__(self, message: str, url: str = None):
        self.url = url
        super().__init__(message)


class ScrapeTimeoutError(ScrapeError):
    """Navigation or request handler exceeded its timeout."""


class InvalidTransitionError(CatalogError):
    """Scrape job status change not allowed by the state machine."""

    def __init__(self, job_id, current, target):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(
            f"Scrape job {job_id} cannot move from {current} to {target}"
        )
