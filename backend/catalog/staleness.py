"""
Staleness policy: decides whether cached data must be re-scraped.
"""

from datetime import datetime
from typing import Optional, Union

DEFAULT_MAX_AGE_HOURS = 24


def _coerce_timestamp(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value) if value else None
    # Entities carry the timestamp on last_scraped_at
    return _coerce_timestamp(getattr(value, 'last_scraped_at', None))


def age_hours(last_scraped_at: datetime, now: Optional[datetime] = None) -> float:
    """Fractional hours elapsed since last_scraped_at."""
    now = now or datetime.now()
    return (now - last_scraped_at).total_seconds() / 3600


def needs_scraping(entity_or_timestamp: Union[datetime, str, object, None],
                   max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
                   now: Optional[datetime] = None) -> bool:
    """
    True if the data was never scraped or is at least max_age_hours old.

    Accepts an entity with a last_scraped_at attribute, a datetime, an ISO
    string, or None (never scraped).

    Examples:
        scraped 25h ago, max_age_hours=24 -> True
        scraped 25h ago, max_age_hours=48 -> False
    """
    last_scraped_at = _coerce_timestamp(entity_or_timestamp)
    if last_scraped_at is None:
        return True
    return age_hours(last_scraped_at, now) >= max_age_hours
