"""
Entity and candidate record types.

Entities mirror the database tables one-to-one (field name == column name).
Candidates are what extraction produces: plain values, no ids assigned yet.
"""

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ScrapeJobStatus(Enum):
    """Lifecycle states of a scrape job."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ScrapeTargetType(Enum):
    """What kind of page a scrape job targets."""
    NAVIGATION = "navigation"
    CATEGORY = "category"
    PRODUCT_LIST = "product_list"
    PRODUCT_DETAIL = "product_detail"


# =============================================================================
# Entities
# =============================================================================

@dataclass
class Navigation:
    """Top-level menu heading."""
    title: str
    slug: str
    url: Optional[str] = None
    order: int = 0
    last_scraped_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class Category:
    """Collection of products; parent_id links subcategories to their parent."""
    title: str
    slug: str
    url: Optional[str] = None
    image_url: Optional[str] = None
    product_count: int = 0
    order: int = 0
    last_scraped_at: Optional[datetime] = None
    parent_id: Optional[int] = None
    navigation_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class Product:
    """Catalog entry keyed by the site's own product id (source_id)."""
    source_id: str
    title: str
    source_url: str
    author: Optional[str] = None
    price: Optional[float] = None
    original_price: Optional[float] = None
    currency: str = "GBP"
    image_url: Optional[str] = None
    condition: Optional[str] = None
    format: Optional[str] = None
    in_stock: bool = True
    last_scraped_at: Optional[datetime] = None
    category_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class ProductDetail:
    """Extended product information, one row per product."""
    product_id: int
    description: Optional[str] = None
    publisher: Optional[str] = None
    publication_date: Optional[date] = None
    isbn: Optional[str] = None
    isbn13: Optional[str] = None
    pages: Optional[int] = None
    language: Optional[str] = None
    dimensions: Optional[str] = None
    weight: Optional[str] = None
    specs: Dict[str, str] = field(default_factory=dict)
    ratings_avg: Optional[float] = None
    reviews_count: int = 0
    related_products: List[Dict[str, str]] = field(default_factory=list)
    recommended_products: List[Dict[str, str]] = field(default_factory=list)
    id: Optional[int] = None


@dataclass
class Review:
    """Single customer review attached to a product."""
    product_id: int
    author: Optional[str] = None
    rating: Optional[int] = None
    title: Optional[str] = None
    text: Optional[str] = None
    review_date: Optional[date] = None
    verified: bool = False
    id: Optional[int] = None


@dataclass
class ScrapeJob:
    """Audit record for one scrape invocation."""
    target_url: str
    target_type: ScrapeTargetType
    status: ScrapeJobStatus = ScrapeJobStatus.PENDING
    items_scraped: int = 0
    retry_count: int = 0
    max_retries: int = 3
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_log: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (ScrapeJobStatus.COMPLETED,
                               ScrapeJobStatus.FAILED,
                               ScrapeJobStatus.CANCELLED)


# =============================================================================
# Candidate records (extraction output)
# =============================================================================

@dataclass
class ScrapedNavigation:
    title: str
    slug: str
    url: str
    order: int = 0


@dataclass
class ScrapedCategory:
    title: str
    slug: str
    url: str
    image_url: Optional[str] = None
    product_count: Optional[int] = None
    order: Optional[int] = None
    parent_slug: Optional[str] = None


@dataclass
class ScrapedProduct:
    source_id: str
    title: str
    source_url: str
    author: Optional[str] = None
    price: Optional[float] = None
    original_price: Optional[float] = None
    currency: str = "GBP"
    image_url: Optional[str] = None
    condition: Optional[str] = None
    format: Optional[str] = None
    in_stock: bool = True


@dataclass
class ProductRef:
    """Lightweight pointer to another product; may dangle."""
    source_id: str
    title: str
    url: str

    def to_dict(self) -> Dict[str, str]:
        return {'sourceId': self.source_id, 'title': self.title, 'url': self.url}


@dataclass
class ScrapedReview:
    author: Optional[str] = None
    rating: Optional[int] = None
    title: Optional[str] = None
    text: Optional[str] = None
    review_date: Optional[date] = None
    verified: bool = False


@dataclass
class ScrapedProductDetail:
    description: Optional[str] = None
    publisher: Optional[str] = None
    publication_date: Optional[date] = None
    isbn: Optional[str] = None
    isbn13: Optional[str] = None
    pages: Optional[int] = None
    language: Optional[str] = None
    dimensions: Optional[str] = None
    weight: Optional[str] = None
    specs: Dict[str, str] = field(default_factory=dict)
    ratings_avg: Optional[float] = None
    reviews_count: Optional[int] = None
    reviews: List[ScrapedReview] = field(default_factory=list)
    related_products: List[ProductRef] = field(default_factory=list)
    recommended_products: List[ProductRef] = field(default_factory=list)


# =============================================================================
# Sparse updates
# =============================================================================

class Patch:
    """
    Sparse set of field values to apply onto an entity.

    Only fields present in the patch are written; a field that is absent
    (or None in the source candidate) leaves the entity's value untouched.
    """

    def __init__(self, values: Optional[Dict[str, Any]] = None, **kwargs):
        self._values: Dict[str, Any] = {}
        for key, value in {**(values or {}), **kwargs}.items():
            if value is not None:
                self._values[key] = value

    @classmethod
    def from_candidate(cls, candidate, exclude=()) -> "Patch":
        """Build a patch from a candidate dataclass, skipping None fields."""
        return cls({
            f.name: getattr(candidate, f.name)
            for f in fields(candidate)
            if f.name not in exclude
        })

    def set(self, key: str, value: Any) -> "Patch":
        """Force a field into the patch, even when the value is empty."""
        self._values[key] = value
        return self

    def apply_to(self, entity) -> None:
        """Write every present field onto entity."""
        for key, value in self._values.items():
            if not hasattr(entity, key):
                raise AttributeError(f"{type(entity).__name__} has no field {key!r}")
            setattr(entity, key, value)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Patch({self._values!r})"
