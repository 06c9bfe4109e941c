"""
Upsert reconciler: folds scraped candidates into persisted entities.

Lookup is by natural key (slug for navigations and categories, source_id for
products, product_id for details). Existing rows are patched field by field;
fields a candidate does not carry are left as they are. Every upsert commits
on its own, so a batch that fails halfway keeps the rows written so far.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .models import (
    Patch,
    Product,
    Review,
    ScrapedCategory,
    ScrapedNavigation,
    ScrapedProduct,
    ScrapedProductDetail,
    ScrapedReview,
)
from .repositories import (
    CategoryRepository,
    NavigationRepository,
    ProductDetailRepository,
    ProductRepository,
    Repository,
    ReviewRepository,
)


@dataclass
class UpsertResult:
    """Result from upserting one candidate."""
    entity: Any
    is_new: bool
    changed_fields: Dict[str, Tuple] = field(default_factory=dict)  # field -> (old, new)


class Reconciler:
    """Applies candidates to the store through the entity repositories."""

    def __init__(self, conn, clock: Callable[[], datetime] = datetime.now):
        self.conn = conn
        self.clock = clock
        self.navigations = NavigationRepository(conn)
        self.categories = CategoryRepository(conn)
        self.products = ProductRepository(conn)
        self.details = ProductDetailRepository(conn)
        self.reviews = ReviewRepository(conn)

    def _upsert(self, repo: Repository, key: str, value: Any, patch: Patch,
                stamp: bool = True) -> UpsertResult:
        if stamp:
            patch.set('last_scraped_at', self.clock())

        existing = repo.find_by(key, value)
        if existing is not None:
            changed = {
                name: (getattr(existing, name), new)
                for name, new in patch.as_dict().items()
                if name != 'last_scraped_at' and getattr(existing, name) != new
            }
            patch.apply_to(existing)
            repo.save(existing)
            self.conn.commit()
            return UpsertResult(entity=existing, is_new=False, changed_fields=changed)

        entity = repo.model(**patch.as_dict())
        repo.create(entity)
        self.conn.commit()
        return UpsertResult(entity=entity, is_new=True)

    def upsert_navigation(self, candidate: ScrapedNavigation) -> UpsertResult:
        """Navigation keyed by slug."""
        return self._upsert(self.navigations, 'slug', candidate.slug,
                            Patch.from_candidate(candidate))

    def upsert_category(self, candidate: ScrapedCategory,
                        parent_id: Optional[int] = None,
                        navigation_id: Optional[int] = None) -> UpsertResult:
        """
        Category keyed by slug.

        parent_id must already be resolved by the caller; a category
        upserted without one keeps whatever parent it had. Only roots
        carry a navigation link.
        """
        patch = Patch.from_candidate(candidate, exclude=('parent_slug',))
        if parent_id is not None:
            patch.set('parent_id', parent_id)
            patch.set('navigation_id', None)
        elif navigation_id is not None:
            patch.set('navigation_id', navigation_id)
        return self._upsert(self.categories, 'slug', candidate.slug, patch)

    def upsert_product(self, candidate: ScrapedProduct,
                       category_id: Optional[int] = None) -> UpsertResult:
        """Product keyed by source_id."""
        patch = Patch.from_candidate(candidate)
        if category_id is not None:
            patch.set('category_id', category_id)
        return self._upsert(self.products, 'source_id', candidate.source_id, patch)

    def upsert_product_detail(self, product_id: int,
                              candidate: ScrapedProductDetail) -> UpsertResult:
        """
        Detail keyed by product_id.

        specs, related_products and recommended_products are replaced as a
        whole, including by empty values.
        """
        patch = Patch.from_candidate(
            candidate,
            exclude=('reviews', 'specs', 'related_products', 'recommended_products'),
        )
        patch.set('product_id', product_id)
        patch.set('specs', dict(candidate.specs))
        patch.set('related_products', [ref.to_dict() for ref in candidate.related_products])
        patch.set('recommended_products', [ref.to_dict() for ref in candidate.recommended_products])
        if candidate.reviews_count is None and candidate.reviews:
            patch.set('reviews_count', len(candidate.reviews))
        return self._upsert(self.details, 'product_id', product_id, patch, stamp=False)

    def replace_reviews(self, product_id: int,
                        candidates: List[ScrapedReview]) -> List[Review]:
        """Delete every review of the product, then insert the new batch."""
        self.reviews.delete_for_product(product_id)
        created = []
        for candidate in candidates:
            review = Review(product_id=product_id,
                            **Patch.from_candidate(candidate).as_dict())
            created.append(self.reviews.create(review))
        self.conn.commit()
        return created

    def touch_product(self, product: Product) -> Product:
        """Advance a product's last_scraped_at without changing anything else."""
        product.last_scraped_at = self.clock()
        self.products.save(product)
        self.conn.commit()
        return product
