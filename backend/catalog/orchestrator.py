"""
Scrape orchestrator.

Every scrape call follows the same shape:

    1. resolve the target URL
    2. create a job and move it to running
    3. fetch the page once, extracting candidates inside the session callback
    4. resolve cross references (category slug -> id, parent slug -> id)
    5. upsert each candidate
    6. complete the job with the number of extracted candidates

Any error in steps 3-5 fails the job and is re-raised to the caller.
Product detail is the only kind with a cache check, and that check runs
before a job exists.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional

from .browser import create_session
from .config import ScrapeConfig
from .extraction import (
    MAX_PRODUCTS,
    extract_categories,
    extract_navigation,
    extract_product_detail,
    extract_products,
)
from .jobs import JobTracker
from .models import (
    Category,
    Navigation,
    Product,
    ProductDetail,
    ScrapedCategory,
    ScrapeJob,
    ScrapeTargetType,
)
from .reconciler import Reconciler
from .staleness import needs_scraping


def _parents_first(candidates: List[ScrapedCategory]) -> List[ScrapedCategory]:
    """Order a category batch so every parent precedes its children."""
    by_slug = {c.slug: c for c in candidates}

    def depth(candidate: ScrapedCategory) -> int:
        seen = {candidate.slug}
        level = 0
        parent = by_slug.get(candidate.parent_slug)
        while parent is not None and parent.slug not in seen:
            seen.add(parent.slug)
            level += 1
            parent = by_slug.get(parent.parent_slug)
        return level

    # sorted() is stable, so extraction order is kept within a level
    return sorted(candidates, key=depth)


class ScrapeOrchestrator:
    """Drives scrape jobs end to end for one database connection."""

    def __init__(self, conn, config: Optional[ScrapeConfig] = None, session=None,
                 clock: Callable[[], datetime] = datetime.now):
        self.conn = conn
        self.config = config or ScrapeConfig()
        self.session = session or create_session(self.config)
        self.clock = clock
        self.reconciler = Reconciler(conn, clock)
        self.jobs = JobTracker(conn, clock)
        self.last_job: Optional[ScrapeJob] = None
        # Jobs started by this orchestrator, oldest first
        self.history: List[ScrapeJob] = []

    def log(self, message: str) -> None:
        if self.config.verbose:
            print(f"[{datetime.now().strftime('%H:%M:%S')}] {message}", flush=True)

    # =========================================================================
    # Target URLs
    # =========================================================================

    def navigation_url(self) -> str:
        return self.config.site_root

    def categories_url(self, navigation_slug: Optional[str] = None) -> str:
        if navigation_slug:
            return f"{self.config.site_root}/pages/{navigation_slug}"
        return self.config.site_root

    def product_list_url(self, category_slug: str, page: int = 1) -> str:
        return f"{self.config.site_root}/collections/{category_slug}?page={page}"

    # =========================================================================
    # Job wrapper
    # =========================================================================

    def _fetch(self, url: str, target_type: ScrapeTargetType, extractor):
        return self.session.fetch(
            url,
            extractor,
            self.config.timeouts_for(target_type),
            self.config.wait_until_for(target_type),
        )

    def _rollback(self) -> None:
        try:
            self.conn.rollback()
        except Exception as e:
            self.log(f"Rollback failed: {e}")

    def _run_job(self, target_type: ScrapeTargetType, url: str, work,
                 metadata: Optional[Dict] = None):
        """Run work() inside a job; work returns (records, items_scraped)."""
        job = self.jobs.create(url, target_type, metadata,
                               max_retries=self.config.max_retries)
        self.last_job = job
        self.history.append(job)
        self.jobs.start(job)
        self.log(f"Job {job.id}: {target_type.value} {url}")

        try:
            records, items_scraped = work()
            self.jobs.complete(job, items_scraped)
        except Exception as error:
            self._rollback()
            message = str(error) or type(error).__name__
            self.log(f"Job {job.id} failed: {message}")
            try:
                self.jobs.fail(job, message)
            except Exception as log_error:
                self.log(f"Could not record failure of job {job.id}: {log_error}")
            raise

        self.log(f"Job {job.id} completed: {items_scraped} items")
        return records

    # =========================================================================
    # Scrapes
    # =========================================================================

    def scrape_navigations(self) -> List[Navigation]:
        """Scrape the top-level menu and upsert each heading."""
        url = self.navigation_url()

        def work():
            candidates = self._fetch(url, ScrapeTargetType.NAVIGATION, extract_navigation)
            saved = [self.reconciler.upsert_navigation(c).entity for c in candidates]
            return saved, len(candidates)

        return self._run_job(ScrapeTargetType.NAVIGATION, url, work)

    def scrape_categories(self, navigation_slug: Optional[str] = None) -> List[Category]:
        """
        Scrape categories from the home page, or from a navigation page.

        Parents are written before children so nested collections can be
        linked in the same pass. Root categories are attached to the
        navigation when it is known.
        """
        url = self.categories_url(navigation_slug)
        metadata = {'navigation_slug': navigation_slug} if navigation_slug else None

        def work():
            navigation = None
            if navigation_slug:
                navigation = self.reconciler.navigations.find_by_slug(navigation_slug)

            candidates = self._fetch(url, ScrapeTargetType.CATEGORY, extract_categories)
            ids_by_slug: Dict[str, int] = {}
            saved = []
            for candidate in _parents_first(candidates):
                parent_id = None
                if candidate.parent_slug:
                    parent_id = ids_by_slug.get(candidate.parent_slug)
                    if parent_id is None:
                        parent = self.reconciler.categories.find_by_slug(candidate.parent_slug)
                        parent_id = parent.id if parent else None

                navigation_id = None
                if navigation is not None and parent_id is None:
                    navigation_id = navigation.id

                category = self.reconciler.upsert_category(
                    candidate, parent_id=parent_id, navigation_id=navigation_id
                ).entity
                ids_by_slug[category.slug] = category.id
                saved.append(category)
            return saved, len(candidates)

        return self._run_job(ScrapeTargetType.CATEGORY, url, work, metadata)

    def scrape_product_list(self, category_slug: str, page: int = 1,
                            limit: int = 20) -> List[Product]:
        """
        Scrape one page of a category's product grid.

        Products are linked to the category when it has been scraped before,
        otherwise they are stored without a category.
        """
        url = self.product_list_url(category_slug, page)
        cap = min(limit, MAX_PRODUCTS)
        metadata = {'category_slug': category_slug, 'page': page, 'limit': limit}

        def extractor(html: str, page_url: str):
            return extract_products(html, page_url, limit=cap)

        def work():
            candidates = self._fetch(url, ScrapeTargetType.PRODUCT_LIST, extractor)
            category = self.reconciler.categories.find_by_slug(category_slug)
            category_id = category.id if category else None
            saved = [
                self.reconciler.upsert_product(c, category_id=category_id).entity
                for c in candidates
            ]
            return saved, len(candidates)

        return self._run_job(ScrapeTargetType.PRODUCT_LIST, url, work, metadata)

    def scrape_product_detail(self, source_id: str,
                              force_refresh: bool = False) -> Optional[ProductDetail]:
        """
        Scrape a product page, or return the cached detail if still fresh.

        Returns None for an unknown product; no job is created in that case,
        nor when the cached detail is returned.
        """
        product = self.reconciler.products.find_by_source_id(source_id)
        if product is None:
            self.log(f"Product {source_id} not found, skipping detail scrape")
            return None

        cached = self.reconciler.details.find_by_product_id(product.id)
        if (not force_refresh and cached is not None
                and not needs_scraping(product, self.config.cache_ttl_hours, now=self.clock())):
            self.log(f"Product {source_id}: cached detail is fresh")
            return cached

        url = product.source_url
        metadata = {'source_id': source_id, 'force_refresh': force_refresh}

        def work():
            scraped = self._fetch(url, ScrapeTargetType.PRODUCT_DETAIL, extract_product_detail)
            detail = self.reconciler.upsert_product_detail(product.id, scraped).entity
            if scraped.reviews:
                self.reconciler.replace_reviews(product.id, scraped.reviews)
            self.reconciler.touch_product(product)
            return detail, 1

        return self._run_job(ScrapeTargetType.PRODUCT_DETAIL, url, work, metadata)

    # =========================================================================
    # Job queries
    # =========================================================================

    def get_job(self, job_id: int) -> Optional[ScrapeJob]:
        return self.jobs.get(job_id)

    def list_jobs(self, limit: int = 100) -> List[ScrapeJob]:
        return self.jobs.recent(limit)

    def close(self) -> None:
        self.session.close()
