"""
Scrape job routes.

Endpoints for triggering scrapes and reading the scrape job audit trail.
"""

import sqlite3
from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import psycopg2
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from catalog.errors import NotFoundError, ScrapeError
from catalog.models import ScrapeJob
from catalog.orchestrator import ScrapeOrchestrator

from ..services.scraping import ScrapeInProgress, claim_target, get_orchestrator


router = APIRouter(prefix="/api/scrape-jobs", tags=["scrape-jobs"])


class ScrapeJobResponse(BaseModel):
    """Scrape job audit record."""
    id: int
    target_url: str
    target_type: str
    status: str
    items_scraped: int = 0
    retry_count: int = 0
    max_retries: int = 3
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_log: Optional[str] = None
    metadata: Dict[str, Any] = {}
    created_at: Optional[datetime] = None


class ScrapeJobListResponse(BaseModel):
    """Response for list of scrape jobs."""
    jobs: List[ScrapeJobResponse]
    total: int


class ScrapeRequest(BaseModel):
    """Request body shared by every scrape trigger."""
    model_config = ConfigDict(populate_by_name=True)

    force_refresh: bool = Field(False, alias="forceRefresh")


class ProductListRequest(ScrapeRequest):
    """Request body for scraping one page of a category."""
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)


class ScrapeResponse(BaseModel):
    """Outcome of a scrape trigger."""
    job: Optional[ScrapeJobResponse] = None
    cached: bool = False
    count: int
    items: List[Dict[str, Any]]


def job_response(job: ScrapeJob) -> ScrapeJobResponse:
    return ScrapeJobResponse(
        id=job.id,
        target_url=job.target_url,
        target_type=job.target_type.value,
        status=job.status.value,
        items_scraped=job.items_scraped,
        retry_count=job.retry_count,
        max_retries=job.max_retries,
        started_at=job.started_at,
        finished_at=job.finished_at,
        error_log=job.error_log,
        metadata=job.metadata,
        created_at=job.created_at,
    )


def run_scrape(target: str, orchestrator: ScrapeOrchestrator,
               scrape: Callable[[], Any]) -> ScrapeResponse:
    """
    Run one scrape call and map core errors onto HTTP errors.

    Raises:
        HTTPException: 409 if the target is already being scraped,
            404 for unknown entities, 500 for scrape or storage failures
    """
    try:
        with claim_target(target):
            orchestrator.last_job = None
            result = scrape()
    except ScrapeInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ScrapeError as e:
        raise HTTPException(status_code=500, detail=f"Scrape failed: {e}")
    except (sqlite3.Error, psycopg2.Error) as e:
        raise HTTPException(status_code=500, detail=f"Database error: {e}")

    job = orchestrator.last_job
    if isinstance(result, list):
        items = [asdict(record) for record in result]
    else:
        items = [asdict(result)] if result is not None else []

    return ScrapeResponse(
        job=job_response(job) if job is not None else None,
        cached=job is None,
        count=len(items),
        items=items,
    )


@router.get("", response_model=ScrapeJobListResponse)
def list_scrape_jobs(orchestrator: ScrapeOrchestrator = Depends(get_orchestrator)):
    """
    List the 100 most recent scrape jobs, newest first.

    Returns:
        Job records and their count
    """
    jobs = orchestrator.list_jobs(limit=100)
    return ScrapeJobListResponse(jobs=[job_response(job) for job in jobs], total=len(jobs))


@router.get("/{job_id}", response_model=ScrapeJobResponse)
def get_scrape_job(job_id: int, orchestrator: ScrapeOrchestrator = Depends(get_orchestrator)):
    """
    Get a single scrape job.

    Raises:
        HTTPException: If the job does not exist
    """
    job = orchestrator.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Scrape job {job_id} not found")
    return job_response(job)


@router.post("/navigations", response_model=ScrapeResponse)
def scrape_navigations(request: Optional[ScrapeRequest] = None,
                       orchestrator: ScrapeOrchestrator = Depends(get_orchestrator)):
    """Scrape the site's top-level navigation."""
    return run_scrape("navigation", orchestrator, orchestrator.scrape_navigations)


@router.post("/categories", response_model=ScrapeResponse)
def scrape_categories(request: Optional[ScrapeRequest] = None,
                      orchestrator: ScrapeOrchestrator = Depends(get_orchestrator)):
    """Scrape categories linked from the home page."""
    return run_scrape("categories", orchestrator, orchestrator.scrape_categories)


@router.post("/categories/{navigation_slug}", response_model=ScrapeResponse)
def scrape_navigation_categories(navigation_slug: str,
                                 request: Optional[ScrapeRequest] = None,
                                 orchestrator: ScrapeOrchestrator = Depends(get_orchestrator)):
    """Scrape categories from one navigation heading's page."""
    return run_scrape(
        f"categories:{navigation_slug}",
        orchestrator,
        lambda: orchestrator.scrape_categories(navigation_slug),
    )


@router.post("/products/{category_slug}", response_model=ScrapeResponse)
def scrape_products(category_slug: str,
                    request: Optional[ProductListRequest] = None,
                    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator)):
    """Scrape one page of products from a category."""
    request = request or ProductListRequest()
    return run_scrape(
        f"products:{category_slug}:{request.page}",
        orchestrator,
        lambda: orchestrator.scrape_product_list(category_slug, request.page, request.limit),
    )


@router.post("/product-detail/{source_id}", response_model=ScrapeResponse)
def scrape_product_detail(source_id: str,
                          request: Optional[ScrapeRequest] = None,
                          orchestrator: ScrapeOrchestrator = Depends(get_orchestrator)):
    """
    Scrape a product's detail page, or return the cached detail when fresh.

    Raises:
        HTTPException: 404 if the product has never been listed
    """
    request = request or ScrapeRequest()

    def scrape():
        detail = orchestrator.scrape_product_detail(source_id, force_refresh=request.force_refresh)
        if detail is None:
            raise NotFoundError("Product", "sourceId", source_id)
        return detail

    return run_scrape(f"product-detail:{source_id}", orchestrator, scrape)
