#!/usr/bin/env python3
"""
Book catalog scraper.

Scrapes navigation headings, categories, product listings and product detail
pages into the catalog database. Every scrape is recorded as a scrape job.

Usage:
    python books_scraper.py --kind navigation
    python books_scraper.py --kind categories --navigation books
    python books_scraper.py --kind products --category fiction-books --page 2
    python books_scraper.py --kind detail --source-id harry-potter-9780747532699
    python books_scraper.py --kind all --no-playwright --output-dir output
"""

import argparse
import json
import os
import sqlite3
import sys
import time
from dataclasses import asdict
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd
import psycopg2

from catalog.config import ScrapeConfig
from catalog.database import DatabaseConnection
from catalog.errors import CatalogError
from catalog.orchestrator import ScrapeOrchestrator


KINDS = ['navigation', 'categories', 'products', 'detail', 'all']


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def format_duration(seconds: float) -> str:
    """Format seconds into human-readable duration."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"


def export_records(output_dir: str, name: str, records: List) -> None:
    """Write records as <name>.json and <name>.csv."""
    rows = [asdict(record) for record in records]
    json_path = os.path.join(output_dir, f"{name}.json")
    with open(json_path, 'w') as f:
        json.dump(rows, f, indent=2, default=str)
    if rows:
        pd.DataFrame(rows).to_csv(os.path.join(output_dir, f"{name}.csv"), index=False)
    print(f"  Saved {len(rows)} {name} to {json_path}", flush=True)


def write_summary(output_dir: str, results: Dict[str, List],
                  jobs: List[Dict]) -> str:
    summary = {
        'scraped_at': datetime.now().isoformat(),
        'counts': {name: len(records) for name, records in results.items()},
        'jobs': jobs,
    }
    path = os.path.join(output_dir, 'summary.json')
    with open(path, 'w') as f:
        json.dump(summary, f, indent=2, default=str)
    return path


def run_scrapes(orchestrator: ScrapeOrchestrator, args,
                results: Optional[Dict[str, List]] = None) -> Dict[str, List]:
    """
    Run the scrapes selected by --kind; returns records per kind.

    results is filled in as each scrape finishes, so a caller passing its own
    dict keeps the records of the scrapes that ran before a failure.
    """
    if results is None:
        results = {}

    if args.kind in ('navigation', 'all'):
        results['navigations'] = orchestrator.scrape_navigations()

    if args.kind in ('categories', 'all'):
        results['categories'] = orchestrator.scrape_categories(args.navigation)

    if args.kind in ('products', 'all'):
        category_slug = args.category
        if not category_slug and results.get('categories'):
            category_slug = results['categories'][0].slug
        if not category_slug:
            raise CatalogError("--category is required to scrape products")
        results['products'] = orchestrator.scrape_product_list(
            category_slug, page=args.page, limit=args.limit
        )

    if args.kind == 'detail':
        if not args.source_id:
            raise CatalogError("--source-id is required to scrape a product detail")
        detail = orchestrator.scrape_product_detail(args.source_id,
                                                    force_refresh=args.force_refresh)
        if detail is None:
            print(f"  Product {args.source_id} is not in the catalog; "
                  f"scrape its category first", flush=True)
            results['details'] = []
        else:
            results['details'] = [detail]

    return results


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Book catalog scraper')
    parser.add_argument('--kind', choices=KINDS, default='all',
                        help='What to scrape (default: all)')
    parser.add_argument('--navigation', default=None,
                        help='Navigation slug whose page lists the categories')
    parser.add_argument('--category', default=None,
                        help='Category slug for product listings')
    parser.add_argument('--page', type=positive_int, default=1,
                        help='Product listing page number (default: 1)')
    parser.add_argument('--limit', type=positive_int, default=20,
                        help='Maximum products per page (capped at 30)')
    parser.add_argument('--source-id', default=None,
                        help='Product source id for a detail scrape')
    parser.add_argument('--force-refresh', action='store_true',
                        help='Ignore the product detail cache')
    parser.add_argument('--no-playwright', action='store_true',
                        help='Fetch pages with plain HTTP requests instead of a browser')
    parser.add_argument('--db', default=None,
                        help='SQLite database file (ignored when DATABASE_URL is set)')
    parser.add_argument('--output-dir', default=None,
                        help='Also write JSON/CSV exports and summary.json here')
    parser.add_argument('--quiet', action='store_true',
                        help='Only print the final report')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config = ScrapeConfig.from_env()
    if args.no_playwright:
        config.use_browser = False
    config.verbose = not args.quiet

    print("=" * 60, flush=True)
    print("Book Catalog Scraper", flush=True)
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}", flush=True)
    print(f"Target: {config.site_root}", flush=True)
    print(f"Mode: {'Playwright' if config.use_browser else 'static HTTP'}", flush=True)
    print("=" * 60, flush=True)

    db_wrapper = DatabaseConnection(args.db)
    db_wrapper.connect()
    orchestrator = ScrapeOrchestrator(db_wrapper, config)

    start_time = time.time()
    exit_code = 0
    results: Dict[str, List] = {}
    try:
        run_scrapes(orchestrator, args, results)
    except (CatalogError, sqlite3.Error, psycopg2.Error) as e:
        print(f"\nScrape failed: {e}", flush=True)
        exit_code = 1
    finally:
        orchestrator.close()

    jobs = [
        {'id': job.id, 'type': job.target_type.value, 'status': job.status.value,
         'items_scraped': job.items_scraped, 'error': job.error_log}
        for job in orchestrator.history
    ]

    if args.output_dir:
        os.makedirs(args.output_dir, exist_ok=True)
        for name, records in results.items():
            export_records(args.output_dir, name, records)
        summary_path = write_summary(args.output_dir, results, jobs)
        print(f"  Summary written to {summary_path}", flush=True)

    print("\n" + "=" * 60, flush=True)
    print("SCRAPE REPORT", flush=True)
    print("=" * 60, flush=True)
    for name, records in results.items():
        print(f"  {name:<12} {len(records)}", flush=True)
    failed = [job for job in jobs if job['status'] == 'failed']
    print(f"  Jobs run:    {len(jobs)} ({len(failed)} failed)", flush=True)
    for job in failed:
        print(f"    job {job['id']} ({job['type']}): {job['error']}", flush=True)
    print(f"  Duration:    {format_duration(time.time() - start_time)}", flush=True)
    print("=" * 60, flush=True)

    db_wrapper.close()
    return exit_code


if __name__ == '__main__':
    sys.exit(main())
