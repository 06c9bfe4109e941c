"""
FastAPI backend for BookHub.

Provides REST API endpoints for:
- Triggering catalog scrapes
- Viewing scrape job history
"""
