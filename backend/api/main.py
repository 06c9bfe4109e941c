"""
FastAPI application for the BookHub backend API.

Provides REST endpoints for:
- Triggering navigation, category, product list and product detail scrapes
- Viewing the scrape job audit trail

Run with:
    cd backend
    source venv/bin/activate
    uvicorn api.main:app --reload --port 8000
"""

from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .routes import scrape_jobs
from .services.database import db_pool


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes database connection on startup and closes it on shutdown.
    """
    # Startup
    try:
        db_pool.initialize()
        print("Database connection initialized")
    except Exception as e:
        print(f"Warning: Could not initialize database: {e}")
        print("Some endpoints may not work without database connection")

    yield

    # Shutdown
    db_pool.close()
    print("Database connection closed")


app = FastAPI(
    title="BookHub API",
    description="Backend API for triggering book catalog scrapes and tracking scrape jobs",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(scrape_jobs.router)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    database: str


@app.get("/api/health", response_model=HealthResponse, tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        Health status including database connectivity
    """
    db_status = "unknown"

    try:
        with db_pool.get_cursor() as cursor:
            cursor.execute("SELECT 1")
            db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    return HealthResponse(
        status="ok",
        timestamp=datetime.now(),
        database=db_status,
    )


@app.get("/", tags=["root"])
def root():
    """API welcome message and documentation link."""
    return {
        "message": "BookHub API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }
