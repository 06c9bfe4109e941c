"""
Database schema and connection management.

PostgreSQL when DATABASE_URL is set, SQLite otherwise. All SQL in the
catalog package is raw SQL written against both; db_placeholder() hides the
parameter style difference.
"""

import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import psycopg2
from dotenv import load_dotenv


# Load .env from backend directory
_backend_dir = Path(__file__).parent.parent
_env_path = _backend_dir / ".env"


DATABASE_FILE = "books.db"  # SQLite fallback

DbConnection = Union['psycopg2.extensions.connection', sqlite3.Connection]


# =============================================================================
# Schema
# =============================================================================

# {pk} and {real} are filled in per database flavour
SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS navigations (
        id {pk},
        title TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        url TEXT,
        "order" INTEGER DEFAULT 0,
        last_scraped_at TEXT
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS categories (
        id {pk},
        title TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        url TEXT,
        image_url TEXT,
        product_count INTEGER DEFAULT 0,
        "order" INTEGER DEFAULT 0,
        last_scraped_at TEXT,
        parent_id INTEGER REFERENCES categories(id) ON DELETE SET NULL,
        navigation_id INTEGER REFERENCES navigations(id) ON DELETE SET NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS products (
        id {pk},
        source_id TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        source_url TEXT NOT NULL UNIQUE,
        author TEXT,
        price {real},
        original_price {real},
        currency TEXT DEFAULT 'GBP',
        image_url TEXT,
        condition TEXT,
        format TEXT,
        in_stock INTEGER DEFAULT 1,
        last_scraped_at TEXT,
        category_id INTEGER REFERENCES categories(id) ON DELETE SET NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS product_details (
        id {pk},
        product_id INTEGER NOT NULL UNIQUE REFERENCES products(id) ON DELETE CASCADE,
        description TEXT,
        publisher TEXT,
        publication_date TEXT,
        isbn TEXT,
        isbn13 TEXT,
        pages INTEGER,
        language TEXT,
        dimensions TEXT,
        weight TEXT,
        specs TEXT,
        ratings_avg {real},
        reviews_count INTEGER DEFAULT 0,
        related_products TEXT,
        recommended_products TEXT
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS reviews (
        id {pk},
        product_id INTEGER NOT NULL REFERENCES products(id) ON DELETE CASCADE,
        author TEXT,
        rating INTEGER,
        title TEXT,
        text TEXT,
        review_date TEXT,
        verified INTEGER DEFAULT 0
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS scrape_jobs (
        id {pk},
        target_url TEXT NOT NULL,
        target_type TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        items_scraped INTEGER DEFAULT 0,
        retry_count INTEGER DEFAULT 0,
        max_retries INTEGER DEFAULT 3,
        started_at TEXT,
        finished_at TEXT,
        error_log TEXT,
        metadata TEXT,
        created_at TEXT
    )
    ''',
]

INDEXES = [
    'CREATE INDEX IF NOT EXISTS idx_categories_parent ON categories(parent_id)',
    'CREATE INDEX IF NOT EXISTS idx_categories_navigation ON categories(navigation_id)',
    'CREATE INDEX IF NOT EXISTS idx_products_category ON products(category_id)',
    'CREATE INDEX IF NOT EXISTS idx_reviews_product ON reviews(product_id)',
    'CREATE INDEX IF NOT EXISTS idx_scrape_jobs_created ON scrape_jobs(created_at)',
]


def get_database_url() -> Optional[str]:
    """Get the PostgreSQL database URL from environment variables."""
    load_dotenv(_env_path)
    return os.getenv("DATABASE_URL")


def init_postgres_database(db_url: str):
    """Initialize PostgreSQL database with schema."""
    conn = psycopg2.connect(db_url)
    cursor = conn.cursor()
    for statement in SCHEMA:
        cursor.execute(statement.format(pk='SERIAL PRIMARY KEY', real='DOUBLE PRECISION'))
    for statement in INDEXES:
        cursor.execute(statement)
    conn.commit()
    print("  PostgreSQL database initialized")
    return conn


def init_sqlite_database(db_path: str):
    """Initialize SQLite database with schema (fallback)."""
    # API routes run in a threadpool and share this connection
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    cursor = conn.cursor()
    cursor.execute('PRAGMA foreign_keys = ON')
    for statement in SCHEMA:
        cursor.execute(statement.format(pk='INTEGER PRIMARY KEY AUTOINCREMENT', real='REAL'))
    for statement in INDEXES:
        cursor.execute(statement)
    conn.commit()
    if db_path != ':memory:':
        print(f"  SQLite database initialized: {db_path}")
    return conn


# =============================================================================
# Helpers
# =============================================================================

def raw_connection(conn):
    """Unwrap a DatabaseConnection to the driver connection."""
    return conn.conn if isinstance(conn, DatabaseConnection) else conn


def is_postgres(conn) -> bool:
    """Check if connection is PostgreSQL."""
    return hasattr(raw_connection(conn), 'info')


def db_placeholder(conn) -> str:
    """Return the correct placeholder for the database type."""
    return '%s' if is_postgres(conn) else '?'


def rows_as_dicts(cursor, rows) -> List[Dict[str, Any]]:
    """Convert fetched rows into dicts keyed by column name."""
    columns = [col[0] for col in cursor.description]
    return [dict(zip(columns, row)) for row in rows]


# =============================================================================
# Database Connection Wrapper with Auto-Reconnect
# =============================================================================

class DatabaseConnection:
    """
    Wrapper for database connection that handles automatic reconnection.
    Detects closed connections and reconnects transparently.
    """

    def __init__(self, db_path: str = None):
        self.db_path = db_path or os.getenv("DATABASE_FILE", DATABASE_FILE)
        self.postgres_url = None
        self._conn = None
        self._is_postgres = False

    def connect(self) -> DbConnection:
        """Establish database connection."""
        self.postgres_url = get_database_url()
        if self.postgres_url:
            self._conn = init_postgres_database(self.postgres_url)
            self._is_postgres = True
        else:
            self._conn = init_sqlite_database(self.db_path)
            self._is_postgres = False
        return self._conn

    def reconnect(self):
        """Reconnect to database after connection loss."""
        print("  Reconnecting to database...", flush=True)
        if self._conn:
            try:
                self._conn.close()
            except Exception:
                pass

        if self._is_postgres and self.postgres_url:
            self._conn = psycopg2.connect(self.postgres_url)
            print("  Database reconnected (PostgreSQL)", flush=True)
        else:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute('PRAGMA foreign_keys = ON')
            print(f"  Database reconnected (SQLite: {self.db_path})", flush=True)
        return self._conn

    def is_connection_error(self, error: Exception) -> bool:
        """Check if exception is a connection-related error."""
        error_str = str(error).lower()
        connection_errors = [
            'connection already closed',
            'connection is closed',
            'server closed the connection',
            'could not receive data',
            'ssl syscall error',
            'operation timed out',
            'connection refused',
            'connection reset',
            'broken pipe',
            'network is unreachable',
            'cannot operate on a closed database',
        ]
        return any(err in error_str for err in connection_errors)

    @property
    def conn(self):
        """Get the underlying connection (for direct access when needed)."""
        return self._conn

    def cursor(self):
        """Get a cursor from the connection."""
        return self._conn.cursor()

    def commit(self):
        """Commit the current transaction with retry."""
        for attempt in range(3):
            try:
                self._conn.commit()
                return
            except Exception as e:
                if self.is_connection_error(e) and attempt < 2:
                    self.reconnect()
                else:
                    raise

    def rollback(self):
        """Roll back the current transaction."""
        self._conn.rollback()

    def close(self):
        """Close the database connection."""
        if self._conn:
            try:
                self._conn.close()
            except Exception:
                pass
            self._conn = None
