"""
Database service for the API.

Holds one DatabaseConnection (PostgreSQL when DATABASE_URL is set, SQLite
otherwise) that is reused across requests.
"""

from contextlib import contextmanager
from typing import Generator, Optional

from catalog.database import DatabaseConnection


class DatabasePool:
    """
    Simple connection pool around a single catalog DatabaseConnection.

    Uses a single connection that is reused across requests.
    """

    def __init__(self, db_path: Optional[str] = None):
        self._db_path = db_path
        self._db: Optional[DatabaseConnection] = None

    def initialize(self, db_path: Optional[str] = None) -> None:
        """Open the connection and make sure the schema exists."""
        if db_path is not None:
            self._db_path = db_path
        self._db = DatabaseConnection(self._db_path)
        self._db.connect()

    def _ensure_connection(self) -> None:
        """Ensure the connection is alive, reconnect if needed."""
        if self._db is None or self._db.conn is None:
            self.initialize()
            return

        try:
            cursor = self._db.cursor()
            cursor.execute("SELECT 1")
            cursor.close()
        except Exception as e:
            if not self._db.is_connection_error(e):
                raise
            self._db.reconnect()

    @contextmanager
    def get_connection(self) -> Generator[DatabaseConnection, None, None]:
        """
        Get the shared database connection.

        Commits when the block exits cleanly, rolls back on an exception.

        Example:
            with db_pool.get_connection() as conn:
                orchestrator = ScrapeOrchestrator(conn, config)
        """
        self._ensure_connection()
        try:
            yield self._db
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise

    @contextmanager
    def get_cursor(self):
        """
        Get a cursor with automatic connection management.

        Example:
            with db_pool.get_cursor() as cursor:
                cursor.execute("SELECT COUNT(*) FROM scrape_jobs")
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                yield cursor
            finally:
                cursor.close()

    def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            self._db.close()
            self._db = None


# Global database pool instance
db_pool = DatabasePool()


def get_db():
    """
    Dependency for FastAPI routes to get the shared connection.

    Usage in routes:
        @router.get("/items")
        def get_items(conn = Depends(get_db)):
            ...
    """
    with db_pool.get_connection() as conn:
        yield conn
