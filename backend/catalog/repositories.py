"""
Repositories: raw-SQL persistence for each catalog entity.

Each repository maps one table onto one dataclass from catalog.models.
Column names equal field names; values are converted on the way in and out
(ISO text for timestamps, integers for booleans, JSON text for maps/lists,
plain strings for enums). Repositories never commit; callers own the
transaction.
"""

import json
from dataclasses import fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .database import db_placeholder, is_postgres, rows_as_dicts
from .models import (
    Category,
    Navigation,
    Product,
    ProductDetail,
    Review,
    ScrapeJob,
    ScrapeJobStatus,
    ScrapeTargetType,
)


class Repository:
    """Generic table <-> dataclass mapper."""

    table: str = ''
    model: type = None
    json_fields: Tuple[str, ...] = ()
    bool_fields: Tuple[str, ...] = ()
    datetime_fields: Tuple[str, ...] = ()
    date_fields: Tuple[str, ...] = ()
    enum_fields: Dict[str, type] = {}
    default_order: str = 'id'

    def __init__(self, conn):
        self.conn = conn

    # -- column handling --------------------------------------------------

    def _field_names(self) -> List[str]:
        return [f.name for f in fields(self.model)]

    def _column(self, name: str) -> str:
        """Quoted column name; rejects anything that is not a model field."""
        if name not in self._field_names():
            raise ValueError(f"{self.table} has no column {name!r}")
        return f'"{name}"'

    def _to_db(self, name: str, value: Any) -> Any:
        if value is None:
            return None
        if name in self.json_fields:
            return json.dumps(value)
        if name in self.bool_fields:
            return int(bool(value))
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return value

    def _from_row(self, row: Dict[str, Any]):
        values = {}
        for name in self._field_names():
            if name not in row:
                continue
            value = row[name]
            if value is None:
                if name in self.json_fields:
                    continue
            elif name in self.json_fields:
                value = json.loads(value) if isinstance(value, str) else value
            elif name in self.bool_fields:
                value = bool(value)
            elif name in self.datetime_fields and isinstance(value, str):
                value = datetime.fromisoformat(value)
            elif name in self.date_fields and isinstance(value, str):
                value = date.fromisoformat(value[:10])
            elif name in self.enum_fields:
                value = self.enum_fields[name](value)
            values[name] = value
        return self.model(**values)

    # -- queries ----------------------------------------------------------

    def _select(self, where: str = '', params: tuple = (),
                order_by: Optional[str] = None, limit: Optional[int] = None) -> list:
        sql = f'SELECT * FROM {self.table}'
        if where:
            sql += f' WHERE {where}'
        sql += f' ORDER BY {order_by or self.default_order}'
        if limit is not None:
            sql += f' LIMIT {int(limit)}'
        cursor = self.conn.cursor()
        cursor.execute(sql, params)
        return [self._from_row(row) for row in rows_as_dicts(cursor, cursor.fetchall())]

    def find_by(self, column: str, value: Any):
        """First entity whose column equals value, or None."""
        ph = db_placeholder(self.conn)
        rows = self._select(f'{self._column(column)} = {ph}',
                            (self._to_db(column, value),), limit=1)
        return rows[0] if rows else None

    def find_by_id(self, entity_id: int):
        return self.find_by('id', entity_id)

    def find_all_by(self, column: str, value: Any) -> list:
        ph = db_placeholder(self.conn)
        if value is None:
            return self._select(f'{self._column(column)} IS NULL')
        return self._select(f'{self._column(column)} = {ph}', (self._to_db(column, value),))

    def all(self, limit: Optional[int] = None) -> list:
        return self._select(limit=limit)

    def count(self) -> int:
        cursor = self.conn.cursor()
        cursor.execute(f'SELECT COUNT(*) FROM {self.table}')
        return cursor.fetchone()[0]

    # -- writes -----------------------------------------------------------

    def create(self, entity):
        """Insert entity, assign its new id, and return it."""
        names = [name for name in self._field_names() if name != 'id']
        columns = ', '.join(f'"{name}"' for name in names)
        ph = db_placeholder(self.conn)
        placeholders = ', '.join([ph] * len(names))
        params = tuple(self._to_db(name, getattr(entity, name)) for name in names)

        cursor = self.conn.cursor()
        if is_postgres(self.conn):
            cursor.execute(
                f'INSERT INTO {self.table} ({columns}) VALUES ({placeholders}) RETURNING id',
                params
            )
            entity.id = cursor.fetchone()[0]
        else:
            cursor.execute(
                f'INSERT INTO {self.table} ({columns}) VALUES ({placeholders})',
                params
            )
            entity.id = cursor.lastrowid
        return entity

    def save(self, entity):
        """Write every field of an existing entity back to its row."""
        if entity.id is None:
            raise ValueError(f"Cannot save unsaved {type(entity).__name__}; use create()")
        names = [name for name in self._field_names() if name != 'id']
        ph = db_placeholder(self.conn)
        assignments = ', '.join(f'"{name}" = {ph}' for name in names)
        params = tuple(self._to_db(name, getattr(entity, name)) for name in names)

        cursor = self.conn.cursor()
        cursor.execute(
            f'UPDATE {self.table} SET {assignments} WHERE id = {ph}',
            params + (entity.id,)
        )
        return entity

    def delete_by(self, column: str, value: Any) -> int:
        """Delete all rows whose column equals value; returns rows removed."""
        ph = db_placeholder(self.conn)
        cursor = self.conn.cursor()
        cursor.execute(
            f'DELETE FROM {self.table} WHERE {self._column(column)} = {ph}',
            (self._to_db(column, value),)
        )
        return cursor.rowcount


class NavigationRepository(Repository):
    table = 'navigations'
    model = Navigation
    datetime_fields = ('last_scraped_at',)
    default_order = '"order", title'

    def find_by_slug(self, slug: str) -> Optional[Navigation]:
        return self.find_by('slug', slug)


class CategoryRepository(Repository):
    table = 'categories'
    model = Category
    datetime_fields = ('last_scraped_at',)
    default_order = '"order", title'

    def find_by_slug(self, slug: str) -> Optional[Category]:
        return self.find_by('slug', slug)

    def find_roots(self) -> List[Category]:
        """Top-level categories (no parent)."""
        return self.find_all_by('parent_id', None)

    def find_children(self, parent_id: int) -> List[Category]:
        return self.find_all_by('parent_id', parent_id)

    def find_by_navigation(self, navigation_id: int) -> List[Category]:
        return self.find_all_by('navigation_id', navigation_id)


class ProductRepository(Repository):
    table = 'products'
    model = Product
    bool_fields = ('in_stock',)
    datetime_fields = ('last_scraped_at',)

    def find_by_source_id(self, source_id: str) -> Optional[Product]:
        return self.find_by('source_id', source_id)

    def find_by_category(self, category_id: int) -> List[Product]:
        return self.find_all_by('category_id', category_id)


class ProductDetailRepository(Repository):
    table = 'product_details'
    model = ProductDetail
    json_fields = ('specs', 'related_products', 'recommended_products')
    date_fields = ('publication_date',)

    def find_by_product_id(self, product_id: int) -> Optional[ProductDetail]:
        return self.find_by('product_id', product_id)


class ReviewRepository(Repository):
    table = 'reviews'
    model = Review
    bool_fields = ('verified',)
    date_fields = ('review_date',)

    def find_by_product(self, product_id: int) -> List[Review]:
        return self.find_all_by('product_id', product_id)

    def delete_for_product(self, product_id: int) -> int:
        return self.delete_by('product_id', product_id)

    def rating_summary(self, product_id: int) -> Tuple[Optional[float], int]:
        """(average rating, number of rated reviews) for a product."""
        ph = db_placeholder(self.conn)
        cursor = self.conn.cursor()
        cursor.execute(
            f'''SELECT AVG(rating), COUNT(rating) FROM reviews
               WHERE product_id = {ph} AND rating IS NOT NULL''',
            (product_id,)
        )
        average, count = tuple(cursor.fetchone())
        return (float(average) if average is not None else None, count)


class ScrapeJobRepository(Repository):
    table = 'scrape_jobs'
    model = ScrapeJob
    json_fields = ('metadata',)
    datetime_fields = ('started_at', 'finished_at', 'created_at')
    enum_fields = {'status': ScrapeJobStatus, 'target_type': ScrapeTargetType}

    def recent(self, limit: int = 100) -> List[ScrapeJob]:
        """Newest jobs first."""
        return self._select(order_by='created_at DESC, id DESC', limit=limit)
