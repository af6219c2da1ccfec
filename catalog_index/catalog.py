"""
Catalog reads for the index rebuild.

Every read takes the caller's session: the rebuild opens one read-only
transaction per page and commits or rolls it back itself. Nothing here
commits, rolls back or closes a session.

`as_of` is captured once when the rebuild starts. Passing the same instant to
every count and page keeps the set of active products fixed for the whole
job, even if products start or stop being active while it runs.
"""

from __future__ import annotations

import datetime
import logging
from typing import Protocol, Sequence, runtime_checkable

from sqlalchemy import false, func, or_, select, true
from sqlalchemy.orm import selectinload

from catalog_index.fields import FieldDescriptor, FieldType, Locale
from catalog_index.models import (
    Category,
    CategoryProductXref,
    CategoryXref,
    Locale as LocaleRow,
    Product,
    SearchField,
)

logger = logging.getLogger("catalog-reads")


@runtime_checkable
class CatalogStore(Protocol):
    def count_active(self, db, as_of: datetime.datetime) -> int: ...

    def page_active(self, db, page: int, page_size: int, as_of: datetime.datetime) -> list: ...


@runtime_checkable
class FieldRegistry(Protocol):
    def all_searchable_field_descriptors(self, db) -> list[FieldDescriptor]: ...


@runtime_checkable
class LocaleDirectory(Protocol):
    def all_locales(self, db) -> list[Locale]: ...


def _active_filter(as_of):
    return (
        Product.archived == false(),
        Product.active_start_date <= as_of,
        or_(Product.active_end_date.is_(None), Product.active_end_date > as_of),
    )


class SqlCatalogStore:
    """Active products: not archived, started, and not yet ended at `as_of`."""

    def count_active(self, db, as_of):
        stmt = select(func.count(Product.id)).where(*_active_filter(as_of))
        return int(db.execute(stmt).scalar_one())

    def page_active(self, db, page, page_size, as_of):
        stmt = (
            select(Product)
            .where(*_active_filter(as_of))
            # A stable order is what makes offset paging partition the catalog.
            .order_by(Product.id)
            .offset(page * page_size)
            .limit(page_size)
            .options(
                # Avoid N+1 queries while building category fields for each product.
                selectinload(Product.parent_category_xrefs)
                .selectinload(CategoryProductXref.category)
                .options(
                    selectinload(Category.product_xrefs),
                    selectinload(Category.parent_category_xrefs).selectinload(CategoryXref.category),
                ),
                selectinload(Product.product_attributes),
                selectinload(Product.translations),
            )
        )
        return list(db.execute(stmt).scalars().all())


def descriptor_from_row(row: SearchField) -> FieldDescriptor:
    return FieldDescriptor(
        property_name=row.property_name,
        abbreviation=row.abbreviation,
        searchable=bool(row.searchable),
        searchable_field_types=tuple(FieldType(tag) for tag in (row.searchable_field_types or ())),
        facet_field_type=FieldType(row.facet_field_type) if row.facet_field_type else None,
        translatable=bool(row.translatable),
        entity=row.entity,
    )


class SqlFieldRegistry:
    """
    Field descriptors for product fields that are searchable, faceted, or both.

    Descriptors are plain values so they stay usable after the page's session closes.
    """

    def __init__(self, entity="product"):
        self.entity = entity

    def all_searchable_field_descriptors(self, db):
        stmt = (
            select(SearchField)
            .where(
                SearchField.entity == self.entity,
                or_(SearchField.searchable == true(), SearchField.facet_field_type.is_not(None)),
            )
            .order_by(SearchField.id)
        )
        return [descriptor_from_row(row) for row in db.execute(stmt).scalars()]


class SqlLocaleDirectory:
    def all_locales(self, db):
        stmt = select(LocaleRow).order_by(LocaleRow.code)
        return [Locale(code=row.code, is_default=bool(row.default_flag)) for row in db.execute(stmt).scalars()]


class CatalogPaginator:
    """
    Pages through active catalog items of a fixed page size.

    Page `n` covers items [n * page_size, (n + 1) * page_size) in id order.
    """

    def __init__(self, store: CatalogStore | None = None, page_size: int = 100):
        if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size < 1:
            raise ValueError(f"page_size must be a positive integer, got {page_size!r}")
        self.store = store or SqlCatalogStore()
        self.page_size = page_size

    def count(self, db, as_of) -> int:
        return self.store.count_active(db, as_of)

    def page(self, db, page_index: int, as_of, page_size: int | None = None) -> Sequence:
        if page_index < 0:
            raise ValueError(f"page_index must not be negative, got {page_index}")
        page_size = page_size or self.page_size
        logger.debug("Reading catalog page=%s page_size=%s", page_index, page_size)
        return self.store.page_active(db, page_index, page_size, as_of)

    def page_count(self, total: int) -> int:
        """Pages needed for `total` items: pages n with n * page_size < total."""
        return -(-max(total, 0) // self.page_size)
