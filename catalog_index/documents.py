"""
Index document construction.

One catalog item becomes one IndexDocument:

1. identity fields (namespace, id, product_id) plus whatever extension
   handlers attach;
2. category fields: the direct ("explicit") categories with the item's
   position in each, then every category in the ancestor closure;
3. one field per (descriptor, searchable type, locale prefix);
4. one facet field per (descriptor, locale prefix) unless step 3 already
   produced a field with that exact name.

A descriptor whose value cannot be resolved is skipped; the rest of the
document is still built. Failures attaching identity fields are not caught.
"""

from __future__ import annotations

import datetime
import decimal
import enum
import logging
from typing import Any, Iterable, Sequence

from catalog_index.ambient import IndexingContext
from catalog_index.extensions import ExtensionManager
from catalog_index.field_values import FieldValueResolver
from catalog_index.fields import (
    CATEGORY_FIELD,
    EXPLICIT_CATEGORY_FIELD,
    ID_FIELD,
    NAMESPACE_FIELD,
    PRODUCT_ID_FIELD,
    FieldDescriptor,
    Locale,
    category_sort_field_name,
    document_id,
    facet_property_name,
    searchable_property_name,
)
from catalog_index.metrics import record_field_resolution_failure

logger = logging.getLogger("catalog-documents")

_MULTI_VALUE_TYPES = (list, tuple, set, frozenset)


def normalize_value(value: Any) -> Any:
    """Convert a resolved value to something the engine accepts as JSON."""
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    return value


class IndexDocument:
    """
    Generated field name -> value, or list of values for multi-valued fields.

    Adding a second value under an existing name makes the field multi-valued.
    None values are never stored.
    """

    def __init__(self):
        self._fields: dict[str, Any] = {}

    def add_field(self, name: str, value: Any) -> None:
        if isinstance(value, _MULTI_VALUE_TYPES):
            members = value
            if isinstance(value, (set, frozenset)):
                members = sorted(value, key=repr)
            for member in members:
                self.add_field(name, member)
            return
        if value is None:
            return

        value = normalize_value(value)
        if name not in self._fields:
            self._fields[name] = value
        elif isinstance(self._fields[name], list):
            self._fields[name].append(value)
        else:
            self._fields[name] = [self._fields[name], value]

    def get(self, name: str, default: Any = None) -> Any:
        return self._fields.get(name, default)

    def field_names(self) -> set[str]:
        return set(self._fields)

    def to_dict(self) -> dict[str, Any]:
        return {name: list(value) if isinstance(value, list) else value for name, value in self._fields.items()}

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def __getitem__(self, name: str) -> Any:
        return self._fields[name]

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"IndexDocument({self._fields!r})"


def category_closure(categories: Iterable[Any]) -> list[Any]:
    """
    Every category reachable from `categories` through parent links,
    including the starting categories themselves.

    The graph may contain diamonds (shared ancestors); each category appears
    once, keyed by id. Cycles in bad data terminate because visited categories
    are skipped.
    """
    closure = {}
    pending = list(categories)
    while pending:
        category = pending.pop()
        if category is None or category.id in closure:
            continue
        closure[category.id] = category
        pending.extend(getattr(category, "parent_categories", None) or ())
    return list(closure.values())


def position_in_category(item: Any, category: Any) -> int:
    """Zero-based position of `item` in the category's ordered products, or -1."""
    for index, xref in enumerate(getattr(category, "product_xrefs", None) or ()):
        if xref.product_id == item.id:
            return index
    return -1


class DocumentBuilder:
    def __init__(
        self,
        resolver: FieldValueResolver | None = None,
        extensions: ExtensionManager | None = None,
        namespace: str = "d",
    ):
        self.extensions = extensions or ExtensionManager()
        self.resolver = resolver or FieldValueResolver(self.extensions)
        self.namespace = namespace

    def build(
        self,
        item: Any,
        descriptors: Sequence[FieldDescriptor],
        locales: Sequence[Locale],
        context: IndexingContext | None = None,
    ) -> IndexDocument:
        document = IndexDocument()
        self.attach_basic_fields(item, document, context)

        # Names written by the searchable pass; a facet with the same name is not added again.
        added_properties: set[str] = set()

        for descriptor in descriptors:
            try:
                self._add_searchable_fields(item, descriptor, locales, document, added_properties, context)
                self._add_facet_fields(item, descriptor, locales, document, added_properties, context)
            except Exception:
                record_field_resolution_failure(descriptor.qualified_name)
                logger.debug(
                    "Could not get value for property[%s] for product id[%s]",
                    descriptor.qualified_name,
                    item.id,
                    exc_info=True,
                )

        return document

    def attach_basic_fields(self, item: Any, document: IndexDocument, context: IndexingContext | None = None) -> None:
        namespace = context.namespace if context is not None else self.namespace
        document.add_field(NAMESPACE_FIELD, namespace)
        document.add_field(ID_FIELD, document_id(namespace, item.id))
        document.add_field(PRODUCT_ID_FIELD, item.id)
        self.extensions.attach_additional_basic_fields(item, document, context)

        direct_categories = []
        for xref in getattr(item, "parent_category_xrefs", None) or ():
            category = xref.category
            direct_categories.append(category)
            document.add_field(EXPLICIT_CATEGORY_FIELD, category.id)
            document.add_field(category_sort_field_name(category.id), position_in_category(item, category))

        for category_id in sorted(category.id for category in category_closure(direct_categories)):
            document.add_field(CATEGORY_FIELD, category_id)

    def _add_searchable_fields(self, item, descriptor, locales, document, added_properties, context):
        for field_type in descriptor.effective_searchable_types():
            values = self.resolver.resolve(item, descriptor, field_type, locales, context)
            for prefix, value in values.items():
                name = searchable_property_name(descriptor, field_type, prefix or "")
                document.add_field(name, value)
                added_properties.add(name)

    def _add_facet_fields(self, item, descriptor, locales, document, added_properties, context):
        facet_type = descriptor.facet_field_type
        if facet_type is None:
            return
        values = self.resolver.resolve(item, descriptor, facet_type, locales, context)
        for prefix, value in values.items():
            name = facet_property_name(descriptor, prefix or "")
            if name not in added_properties:
                document.add_field(name, value)
