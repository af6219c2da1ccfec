"""
Field descriptors and the generated field-name scheme.

Generated names join the non-empty parts of (abbreviation, type suffix,
locale prefix) with "_":

    description, TEXT,   "en_US"  ->  description_en_US
    color,       STRING, ""       ->  color_s
    color,       STRING, "es_ES"  ->  color_s_es_ES

The same triple always yields the same name; queries depend on it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

NAMESPACE_FIELD = "namespace"
ID_FIELD = "id"
PRODUCT_ID_FIELD = "product_id"
CATEGORY_FIELD = "category"
EXPLICIT_CATEGORY_FIELD = "explicit_category"


class FieldType(str, enum.Enum):
    TEXT = "t"
    STRING = "s"
    STRINGS = "ss"
    SORTABLE = "sort"
    INTEGER = "i"
    LONG = "l"
    DECIMAL = "d"
    PRICE = "p"
    BOOLEAN = "b"
    DATE = "dt"

    @property
    def suffix(self) -> str:
        # Analyzed text is the default representation and carries no suffix.
        return "" if self is FieldType.TEXT else self.value


@dataclass(frozen=True)
class Locale:
    code: str
    is_default: bool = False


@dataclass(frozen=True)
class FieldDescriptor:
    property_name: str
    abbreviation: str
    searchable: bool = False
    searchable_field_types: tuple[FieldType, ...] = ()
    facet_field_type: FieldType | None = None
    translatable: bool = False
    entity: str = "product"

    @property
    def qualified_name(self) -> str:
        return f"{self.entity}.{self.property_name}"

    def effective_searchable_types(self) -> tuple[FieldType, ...]:
        """Searchable fields without explicit types are indexed as text."""
        if not self.searchable:
            return ()
        return self.searchable_field_types or (FieldType.TEXT,)


def property_name(descriptor: FieldDescriptor, field_type: FieldType, prefix: str = "") -> str:
    parts = (descriptor.abbreviation, field_type.suffix, prefix)
    return "_".join(part for part in parts if part)


def searchable_property_name(descriptor: FieldDescriptor, field_type: FieldType, prefix: str = "") -> str:
    return property_name(descriptor, field_type, prefix)


def facet_property_name(descriptor: FieldDescriptor, prefix: str = "") -> str:
    if descriptor.facet_field_type is None:
        raise ValueError(f"{descriptor.qualified_name} has no facet field type")
    return property_name(descriptor, descriptor.facet_field_type, prefix)


def category_sort_field_name(category_id) -> str:
    return f"category_{category_id}_sort"


def document_id(namespace: str, item_id) -> str:
    return f"{namespace}_{item_id}"
