"""
Field value resolution.

resolve() returns a mapping of locale prefix -> value for one descriptor on
one item, e.g. {"en_US": "A description", "es_ES": "Una descripcion"} for a
translated field, or {"": "Acme"} for a plain one.

Extension handlers get the first chance; when none handles the descriptor
the property path is read from the item. Resolution errors propagate: the
document builder decides what a failure means for the document.
"""

from __future__ import annotations

from typing import Any, Sequence

from catalog_index.config import MAPPED_LIST_PROPERTIES
from catalog_index.extensions import ExtensionManager, Handled, IndexExtensionHandler, NOT_HANDLED
from catalog_index.fields import FieldDescriptor, FieldType, Locale
from catalog_index.property_path import PropertyPath


class FieldValueResolver:
    def __init__(self, extensions: ExtensionManager | None = None, mapped_lists: Sequence[str] = MAPPED_LIST_PROPERTIES):
        self.extensions = extensions or ExtensionManager()
        self.mapped_lists = tuple(mapped_lists)

    def resolve(
        self,
        item: Any,
        descriptor: FieldDescriptor,
        field_type: FieldType,
        locales: Sequence[Locale],
        context=None,
    ) -> dict[str, Any]:
        result = self.extensions.resolve_property_values(item, descriptor, field_type, locales, context)
        if isinstance(result, Handled):
            return dict(result.values)
        return {"": self.default_value(item, descriptor)}

    def default_value(self, item: Any, descriptor: FieldDescriptor) -> Any:
        return PropertyPath(descriptor.property_name, self.mapped_lists).resolve(item)


class TranslationHandler(IndexExtensionHandler):
    """
    Produces one value per locale for translatable fields.

    Each locale gets the item's translation for the field when there is one,
    otherwise the untranslated property value. Locales that end up with no
    value at all are left out.
    """

    priority = 100

    def __init__(self, mapped_lists: Sequence[str] = MAPPED_LIST_PROPERTIES):
        self.mapped_lists = tuple(mapped_lists)

    def _translations(self, item, descriptor) -> dict[str, Any]:
        found = {}
        for translation in getattr(item, "translations", None) or ():
            if translation.field_name == descriptor.property_name:
                found[translation.locale_code] = translation.translated_value
        return found

    def resolve_property_values(self, item, descriptor, field_type, locales, context=None):
        if not descriptor.translatable:
            return NOT_HANDLED

        translations = self._translations(item, descriptor)
        fallback = PropertyPath(descriptor.property_name, self.mapped_lists).resolve(item)

        values = {}
        for locale in locales:
            value = translations.get(locale.code)
            if value is None:
                value = fallback
            if value is not None:
                values[locale.code] = value
        return Handled(values)
