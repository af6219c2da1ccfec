"""
Extension points for document building.

Handlers subclass IndexExtensionHandler and override the hooks they care
about. The ExtensionManager calls handlers in priority order (lower first,
registration order breaks ties):

- attach_additional_basic_fields: every handler runs until one returns
  ExtensionResult.HANDLED. HANDLED_CONTINUE and NOT_HANDLED keep going.
- resolve_property_values: the first handler returning Handled(values) wins;
  if none does, the caller falls back to its default lookup.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from importlib import metadata
from typing import Any, Iterable, Mapping, Sequence

from catalog_index.config import EXTENSION_ENTRY_POINT_GROUP

logger = logging.getLogger("catalog-extensions")


class ExtensionResult(enum.Enum):
    HANDLED = "handled"
    HANDLED_CONTINUE = "handled_continue"
    NOT_HANDLED = "not_handled"


NOT_HANDLED = ExtensionResult.NOT_HANDLED


@dataclass(frozen=True)
class Handled:
    """Locale prefix -> value. "" is the prefix of non-localized values."""

    values: Mapping[str, Any] = field(default_factory=dict)


class IndexExtensionHandler:
    priority = 0

    def attach_additional_basic_fields(self, item, document, context=None) -> ExtensionResult:
        return NOT_HANDLED

    def resolve_property_values(self, item, descriptor, field_type, locales, context=None) -> Handled | ExtensionResult:
        return NOT_HANDLED


def _describe(handler: object) -> str:
    return f"{type(handler).__module__}.{type(handler).__qualname__}"


class ExtensionManager:
    def __init__(self, handlers: Iterable[IndexExtensionHandler] = ()):
        self._handlers: list[IndexExtensionHandler] = []
        for handler in handlers:
            self.register(handler)

    def register(self, handler: IndexExtensionHandler) -> None:
        self._handlers.append(handler)
        # sort() is stable, so equal priorities keep registration order.
        self._handlers.sort(key=lambda h: getattr(h, "priority", 0))

    @property
    def handlers(self) -> Sequence[IndexExtensionHandler]:
        return tuple(self._handlers)

    def attach_additional_basic_fields(self, item, document, context=None) -> ExtensionResult:
        outcome = NOT_HANDLED
        for handler in self._handlers:
            result = handler.attach_additional_basic_fields(item, document, context)
            if result is ExtensionResult.HANDLED:
                return result
            if result is ExtensionResult.HANDLED_CONTINUE:
                outcome = result
        return outcome

    def resolve_property_values(self, item, descriptor, field_type, locales, context=None) -> Handled | ExtensionResult:
        for handler in self._handlers:
            result = handler.resolve_property_values(item, descriptor, field_type, locales, context)
            if isinstance(result, Handled):
                return result
        return NOT_HANDLED

    def load_entry_points(self, group: str = EXTENSION_ENTRY_POINT_GROUP) -> int:
        """
        Register handlers published by installed distributions.

        An entry point may name a handler class (instantiated without
        arguments) or a ready-made instance. A plugin that fails to load is
        skipped with a warning; it must not take the rebuild down.
        """
        loaded = 0
        for entry in metadata.entry_points(group=group):
            try:
                candidate = entry.load()
                handler = candidate() if isinstance(candidate, type) else candidate
            except Exception as exc:
                logger.warning("Skipping extension handler %r: %s", entry.name, exc)
                continue
            self.register(handler)
            loaded += 1
            logger.info("Registered extension handler %s (%s)", entry.name, _describe(handler))
        return loaded
