"""
Ambient consideration context.

Request handlers and some pricing/date collaborators share process-wide state
describing "who is asking": locale, currency, pricing overrides and the
services that compute dynamic prices and active dates. A background rebuild
running in the same process must not leak its own state into that, so the
rebuild snapshots it first and restores it on every exit path.

Code written for the rebuild itself gets an explicit IndexingContext instead
of reading ambient state.
"""

from __future__ import annotations

import datetime
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping

from catalog_index.fields import Locale


@dataclass(frozen=True)
class ConsiderationContext:
    locale: str | None = None
    currency: str | None = None
    pricing: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    pricing_service: Any = None
    active_dates_service: Any = None


@dataclass(frozen=True)
class IndexingContext:
    """Everything a document build may depend on besides the item itself."""

    namespace: str
    as_of: datetime.datetime
    locales: tuple[Locale, ...] = ()


_lock = threading.Lock()
_current = ConsiderationContext()


def get_context() -> ConsiderationContext:
    return _current


def set_context(context: ConsiderationContext) -> None:
    global _current
    with _lock:
        _current = context


def update_context(**changes: Any) -> ConsiderationContext:
    """Replace selected members of the current context and return the new one."""
    global _current
    with _lock:
        _current = replace(_current, **changes)
        return _current


def snapshot() -> ConsiderationContext:
    # Contexts are immutable, so holding the reference is a complete snapshot.
    return _current


def restore(saved: ConsiderationContext) -> None:
    set_context(saved)


@contextmanager
def preserved_context():
    saved = snapshot()
    try:
        yield saved
    finally:
        restore(saved)
