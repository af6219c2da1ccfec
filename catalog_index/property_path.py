"""
Property path expressions used by the field registry.

A path is `segment(.segment)*`, each segment an identifier read from the
current value: a key for mappings, an attribute for everything else.

One rule on top of that: a segment naming a "mapped list" property (by
default `product_attributes`) consumes the following segment as an element
name. The list is viewed as a map keyed by each element's `name`, and the
element is read through its `value`:

    product_attributes.heat_range   ->   the value of the attribute named "heat_range"

A mapped-list element that is not present resolves to None; a plain
segment that is not present is an error.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable

from catalog_index.config import MAPPED_LIST_PROPERTIES
from catalog_index.errors import PropertyPathError

_SEGMENT = re.compile(r"[A-Za-z][A-Za-z0-9_]*\Z")


@dataclass(frozen=True)
class PathStep:
    name: str
    # Element name when `name` is a mapped-list property.
    key: str | None = None


@lru_cache(maxsize=512)
def compile_path(expression: str, mapped_lists: tuple[str, ...] = MAPPED_LIST_PROPERTIES) -> tuple[PathStep, ...]:
    if not expression:
        raise PropertyPathError("Empty property path")
    segments = expression.split(".")
    for segment in segments:
        if not _SEGMENT.match(segment):
            raise PropertyPathError(f"Invalid segment {segment!r} in property path {expression!r}")

    steps = []
    i = 0
    while i < len(segments):
        segment = segments[i]
        if segment in mapped_lists:
            if i + 1 >= len(segments):
                raise PropertyPathError(
                    f"Mapped list {segment!r} needs an element name in property path {expression!r}"
                )
            steps.append(PathStep(segment, key=segments[i + 1]))
            i += 2
        else:
            steps.append(PathStep(segment))
            i += 1
    return tuple(steps)


def _read(value: Any, name: str, expression: str) -> Any:
    if value is None:
        raise PropertyPathError(f"Null value before {name!r} in property path {expression!r}")
    if isinstance(value, Mapping):
        try:
            return value[name]
        except KeyError:
            raise PropertyPathError(f"Missing key {name!r} in property path {expression!r}") from None
    try:
        return getattr(value, name)
    except AttributeError:
        raise PropertyPathError(
            f"{type(value).__name__} has no property {name!r} (path {expression!r})"
        ) from None


def _element_name(element: Any) -> Any:
    if isinstance(element, Mapping):
        return element.get("name")
    return getattr(element, "name", None)


def map_by_name(elements: Iterable[Any] | None) -> dict[Any, Any]:
    if elements is None:
        return {}
    return {_element_name(element): element for element in elements}


class PropertyPath:
    def __init__(self, expression: str, mapped_lists: Iterable[str] = MAPPED_LIST_PROPERTIES):
        self.expression = expression
        self.steps = compile_path(expression, tuple(mapped_lists))

    def resolve(self, target: Any) -> Any:
        value = target
        for step in self.steps:
            value = _read(value, step.name, self.expression)
            if step.key is not None:
                element = map_by_name(value).get(step.key)
                if element is None:
                    return None
                value = _read(element, "value", self.expression)
        return value

    def __repr__(self) -> str:
        return f"PropertyPath({self.expression!r})"


def resolve_property(target: Any, expression: str, mapped_lists: Iterable[str] = MAPPED_LIST_PROPERTIES) -> Any:
    return PropertyPath(expression, mapped_lists).resolve(target)
