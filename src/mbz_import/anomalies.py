"""
Structured failure values for the importer.

Store and I/O failures are captured as Anomaly values instead of being
raised through worker tasks. The orchestrator turns the first anomaly of a
run into an ImportFailed exception.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Category(Enum):
    """Category of an anomaly."""

    INCORRECT = "incorrect"
    NOT_FOUND = "not-found"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"
    INTERRUPTED = "interrupted"
    FAULT = "fault"


@dataclass(frozen=True)
class Anomaly:
    """A failure captured as data."""

    category: Category
    message: str
    entity_type: str | None = None
    batch_id: str | None = None

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        entity_type: str | None = None,
        batch_id: str | None = None,
    ) -> Anomaly:
        """Map an exception onto an anomaly category."""
        if isinstance(exc, StoreError):
            category = exc.category
        elif isinstance(exc, UnresolvableValueError):
            category = Category.INCORRECT
        elif isinstance(exc, FileNotFoundError):
            category = Category.NOT_FOUND
        elif isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
            category = Category.INTERRUPTED
        elif isinstance(exc, ConnectionError):
            category = Category.UNAVAILABLE
        elif isinstance(exc, (ValueError, KeyError, TypeError)):
            category = Category.INCORRECT
        else:
            category = Category.FAULT
        message = str(exc) or type(exc).__name__
        return cls(category, message, entity_type=entity_type, batch_id=batch_id)

    def describe(self) -> str:
        """One-line description with every known detail."""
        parts = [f"[{self.category.value}]"]
        if self.entity_type:
            parts.append(f"type={self.entity_type}")
        if self.batch_id:
            parts.append(f"batch={self.batch_id}")
        parts.append(self.message)
        return " ".join(parts)


class StoreError(Exception):
    """Raised by store implementations; carries an anomaly category."""

    def __init__(self, category: Category, message: str):
        super().__init__(message)
        self.category = category


class UnresolvableValueError(ValueError):
    """A source value has no mapping in its enum or super-enum table."""

    def __init__(self, fragment: dict[str, Any] | None, attribute: str, value: Any):
        self.fragment = fragment
        self.attribute = attribute
        self.value = value
        super().__init__(
            f"Could not import {attribute}={value!r} (entity so far: {fragment!r})"
        )


class ImportFailed(Exception):
    """Raised by the orchestrator when a type fails to extract or load."""

    def __init__(self, anomaly: Anomaly):
        super().__init__(anomaly.describe())
        self.anomaly = anomaly
