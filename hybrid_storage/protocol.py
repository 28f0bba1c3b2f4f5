"""Protocols and type definitions for storage backends.

This module defines the interfaces and data structures shared by the local,
remote and hybrid backends. All backends must implement the StorageBackend
protocol; all persisted key-value helpers must implement KeyValueStore.
"""

from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, Literal, Optional, Protocol, TypeVar

T = TypeVar("T")

InsertMode = Literal["append", "prepend"]

IdGetter = Callable[[T], str]
CancelFn = Callable[[], None]


class ChangeKind(str, enum.Enum):
    """Kind of change detected between two snapshots of a collection."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent(Generic[T]):
    """A single change derived by diffing two snapshots.

    Attributes:
        kind: What happened to the item.
        new: The current item, set for INSERT and UPDATE.
        old: The previous item, set for DELETE.
    """

    kind: ChangeKind
    new: Optional[T] = None
    old: Optional[T] = None


ChangeCallback = Callable[[ChangeEvent[T]], None]


class KeyValueStore(Protocol):
    """Protocol for persisted key-value helpers.

    A store holds a namespace of named slots, each containing one serialized
    value. Reads never raise on missing or corrupt data, writes are
    best-effort.
    """

    def read(self, key: str, default: Any) -> Any:
        """Read and deserialize the value stored at key.

        Args:
            key: The slot name.
            default: Value returned when the slot is absent or unreadable.

        Returns:
            The stored value, or default.
        """
        ...

    def write(self, key: str, value: Any) -> None:
        """Serialize value and store it at key.

        Failures are logged and swallowed; callers must not depend on the
        write having succeeded.

        Args:
            key: The slot name.
            value: A JSON-serializable value.
        """
        ...

    def exists(self, key: str) -> bool:
        """Return True if the slot at key has ever been written."""
        ...


class StorageBackend(Protocol[T]):
    """Protocol for entity storage backends.

    All backends (local, remote and hybrid) expose the same CRUD+subscribe
    contract over one collection of entities of type T.
    """

    async def get_items(self) -> list[T]:
        """Return the full collection.

        Raises:
            Exception: Remote backends raise on transport failure.
        """
        ...

    async def save_item(self, item: T) -> T:
        """Insert or update item, matched by identity, and return it."""
        ...

    async def delete_item(self, item_id: str) -> bool:
        """Delete every entry with the given identity.

        Returns:
            True if the delete was carried out.
        """
        ...

    async def get_item_by_id(self, item_id: str) -> Optional[T]:
        """Return the entry with the given identity, or None."""
        ...

    def subscribe(self, callback: ChangeCallback[T]) -> CancelFn:
        """Start delivering change events to callback.

        Returns:
            A cancellation function. Calling it more than once is safe.
        """
        ...

    async def initialize(self) -> None:
        """Prepare the backend for use. Safe to call multiple times."""
        ...
