"""Local storage backend.

Implements the StorageBackend contract over a persisted key-value store, with
the whole collection kept as a single list under one key. Store calls are
blocking, so each one runs in a worker thread via asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Iterable
from typing import Generic, Optional

from hybrid_storage.notifier import ChangeNotifier
from hybrid_storage.protocol import (
    CancelFn,
    ChangeCallback,
    IdGetter,
    InsertMode,
    KeyValueStore,
    T,
)

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_POLL_INTERVAL = 10.0


class LocalBackend(Generic[T]):
    """Storage backend for one entity collection in a key-value store.

    Every operation re-reads the collection from the store, so two instances
    sharing a store and key see each other's writes. Concurrent saves race on
    the read-modify-write and the last writer wins.

    Attributes:
        store: The persisted key-value helpers.
        storage_key: The slot holding this collection.
        insert_mode: "append" adds new items at the end, "prepend" at the front.
        max_items: If set, the collection is cut to this many items after
            each save, dropping the oldest insertions.
        poll_interval: Seconds between change notifier ticks.

    Example:
        runs = LocalBackend(store, "runs", lambda run: run["id"],
                            insert_mode="prepend", max_items=50)
        await runs.initialize()
        await runs.save_item({"id": "run-1", "status": "running"})
    """

    def __init__(
        self,
        store: KeyValueStore,
        storage_key: str,
        get_id: IdGetter[T],
        default_items: Iterable[T] = (),
        *,
        insert_mode: InsertMode = "append",
        max_items: Optional[int] = None,
        poll_interval: float = DEFAULT_LOCAL_POLL_INTERVAL,
    ) -> None:
        if insert_mode not in ("append", "prepend"):
            raise ValueError(
                f"Unknown insert mode: {insert_mode!r}. Expected 'append' or 'prepend'."
            )
        if max_items is not None and max_items < 1:
            raise ValueError(f"max_items must be at least 1, got {max_items!r}")
        self.store = store
        self.storage_key = storage_key
        self.get_id = get_id
        self.default_items: list[T] = copy.deepcopy(list(default_items))
        self.insert_mode = insert_mode
        self.max_items = max_items
        self.poll_interval = poll_interval

    async def _read(self) -> list[T]:
        items = await asyncio.to_thread(self.store.read, self.storage_key, None)
        if items is None:
            return copy.deepcopy(self.default_items)
        if not isinstance(items, list):
            logger.warning(
                "Slot %r does not hold a list, using defaults", self.storage_key
            )
            return copy.deepcopy(self.default_items)
        return items

    async def get_items(self) -> list[T]:
        return await self._read()

    async def save_item(self, item: T) -> T:
        """Insert item, or replace the entry with the same identity in place.

        Args:
            item: The entity to store.

        Returns:
            The item, unchanged.
        """
        items = await self._read()
        item_id = self.get_id(item)
        index = next(
            (i for i, existing in enumerate(items) if self.get_id(existing) == item_id),
            None,
        )

        if index is not None:
            items[index] = item
        elif self.insert_mode == "prepend":
            items.insert(0, item)
        else:
            items.append(item)

        if self.max_items is not None and len(items) > self.max_items:
            # Oldest entries sit at the end when prepending, at the front when appending
            if self.insert_mode == "prepend":
                del items[self.max_items:]
            else:
                del items[:-self.max_items]

        await asyncio.to_thread(self.store.write, self.storage_key, items)
        return item

    async def delete_item(self, item_id: str) -> bool:
        """Remove every entry with the given identity.

        Deleting an identity that isn't stored is not an error.

        Returns:
            Always True.
        """
        items = await self._read()
        remaining = [item for item in items if self.get_id(item) != item_id]
        await asyncio.to_thread(self.store.write, self.storage_key, remaining)
        return True

    async def get_item_by_id(self, item_id: str) -> Optional[T]:
        for item in await self._read():
            if self.get_id(item) == item_id:
                return item
        return None

    def subscribe(self, callback: ChangeCallback[T]) -> CancelFn:
        """Poll this collection and report changes to callback.

        Must be called from a running event loop.

        Returns:
            A function that stops the subscription.
        """
        notifier: ChangeNotifier[T] = ChangeNotifier(
            self.get_items,
            self.get_id,
            callback,
            interval=self.poll_interval,
            name=f"local:{self.storage_key}",
        )
        notifier.start()
        return notifier.stop

    async def initialize(self) -> None:
        """Seed the slot with the default items if it was never written."""
        if not await asyncio.to_thread(self.store.exists, self.storage_key):
            logger.debug("Seeding %r with %d default items",
                         self.storage_key, len(self.default_items))
            await asyncio.to_thread(self.store.write, self.storage_key, self.default_items)
