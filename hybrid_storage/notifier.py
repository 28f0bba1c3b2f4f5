"""Polling-based change notification.

Neither backend can push changes, so subscriptions are emulated by polling the
full collection on a fixed interval and diffing it against the previous
snapshot. Delivery is best-effort: changes that happen and revert between two
ticks are never reported, and several updates to one item between ticks
coalesce into a single UPDATE.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Generic, Optional

from hybrid_storage.protocol import (
    ChangeCallback,
    ChangeEvent,
    ChangeKind,
    IdGetter,
    T,
)

logger = logging.getLogger(__name__)


def diff_snapshots(
    previous: Sequence[T], current: Sequence[T], get_id: IdGetter[T]
) -> list[ChangeEvent[T]]:
    """Compute the change events that turn previous into current.

    Items are matched by identity and compared with ``!=``, which for dicts
    and lists is structural and ignores key order. Entity types must define
    value equality: the snapshot holds deep copies, so a class that falls
    back to identity comparison reports an UPDATE for every item on every
    tick.

    Args:
        previous: The snapshot from the last tick.
        current: The freshly fetched collection.
        get_id: Identity extractor.

    Returns:
        All INSERT events (in current order), then UPDATE events (in current
        order), then DELETE events (in previous order).
    """
    previous_by_id = {get_id(item): item for item in previous}
    current_ids = {get_id(item) for item in current}

    inserted: list[ChangeEvent[T]] = []
    updated: list[ChangeEvent[T]] = []
    for item in current:
        item_id = get_id(item)
        if item_id not in previous_by_id:
            inserted.append(ChangeEvent(ChangeKind.INSERT, new=item))
        elif previous_by_id[item_id] != item:
            updated.append(ChangeEvent(ChangeKind.UPDATE, new=item))

    deleted = [
        ChangeEvent(ChangeKind.DELETE, old=item)
        for item in previous
        if get_id(item) not in current_ids
    ]
    return inserted + updated + deleted


class ChangeNotifier(Generic[T]):
    """Polls a collection and reports what changed between ticks.

    The notifier is Idle until start() and Polling until stop(); there is no
    automatic timeout. Ticks never overlap: the polling task awaits each tick
    before sleeping again, and a tick() issued while another is in flight
    returns immediately without fetching.

    Once stop() returns the callback is never invoked again, including for a
    fetch that was already in flight.

    Attributes:
        interval: Seconds between ticks.
        name: Label used in log messages.

    Example:
        notifier = ChangeNotifier(backend.get_items, get_id, print, interval=5.0)
        notifier.start()
        ...
        notifier.stop()
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[list[T]]],
        get_id: IdGetter[T],
        callback: ChangeCallback[T],
        *,
        interval: float = 10.0,
        name: str = "collection",
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval!r}")
        self.interval = interval
        self.name = name
        self._fetch = fetch
        self._get_id = get_id
        self._callback = callback
        self._snapshot: tuple[T, ...] = ()
        self._task: Optional[asyncio.Task[None]] = None
        self._in_flight = False
        self._stopped = False

    @property
    def polling(self) -> bool:
        """True between start() and stop()."""
        return self._task is not None and not self._stopped

    @property
    def snapshot(self) -> tuple[T, ...]:
        """The collection as seen by the last successful tick."""
        return self._snapshot

    def start(self) -> None:
        """Begin polling on the running event loop.

        Raises:
            RuntimeError: If there is no running event loop, or the notifier
                was already started or stopped.
        """
        if self._task is not None or self._stopped:
            raise RuntimeError(f"Notifier for {self.name} cannot be restarted")
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name=f"poll-{self.name}")
        logger.debug("Started polling %s every %.1fs", self.name, self.interval)

    def stop(self) -> None:
        """Stop polling and drop the snapshot. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._snapshot = ()
        logger.debug("Stopped polling %s", self.name)

    async def _run(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.interval)
            await self.tick()

    async def tick(self) -> list[ChangeEvent[T]]:
        """Run one poll: fetch, diff, swap snapshot, emit.

        Returns:
            The events emitted by this tick. Empty if the fetch or diff failed, the
            notifier was stopped, or another tick was in flight.
        """
        if self._stopped or self._in_flight:
            return []

        self._in_flight = True
        try:
            current = list(await self._fetch())
            if self._stopped:
                return []
            events = diff_snapshots(self._snapshot, current, self._get_id)
            snapshot = tuple(copy.deepcopy(current))
        except Exception:
            logger.exception("Polling error for %s, keeping previous snapshot", self.name)
            return []
        finally:
            self._in_flight = False

        self._snapshot = snapshot

        if events:
            logger.debug("%d change(s) detected in %s", len(events), self.name)
        for event in events:
            if self._stopped:
                break
            try:
                self._callback(event)
            except Exception:
                logger.exception("Change callback for %s raised", self.name)
        return events
