"""Hybrid storage backend.

Runs every operation against a primary (remote) backend and substitutes the
secondary (local) backend's answer when the primary raises. Fallback is decided
per call, so one workflow may hit the remote for one call and the local store
for the next. Nothing written locally during an outage is replayed to the
remote once it recovers.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Generic, Optional, TypeVar

from hybrid_storage.protocol import (
    CancelFn,
    ChangeCallback,
    StorageBackend,
    T,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")

ErrorHook = Callable[[Exception, str], None]
FallbackHook = Callable[[str], None]


def _noop() -> None:
    pass


class HybridBackend(Generic[T]):
    """Storage backend that prefers remote and falls back to local.

    A successful remote answer is always returned as is, even an empty
    collection or a False delete result; only a raised exception triggers the
    fallback. The remote failure is reported through on_fallback (or a
    warning log when no hook is set) and on_error, never to the caller. If the
    local backend then fails too, its exception propagates.

    Attributes:
        remote: The primary backend.
        local: The fallback backend.
        on_error: Called with (error, context) on every remote failure.
        on_fallback: Called with a reason string on every fallback.

    Example:
        runs = HybridBackend(remote_runs, local_runs,
                             on_fallback=lambda reason: print("offline:", reason))
        await runs.initialize()
        items = await runs.get_items()
    """

    def __init__(
        self,
        remote: StorageBackend[T],
        local: StorageBackend[T],
        *,
        on_error: Optional[ErrorHook] = None,
        on_fallback: Optional[FallbackHook] = None,
    ) -> None:
        self.remote = remote
        self.local = local
        self.on_error = on_error
        self.on_fallback = on_fallback

    def _report(self, error: Exception, context: str) -> None:
        reason = str(error) or type(error).__name__
        try:
            if self.on_fallback is not None:
                self.on_fallback(reason)
            else:
                logger.warning("%s, falling back to local storage: %s", context, reason)
            if self.on_error is not None:
                self.on_error(error, context)
        except Exception:
            logger.exception("Storage observer hook raised")

    async def _with_fallback(
        self,
        operation: str,
        remote_call: Callable[[], Awaitable[R]],
        local_call: Callable[[], Awaitable[R]],
    ) -> R:
        try:
            return await remote_call()
        except Exception as e:
            self._report(e, f"Remote {operation} failed")
        return await local_call()

    async def get_items(self) -> list[T]:
        return await self._with_fallback(
            "get_items", self.remote.get_items, self.local.get_items
        )

    async def save_item(self, item: T) -> T:
        return await self._with_fallback(
            "save_item",
            lambda: self.remote.save_item(item),
            lambda: self.local.save_item(item),
        )

    async def delete_item(self, item_id: str) -> bool:
        return await self._with_fallback(
            "delete_item",
            lambda: self.remote.delete_item(item_id),
            lambda: self.local.delete_item(item_id),
        )

    async def get_item_by_id(self, item_id: str) -> Optional[T]:
        return await self._with_fallback(
            "get_item_by_id",
            lambda: self.remote.get_item_by_id(item_id),
            lambda: self.local.get_item_by_id(item_id),
        )

    def subscribe(self, callback: ChangeCallback[T]) -> CancelFn:
        """Subscribe through the remote backend, or the local one if that fails.

        Only failure to start the subscription triggers the fallback; failed
        polls of a running subscription are handled by its notifier. This
        method never raises: if neither backend can subscribe it returns a
        cancellation function that does nothing.
        """
        try:
            cancel = self.remote.subscribe(callback)
            if callable(cancel):
                return cancel
            logger.warning("Remote subscribe returned %r, using local storage", cancel)
        except Exception as e:
            self._report(e, "Remote subscribe failed")

        try:
            cancel = self.local.subscribe(callback)
        except Exception:
            logger.exception("Local subscribe failed, subscription is inactive")
            return _noop
        return cancel if callable(cancel) else _noop

    async def initialize(self) -> None:
        """Initialize both backends, since either may serve the next call."""
        await self.remote.initialize()
        await self.local.initialize()
