"""Remote storage backend.

Implements the StorageBackend contract over an HTTP resource exposing a
collection endpoint (``/<resource>``) and a per-item endpoint
(``/<resource>/<id>``). Success is decided by HTTP status alone.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Generic, Optional
from urllib.parse import quote

import httpx

from hybrid_storage.notifier import ChangeNotifier
from hybrid_storage.protocol import CancelFn, ChangeCallback, IdGetter, T

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_POLL_INTERVAL = 5.0

RequestTransform = Callable[[Any], Any]
ResponseTransform = Callable[[Any], list]


class RemoteStorageError(Exception):
    """Raised when the remote resource answers with a non-success status.

    Attributes:
        resource: The resource path segment that failed.
        status_code: The HTTP status, if a response was received.
    """

    def __init__(
        self, message: str, resource: str, status_code: Optional[int] = None
    ) -> None:
        super().__init__(message)
        self.resource = resource
        self.status_code = status_code


class RemoteBackend(Generic[T]):
    """Storage backend talking to a REST resource.

    The httpx.AsyncClient is owned by the caller, who configures its base_url,
    timeout and headers and is responsible for closing it.

    Attributes:
        client: The HTTP client.
        resource: Path segment of the collection endpoint, e.g. "test-runs".
        transform_request: Maps an entity to its wire payload before sending.
        transform_response: Maps a decoded collection payload to a list of
            entities. Applied to fetched collections, and to saved records
            wrapped in a one-element list.
        poll_interval: Seconds between change notifier ticks.

    Example:
        async with httpx.AsyncClient(base_url="http://localhost:3001/api") as client:
            runs = RemoteBackend(client, "test-runs", lambda run: run["id"])
            items = await runs.get_items()
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        resource: str,
        get_id: IdGetter[T],
        *,
        transform_request: Optional[RequestTransform] = None,
        transform_response: Optional[ResponseTransform] = None,
        poll_interval: float = DEFAULT_REMOTE_POLL_INTERVAL,
    ) -> None:
        self.client = client
        self.resource = resource.strip("/")
        self.get_id = get_id
        self.transform_request = transform_request
        self.transform_response = transform_response
        self.poll_interval = poll_interval

    def _item_url(self, item_id: str) -> str:
        return f"/{self.resource}/{quote(item_id, safe='')}"

    async def get_items(self) -> list[T]:
        """Fetch the whole collection.

        Raises:
            RemoteStorageError: If the server answers with a non-success status.
            httpx.HTTPError: If the request could not be completed.
        """
        response = await self.client.get(f"/{self.resource}")
        if not response.is_success:
            raise RemoteStorageError(
                f"fetch failed for {self.resource}",
                self.resource,
                response.status_code,
            )
        data = response.json()
        return self.transform_response(data) if self.transform_response else data

    async def save_item(self, item: T) -> T:
        """Create or update item.

        Items with a non-empty identity are PUT to their own URL; items
        without one are POSTed to the collection so the server assigns it.

        Returns:
            The record echoed by the server, or item itself if the response
            has no body.

        Raises:
            RemoteStorageError: If the server answers with a non-success status.
            httpx.HTTPError: If the request could not be completed.
        """
        item_id = self.get_id(item)
        payload = self.transform_request(item) if self.transform_request else item

        if item_id:
            response = await self.client.put(self._item_url(item_id), json=payload)
        else:
            response = await self.client.post(f"/{self.resource}", json=payload)

        if not response.is_success:
            raise RemoteStorageError(
                f"save failed for {self.resource}",
                self.resource,
                response.status_code,
            )
        if not response.content:
            return item

        data = response.json()
        if self.transform_response is None:
            return data
        transformed = self.transform_response([data])
        return transformed[0] if transformed else item

    async def delete_item(self, item_id: str) -> bool:
        """Delete the item at its own URL.

        Returns:
            Whether the server answered with a success status.

        Raises:
            httpx.HTTPError: If the request could not be completed.
        """
        response = await self.client.delete(self._item_url(item_id))
        if not response.is_success:
            logger.info(
                "Delete of %s/%s answered %d", self.resource, item_id, response.status_code
            )
        return response.is_success

    async def get_item_by_id(self, item_id: str) -> Optional[T]:
        for item in await self.get_items():
            if self.get_id(item) == item_id:
                return item
        return None

    def subscribe(self, callback: ChangeCallback[T]) -> CancelFn:
        """Poll the collection endpoint and report changes to callback.

        Raises:
            RemoteStorageError: If the client is already closed.
            RuntimeError: If there is no running event loop.
        """
        if self.client.is_closed:
            raise RemoteStorageError(
                f"subscribe failed for {self.resource}", self.resource
            )
        notifier: ChangeNotifier[T] = ChangeNotifier(
            self.get_items,
            self.get_id,
            callback,
            interval=self.poll_interval,
            name=f"remote:{self.resource}",
        )
        notifier.start()
        return notifier.stop

    async def initialize(self) -> None:
        # Remote state has nothing to seed
        pass
