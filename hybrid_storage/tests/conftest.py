"""Shared fixtures and utilities for storage backend tests.

This module provides common test fixtures used across all backend tests,
including sample records, temporary directories, parameterized key-value
stores and an in-memory fake of the remote REST API.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio

from hybrid_storage.kv_json import JSONKeyValueStore
from hybrid_storage.kv_sqlite import SQLiteKeyValueStore
from hybrid_storage.local import LocalBackend
from hybrid_storage.protocol import KeyValueStore

Record = dict[str, Any]


def record_id(record: Record) -> str:
    """Identity extractor used throughout the tests."""
    return record.get("id") or ""


class FakeRestApi:
    """In-memory REST resource served through httpx.MockTransport.

    Attributes:
        items: The server-side collection, keyed by resource name.
        requests: Every request received, in order.
        fail_with: If set, every request answers with this status code.
        raise_error: If set, every request raises this exception.
    """

    def __init__(self) -> None:
        self.items: dict[str, list[Record]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: int | None = None
        self.raise_error: Exception | None = None
        self._next_id = 1

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"error": "unavailable"})

        parts = request.url.path.strip("/").split("/")
        # Base URL is http://api.test/api
        resource = parts[1]
        item_id = parts[2] if len(parts) > 2 else None
        collection = self.items.setdefault(resource, [])

        if request.method == "GET" and item_id is None:
            return httpx.Response(200, json=collection)

        if request.method == "POST" and item_id is None:
            record = json.loads(request.content)
            record["id"] = f"srv-{self._next_id}"
            self._next_id += 1
            collection.append(record)
            return httpx.Response(201, json=record)

        if request.method == "PUT" and item_id is not None:
            record = json.loads(request.content)
            for index, existing in enumerate(collection):
                if existing.get("id") == item_id:
                    collection[index] = record
                    break
            else:
                collection.append(record)
            return httpx.Response(200, json=record)

        if request.method == "DELETE" and item_id is not None:
            before = len(collection)
            collection[:] = [r for r in collection if r.get("id") != item_id]
            return httpx.Response(204 if len(collection) < before else 404)

        return httpx.Response(405)


@pytest.fixture
def get_id() -> Callable[[Record], str]:
    """Provide the identity extractor for sample records."""
    return record_id


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """Create a temporary project directory for testing.

    Returns:
        Path to a clean temporary directory.
    """
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def sample_record() -> Record:
    """Create a sample record for testing.

    Returns:
        A record with an identity and a nested structure.
    """
    return {
        "id": "run-1",
        "name": "Smoke test",
        "status": "running",
        "variables": {"ENV": "staging", "RETRIES": 2},
    }


@pytest.fixture
def sample_records() -> list[Record]:
    """Create a list of sample records for testing.

    Returns:
        Three records with distinct identities and statuses.
    """
    return [
        {"id": "run-1", "name": "Smoke test", "status": "running"},
        {"id": "run-2", "name": "Load test", "status": "completed"},
        {"id": "run-3", "name": "API test", "status": "failed"},
    ]


@pytest.fixture(params=["json", "sqlite"])
def kv_store(request, tmp_project: Path) -> KeyValueStore:
    """Parameterized fixture providing both key-value store types.

    This fixture enables cross-store compliance testing by running the same
    tests against the JSON and SQLite implementations.

    Returns:
        An instance of either JSONKeyValueStore or SQLiteKeyValueStore.
    """
    if request.param == "json":
        return JSONKeyValueStore(tmp_project / "slots")
    else:
        return SQLiteKeyValueStore(tmp_project / "storage.db")


@pytest.fixture
def json_store(tmp_project: Path) -> JSONKeyValueStore:
    """Create a JSON key-value store for JSON-specific tests."""
    return JSONKeyValueStore(tmp_project / "slots")


@pytest.fixture
def sqlite_store(tmp_project: Path) -> SQLiteKeyValueStore:
    """Create a SQLite key-value store for SQLite-specific tests."""
    return SQLiteKeyValueStore(tmp_project / "storage.db")


@pytest.fixture
def make_local(kv_store: KeyValueStore) -> Callable[..., LocalBackend[Record]]:
    """Factory for local backends over the parameterized store.

    Returns:
        A callable accepting LocalBackend keyword arguments.
    """

    def factory(**kwargs: Any) -> LocalBackend[Record]:
        kwargs.setdefault("default_items", [])
        storage_key = kwargs.pop("storage_key", "runs")
        return LocalBackend(kv_store, storage_key, record_id, **kwargs)

    return factory


@pytest.fixture
def local_backend(make_local) -> LocalBackend[Record]:
    """Create a local backend with no seed data."""
    return make_local()


@pytest.fixture
def fake_api() -> FakeRestApi:
    """Create an empty fake REST API."""
    return FakeRestApi()


@pytest_asyncio.fixture
async def api_client(fake_api: FakeRestApi):
    """Create an httpx.AsyncClient routed to the fake REST API."""
    async with httpx.AsyncClient(
        base_url="http://api.test/api",
        transport=httpx.MockTransport(fake_api.handler),
    ) as client:
        yield client
