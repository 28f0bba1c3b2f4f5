"""Storage backend factories and exports for hybrid-storage.

This module provides factory functions that build key-value stores and entity
backends from environment configuration. Every call returns a fresh instance
owned by the caller; nothing is cached at module level.

Supported key-value stores:
    - "json" (default): one JSON file per slot
    - "sqlite": one SQLite table holding every slot

Environment Variables:
    HYBRID_STORAGE_KV_BACKEND: "json" (default) or "sqlite"
    HYBRID_STORAGE_DIR: Directory for JSON slot files (relative or absolute)
    HYBRID_STORAGE_SQLITE_PATH: Path of the SQLite database (relative or absolute)
    HYBRID_STORAGE_PREFIX: Prefix for JSON slot file names
    HYBRID_STORAGE_API_URL: Base URL of the remote API. When unset, backends
        are local only.
    HYBRID_STORAGE_API_TIMEOUT: Remote request timeout in seconds (default 10)
    HYBRID_STORAGE_POLL_INTERVAL: Poll interval override for subscriptions

Example:
    from hybrid_storage import get_storage_backend
    from pathlib import Path

    runs = get_storage_backend(Path("/home/user/project"), "test-runs",
                               lambda run: run["id"], storage_key="runs",
                               insert_mode="prepend", max_items=50)
    await runs.initialize()
    history = await runs.get_items()
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path
from typing import Optional

import httpx

from hybrid_storage.hybrid import ErrorHook, FallbackHook, HybridBackend
from hybrid_storage.kv_json import JSONKeyValueStore
from hybrid_storage.kv_sqlite import SQLiteKeyValueStore
from hybrid_storage.local import DEFAULT_LOCAL_POLL_INTERVAL, LocalBackend
from hybrid_storage.notifier import ChangeNotifier, diff_snapshots
from hybrid_storage.protocol import (
    CancelFn,
    ChangeCallback,
    ChangeEvent,
    ChangeKind,
    IdGetter,
    InsertMode,
    KeyValueStore,
    StorageBackend,
    T,
)
from hybrid_storage.remote import (
    DEFAULT_REMOTE_POLL_INTERVAL,
    RemoteBackend,
    RemoteStorageError,
    RequestTransform,
    ResponseTransform,
)

__all__ = [
    "CancelFn",
    "ChangeCallback",
    "ChangeEvent",
    "ChangeKind",
    "ChangeNotifier",
    "HybridBackend",
    "JSONKeyValueStore",
    "KeyValueStore",
    "LocalBackend",
    "RemoteBackend",
    "RemoteStorageError",
    "SQLiteKeyValueStore",
    "StorageBackend",
    "create_api_client",
    "diff_snapshots",
    "get_key_value_store",
    "get_storage_backend",
    "_resolve_safe_path",
]

DEFAULT_API_TIMEOUT = 10.0


def _resolve_safe_path(base_dir: Path, user_path: str) -> Path | None:
    """Resolve a path, ensuring it stays within base_dir.

    Args:
        base_dir: The base directory paths must stay within.
        user_path: User-provided path (relative or absolute).

    Returns:
        Resolved absolute path, or None if path escapes base_dir.
    """
    if not user_path or not user_path.strip():
        return None

    if "\x00" in user_path:
        return None

    candidate = Path(user_path)
    if not candidate.is_absolute():
        candidate = base_dir / candidate

    # Resolve to absolute, following symlinks
    resolved = candidate.resolve()
    base_resolved = base_dir.resolve()

    try:
        resolved.relative_to(base_resolved)
        return resolved
    except ValueError:
        return None  # Path escapes project directory


def _get_env_path(project_dir: Path, variable: str, default: Path) -> Path:
    """Read a path from the environment, or return default.

    Raises:
        ValueError: If the configured path escapes project directory.
    """
    custom_path = os.environ.get(variable, "").strip()

    if custom_path:
        safe_path = _resolve_safe_path(project_dir, custom_path)
        if safe_path is None:
            raise ValueError(f"{variable} '{custom_path}' escapes project directory")
        return safe_path

    return default


def _get_env_float(variable: str, default: Optional[float]) -> Optional[float]:
    """Read a positive number of seconds from the environment.

    Raises:
        ValueError: If the variable is set but not a positive number.
    """
    raw = os.environ.get(variable, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{variable} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{variable} must be positive, got {raw!r}")
    return value


def get_key_value_store(project_dir: Path) -> KeyValueStore:
    """Get the configured persisted key-value store.

    Reads HYBRID_STORAGE_KV_BACKEND to determine which store to use. Defaults
    to JSON if not set.

    Path configuration:
        - JSON store: Uses HYBRID_STORAGE_DIR or defaults to .hybrid_storage/
        - SQLite store: Uses HYBRID_STORAGE_SQLITE_PATH or defaults to
          .hybrid_storage/storage.db

    Args:
        project_dir: The project root directory used for resolving paths.

    Returns:
        A new KeyValueStore instance.

    Raises:
        ValueError: If the store type or path configuration is invalid.
    """
    kv_type = os.environ.get("HYBRID_STORAGE_KV_BACKEND", "json").strip().lower()
    default_dir = project_dir / ".hybrid_storage"

    if kv_type == "json":
        directory = _get_env_path(project_dir, "HYBRID_STORAGE_DIR", default_dir)
        prefix = os.environ.get("HYBRID_STORAGE_PREFIX", "").strip()
        return JSONKeyValueStore(directory, prefix=prefix)
    elif kv_type == "sqlite":
        db_path = _get_env_path(
            project_dir, "HYBRID_STORAGE_SQLITE_PATH", default_dir / "storage.db"
        )
        return SQLiteKeyValueStore(db_path)
    else:
        raise ValueError(
            f"Unknown key-value backend: {kv_type!r}. Expected 'json' or 'sqlite'."
        )


def create_api_client() -> Optional[httpx.AsyncClient]:
    """Build an HTTP client for the configured remote API.

    Returns:
        An httpx.AsyncClient the caller must close, or None if
        HYBRID_STORAGE_API_URL is not set.

    Raises:
        ValueError: If HYBRID_STORAGE_API_TIMEOUT is invalid.
    """
    base_url = os.environ.get("HYBRID_STORAGE_API_URL", "").strip()
    if not base_url:
        return None
    timeout = _get_env_float("HYBRID_STORAGE_API_TIMEOUT", DEFAULT_API_TIMEOUT)
    return httpx.AsyncClient(base_url=base_url, timeout=timeout)


def get_storage_backend(
    project_dir: Path,
    resource: str,
    get_id: IdGetter[T],
    *,
    storage_key: Optional[str] = None,
    default_items: Iterable[T] = (),
    insert_mode: InsertMode = "append",
    max_items: Optional[int] = None,
    transform_request: Optional[RequestTransform] = None,
    transform_response: Optional[ResponseTransform] = None,
    on_error: Optional[ErrorHook] = None,
    on_fallback: Optional[FallbackHook] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> StorageBackend[T]:
    """Get the configured storage backend for one entity collection.

    Builds a LocalBackend over the configured key-value store. If a remote
    API is configured (HYBRID_STORAGE_API_URL, or an explicit client), wraps
    it together with a RemoteBackend in a HybridBackend.

    Args:
        project_dir: The project root directory used for resolving paths.
        resource: Remote resource name, e.g. "test-runs".
        get_id: Identity extractor for the entities.
        storage_key: Local slot name. Defaults to resource.
        default_items: Seed collection for the local store.
        insert_mode: Where the local store inserts new items.
        max_items: Cap on the local collection size.
        transform_request: Entity to wire payload mapping for the remote.
        transform_response: Wire payload to entity list mapping for the remote.
        on_error: Observer for remote failures.
        on_fallback: Observer for fallbacks to local storage.
        client: HTTP client to use instead of one built from the environment.

    Returns:
        A new StorageBackend instance.

    Raises:
        ValueError: If the configuration is invalid.
    """
    poll_interval = _get_env_float("HYBRID_STORAGE_POLL_INTERVAL", None)

    local: LocalBackend[T] = LocalBackend(
        get_key_value_store(project_dir),
        storage_key or resource,
        get_id,
        default_items,
        insert_mode=insert_mode,
        max_items=max_items,
        poll_interval=poll_interval or DEFAULT_LOCAL_POLL_INTERVAL,
    )

    if client is None:
        client = create_api_client()
    if client is None:
        return local

    remote: RemoteBackend[T] = RemoteBackend(
        client,
        resource,
        get_id,
        transform_request=transform_request,
        transform_response=transform_response,
        poll_interval=poll_interval or DEFAULT_REMOTE_POLL_INTERVAL,
    )
    return HybridBackend(remote, local, on_error=on_error, on_fallback=on_fallback)
