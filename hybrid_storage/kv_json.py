"""JSON file-based key-value store.

Each named slot is persisted as its own JSON file inside one directory. Writes
go through a temp file + os.replace so a slot is never left half-written.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def validate_key(key: str) -> str:
    """Check that key can safely name a slot.

    Raises:
        ValueError: If key is empty or contains a path separator or NUL byte.
    """
    if not isinstance(key, str) or not key.strip():
        raise ValueError("Storage key must be a non-empty string")
    if "/" in key or "\\" in key or "\x00" in key or key in (".", ".."):
        raise ValueError(f"Invalid storage key: {key!r}")
    return key


class JSONKeyValueStore:
    """Key-value store keeping one JSON file per slot.

    Attributes:
        directory: The directory holding the slot files.
        prefix: String prepended to every key when naming its file.

    Example:
        store = JSONKeyValueStore(Path("/home/user/project/.hybrid_storage"))
        runs = store.read("runs", [])
        store.write("runs", runs + [new_run])
    """

    def __init__(self, directory: Path, prefix: str = "") -> None:
        """Initialize the JSON key-value store.

        Args:
            directory: The directory holding the slot files. Created lazily
                on first write.
            prefix: Namespace prefix for slot file names.
        """
        self.directory = directory
        self.prefix = prefix

    def path_for(self, key: str) -> Path:
        """Return the file path backing the slot at key."""
        return self.directory / f"{self.prefix}{validate_key(key)}.json"

    def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def read(self, key: str, default: Any) -> Any:
        """Load the value stored at key.

        Returns default if the file doesn't exist. If the file is corrupted
        (invalid JSON) or unreadable, also returns default.

        Args:
            key: The slot name.
            default: Fallback value.

        Returns:
            The decoded value, or default.
        """
        path = self.path_for(key)
        if not path.exists():
            logger.debug("Slot %r not found, using default", key)
            return default

        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            logger.warning("Could not read slot %r (%s), using default", key, e)
            return default

    def write(self, key: str, value: Any) -> None:
        """Atomically replace the value stored at key.

        Creates the directory if needed and writes to a temporary file before
        moving it to the final location. Serialization and file system errors
        are logged and swallowed.

        Args:
            key: The slot name.
            value: A JSON-serializable value.
        """
        path = self.path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            temp_fd, temp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        except OSError as e:
            logger.warning("Could not write slot %r: %s", key, e)
            return

        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump(value, f, indent=2, ensure_ascii=False)
            os.replace(temp_path, path)  # Atomic on POSIX
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Could not write slot %r: %s", key, e)
            try:
                os.unlink(temp_path)
            except OSError:
                pass
