"""
Key-value store collaborators.

The ledger and the settings manager persist through an asynchronous
``get(keys) -> mapping`` / ``set(mapping)`` interface. Missing keys are simply
absent from the returned mapping. ``InMemoryStore`` backs tests and embedded
use; ``JsonFileStore`` keeps the whole mapping in one HMAC-protected JSON file.
"""

import asyncio
import copy
import hashlib
import hmac
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol, runtime_checkable

from .exceptions import StoreUnavailableError, TamperingError


@runtime_checkable
class KeyValueStore(Protocol):
    """Asynchronous persistent mapping of string keys to JSON values."""

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return the stored values for the keys that exist."""
        ...

    async def set(self, items: dict[str, Any]) -> None:
        """Store every key of ``items``, replacing previous values."""
        ...


class InMemoryStore:
    """Dictionary-backed store. Values are deep-copied in both directions."""

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {key: copy.deepcopy(self._data[key]) for key in keys if key in self._data}

    async def set(self, items: dict[str, Any]) -> None:
        for key, value in items.items():
            self._data[key] = copy.deepcopy(value)

    @property
    def data(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


class JsonFileStore:
    """
    File-backed store with HMAC protection.

    The file holds ``{"version", "data", "last_updated", "hmac"}``; the HMAC is
    computed over the other three fields serialized with sorted keys. A file
    whose HMAC does not validate raises ``TamperingError`` on every read.
    """

    VERSION = 1

    def __init__(self, file_path: Path, hmac_secret: str) -> None:
        if not hmac_secret:
            raise ValueError("hmac_secret cannot be empty")
        self._file_path = Path(file_path)
        self._hmac_secret = hmac_secret.encode("utf-8")
        self._lock = asyncio.Lock()

    @property
    def file_path(self) -> Path:
        return self._file_path

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
        return {key: data[key] for key in keys if key in data}

    async def set(self, items: dict[str, Any]) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            data.update(copy.deepcopy(items))
            await asyncio.to_thread(self._save, data)

    def _load(self) -> dict[str, Any]:
        """
        Read and validate the file.

        Raises:
            TamperingError: If HMAC validation fails
            StoreUnavailableError: If the file cannot be read or parsed
        """
        if not self._file_path.exists():
            return {}

        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise StoreUnavailableError(
                code="parse_error",
                message=f"Failed to parse store file: {e}",
                details={"file_path": str(self._file_path)},
            )
        except OSError as e:
            raise StoreUnavailableError(
                code="io_error",
                message=f"Failed to read store file: {e}",
                details={"file_path": str(self._file_path)},
            )

        if not isinstance(raw, dict):
            raise StoreUnavailableError(
                code="parse_error",
                message="Store file does not contain an object",
                details={"file_path": str(self._file_path)},
            )

        stored_hmac = raw.get("hmac", "")
        computed = self.compute_hmac({
            "version": raw.get("version"),
            "data": raw.get("data", {}),
            "last_updated": raw.get("last_updated"),
        })
        if not isinstance(stored_hmac, str) or not hmac.compare_digest(stored_hmac, computed):
            raise TamperingError(
                code="hmac_mismatch",
                message="HMAC validation failed - data may have been tampered with",
                details={"file_path": str(self._file_path)},
            )

        data = raw.get("data", {})
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        body = {"version": self.VERSION, "data": data, "last_updated": now}
        output = dict(body, hmac=self.compute_hmac(body))

        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._file_path, "w", encoding="utf-8") as f:
                json.dump(output, f, indent=2, sort_keys=True)
        except (OSError, TypeError, ValueError) as e:
            raise StoreUnavailableError(
                code="io_error",
                message=f"Failed to write store file: {e}",
                details={"file_path": str(self._file_path)},
            )

    def compute_hmac(self, data: dict) -> str:
        """HMAC-SHA256 over the canonical JSON serialization of ``data``."""
        serialized = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hmac.new(self._hmac_secret, serialized.encode("utf-8"), hashlib.sha256).hexdigest()
