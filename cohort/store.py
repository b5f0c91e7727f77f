"""
Store interface for pluggable key-value backends.

Agents persist their event log (without the Introduction) under a per-agent
key. The Store is deliberately tiny: ``get(key)`` and ``set(key, value)`` on
JSON-compatible values.

Two included implementations:
1. InMemoryStore - dict-based, data lost on exit (testing, prototyping)
2. JsonFileStore - one pretty-printed JSON file per key (small deployments)

Failure semantics:
- Every backend error and every timeout surfaces as ``StoreError``
- ``StoreError`` is fatal for the agent that hit it; callers must not retry
  silently or carry on with unpersisted state

Usage pattern:
    store = JsonFileStore(".store")
    await store.initialize()
    await store.set("agent-1-memory", payload)
    payload = await store.get("agent-1-memory")
    await store.close()
"""

import asyncio
import json
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from .config import Config


class StoreError(RuntimeError):
    """Raised when a store operation fails or does not settle in time."""

    def __init__(self, *, operation: str, key: str, underlying: BaseException) -> None:
        self.operation = operation
        self.key = key
        self.underlying = underlying
        super().__init__(
            f"Store {operation} failed for key '{key}': "
            f"{type(underlying).__name__}: {underlying}"
        )


class Store(ABC):
    """Abstract base class for key-value persistence.

    Subclasses implement ``_get``/``_set``; the public ``get``/``set`` bound
    each call with ``timeout`` and convert any failure to ``StoreError``.
    """

    def __init__(self, *, timeout: Optional[float] = None) -> None:
        self.timeout = timeout if timeout is not None else Config.STORE_TIMEOUT_SECONDS

    async def initialize(self) -> None:
        """Prepare the backend (create directories, open connections)."""
        return None

    async def close(self) -> None:
        """Release backend resources."""
        return None

    async def get(self, key: str) -> Optional[Any]:
        """
        Read the value stored under ``key``.

        Returns:
            The stored value, or None if the key was never set

        Raises:
            StoreError: If the backend fails or times out
        """
        try:
            return await asyncio.wait_for(self._get(key), timeout=self.timeout)
        except Exception as exc:
            raise StoreError(operation="get", key=key, underlying=exc) from exc

    async def set(self, key: str, value: Any) -> None:
        """
        Store ``value`` under ``key``; returns once the write is durable.

        Raises:
            StoreError: If the backend fails or times out
        """
        try:
            await asyncio.wait_for(self._set(key, value), timeout=self.timeout)
        except Exception as exc:
            raise StoreError(operation="set", key=key, underlying=exc) from exc

    @abstractmethod
    async def _get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    async def _set(self, key: str, value: Any) -> None:
        pass


class InMemoryStore(Store):
    """In-memory store using a Python dict (no files, no database).

    Values are copied through JSON on the way in and out so callers can never
    alias persisted state, and non-serializable values fail here exactly as
    they would against a real backend.

    Perfect for:
    - Unit testing (fast, isolated, no cleanup needed)
    - Short interactive sessions

    NOT suitable for:
    - Persistence across restarts (data lost on exit)
    - Multi-process deployments (no shared memory)
    """

    def __init__(self, *, timeout: Optional[float] = None) -> None:
        super().__init__(timeout=timeout)
        self.data: Dict[str, str] = {}

    async def _get(self, key: str) -> Optional[Any]:
        raw = self.data.get(key)
        return None if raw is None else json.loads(raw)

    async def _set(self, key: str, value: Any) -> None:
        self.data[key] = json.dumps(value)


class JsonFileStore(Store):
    """File-based store: one human-readable JSON file per key.

    Directory structure:
    ```
    {base_path}/
      agent-1-memory.json
      agent-2-memory.json
    ```

    Writes go to a temporary sibling first and are renamed into place, so a
    crash mid-write never leaves a truncated file. All file I/O runs in a
    thread (``asyncio.to_thread``) to keep the event loop responsive.
    """

    _SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")

    def __init__(self, base_path: Path | str | None = None, *, timeout: Optional[float] = None):
        super().__init__(timeout=timeout)
        self.base_path = Path(base_path) if base_path is not None else Config.STORE_PATH

    async def initialize(self) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.base_path / f"{self._SAFE_KEY.sub('_', key)}.json"

    async def _get(self, key: str) -> Optional[Any]:
        path = self._path(key)

        def _read() -> Optional[Any]:
            if not path.exists():
                return None
            return json.loads(path.read_text("utf-8"))

        return await asyncio.to_thread(_read)

    async def _set(self, key: str, value: Any) -> None:
        path = self._path(key)
        payload = json.dumps(value, indent=2)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(payload, "utf-8")
            tmp.replace(path)

        await asyncio.to_thread(_write)
