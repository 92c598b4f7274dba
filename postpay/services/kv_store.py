"""
Key-value backends for the staging store.

MemoryKeyValueStore lives as long as the process (tab); JSONFileKeyValueStore
persists to a single JSON file so staged state survives a process restart
within the same staging directory.
"""
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_STAGING_DIR = Path.home() / ".cache" / "postpay"
DEFAULT_STAGING_FILE = "staging.json"


class MemoryKeyValueStore:
    """In-memory IKeyValueStore."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)


class JSONFileKeyValueStore:
    """
    IKeyValueStore persisted to a JSON file.

    Every write rewrites the file through a temp file + os.replace, so a
    crash never leaves a half-written document behind.
    """

    def __init__(self, staging_dir: Optional[Path] = None, filename: str = DEFAULT_STAGING_FILE):
        self._dir = Path(staging_dir) if staging_dir else DEFAULT_STAGING_DIR
        self._file = self._dir / filename
        self._data: Optional[Dict[str, str]] = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._file

    def _load(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data
        try:
            if self._file.exists():
                with open(self._file, "r", encoding="utf-8") as f:
                    loaded = json.load(f)
                if not isinstance(loaded, dict):
                    raise ValueError("staging file root is not an object")
                self._data = {str(k): str(v) for k, v in loaded.items()}
                logger.debug("[kv] Loaded %d entries from %s", len(self._data), self._file)
            else:
                self._data = {}
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning("[kv] Failed to parse %s: %s - starting fresh", self._file, e)
            self._data = {}
        return self._data

    def _flush(self, data: Dict[str, str]) -> None:
        """Write data to disk, then adopt it as the in-memory view."""
        self._dir.mkdir(parents=True, exist_ok=True)
        tmp = self._file.with_suffix(self._file.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp, self._file)
        self._data = data

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return await asyncio.to_thread(lambda: self._load().get(key))

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            def _write():
                data = dict(self._load())
                data[key] = value
                self._flush(data)
            await asyncio.to_thread(_write)

    async def delete(self, key: str) -> None:
        async with self._lock:
            def _remove():
                data = self._load()
                if key in data:
                    data = dict(data)
                    del data[key]
                    self._flush(data)
            await asyncio.to_thread(_remove)

    async def keys(self, prefix: str = "") -> List[str]:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            return [k for k in data if k.startswith(prefix)]
