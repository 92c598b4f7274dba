"""
Staging Store - holds encoded files between checkout start and order upload.

Layout inside the injected key-value store (``<ns>`` is the namespace):

    <ns>:file:<id>   one JSON-encoded StagedFile per staged file
    <ns>:manifest    ordered id list; written last, it is the commit record
    <ns>:lock        advisory single-consumer lock

A reader never sees a manifest whose payloads were not all written first.
"""
import asyncio
import json
import logging
import secrets
import time
from typing import Callable, List, Optional, Sequence

from ..errors import StagingIncomplete, StagingTooLarge
from ..models import (
    PendingFile,
    StagedFile,
    StagingConfig,
    StagingManifest,
    StagingReadResult,
)
from ..protocols import IKeyValueStore
from .codec import ByteCodec

logger = logging.getLogger(__name__)


def generate_file_id() -> str:
    """Staging id: epoch millis + random suffix (never the file name)."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class StagingStore:
    """
    Client-local staging area for one checkout attempt.

    Usage:
        staging = StagingStore(MemoryKeyValueStore())
        ids = await staging.stage_all(files)
        missing = await staging.verify_complete(ids)
        ...
        result = await staging.read_all()
        await staging.clear()
    """

    def __init__(
        self,
        store: IKeyValueStore,
        config: Optional[StagingConfig] = None,
        codec: Optional[ByteCodec] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._config = config or StagingConfig()
        self._codec = codec or ByteCodec(self._config.default_content_type)
        self._clock = clock
        ns = self._config.namespace
        self._manifest_key = f"{ns}:manifest"
        self._lock_key = f"{ns}:lock"
        self._file_prefix = f"{ns}:file:"

    @property
    def codec(self) -> ByteCodec:
        return self._codec

    def _file_key(self, file_id: str) -> str:
        return f"{self._file_prefix}{file_id}"

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def stage_all(self, files: Sequence[PendingFile]) -> List[str]:
        """
        Encode and persist files, then commit the manifest.

        Encodes run concurrently; nothing is written until all of them
        finished. If a write fails, payloads written for this batch are
        removed and no manifest is written.

        Raises:
            StagingTooLarge: encoded total exceeds the configured ceiling.
            StagingIncomplete: an encode, write or post-write check failed.
        """
        if not files:
            raise StagingIncomplete(message="nothing to stage")

        ids: List[str] = []
        while len(ids) < len(files):
            candidate = generate_file_id()
            if candidate not in ids:
                ids.append(candidate)

        encoded = await asyncio.gather(
            *(asyncio.to_thread(self._codec.encode, f.data, f.content_type) for f in files),
            return_exceptions=True,
        )
        for file_id, result in zip(ids, encoded):
            if isinstance(result, BaseException):
                raise StagingIncomplete(
                    missing_ids=ids, message=f"encoding {file_id} failed: {result}"
                ) from result

        total = sum(len(payload) for payload in encoded)
        if total > self._config.max_staged_bytes:
            logger.warning(
                "[staging] Rejected batch of %d file(s): %d > %d encoded bytes",
                len(files), total, self._config.max_staged_bytes,
            )
            raise StagingTooLarge(total, self._config.max_staged_bytes)

        previous_ids = await self.manifest_ids()
        written: List[str] = []
        try:
            for file_id, f, payload in zip(ids, files, encoded):
                content_type = f.content_type or self._codec.default_content_type
                staged = StagedFile(id=file_id, encoded_payload=payload, content_type=content_type)
                await self._store.set(self._file_key(file_id), json.dumps(staged.to_dict()))
                written.append(file_id)

            missing = await self.verify_complete(ids)
            if missing:
                raise StagingIncomplete(missing)

            manifest = StagingManifest.create(ids)
            await self._store.set(self._manifest_key, json.dumps(manifest.to_dict()))
        except Exception as exc:
            await self._rollback(written)
            if isinstance(exc, StagingIncomplete):
                raise
            raise StagingIncomplete(
                missing_ids=[i for i in ids if i not in written],
                message=f"staging write failed: {exc}",
            ) from exc

        # Previous batch is only dropped once the new manifest is committed
        for old_id in previous_ids:
            if old_id not in ids:
                await self._store.delete(self._file_key(old_id))

        logger.info("[staging] Staged %d file(s), %d encoded bytes", len(ids), total)
        return ids

    async def _rollback(self, written: List[str]) -> None:
        for file_id in written:
            try:
                await self._store.delete(self._file_key(file_id))
            except Exception as e:
                logger.error("[staging] Rollback could not delete %s: %s", file_id, e)
        if written:
            logger.warning("[staging] Rolled back %d payload(s)", len(written))

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def _read_manifest(self) -> Optional[StagingManifest]:
        raw = await self._store.get(self._manifest_key)
        if raw is None:
            return None
        try:
            return StagingManifest.from_dict(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("[staging] Ignoring unreadable manifest: %s", e)
            return None

    async def manifest_ids(self) -> List[str]:
        manifest = await self._read_manifest()
        return list(manifest.ids) if manifest else []

    async def _read_file(self, file_id: str) -> Optional[StagedFile]:
        raw = await self._store.get(self._file_key(file_id))
        if raw is None:
            return None
        try:
            return StagedFile.from_dict(json.loads(raw))
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("[staging] Unreadable payload entry %s: %s", file_id, e)
            return None

    async def verify_complete(self, ids: Optional[Sequence[str]] = None) -> List[str]:
        """Return ids (manifest ids by default) that have no stored payload."""
        if ids is None:
            ids = await self.manifest_ids()
        missing = []
        for file_id in ids:
            if await self._store.get(self._file_key(file_id)) is None:
                missing.append(file_id)
        return missing

    async def read_all(self) -> StagingReadResult:
        """Resolve manifest ids to staged files, reporting any missing payloads."""
        manifest = await self._read_manifest()
        if manifest is None:
            return StagingReadResult()

        files: List[StagedFile] = []
        missing: List[str] = []
        for file_id in manifest.ids:
            staged = await self._read_file(file_id)
            if staged is None:
                missing.append(file_id)
            else:
                files.append(staged)

        if missing:
            logger.warning(
                "[staging] Manifest lists %d file(s) but only %d resolved; missing: %s",
                len(manifest.ids), len(files), ", ".join(missing),
            )
        return StagingReadResult(files=tuple(files), missing_ids=tuple(missing))

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def clear(self) -> None:
        """Delete payloads, then the manifest, then the lock."""
        ids = await self.manifest_ids()
        for file_id in ids:
            await self._store.delete(self._file_key(file_id))
        await self._store.delete(self._manifest_key)
        await self._store.delete(self._lock_key)
        logger.info("[staging] Cleared %d staged file(s)", len(ids))

    async def sweep_orphans(self) -> int:
        """Delete payload entries no manifest references."""
        referenced = set(await self.manifest_ids())
        removed = 0
        for key in await self._store.keys(self._file_prefix):
            if key[len(self._file_prefix):] not in referenced:
                await self._store.delete(key)
                removed += 1
        if removed:
            logger.info("[staging] Swept %d orphaned payload(s)", removed)
        return removed

    # ------------------------------------------------------------------
    # Advisory single-consumer lock
    # ------------------------------------------------------------------

    async def lock_owner(self) -> Optional[str]:
        """Current unexpired lock owner, if any."""
        raw = await self._store.get(self._lock_key)
        if raw is None:
            return None
        try:
            lock = json.loads(raw)
            if float(lock["expires_at"]) <= self._clock():
                return None
            return str(lock["owner"])
        except (ValueError, TypeError, KeyError):
            return None

    async def claim(self, owner: str, force: bool = False) -> bool:
        """Take the lock unless another unexpired owner holds it (or force)."""
        current = await self.lock_owner()
        if current is not None and current != owner:
            if not force:
                logger.warning("[staging] Lock held by %s, %s backing off", current, owner)
                return False
            logger.warning("[staging] %s taking over lock held by %s", owner, current)
        expires_at = self._clock() + self._config.lock_ttl_seconds
        await self._store.set(
            self._lock_key, json.dumps({"owner": owner, "expires_at": expires_at})
        )
        return True

    async def release(self, owner: str) -> None:
        if await self.lock_owner() == owner:
            await self._store.delete(self._lock_key)
