"""
Upload sinks - durable destinations for an order's decoded files.

Both sinks are idempotent per order id: files are named by their position
and BLAKE3 digest, so a retried run rewrites nothing that is already there.
"""
import asyncio
import json
import logging
import mimetypes
import os
from pathlib import Path
from typing import List, Optional

from blake3 import blake3

from ..models import DecodedFile, UploadProgress, UploadResult
from ..protocols import IUploadSink, ProgressCallback
from .api_client import HTTPAPIClient

logger = logging.getLogger(__name__)


def blake3_bytes(data: bytes) -> str:
    """BLAKE3 hex digest of an in-memory buffer."""
    return blake3(data).hexdigest()


def _describe_exception(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return f"{type(exc).__name__}: {repr(exc)}"


def _notify(on_progress: Optional[ProgressCallback], progress: UploadProgress) -> None:
    if on_progress is None:
        return
    try:
        on_progress(progress)
    except Exception as e:
        logger.debug("[upload] Progress callback failed: %s", e)


def stored_name(index: int, file: DecodedFile, digest: str) -> str:
    """Destination file name: position, digest prefix and extension."""
    base_type = file.content_type.split(";")[0].strip()
    ext = mimetypes.guess_extension(base_type) or ".bin"
    return f"{index:03d}-{digest[:16]}{ext}"


class HTTPUploadSink(IUploadSink):
    """
    Upload sink backed by the storage API.

        PUT  /orders/<id>/files/<index>    raw bytes, Idempotency-Key header
        POST /orders/<id>/files/commit     finalizes the batch
        GET  /orders/<id>/files/commit     404 until a batch was committed
    """

    def __init__(self, api_client: HTTPAPIClient):
        self._api = api_client

    async def upload_files(
        self,
        order_id: str,
        customer_email: str,
        files: List[DecodedFile],
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        total_bytes = sum(f.size for f in files)
        done_bytes = 0
        entries = []

        try:
            for index, f in enumerate(files):
                digest = blake3_bytes(f.data)
                await self._api.put(
                    f"/orders/{order_id}/files/{index}",
                    content=f.data,
                    headers={
                        "Content-Type": f.content_type,
                        "Idempotency-Key": f"{order_id}:{index}:{digest}",
                        "X-Customer-Email": customer_email,
                    },
                )
                done_bytes += f.size
                entries.append({
                    "index": index,
                    "name": stored_name(index, f, digest),
                    "blake3": digest,
                    "content_type": f.content_type,
                    "size": f.size,
                })
                _notify(on_progress, UploadProgress(index + 1, len(files), done_bytes, total_bytes))

            await self._api.post(
                f"/orders/{order_id}/files/commit",
                json={"customer_email": customer_email, "files": entries},
            )
        except Exception as exc:
            error_msg = _describe_exception(exc)
            logger.error("[upload] Order %s upload failed: %s", order_id, error_msg)
            return UploadResult.fail(error_msg, kind="UploadFailed")

        logger.info("[upload] Order %s: %d file(s), %d bytes", order_id, len(files), total_bytes)
        return UploadResult.ok(tuple(e["name"] for e in entries))

    async def has_order(self, order_id: str) -> bool:
        """GET /orders/<id>/files/commit; 404 means nothing was committed."""
        response = await self._api.get(f"/orders/{order_id}/files/commit", allow_404=True)
        return response is not None


class DirectoryUploadSink(IUploadSink):
    """
    Upload sink writing into ``<root>/<order_id>/``.

    A manifest.json next to the files records the customer and the stored
    names; files from an earlier, different batch for the same order are
    pruned so the directory always mirrors the last successful upload.
    """

    MANIFEST = "manifest.json"

    def __init__(self, root: Path):
        self._root = Path(root)

    def order_dir(self, order_id: str) -> Path:
        return self._root / order_id

    def _write_one(self, target: Path, data: bytes) -> bool:
        """Write target atomically; False when identical content is already there."""
        if target.exists() and target.stat().st_size == len(data):
            return False
        tmp = target.with_name(target.name + ".part")
        with open(tmp, "wb") as fh:
            fh.write(data)
        os.replace(tmp, target)
        return True

    async def upload_files(
        self,
        order_id: str,
        customer_email: str,
        files: List[DecodedFile],
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        dest = self.order_dir(order_id)
        total_bytes = sum(f.size for f in files)
        done_bytes = 0
        names: List[str] = []
        written = 0

        try:
            await asyncio.to_thread(dest.mkdir, parents=True, exist_ok=True)
            for index, f in enumerate(files):
                name = stored_name(index, f, blake3_bytes(f.data))
                if await asyncio.to_thread(self._write_one, dest / name, f.data):
                    written += 1
                names.append(name)
                done_bytes += f.size
                _notify(on_progress, UploadProgress(index + 1, len(files), done_bytes, total_bytes))

            def _finalize():
                keep = set(names) | {self.MANIFEST}
                for existing in dest.iterdir():
                    if existing.is_file() and existing.name not in keep:
                        existing.unlink()
                manifest = {"order_id": order_id, "customer_email": customer_email, "files": names}
                with open(dest / self.MANIFEST, "w", encoding="utf-8") as fh:
                    json.dump(manifest, fh, indent=2)

            await asyncio.to_thread(_finalize)
        except OSError as exc:
            error_msg = _describe_exception(exc)
            logger.error("[upload] Order %s write to %s failed: %s", order_id, dest, error_msg)
            return UploadResult.fail(error_msg, kind="UploadFailed")

        logger.info(
            "[upload] Order %s: %d file(s) stored in %s (%d new)",
            order_id, len(names), dest, written,
        )
        return UploadResult.ok(tuple(names))

    async def has_order(self, order_id: str) -> bool:
        # manifest.json is written last, so it marks a finished upload
        manifest = self.order_dir(order_id) / self.MANIFEST
        return await asyncio.to_thread(manifest.is_file)
