"""Use case: upload an order's staged files once the order is known."""
from __future__ import annotations

import logging
from typing import List, Optional

from ..errors import (
    CheckoutError,
    MalformedPayload,
    NoStagedFiles,
    StatusUpdateFailed,
    UploadFailed,
)
from ..models import DecodedFile, Order, OrderStatus, StagedFile, UploadResult
from ..protocols import IOrderGateway, IUploadSink, ProgressCallback
from ..services.codec import ByteCodec
from ..services.staging import StagingStore

logger = logging.getLogger(__name__)

_UPLOADED_STATUSES = (OrderStatus.PROCESSING, OrderStatus.COMPLETED)


def _describe_exception(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return f"{type(exc).__name__}: {repr(exc)}"


def _failure(error: CheckoutError) -> UploadResult:
    return UploadResult.fail(str(error), kind=error.kind)


class UploadCoordinator:
    """
    Decode staged files, upload them as one unit, then clean up.

    Staging is cleared only after a successful upload, or once the batch
    is known to be permanently bad (a payload is missing or undecodable).
    Upload failures leave staging in place so the upload can be retried.
    Whether an order was already uploaded is answered by the sink first;
    the order status is only a hint.
    """

    def __init__(
        self,
        staging: StagingStore,
        sink: IUploadSink,
        gateway: IOrderGateway,
        codec: Optional[ByteCodec] = None,
    ):
        self._staging = staging
        self._sink = sink
        self._gateway = gateway
        self._codec = codec or staging.codec

    async def complete(
        self,
        order: Order,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        if order.status == OrderStatus.FAILED:
            return _failure(UploadFailed(order.id, "order is marked failed"))

        staged = await self._staging.read_all()
        if staged.is_empty:
            return await self._complete_without_staging(order)

        try:
            if staged.mismatch:
                # All-or-nothing: never upload a subset of the paid-for files
                raise MalformedPayload(
                    "staged payload missing", file_id=", ".join(staged.missing_ids)
                )
            files = self._decode_all(staged.files)
        except MalformedPayload as exc:
            logger.error("[upload] Order %s: %s, discarding staged batch", order.id, exc)
            await self._clear_staging(order)
            return _failure(exc)

        try:
            result = await self._sink.upload_files(
                order.id, order.customer_email, files, on_progress
            )
        except Exception as exc:
            logger.error(
                "[upload] Order %s sink raised: %s", order.id, _describe_exception(exc),
                exc_info=True,
            )
            return _failure(UploadFailed(order.id, _describe_exception(exc)))

        if not result.success:
            reason = result.error or "upload sink rejected the batch"
            logger.error("[upload] Order %s failed, staged files kept: %s", order.id, reason)
            return _failure(UploadFailed(order.id, reason))

        await self._clear_staging(order)
        await self._advance_status(order)
        return UploadResult.ok(result.stored)

    def _decode_all(self, staged: tuple) -> List[DecodedFile]:
        decoded: List[DecodedFile] = []
        for item in staged:
            decoded.append(self._decode_one(item))
        return decoded

    def _decode_one(self, item: StagedFile) -> DecodedFile:
        try:
            raw, content_type = self._codec.decode(item.encoded_payload)
        except MalformedPayload as exc:
            raise exc.for_file(item.id) from exc
        if content_type == self._codec.default_content_type and item.content_type:
            content_type = item.content_type
        return DecodedFile(id=item.id, data=raw, content_type=content_type)

    async def _complete_without_staging(self, order: Order) -> UploadResult:
        """Nothing staged: succeed only if the order's files already landed."""
        if order.status in _UPLOADED_STATUSES:
            logger.info("[upload] Order %s already %s, nothing staged", order.id, order.status.value)
            return UploadResult.ok()

        try:
            stored = await self._sink.has_order(order.id)
        except Exception as e:
            logger.warning("[upload] Could not query destination for %s: %s", order.id, e)
            stored = False
        if stored:
            # An earlier run uploaded but may have missed the status update
            logger.info("[upload] Order %s found at destination, nothing staged", order.id)
            await self._advance_status(order)
            return UploadResult.ok()

        try:
            current = await self._gateway.get_order(order.session_id)
        except Exception as e:
            logger.warning("[upload] Could not refresh order %s: %s", order.id, e)
            current = None
        if current is not None and current.status in _UPLOADED_STATUSES:
            logger.info("[upload] Order %s already %s, nothing staged", order.id, current.status.value)
            return UploadResult.ok()
        return _failure(NoStagedFiles(order.id))

    async def _clear_staging(self, order: Order) -> None:
        try:
            await self._staging.clear()
        except Exception as e:
            logger.error("[upload] Order %s: clearing staging failed: %s", order.id, e)

    async def _advance_status(self, order: Order) -> None:
        if order.status in _UPLOADED_STATUSES:
            return
        try:
            await self._gateway.set_order_status(order.id, OrderStatus.PROCESSING)
        except Exception as e:
            failure = StatusUpdateFailed(order.id, OrderStatus.PROCESSING.value, e)
            logger.warning("[upload] %s (upload already succeeded)", failure)
