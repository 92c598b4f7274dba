"""Error kinds raised across the staging / reconciliation / upload flow."""
from typing import Iterable, Optional


class CheckoutError(Exception):
    """Base class for all postpay errors."""

    kind = "CheckoutError"
    user_message = "Something went wrong while processing your order."


class MalformedPayload(CheckoutError):
    """An encoded payload could not be decoded back into bytes."""

    kind = "MalformedPayload"
    user_message = "One of your files could not be read back. Please upload it again."

    def __init__(self, message: str, file_id: Optional[str] = None):
        self.file_id = file_id
        if file_id:
            message = f"{message} (file {file_id})"
        super().__init__(message)

    def for_file(self, file_id: str) -> "MalformedPayload":
        return MalformedPayload(str(self), file_id=file_id)


class StagingIncomplete(CheckoutError):
    """Manifest and payloads disagree, so the staged batch cannot be trusted."""

    kind = "StagingIncomplete"
    user_message = "Your files could not be prepared. Please try again before paying."

    def __init__(self, missing_ids: Iterable[str] = (), message: Optional[str] = None):
        self.missing_ids = tuple(missing_ids)
        super().__init__(
            message or f"staging incomplete: {len(self.missing_ids)} payload(s) missing"
        )


class StagingTooLarge(StagingIncomplete):
    """Encoded batch would exceed the configured staging ceiling."""

    kind = "StagingTooLarge"
    user_message = "Your files are too large to prepare for checkout. Remove some and retry."

    def __init__(self, total: int, limit: int):
        self.total = total
        self.limit = limit
        super().__init__(
            message=f"encoded staging size {total} exceeds limit {limit}"
        )


class StagingLocked(CheckoutError):
    """Another consumer holds the advisory staging lock."""

    kind = "StagingLocked"
    user_message = "This order is already being processed in another window."

    def __init__(self, owner: str):
        self.owner = owner
        super().__init__(f"staging is claimed by {owner}")


class OrderNotFound(CheckoutError):
    """Polling exhausted its attempts without the order appearing."""

    kind = "OrderNotFound"
    user_message = (
        "We could not confirm your order yet. Your files are saved; "
        "please check back shortly."
    )

    def __init__(self, session_id: str, attempts: int, last_error: Optional[BaseException] = None):
        self.session_id = session_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"order for session {session_id} not found after {attempts} attempt(s)")


class NoStagedFiles(CheckoutError):
    """Order exists but there is nothing staged to upload for it."""

    kind = "NoStagedFiles"
    user_message = "We found your order but no files to upload. Please contact support."

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"no staged files for order {order_id}")


class UploadFailed(CheckoutError):
    """Upload sink rejected the batch or the network failed."""

    kind = "UploadFailed"
    user_message = "Uploading your files failed. Your files are saved and can be retried."

    def __init__(self, order_id: str, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"upload for order {order_id} failed: {reason}")


class StatusUpdateFailed(CheckoutError):
    """Order status could not be persisted (never surfaced to the user)."""

    kind = "StatusUpdateFailed"

    def __init__(self, order_id: str, status: str, cause: Optional[BaseException] = None):
        self.order_id = order_id
        self.status = status
        self.cause = cause
        super().__init__(f"could not set order {order_id} status to {status}: {cause}")


_ERROR_KINDS = {
    cls.kind: cls
    for cls in (
        CheckoutError,
        MalformedPayload,
        StagingIncomplete,
        StagingTooLarge,
        StagingLocked,
        OrderNotFound,
        NoStagedFiles,
        UploadFailed,
    )
}


def user_message_for(kind: Optional[str]) -> str:
    """User-visible message for an error kind (generic for unknown kinds)."""
    return _ERROR_KINDS.get(kind or "", CheckoutError).user_message
