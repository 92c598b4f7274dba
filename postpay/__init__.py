"""
postpay - Stage files before a payment redirect, upload them once the order exists.

Flow:
1. Before redirect: encode + stage files locally (manifest written last)
2. After redirect: poll the order gateway with exponential backoff
3. Order found: decode staged files, upload as one unit, clear staging,
   mark the order as processing

Usage:
    from postpay import CheckoutOrchestrator, JSONFileKeyValueStore, PendingFile

    store = JSONFileKeyValueStore()
    async with CheckoutOrchestrator(store, orders_api_url=..., upload_api_url=...) as flow:
        await flow.begin_checkout([PendingFile(data, "image/png")])

    # ... user pays, comes back on /success?session_id=cs_123 ...
    async with CheckoutOrchestrator(store, orders_api_url=..., upload_api_url=...) as flow:
        outcome = await flow.resume_after_payment(return_url=url)
"""
from .orchestrator import CheckoutOrchestrator
from .models import (
    CheckoutConfig,
    CheckoutOutcome,
    DecodedFile,
    Order,
    OrderStatus,
    PendingFile,
    PollConfig,
    StagedFile,
    StagingConfig,
    UploadResult,
    UploadStatus,
    session_id_from_return_url,
)
from .errors import (
    CheckoutError,
    MalformedPayload,
    NoStagedFiles,
    OrderNotFound,
    StagingIncomplete,
    StagingLocked,
    StagingTooLarge,
    StatusUpdateFailed,
    UploadFailed,
)
from .services import (
    ByteCodec,
    DirectoryUploadSink,
    HTTPOrderGateway,
    HTTPUploadSink,
    JSONFileKeyValueStore,
    MemoryKeyValueStore,
    StagingStore,
)
from .use_cases import EventualLookup, ReconciliationPoller, UploadCoordinator

__version__ = "0.1.0"
__all__ = [
    # Main
    "CheckoutOrchestrator",
    # Models
    "CheckoutConfig",
    "CheckoutOutcome",
    "DecodedFile",
    "Order",
    "OrderStatus",
    "PendingFile",
    "PollConfig",
    "StagedFile",
    "StagingConfig",
    "UploadResult",
    "UploadStatus",
    "session_id_from_return_url",
    # Errors
    "CheckoutError",
    "MalformedPayload",
    "NoStagedFiles",
    "OrderNotFound",
    "StagingIncomplete",
    "StagingLocked",
    "StagingTooLarge",
    "StatusUpdateFailed",
    "UploadFailed",
    # Services
    "ByteCodec",
    "DirectoryUploadSink",
    "HTTPOrderGateway",
    "HTTPUploadSink",
    "JSONFileKeyValueStore",
    "MemoryKeyValueStore",
    "StagingStore",
    # Use cases
    "EventualLookup",
    "ReconciliationPoller",
    "UploadCoordinator",
]
