"""Shared fakes for postpay tests."""
from typing import Dict, List, Optional, Tuple

import pytest

from postpay.models import (
    DecodedFile,
    Order,
    OrderStatus,
    PendingFile,
    StagingConfig,
    UploadProgress,
    UploadResult,
)
from postpay.protocols import IOrderGateway, IUploadSink
from postpay.services.kv_store import MemoryKeyValueStore
from postpay.services.staging import StagingStore
from postpay.services.upload_sink import blake3_bytes


class FakeOrderGateway(IOrderGateway):
    """Order appears on lookup number `appear_on` (None: never)."""

    def __init__(self, order: Optional[Order] = None, appear_on: Optional[int] = 1, fail_status: bool = False):
        self.order = order
        self.appear_on = appear_on
        self.fail_status = fail_status
        self.lookups = 0
        self.status_updates: List[Tuple[str, OrderStatus]] = []

    async def get_order(self, session_id: str) -> Optional[Order]:
        self.lookups += 1
        if self.order is None or self.appear_on is None:
            return None
        if self.lookups < self.appear_on or session_id != self.order.session_id:
            return None
        return self.order

    async def set_order_status(self, order_id: str, status: OrderStatus) -> None:
        if self.fail_status:
            raise RuntimeError("orders table unavailable")
        self.status_updates.append((order_id, status))
        self.order = self.order.with_status(status)


class FakeUploadSink(IUploadSink):
    """Destination keyed by order id, then by position + content digest."""

    def __init__(self, fail: bool = False, raise_exc: Optional[Exception] = None):
        self.fail = fail
        self.raise_exc = raise_exc
        self.calls = 0
        self.stored: Dict[str, Dict[str, DecodedFile]] = {}
        self.progress: List[UploadProgress] = []

    async def upload_files(self, order_id, customer_email, files, on_progress=None):
        self.calls += 1
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.fail:
            return UploadResult.fail("storage bucket rejected the batch")

        bucket = self.stored.setdefault(order_id, {})
        total = sum(f.size for f in files)
        done = 0
        for index, f in enumerate(files):
            bucket[f"{index}-{blake3_bytes(f.data)}"] = f
            done += f.size
            progress = UploadProgress(index + 1, len(files), done, total)
            self.progress.append(progress)
            if on_progress:
                on_progress(progress)
        return UploadResult.ok(tuple(bucket))

    async def has_order(self, order_id):
        return bool(self.stored.get(order_id))


class RecordingStore(MemoryKeyValueStore):
    """Memory store that logs every write/delete and can fail on demand."""

    def __init__(self, fail_on_set: Optional[int] = None):
        super().__init__()
        self.ops: List[Tuple[str, str]] = []
        self._fail_on_set = fail_on_set
        self._sets = 0

    async def set(self, key: str, value: str) -> None:
        self._sets += 1
        if self._fail_on_set is not None and self._sets == self._fail_on_set:
            raise OSError("QuotaExceededError")
        self.ops.append(("set", key))
        await super().set(key, value)

    async def delete(self, key: str) -> None:
        self.ops.append(("delete", key))
        await super().delete(key)


@pytest.fixture
def order():
    return Order(session_id="cs_test_123", id="ord_1", customer_email="ana@example.com")


@pytest.fixture
def pending_files():
    return [
        PendingFile(data=b"\x89PNG\r\n\x1a\nfirst-image", content_type="image/png", name="a.png"),
        PendingFile(data=b"\xff\xd8\xffsecond-image", content_type="image/jpeg", name="b.jpg"),
    ]


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def staging(store):
    return StagingStore(store, StagingConfig())


@pytest.fixture
def sleeps():
    """Sleep replacement recording requested delays."""
    delays: List[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    fake_sleep.delays = delays
    return fake_sleep
