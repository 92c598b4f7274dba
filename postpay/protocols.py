"""
Protocols (Interfaces) for Dependency Inversion.

Small, focused interfaces for the collaborators the core consumes.
"""
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Protocol, runtime_checkable

from .models import DecodedFile, Order, OrderStatus, UploadProgress, UploadResult

ProgressCallback = Callable[[UploadProgress], None]


@runtime_checkable
class IKeyValueStore(Protocol):
    """Interface for the client-local staging area."""

    async def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Store a value under key."""
        ...

    async def delete(self, key: str) -> None:
        """Delete key (no error if absent)."""
        ...

    async def keys(self, prefix: str = "") -> List[str]:
        """List keys starting with prefix."""
        ...


class IOrderGateway(ABC):
    """Interface for server-side order lookup/update."""

    @abstractmethod
    async def get_order(self, session_id: str) -> Optional[Order]:
        """Idempotent lookup by payment session id."""
        pass

    @abstractmethod
    async def set_order_status(self, order_id: str, status: OrderStatus) -> None:
        """Best-effort status update."""
        pass


class IUploadSink(ABC):
    """Interface for durable upload storage."""

    @abstractmethod
    async def upload_files(
        self,
        order_id: str,
        customer_email: str,
        files: List[DecodedFile],
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """Upload all files as one logical operation, idempotent per order id."""
        pass

    @abstractmethod
    async def has_order(self, order_id: str) -> bool:
        """True once a committed upload for order_id exists at the destination."""
        pass
