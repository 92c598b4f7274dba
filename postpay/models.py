"""
Models for postpay module.

Immutable dataclasses for staged files, orders and results, plus the
frozen configuration objects consumed by the services.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple
from urllib.parse import urlparse, parse_qs


class OrderStatus(Enum):
    """Order lifecycle status (owned by the order gateway)."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadStatus(Enum):
    """Upload operation status."""
    SUCCESS = "success"
    FAILED = "failed"


class PollState(Enum):
    """Reconciliation poller state."""
    SEARCHING = "searching"
    FOUND = "found"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class PendingFile:
    """In-memory file handed over for staging."""
    data: bytes
    content_type: str
    name: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class StagedFile:
    """Encoded file as persisted in the staging store."""
    id: str
    encoded_payload: str
    content_type: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "encoded_payload": self.encoded_payload,
            "content_type": self.content_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StagedFile":
        return cls(
            id=data["id"],
            encoded_payload=data["encoded_payload"],
            content_type=data.get("content_type", ""),
        )


@dataclass(frozen=True)
class DecodedFile:
    """Raw bytes recovered from a staged file, ready for the upload sink."""
    id: str
    data: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class StagingManifest:
    """Commit record listing the staged file ids of one checkout attempt."""
    ids: Tuple[str, ...]
    owner: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ids": list(self.ids),
            "owner": self.owner,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StagingManifest":
        ids = data.get("ids")
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise ValueError("manifest 'ids' must be a list of strings")
        return cls(
            ids=tuple(ids),
            owner=data.get("owner"),
            created_at=data.get("created_at"),
        )

    @classmethod
    def create(cls, ids: List[str], owner: Optional[str] = None) -> "StagingManifest":
        return cls(
            ids=tuple(ids),
            owner=owner,
            created_at=datetime.now(timezone.utc).isoformat(),
        )


@dataclass(frozen=True)
class StagingReadResult:
    """Files resolved from the manifest, plus the ids that had no payload."""
    files: Tuple[StagedFile, ...] = ()
    missing_ids: Tuple[str, ...] = ()

    @property
    def expected(self) -> int:
        return len(self.files) + len(self.missing_ids)

    @property
    def mismatch(self) -> bool:
        return bool(self.missing_ids)

    @property
    def is_empty(self) -> bool:
        return not self.files and not self.missing_ids


@dataclass(frozen=True)
class Order:
    """Order record created by the payment webhook."""
    session_id: str
    id: str
    customer_email: str
    status: OrderStatus = OrderStatus.PENDING

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        """Build from an API payload (accepts snake_case or camelCase keys)."""
        def pick(*keys):
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        order_id = pick("id", "order_id", "orderId")
        session_id = pick("session_id", "sessionId", "stripe_session_id")
        if order_id is None or session_id is None:
            raise ValueError(f"order payload missing id/session_id: {data}")
        return cls(
            session_id=str(session_id),
            id=str(order_id),
            customer_email=pick("customer_email", "customerEmail", "email") or "",
            status=OrderStatus(pick("status") or OrderStatus.PENDING.value),
        )

    def with_status(self, status: OrderStatus) -> "Order":
        return Order(self.session_id, self.id, self.customer_email, status)


@dataclass(frozen=True)
class UploadResult:
    """Immutable result of an upload attempt (not persisted)."""
    status: UploadStatus = UploadStatus.SUCCESS
    error: Optional[str] = None
    error_kind: Optional[str] = None
    stored: Tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return self.status == UploadStatus.SUCCESS

    @classmethod
    def ok(cls, stored: Tuple[str, ...] = ()):
        return cls(status=UploadStatus.SUCCESS, stored=tuple(stored))

    @classmethod
    def fail(cls, error: str, kind: Optional[str] = None):
        return cls(status=UploadStatus.FAILED, error=error, error_kind=kind)


@dataclass(frozen=True)
class PollAttempt:
    """Advisory progress sent before each reconciliation wait."""
    attempt: int
    remaining: int
    delay: float


@dataclass(frozen=True)
class UploadProgress:
    """Fractional progress of one upload operation."""
    files_done: int
    files_total: int
    bytes_done: int
    bytes_total: int

    @property
    def fraction(self) -> float:
        if self.bytes_total > 0:
            return min(1.0, self.bytes_done / self.bytes_total)
        if self.files_total > 0:
            return min(1.0, self.files_done / self.files_total)
        return 1.0


@dataclass(frozen=True)
class CheckoutOutcome:
    """User-facing result of the post-payment flow."""
    success: bool
    order: Optional[Order] = None
    error_kind: Optional[str] = None
    user_message: Optional[str] = None
    fallback: Optional[str] = None


@dataclass(frozen=True)
class StagingConfig:
    """Immutable configuration for the staging store."""
    namespace: str = "postpay"
    max_staged_bytes: int = 4_000_000  # ~5 MB browser quota minus headroom
    default_content_type: str = "application/octet-stream"
    lock_ttl_seconds: int = 900


@dataclass(frozen=True)
class PollConfig:
    """Immutable backoff configuration for reconciliation polling."""
    max_attempts: int = 5
    base_delay: float = 1.0
    growth_factor: float = 2.0
    max_delay: Optional[float] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.growth_factor < 1:
            raise ValueError("base_delay must be >= 0 and growth_factor >= 1")

    def delay_for(self, attempt: int) -> float:
        """Wait after failed attempt number `attempt` (1-based)."""
        delay = self.base_delay * self.growth_factor ** (attempt - 1)
        if self.max_delay is not None:
            return min(delay, self.max_delay)
        return delay


@dataclass(frozen=True)
class CheckoutConfig:
    """Top-level configuration for the checkout orchestrator."""
    staging: StagingConfig = field(default_factory=StagingConfig)
    poll: PollConfig = field(default_factory=PollConfig)
    fallback_view: str = "/orders"


def session_id_from_return_url(url: str, param: str = "session_id") -> str:
    """Extract the payment session id from the redirect return URL."""
    values = parse_qs(urlparse(url).query).get(param) or []
    session_id = values[0].strip() if values else ""
    if not session_id:
        raise ValueError(f"return URL has no '{param}' parameter: {url}")
    return session_id
