"""Core orchestrator - coordinates the pre- and post-payment workflows."""
import asyncio
import logging
from typing import List, Optional, Sequence

from ..errors import CheckoutError, StagingLocked, user_message_for
from ..models import (
    CheckoutConfig,
    CheckoutOutcome,
    Order,
    OrderStatus,
    PendingFile,
    PollAttempt,
    UploadProgress,
    session_id_from_return_url,
)
from ..protocols import IKeyValueStore, IOrderGateway, IUploadSink
from ..services.api_client import HTTPAPIClient
from ..services.order_gateway import HTTPOrderGateway
from ..services.staging import StagingStore
from ..services.upload_sink import HTTPUploadSink
from ..use_cases.complete_upload import UploadCoordinator
from ..use_cases.reconcile import ReconciliationPoller, SleepFunc
from ..use_cases.stage_checkout import StageCheckoutUseCase
from ..utils.events import EventEmitter, OUTCOME, POLL_WAIT, UPLOAD_PROGRESS

logger = logging.getLogger(__name__)


class CheckoutOrchestrator:
    """
    Orchestrates staging and post-payment reconciliation using injected services.

    Usage:
        async with CheckoutOrchestrator(store, orders_api_url=..., upload_api_url=...) as flow:
            await flow.begin_checkout(files)        # before the payment redirect
            ...
            outcome = await flow.resume_after_payment(return_url=url)

    Events:
        poll_wait(PollAttempt)            before each reconciliation wait
        upload_progress(UploadProgress)   as files are stored
        outcome(CheckoutOutcome)          once per resume_after_payment call
    """

    def __init__(
        self,
        store: IKeyValueStore,
        gateway: Optional[IOrderGateway] = None,
        sink: Optional[IUploadSink] = None,
        config: Optional[CheckoutConfig] = None,
        orders_api_url: Optional[str] = None,
        upload_api_url: Optional[str] = None,
        sleep: SleepFunc = asyncio.sleep,
        owner: Optional[str] = None,
    ):
        """
        Initialize orchestrator with dependencies.

        Args:
            store: Key-value backend for staged files
            gateway: Order gateway (built from orders_api_url when omitted)
            sink: Upload sink (built from upload_api_url when omitted)
            config: Checkout configuration
            sleep: Sleep function used between polling attempts
            owner: Advisory lock owner token (derived from the session id by
                default, so a retry for the same session can re-claim a lock
                left behind by an abandoned run)
        """
        self._config = config or CheckoutConfig()
        self._staging = StagingStore(store, self._config.staging)
        self._gateway = gateway
        self._sink = sink
        self._orders_api_url = orders_api_url
        self._upload_api_url = upload_api_url
        self._sleep = sleep
        self._owner = owner
        self._clients: List[HTTPAPIClient] = []
        self.events = EventEmitter()

    async def __aenter__(self):
        """Build HTTP adapters for collaborators that were not injected."""
        if self._gateway is None:
            if not self._orders_api_url:
                raise ValueError("Either gateway or orders_api_url must be provided")
            client = await self._open_client(self._orders_api_url)
            self._gateway = HTTPOrderGateway(client)
        if self._sink is None:
            if not self._upload_api_url:
                raise ValueError("Either sink or upload_api_url must be provided")
            client = await self._open_client(self._upload_api_url)
            self._sink = HTTPUploadSink(client)
        return self

    async def __aexit__(self, *args):
        """Cleanup resources."""
        for client in self._clients:
            await client.__aexit__(*args)
        self._clients = []

    async def _open_client(self, base_url: str) -> HTTPAPIClient:
        client = HTTPAPIClient(base_url)
        await client.__aenter__()
        self._clients.append(client)
        return client

    @property
    def staging(self) -> StagingStore:
        return self._staging

    def on(self, event_name: str, callback) -> "CheckoutOrchestrator":
        self.events.on(event_name, callback)
        return self

    async def begin_checkout(self, files: Sequence[PendingFile]) -> List[str]:
        """
        Stage files before the payment redirect.

        Raises:
            StagingIncomplete: checkout must not be initiated.
        """
        return await StageCheckoutUseCase().execute(self._staging, files)

    async def resume_after_payment(
        self,
        session_id: Optional[str] = None,
        return_url: Optional[str] = None,
        force: bool = False,
    ) -> CheckoutOutcome:
        """
        Find the order for the payment session and upload its staged files.

        force takes over a staging lock held by a different owner.
        """
        assert self._gateway is not None and self._sink is not None, "use 'async with'"
        if session_id is None:
            if return_url is None:
                raise ValueError("session_id or return_url is required")
            session_id = session_id_from_return_url(return_url)

        outcome = await self._run(session_id, force)
        await self.events.drain()
        await self.events.emit(OUTCOME, outcome)
        return outcome

    async def _run(self, session_id: str, force: bool) -> CheckoutOutcome:
        owner = self._owner or f"session:{session_id}"
        if not await self._staging.claim(owner, force=force):
            holder = await self._staging.lock_owner()
            return self._failed(StagingLocked(holder or "unknown"))

        try:
            poller = ReconciliationPoller(self._gateway, self._config.poll, self._sleep)
            try:
                order = await poller.find_order(session_id, on_wait=self._on_poll_wait)
            except CheckoutError as exc:
                logger.warning("[checkout] %s", exc)
                return self._failed(exc)

            coordinator = UploadCoordinator(self._staging, self._sink, self._gateway)
            result = await coordinator.complete(order, on_progress=self._on_upload_progress)
            if not result.success:
                return CheckoutOutcome(
                    success=False,
                    order=order,
                    error_kind=result.error_kind,
                    user_message=user_message_for(result.error_kind),
                    fallback=self._config.fallback_view,
                )

            if order.status == OrderStatus.PENDING:
                order = order.with_status(OrderStatus.PROCESSING)
            logger.info("[checkout] Order %s uploaded for session %s", order.id, session_id)
            return CheckoutOutcome(success=True, order=order)
        finally:
            await self._staging.release(owner)

    def _failed(self, exc: CheckoutError, order: Optional[Order] = None) -> CheckoutOutcome:
        return CheckoutOutcome(
            success=False,
            order=order,
            error_kind=exc.kind,
            user_message=exc.user_message,
            fallback=self._config.fallback_view,
        )

    async def _on_poll_wait(self, attempt: PollAttempt) -> None:
        await self.events.emit(POLL_WAIT, attempt)

    def _on_upload_progress(self, progress: UploadProgress) -> None:
        self.events.emit_sync(UPLOAD_PROGRESS, progress)
