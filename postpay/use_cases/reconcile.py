"""
Reconciliation - rediscover the webhook-created order after the redirect.

No completion signal reaches the client, so the order is looked up with
bounded retries and exponential backoff.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar, Union

from ..errors import OrderNotFound
from ..models import Order, PollAttempt, PollConfig, PollState
from ..protocols import IOrderGateway

logger = logging.getLogger(__name__)

T = TypeVar("T")
WaitCallback = Callable[[PollAttempt], Union[None, Awaitable[None]]]
SleepFunc = Callable[[float], Awaitable[None]]


class LookupExhausted(Exception):
    """Every attempt of an EventualLookup came back empty."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"lookup exhausted after {attempts} attempt(s)")


async def _call_listener(callback: Optional[WaitCallback], attempt: PollAttempt) -> None:
    if callback is None:
        return
    try:
        result = callback(attempt)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.debug("[poll] Wait listener failed: %s", e)


class EventualLookup(Generic[T]):
    """
    Eventually-consistent lookup with bounded retry and backoff.

    The first attempt runs immediately. After failed attempt ``k`` the
    lookup waits ``base_delay * growth_factor ** (k - 1)`` seconds. Lookup
    errors count as a failed attempt.
    """

    def __init__(self, config: Optional[PollConfig] = None, sleep: SleepFunc = asyncio.sleep):
        self._config = config or PollConfig()
        self._sleep = sleep
        self.attempts = 0

    async def run(
        self,
        lookup: Callable[[], Awaitable[Optional[T]]],
        on_wait: Optional[WaitCallback] = None,
        label: str = "lookup",
    ) -> T:
        max_attempts = self._config.max_attempts
        last_error: Optional[BaseException] = None
        self.attempts = 0

        for attempt in range(1, max_attempts + 1):
            self.attempts = attempt
            try:
                result = await lookup()
            except Exception as e:
                last_error = e
                result = None
                logger.warning("[poll] %s attempt %d/%d failed: %s", label, attempt, max_attempts, e)

            if result is not None:
                logger.info("[poll] %s succeeded on attempt %d/%d", label, attempt, max_attempts)
                return result

            if attempt == max_attempts:
                break

            delay = self._config.delay_for(attempt)
            logger.debug("[poll] %s miss %d/%d, waiting %.2fs", label, attempt, max_attempts, delay)
            await _call_listener(
                on_wait, PollAttempt(attempt=attempt, remaining=max_attempts - attempt, delay=delay)
            )
            await self._sleep(delay)

        raise LookupExhausted(self.attempts, last_error)


class ReconciliationPoller:
    """Searching -> Found | NotFound state machine over IOrderGateway.get_order."""

    def __init__(
        self,
        gateway: IOrderGateway,
        config: Optional[PollConfig] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._gateway = gateway
        self._lookup: EventualLookup[Order] = EventualLookup(config, sleep)
        self.state = PollState.SEARCHING

    @property
    def attempts(self) -> int:
        return self._lookup.attempts

    async def find_order(self, session_id: str, on_wait: Optional[WaitCallback] = None) -> Order:
        """
        Poll until the order for session_id exists.

        Raises:
            OrderNotFound: attempts exhausted. Staged files are left untouched
                so a later run with the same session id can still finish.
        """
        self.state = PollState.SEARCHING
        try:
            order = await self._lookup.run(
                lambda: self._gateway.get_order(session_id),
                on_wait=on_wait,
                label=f"order lookup {session_id}",
            )
        except LookupExhausted as exc:
            self.state = PollState.NOT_FOUND
            raise OrderNotFound(session_id, exc.attempts, exc.last_error) from exc.last_error

        self.state = PollState.FOUND
        return order
