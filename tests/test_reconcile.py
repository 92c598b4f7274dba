"""Tests for reconciliation polling."""
import pytest
from unittest.mock import AsyncMock

from postpay.errors import OrderNotFound
from postpay.models import PollAttempt, PollConfig, PollState
from postpay.use_cases.reconcile import EventualLookup, LookupExhausted, ReconciliationPoller

from conftest import FakeOrderGateway


class TestPollConfig:
    def test_delay_grows_exponentially(self):
        config = PollConfig(base_delay=1.5, growth_factor=2.0)
        assert [config.delay_for(n) for n in (1, 2, 3, 4)] == [1.5, 3.0, 6.0, 12.0]

    def test_delay_capped(self):
        config = PollConfig(base_delay=1.0, growth_factor=3.0, max_delay=5.0)
        assert config.delay_for(4) == 5.0

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            PollConfig(max_attempts=0)
        with pytest.raises(ValueError):
            PollConfig(growth_factor=0.5)


class TestReconciliationPoller:
    @pytest.mark.asyncio
    async def test_never_found_makes_exactly_max_attempts(self, order, sleeps):
        gateway = FakeOrderGateway(order, appear_on=None)
        poller = ReconciliationPoller(gateway, PollConfig(max_attempts=5), sleep=sleeps)

        with pytest.raises(OrderNotFound) as exc_info:
            await poller.find_order(order.session_id)

        assert gateway.lookups == 5
        assert exc_info.value.attempts == 5
        assert exc_info.value.session_id == order.session_id
        assert poller.state == PollState.NOT_FOUND
        # no wait before the first attempt, none after the last
        assert sleeps.delays == [1.0, 2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_found_on_third_attempt_stops_immediately(self, order, sleeps):
        gateway = FakeOrderGateway(order, appear_on=3)
        poller = ReconciliationPoller(gateway, PollConfig(max_attempts=5), sleep=sleeps)

        found = await poller.find_order(order.session_id)

        assert found == order
        assert gateway.lookups == 3
        assert poller.attempts == 3
        assert poller.state == PollState.FOUND
        assert sleeps.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_found_on_first_attempt_never_waits(self, order, sleeps):
        gateway = FakeOrderGateway(order, appear_on=1)
        poller = ReconciliationPoller(gateway, sleep=sleeps)

        await poller.find_order(order.session_id)

        assert sleeps.delays == []

    @pytest.mark.asyncio
    async def test_wait_listener_gets_attempt_and_remaining(self, order, sleeps):
        gateway = FakeOrderGateway(order, appear_on=None)
        poller = ReconciliationPoller(gateway, PollConfig(max_attempts=3, base_delay=0.5), sleep=sleeps)
        seen = []

        with pytest.raises(OrderNotFound):
            await poller.find_order(order.session_id, on_wait=seen.append)

        assert seen == [
            PollAttempt(attempt=1, remaining=2, delay=0.5),
            PollAttempt(attempt=2, remaining=1, delay=1.0),
        ]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_polling(self, order, sleeps):
        gateway = FakeOrderGateway(order, appear_on=2)
        poller = ReconciliationPoller(gateway, sleep=sleeps)

        def broken_listener(attempt):
            raise RuntimeError("progress widget gone")

        assert await poller.find_order(order.session_id, on_wait=broken_listener) == order

    @pytest.mark.asyncio
    async def test_async_listener_is_awaited(self, order, sleeps):
        gateway = FakeOrderGateway(order, appear_on=2)
        poller = ReconciliationPoller(gateway, sleep=sleeps)
        listener = AsyncMock()

        await poller.find_order(order.session_id, on_wait=listener)

        listener.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lookup_errors_consume_attempts(self, order, sleeps):
        gateway = AsyncMock()
        gateway.get_order = AsyncMock(side_effect=[ConnectionError("reset"), None, order])
        poller = ReconciliationPoller(gateway, PollConfig(max_attempts=3), sleep=sleeps)

        assert await poller.find_order(order.session_id) == order
        assert gateway.get_order.await_count == 3

    @pytest.mark.asyncio
    async def test_last_error_attached_when_exhausted(self, order, sleeps):
        gateway = AsyncMock()
        gateway.get_order = AsyncMock(side_effect=ConnectionError("reset"))
        poller = ReconciliationPoller(gateway, PollConfig(max_attempts=2), sleep=sleeps)

        with pytest.raises(OrderNotFound) as exc_info:
            await poller.find_order(order.session_id)

        assert isinstance(exc_info.value.last_error, ConnectionError)


class TestEventualLookup:
    @pytest.mark.asyncio
    async def test_generic_lookup(self, sleeps):
        values = iter([None, None, "confirmed"])

        async def lookup():
            return next(values)

        lookup_runner = EventualLookup(PollConfig(max_attempts=4, base_delay=0.1), sleep=sleeps)
        assert await lookup_runner.run(lookup) == "confirmed"
        assert lookup_runner.attempts == 3

    @pytest.mark.asyncio
    async def test_exhausted(self, sleeps):
        lookup_runner = EventualLookup(PollConfig(max_attempts=2), sleep=sleeps)

        with pytest.raises(LookupExhausted) as exc_info:
            await lookup_runner.run(AsyncMock(return_value=None))

        assert exc_info.value.attempts == 2
