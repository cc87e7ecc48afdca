"""
test_readiness.py - Readiness polling

Tests:
- Backoff delays
- Success after transient failures
- NodeUnreachable once the budget is spent
- Cancellation while waiting
"""

import asyncio

import pytest

from lnsim.errors import NodeUnreachable, OperationCancelled
from lnsim.harness.readiness import BackoffPolicy, CancelToken, poll_until_online


class TestBackoffPolicy:

    def test_exponential_delay(self):
        policy = BackoffPolicy(retries=5, initial_delay_s=0.5, max_delay_s=8.0, factor=2.0)

        assert [policy.delay(n) for n in range(1, 7)] == [0.5, 1.0, 2.0, 4.0, 8.0, 8.0]

    def test_from_config(self, fast_config):
        policy = BackoffPolicy.from_config(fast_config)

        assert policy.retries == 3
        assert policy.max_delay_s == 0.0


class TestPollUntilOnline:

    @pytest.mark.asyncio
    async def test_online_after_transient_failures(self, bitcoin_service, network):
        bitcoin_service.wait_until_online.side_effect = [ConnectionError("refused"), ConnectionError("refused"), None]
        policy = BackoffPolicy(retries=3, initial_delay_s=0.0, max_delay_s=0.0)

        await poll_until_online(bitcoin_service, network.bitcoin[0], policy)

        assert bitcoin_service.wait_until_online.await_count == 3

    @pytest.mark.asyncio
    async def test_unreachable_after_budget(self, bitcoin_service, network):
        error = ConnectionError("refused")
        bitcoin_service.wait_until_online.side_effect = error
        policy = BackoffPolicy(retries=4, initial_delay_s=0.0, max_delay_s=0.0)

        with pytest.raises(NodeUnreachable) as exc_info:
            await poll_until_online(bitcoin_service, network.bitcoin[0], policy)

        assert exc_info.value.node_name == 'backend1'
        assert exc_info.value.attempts == 4
        assert exc_info.value.last_error is error
        assert bitcoin_service.wait_until_online.await_count == 4

    @pytest.mark.asyncio
    async def test_cancel_interrupts_backoff(self, bitcoin_service, network):
        bitcoin_service.wait_until_online.side_effect = ConnectionError("refused")
        policy = BackoffPolicy(retries=5, initial_delay_s=30.0, max_delay_s=30.0)
        token = CancelToken()

        task = asyncio.ensure_future(poll_until_online(bitcoin_service, network.bitcoin[0], policy, token))
        await asyncio.sleep(0.01)
        token.cancel()

        with pytest.raises(OperationCancelled):
            await asyncio.wait_for(task, timeout=1.0)
        assert bitcoin_service.wait_until_online.await_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_token_skips_polling(self, bitcoin_service, network):
        token = CancelToken()
        token.cancel()

        with pytest.raises(OperationCancelled):
            await poll_until_online(bitcoin_service, network.bitcoin[0], BackoffPolicy(), token)

        bitcoin_service.wait_until_online.assert_not_awaited()
