"""
test_lifecycle.py - Lifecycle Orchestrator

Tests:
- Tiered startup (no tier starts before the previous one is online)
- Failure handling: unreachable nodes, unsupported implementations
- Best-effort reverse-order stop
- Stop abandoning an in-flight start
- Node removal and dangling references
- Auto-mine scheduling
"""

import asyncio

import pytest

from lnsim.config.settings import OrchestratorConfig
from lnsim.errors import DanglingReference, NodeUnreachable, OperationCancelled, UnsupportedImplementation
from lnsim.harness.orchestrator import LifecycleOrchestrator
from lnsim.network.factory import create_network
from lnsim.network.models import AutoMineMode, Status


def record_ready(calls, delay=0.0):
    """wait_until_online side effect that logs when a node is online."""
    async def _ready(node):
        await asyncio.sleep(delay)
        calls.append(('ready', node.name))
    return _ready


def index_of(calls, entry):
    return calls.index(entry)


@pytest.fixture
def orchestrator(store, locator, runtime, fast_config):
    return LifecycleOrchestrator(store, locator, runtime, fast_config)


@pytest.fixture
def ready_log(calls, bitcoin_service, lightning_service, tap_service):
    """Record readiness in the shared call log; bitcoin nodes are slow."""
    bitcoin_service.wait_until_online.side_effect = record_ready(calls, delay=0.01)
    lightning_service.wait_until_online.side_effect = record_ready(calls)
    tap_service.wait_until_online.side_effect = record_ready(calls)
    return calls


class TestStartNetwork:
    """Test tiered startup."""

    @pytest.mark.asyncio
    async def test_tiers_start_in_order(self, orchestrator, network, ready_log):
        await orchestrator.start_network(network)

        last_bitcoin_ready = max(index_of(ready_log, ('ready', n)) for n in ('backend1', 'backend2'))
        first_lightning_start = min(index_of(ready_log, ('start_node', n)) for n in ('alice', 'bob'))
        last_lightning_ready = max(index_of(ready_log, ('ready', n)) for n in ('alice', 'bob'))
        first_tap_start = min(index_of(ready_log, ('start_node', n)) for n in ('alice-tap', 'bob-tap'))

        assert last_bitcoin_ready < first_lightning_start
        assert last_lightning_ready < first_tap_start

    @pytest.mark.asyncio
    async def test_statuses_after_start(self, orchestrator, network, ready_log):
        transitions = []
        orchestrator.store.subscribe(
            lambda name, field: transitions.append(network.status) if name == 'network:1' else None
        )

        await orchestrator.start_network(network)

        assert transitions == [Status.STARTING, Status.STARTED]
        assert all(n.status == Status.STARTED for n in network.all_nodes())

    @pytest.mark.asyncio
    async def test_compose_file_written_first(self, orchestrator, network, ready_log):
        await orchestrator.start_network(network)

        assert ready_log[0] == ('compose', 'tap network')

    @pytest.mark.asyncio
    async def test_wallets_and_peers(self, orchestrator, network, ready_log,
                                     bitcoin_service, lightning_service):
        await orchestrator.start_network(network)

        assert bitcoin_service.create_default_wallet.await_count == 2
        assert bitcoin_service.connect_peers.await_count == 2
        lightning_service.connect_peers.assert_any_await(
            network.lightning[0], ['bob-pubkey@bob:9735']
        )

    @pytest.mark.asyncio
    async def test_peer_failure_does_not_fail_start(self, orchestrator, network, ready_log,
                                                    lightning_service):
        lightning_service.connect_peers.side_effect = RuntimeError("peer refused")

        await orchestrator.start_network(network)

        assert network.status == Status.STARTED

    @pytest.mark.asyncio
    async def test_unreachable_node_fails_network(self, orchestrator, network, runtime,
                                                  bitcoin_service):
        async def backend2_down(node):
            if node.name == 'backend2':
                raise ConnectionError("connection refused")
        bitcoin_service.wait_until_online.side_effect = backend2_down

        with pytest.raises(NodeUnreachable) as exc_info:
            await orchestrator.start_network(network)

        assert exc_info.value.node_name == 'backend2'
        assert network.status == Status.ERROR
        assert network.bitcoin[1].status == Status.ERROR
        assert network.bitcoin[0].status == Status.STARTED
        # Later tiers are skipped, started containers are left running
        started = [name for op, name in runtime.calls if op == 'start_node']
        assert started == ['backend1', 'backend2']
        assert not any(op == 'stop_node' for op, _ in runtime.calls)

    @pytest.mark.asyncio
    async def test_container_failure_fails_network(self, orchestrator, network, runtime, ready_log):
        runtime.fail_start.add('bob')

        with pytest.raises(RuntimeError, match="cannot start bob"):
            await orchestrator.start_network(network)

        assert network.status == Status.ERROR
        assert network.lightning[1].status == Status.ERROR

    @pytest.mark.asyncio
    async def test_unsupported_implementation_touches_nothing(self, orchestrator, network, runtime):
        network.lightning[1].implementation = 'eclair'

        with pytest.raises(UnsupportedImplementation):
            await orchestrator.start_network(network)

        assert runtime.calls == []

    @pytest.mark.asyncio
    async def test_restart_from_error(self, orchestrator, network, runtime, ready_log):
        runtime.fail_start.add('alice-tap')
        with pytest.raises(RuntimeError):
            await orchestrator.start_network(network)

        runtime.fail_start.clear()
        await orchestrator.start_network(network)

        assert network.status == Status.STARTED


class TestStopNetwork:
    """Test best-effort stop."""

    @pytest.mark.asyncio
    async def test_reverse_tier_order(self, orchestrator, network, runtime, ready_log):
        await orchestrator.start_network(network)
        runtime.calls.clear()

        failures = await orchestrator.stop_network(network)

        stopped = [name for op, name in runtime.calls if op == 'stop_node']
        assert stopped == ['alice-tap', 'bob-tap', 'alice', 'bob', 'backend1', 'backend2']
        assert failures == {}
        assert network.status == Status.STOPPED
        assert all(n.status == Status.STOPPED for n in network.all_nodes())

    @pytest.mark.asyncio
    async def test_failing_node_does_not_block_others(self, orchestrator, network, runtime, ready_log):
        await orchestrator.start_network(network)
        runtime.fail_stop.add('alice')

        failures = await orchestrator.stop_network(network)

        assert list(failures) == ['alice']
        assert network.lightning[0].status == Status.ERROR
        assert network.bitcoin[0].status == Status.STOPPED
        assert network.status == Status.STOPPED
        assert ('stop_node', 'backend1') in runtime.calls

    @pytest.mark.asyncio
    async def test_stop_abandons_in_flight_start(self, store, locator, runtime, network, bitcoin_service):
        bitcoin_service.wait_until_online.side_effect = ConnectionError("not yet")
        slow = OrchestratorConfig(readiness_retries=5, readiness_initial_delay_s=30.0,
                                  readiness_max_delay_s=30.0)
        orchestrator = LifecycleOrchestrator(store, locator, runtime, slow)

        start = asyncio.ensure_future(orchestrator.start_network(network))
        await asyncio.sleep(0.01)
        await orchestrator.stop_network(network)

        with pytest.raises(OperationCancelled):
            await asyncio.wait_for(start, timeout=1.0)

        assert network.status == Status.STOPPED
        assert all(n.status == Status.STOPPED for n in network.all_nodes())
        assert ('start_node', 'alice') not in runtime.calls


class TestSingleNodes:
    """Test single-node operations."""

    @pytest.mark.asyncio
    async def test_start_and_stop_node(self, orchestrator, network, runtime, ready_log):
        node = network.lightning[0]

        await orchestrator.start_node(network, node)
        assert node.status == Status.STARTED

        await orchestrator.stop_node(network, node)
        assert node.status == Status.STOPPED
        assert [c for c in runtime.calls if c[0] in ('start_node', 'stop_node')] == [
            ('start_node', 'alice'), ('stop_node', 'alice'),
        ]

    @pytest.mark.asyncio
    async def test_remove_referenced_node(self, orchestrator, network, runtime):
        with pytest.raises(DanglingReference) as exc_info:
            await orchestrator.remove_node(network, network.bitcoin[0])

        assert exc_info.value.dependents == ['alice', 'alice-tap']
        assert runtime.calls == []
        assert network.find_node('backend1') is not None

    @pytest.mark.asyncio
    async def test_remove_paired_lightning_node(self, orchestrator, network, runtime):
        with pytest.raises(DanglingReference):
            await orchestrator.remove_node(network, network.lightning[1])

        assert runtime.calls == []

    @pytest.mark.asyncio
    async def test_remove_node_of_other_network(self, orchestrator, network, runtime, tmp_path):
        other = create_network(2, 'other', tmp_path, lightning=3)

        with pytest.raises(ValueError, match="not part of"):
            await orchestrator.remove_node(network, other.lightning[2])

        assert runtime.calls == []
        assert runtime.saved == []

    @pytest.mark.asyncio
    async def test_remove_node(self, orchestrator, store, network, runtime):
        node = network.tap[0]
        store.nodes[(1, 'alice-tap')] = object()

        await orchestrator.remove_node(network, node)

        assert runtime.calls == [('remove_node', 'alice-tap'), ('compose', 'tap network')]
        assert [n.name for n in network.tap] == ['bob-tap']
        assert store.node_state(node) is None
        assert len(runtime.saved) == 1


class TestAutoMine:
    """Test auto-mine timer."""

    @pytest.mark.asyncio
    async def test_mines_while_started(self, orchestrator, store, network, ready_log, bitcoin_service):
        orchestrator._auto_mine_interval = lambda network: 0.01
        network.auto_mine_mode = AutoMineMode.AUTO_30S

        await orchestrator.start_network(network)
        assert orchestrator.auto_mining(network)
        await asyncio.sleep(0.05)

        bitcoin_service.mine.assert_any_await(1, network.bitcoin[0])
        assert store.node_state(network.bitcoin[0]).chain_info == {'blocks': 101}

        await orchestrator.stop_network(network)
        assert not orchestrator.auto_mining(network)
        mined = bitcoin_service.mine.await_count
        await asyncio.sleep(0.03)
        assert bitcoin_service.mine.await_count == mined

    @pytest.mark.asyncio
    async def test_off_by_default(self, orchestrator, network, ready_log):
        await orchestrator.start_network(network)

        assert not orchestrator.auto_mining(network)

    @pytest.mark.asyncio
    async def test_set_mode(self, orchestrator, network, runtime, ready_log):
        await orchestrator.start_network(network)

        await orchestrator.set_auto_mine_mode(network, 60)
        assert network.auto_mine_mode == AutoMineMode.AUTO_1M
        assert orchestrator.auto_mining(network)
        assert len(runtime.saved) == 1

        await orchestrator.set_auto_mine_mode(network, AutoMineMode.OFF)
        assert not orchestrator.auto_mining(network)

        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_not_started_network_does_not_mine(self, orchestrator, network):
        await orchestrator.set_auto_mine_mode(network, AutoMineMode.AUTO_5M)

        assert not orchestrator.auto_mining(network)

    @pytest.mark.asyncio
    async def test_invalid_mode(self, orchestrator, network):
        with pytest.raises(ValueError):
            await orchestrator.set_auto_mine_mode(network, 45)

    @pytest.mark.asyncio
    async def test_mining_errors_keep_timer_running(self, orchestrator, network, ready_log, bitcoin_service):
        orchestrator._auto_mine_interval = lambda network: 0.01
        network.auto_mine_mode = AutoMineMode.AUTO_30S
        bitcoin_service.mine.side_effect = RuntimeError("rpc down")

        await orchestrator.start_network(network)
        await asyncio.sleep(0.05)

        assert bitcoin_service.mine.await_count >= 2
        assert orchestrator.auto_mining(network)

        await orchestrator.teardown()
