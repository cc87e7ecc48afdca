"""
Shared fixtures: fake node services, a recording container runtime and a
ready-made network.

Fake services are concrete subclasses of the capability contracts whose
methods are AsyncMocks, so they pass the ServiceLocator's contract check
and record every call.
"""

from unittest.mock import AsyncMock

import pytest

from lnsim.config.settings import OperationsConfig, OrchestratorConfig
from lnsim.network.factory import create_network
from lnsim.network.persistence import NetworksFile
from lnsim.services.contracts import (
    BitcoinService,
    ContainerRuntime,
    LightningService,
    TapService,
)
from lnsim.services.registry import NodeRegistry, ServiceLocator
from lnsim.services.types import LightningNodeInfo
from lnsim.store.state import StateStore


def make_fake(contract):
    """Instantiate a contract with every abstract method replaced by an AsyncMock."""
    names = sorted(contract.__abstractmethods__)
    cls = type(f"Fake{contract.__name__}", (contract,), dict.fromkeys(names))
    service = cls()
    for name in names:
        setattr(service, name, AsyncMock(name=name))
    return service


class RecordingRuntime(ContainerRuntime):
    """ContainerRuntime that records calls in order instead of touching docker."""

    def __init__(self, calls=None):
        self.calls = calls if calls is not None else []
        self.fail_start = set()
        self.fail_stop = set()
        self.networks_file = NetworksFile()
        self.saved = []

    async def save_compose_file(self, network):
        self.calls.append(('compose', network.name))

    async def start(self, network):
        self.calls.append(('start', network.name))

    async def stop(self, network):
        self.calls.append(('stop', network.name))

    async def start_node(self, network, node):
        self.calls.append(('start_node', node.name))
        if node.name in self.fail_start:
            raise RuntimeError(f"cannot start {node.name}")

    async def stop_node(self, network, node):
        self.calls.append(('stop_node', node.name))
        if node.name in self.fail_stop:
            raise RuntimeError(f"cannot stop {node.name}")

    async def remove_node(self, network, node):
        self.calls.append(('remove_node', node.name))

    async def save_networks(self, networks_file):
        self.saved.append(networks_file)
        self.networks_file = networks_file

    async def load_networks(self):
        return self.networks_file


@pytest.fixture
def make_service():
    """Factory for extra fake services: make_service('lightning')."""
    contracts = {
        'bitcoin': BitcoinService,
        'lightning': LightningService,
        'tap': TapService,
    }
    return lambda kind: make_fake(contracts[kind])


@pytest.fixture
def calls():
    """Shared, ordered log of runtime and readiness calls."""
    return []


@pytest.fixture
def bitcoin_service():
    service = make_fake(BitcoinService)
    service.mine.side_effect = lambda blocks, node: [f"{node.name}-block{i}" for i in range(blocks)]
    service.send_funds.return_value = "txid-1"
    service.get_new_address.return_value = "bcrt1qbitcoin"
    service.get_blockchain_info.return_value = {'blocks': 101}
    service.get_wallet_info.return_value = {'balance': 50.0}
    return service


@pytest.fixture
def lightning_service():
    service = make_fake(LightningService)
    service.get_info.side_effect = lambda node: LightningNodeInfo(
        pubkey=f"{node.name}-pubkey",
        alias=node.name,
        rpc_url=f"{node.name}-pubkey@{node.name}:9735",
    )
    service.get_balances.return_value = {'confirmed': '0'}
    service.get_channels.return_value = []
    service.get_peers.return_value = []
    service.get_new_address.return_value = "bcrt1qlightning"
    service.open_channel.return_value = "txid:0"
    service.create_invoice.return_value = "lnbcrt1invoice"
    service.pay_invoice.return_value = {'preimage': 'abc'}
    return service


@pytest.fixture
def tap_service():
    service = make_fake(TapService)
    service.list_assets.return_value = [{'name': 'my-asset', 'amount': '100'}]
    service.list_balances.return_value = [{'name': 'my-asset', 'balance': '100'}]
    service.mint_asset.return_value = {'pendingBatch': {'batchKey': 'abc'}}
    service.finalize_batch.return_value = {'batch': {'batchTxid': 'def'}}
    service.new_address.return_value = "taprt1address"
    service.send_asset.return_value = {'transfer': {}}
    return service


@pytest.fixture
def registry():
    return NodeRegistry()


@pytest.fixture
def locator(registry, bitcoin_service, lightning_service, tap_service):
    locator = ServiceLocator(registry)
    locator.register('bitcoind', bitcoin_service)
    locator.register('LND', lightning_service)
    locator.register('tapd', tap_service)
    return locator


@pytest.fixture
def runtime(calls):
    return RecordingRuntime(calls)


@pytest.fixture
def network(tmp_path):
    """
    Two backends, two lightning nodes, two tap nodes:

        alice -> backend1, bob -> backend2
        alice-tap (alice, backend1), bob-tap (bob, backend2)
    """
    return create_network(1, 'tap network', tmp_path, lightning=2, bitcoin=2, tap=2)


@pytest.fixture
def store(locator, runtime, network):
    store = StateStore(locator, runtime)
    store.add_network(network)
    return store


@pytest.fixture
def fast_config():
    """Readiness budget without real waiting."""
    return OrchestratorConfig(
        readiness_retries=3,
        readiness_initial_delay_s=0.0,
        readiness_max_delay_s=0.0,
    )


@pytest.fixture
def operations_config():
    return OperationsConfig()
