"""
state.py - State Store

Process-wide cache of the last known state of every node, plus the
networks themselves. The store is an explicit object handed to the
orchestrator and the composite engine; it is never a module global.

Cache semantics:
- Entries are created lazily on the first successful fetch for a node,
  overwritten by every later fetch and dropped with their network
- Writes commit in completion order (last completed fetch wins)
- Entries are keyed by (network id, node name); node names repeat across
  networks
- Concurrent requests for the same (node, field) share one in-flight call
- Reads are synchronous and never trigger a fetch
- Subscribers are notified after every commit

Lifecycle:
    store = StateStore(locator, runtime)
    await store.init()       # load persisted networks
    ...
    await store.teardown()   # wait for in-flight fetches
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from lnsim.errors import PartialFetchFailure
from lnsim.log import get_logger
from lnsim.network.graph import backend_of, ensure_valid
from lnsim.network.models import (
    AutoMineMode,
    CommonNode,
    Network,
    NodeKind,
    Status,
)
from lnsim.network.persistence import NETWORKS_FILE_VERSION, NetworksFile

logger = get_logger('store')


@dataclass
class BitcoinNodeState:
    chain_info: Any = None
    wallet_info: Any = None


@dataclass
class LightningNodeState:
    info: Any = None
    balances: Any = None
    channels: Any = None
    peers: Any = None


@dataclass
class TapNodeState:
    assets: Any = None
    balances: Any = None


STATE_CLASSES = {
    NodeKind.BITCOIN: BitcoinNodeState,
    NodeKind.LIGHTNING: LightningNodeState,
    NodeKind.TAP: TapNodeState,
}


# (kind, field) -> coroutine factory(service, node, backend)
FETCHERS: Dict[Tuple[NodeKind, str], Callable] = {
    (NodeKind.BITCOIN, 'chain_info'): lambda s, n, b: s.get_blockchain_info(n),
    (NodeKind.BITCOIN, 'wallet_info'): lambda s, n, b: s.get_wallet_info(n),
    (NodeKind.LIGHTNING, 'info'): lambda s, n, b: s.get_info(n),
    (NodeKind.LIGHTNING, 'balances'): lambda s, n, b: s.get_balances(n, b),
    (NodeKind.LIGHTNING, 'channels'): lambda s, n, b: s.get_channels(n),
    (NodeKind.LIGHTNING, 'peers'): lambda s, n, b: s.get_peers(n),
    (NodeKind.TAP, 'assets'): lambda s, n, b: s.list_assets(n),
    (NodeKind.TAP, 'balances'): lambda s, n, b: s.list_balances(n),
}

# Fields fetched by get_all_info, per kind
ALL_INFO_FIELDS = {
    NodeKind.BITCOIN: ('chain_info', 'wallet_info'),
    NodeKind.LIGHTNING: ('info', 'balances', 'channels', 'peers'),
    NodeKind.TAP: ('assets', 'balances'),
}


@dataclass
class FetchResult:
    """
    Outcome of an aggregate fetch.

    Attributes:
        node_name: Node the fetch was for
        succeeded: Field -> fetched value, for fields that were committed
        failed: Field -> error, for fields that were not
    """
    node_name: str
    succeeded: Dict[str, Any] = field(default_factory=dict)
    failed: Dict[str, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self):
        """
        Raises:
            PartialFetchFailure: If any sub-fetch failed
        """
        if self.failed:
            raise PartialFetchFailure(self)


Subscriber = Callable[[str, str], None]


def state_key(node: CommonNode) -> Tuple[int, str]:
    return (node.network_id, node.name)


class StateStore:
    """
    Cache of networks and per-node state.

    Args:
        locator: ServiceLocator used to reach node services
        runtime: ContainerRuntime used to load/save the networks file
    """

    def __init__(self, locator, runtime=None):
        self.locator = locator
        self.runtime = runtime
        self.networks: Dict[int, Network] = {}
        self.charts: Dict[int, Any] = {}
        self.nodes: Dict[Tuple[int, str], Any] = {}
        self._inflight: Dict[Tuple[int, str, str], asyncio.Task] = {}
        self._subscribers: List[Subscriber] = []
        self._removed_networks = set()
        self._last_network_id = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self):
        """
        Load persisted networks.

        Statuses are reset to Stopped: whether containers are still running
        from a previous process is not known until they are started again.
        """
        networks_file = await self.runtime.load_networks()
        if networks_file.version != NETWORKS_FILE_VERSION:
            logger.warning(
                f"Networks file version {networks_file.version} differs from "
                f"{NETWORKS_FILE_VERSION}; loading anyway"
            )

        self.networks = {}
        for network in networks_file.networks:
            ensure_valid(network)
            network.status = Status.STOPPED
            for node in network.all_nodes():
                node.status = Status.STOPPED
            self.networks[network.id] = network
            self._last_network_id = max(self._last_network_id, network.id)
        self.charts = dict(networks_file.charts)
        logger.info(f"Loaded {len(self.networks)} network(s)")

    async def save(self):
        """Persist networks and charts."""
        networks_file = NetworksFile(
            version=NETWORKS_FILE_VERSION,
            networks=sorted(self.networks.values(), key=lambda n: n.id),
            charts=dict(self.charts),
        )
        await self.runtime.save_networks(networks_file)

    async def teardown(self):
        """Wait for in-flight fetches to finish."""
        pending = list(self._inflight.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback called with (name, field) after every change.

        ``name`` is a node name, or ``network:<id>`` for network-level
        changes. Returns a function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def _notify(self, name: str, field_name: str):
        for callback in list(self._subscribers):
            callback(name, field_name)

    # ------------------------------------------------------------------
    # Network actions
    # ------------------------------------------------------------------

    def add_network(self, network: Network, chart: Any = None):
        """
        Raises:
            InvalidNetwork: If the network violates the graph invariants
            ValueError: If the id is already taken
        """
        ensure_valid(network)
        if network.id in self.networks:
            raise ValueError(f"Network {network.id} already exists")
        self.networks[network.id] = network
        self._removed_networks.discard(network.id)
        self._last_network_id = max(self._last_network_id, network.id)
        if chart is not None:
            self.charts[network.id] = chart
        self._notify(f"network:{network.id}", 'added')

    def get_network(self, network_id: int) -> Network:
        """
        Raises:
            KeyError: If the network is unknown
        """
        try:
            return self.networks[network_id]
        except KeyError:
            raise KeyError(f"Network {network_id} not found")

    def network_of(self, node: CommonNode) -> Network:
        return self.get_network(node.network_id)

    def next_network_id(self) -> int:
        """Next unused id. Ids of removed networks are never handed out again."""
        return max(self._last_network_id, max(self.networks, default=0)) + 1

    def remove_network(self, network_id: int) -> Network:
        """Drop a network, its chart and the cached state of its nodes."""
        network = self.networks.pop(network_id)
        self.charts.pop(network_id, None)
        self._removed_networks.add(network_id)
        for node in network.all_nodes():
            self.nodes.pop(state_key(node), None)
        self._notify(f"network:{network_id}", 'removed')
        return network

    def remove_node(self, network: Network, node: CommonNode):
        """Remove a node from its network's topology and drop its cached state."""
        network.nodes_of(node.kind).remove(node)
        if node.kind == NodeKind.BITCOIN:
            for other in network.bitcoin:
                if node.name in other.peers:
                    other.peers.remove(node.name)
        self.nodes.pop(state_key(node), None)
        self._notify(node.name, 'removed')

    def set_network_status(self, network: Network, status: Status):
        network.status = status
        self._notify(f"network:{network.id}", 'status')

    def set_node_status(self, node: CommonNode, status: Status):
        node.status = status
        self._notify(node.name, 'status')

    def set_auto_mine_mode(self, network: Network, mode: AutoMineMode):
        network.auto_mine_mode = AutoMineMode(mode)
        self._notify(f"network:{network.id}", 'auto_mine_mode')

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def node_state(self, node: CommonNode):
        """Cached state for a node, or None if nothing was fetched yet."""
        return self.nodes.get(state_key(node))

    # ------------------------------------------------------------------
    # Fetch actions
    # ------------------------------------------------------------------

    async def fetch(self, node: CommonNode, field_name: str) -> Any:
        """
        Fetch one field of a node and commit it to the cache.

        A request for a (node, field) pair that is already in flight joins
        the running call instead of issuing a second one.

        Raises:
            ValueError: If the field doesn't exist for the node's kind
            UnsupportedImplementation: If no service speaks the node's protocol
        """
        fetcher = FETCHERS.get((node.kind, field_name))
        if fetcher is None:
            raise ValueError(f"Unknown field '{field_name}' for {node.kind.value} node {node.name}")

        key = state_key(node) + (field_name,)
        task = self._inflight.get(key)
        if task is None:
            service = self.locator.resolve_service(node)
            task = asyncio.ensure_future(self._run_fetch(node, field_name, fetcher, service))
            self._inflight[key] = task
            task.add_done_callback(lambda t, key=key: self._forget(key, t))
        return await task

    def _forget(self, key, task):
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _run_fetch(self, node, field_name, fetcher, service):
        backend = None
        if node.kind == NodeKind.LIGHTNING and node.network_id in self.networks:
            backend = backend_of(self.networks[node.network_id], node)

        value = await fetcher(service, node, backend)
        self._commit(node, field_name, value)
        return value

    def _commit(self, node: CommonNode, field_name: str, value: Any):
        if node.network_id in self._removed_networks:
            logger.debug(f"Dropping {field_name} for {node.name}: network was removed")
            return

        entry = self.nodes.get(state_key(node))
        if not isinstance(entry, STATE_CLASSES[node.kind]):
            entry = STATE_CLASSES[node.kind]()
            self.nodes[state_key(node)] = entry
        setattr(entry, field_name, value)
        self._notify(node.name, field_name)

    async def get_info(self, node: CommonNode) -> Any:
        """Node info: chain info for bitcoin, node info for lightning, assets for tap."""
        field_name = {
            NodeKind.BITCOIN: 'chain_info',
            NodeKind.LIGHTNING: 'info',
            NodeKind.TAP: 'assets',
        }[node.kind]
        return await self.fetch(node, field_name)

    async def get_wallet_info(self, node: CommonNode) -> Any:
        return await self.fetch(node, 'wallet_info')

    async def get_balances(self, node: CommonNode) -> Any:
        """Wallet info for bitcoin nodes, balances for lightning and tap nodes."""
        if node.kind == NodeKind.BITCOIN:
            return await self.fetch(node, 'wallet_info')
        return await self.fetch(node, 'balances')

    async def get_channels(self, node: CommonNode) -> Any:
        return await self.fetch(node, 'channels')

    async def get_peers(self, node: CommonNode) -> Any:
        return await self.fetch(node, 'peers')

    async def get_assets(self, node: CommonNode) -> Any:
        return await self.fetch(node, 'assets')

    async def get_all_info(self, node: CommonNode) -> FetchResult:
        """
        Fetch every field of a node concurrently.

        Fields that succeed are committed even if others fail; failures are
        reported in the returned FetchResult rather than raised.
        """
        fields = ALL_INFO_FIELDS[node.kind]
        results = await asyncio.gather(
            *(self.fetch(node, f) for f in fields),
            return_exceptions=True
        )

        outcome = FetchResult(node_name=node.name)
        for field_name, result in zip(fields, results):
            if isinstance(result, BaseException):
                outcome.failed[field_name] = result
            else:
                outcome.succeeded[field_name] = result

        if outcome.failed:
            logger.warning(
                f"Fetch for {node.name} failed for "
                + ", ".join(f"{f} ({e})" for f, e in outcome.failed.items())
            )
        return outcome

    async def refresh(self, *nodes: CommonNode) -> List[FetchResult]:
        """get_all_info for several nodes at once."""
        return list(await asyncio.gather(*(self.get_all_info(n) for n in nodes)))
