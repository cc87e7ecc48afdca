"""
orchestrator.py - Lifecycle Orchestrator

Brings networks and single nodes up and down through the container
runtime, in dependency order, and keeps their statuses in the State Store.

Startup runs tier by tier (bitcoin -> lightning -> tap). Inside a tier
nodes start in parallel; the next tier only starts once every readiness
poll of the current tier has resolved:

    for each tier:
        launch containers + poll readiness (parallel)
        join
        any failure -> network Error, remaining tiers skipped

Failure policy:
- Containers that already started stay up after a failed start; the
  caller runs stop_network() to clean up
- Stopping is best-effort and runs in reverse tier order; a node that
  fails to stop is logged and the rest are still stopped
- A stop issued while a start is in flight cancels the start's token; the
  start is abandoned (its outcome is ignored) and the stop proceeds

State machine per network:
    Stopped -> Starting -> Started | Error -> Stopping -> Stopped
Error is not terminal: start_network()/stop_network() are accepted from it.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

from lnsim.config.settings import OrchestratorConfig
from lnsim.errors import DanglingReference, OperationCancelled
from lnsim.harness.readiness import BackoffPolicy, CancelToken, poll_until_online
from lnsim.log import get_logger
from lnsim.network.graph import dependents_of, tiers
from lnsim.network.models import (
    TIER_ORDER,
    AutoMineMode,
    CommonNode,
    Network,
    NodeKind,
    Status,
)

logger = get_logger('orchestrator')


class LifecycleOrchestrator:
    """
    Starts and stops networks and nodes.

    Args:
        store: StateStore holding networks and statuses
        locator: ServiceLocator for readiness polling and auto-mining
        runtime: ContainerRuntime driving docker
        config: OrchestratorConfig (readiness budget)
    """

    def __init__(self, store, locator, runtime, config: Optional[OrchestratorConfig] = None):
        self.store = store
        self.locator = locator
        self.runtime = runtime
        self.config = config or OrchestratorConfig()
        self.policy = BackoffPolicy.from_config(self.config)

        self._network_starts: Dict[int, CancelToken] = {}
        self._node_starts: Dict[Tuple[int, str], CancelToken] = {}
        self._auto_miners: Dict[int, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Networks
    # ------------------------------------------------------------------

    async def start_network(self, network: Network) -> Network:
        """
        Start every node of a network, tier by tier.

        Returns:
            The network, now Started

        Raises:
            UnsupportedImplementation: If a node has no service (nothing is started)
            NodeUnreachable: If a node did not come online (network -> Error)
            OperationCancelled: If a stop abandoned this start
        """
        previous = self._network_starts.get(network.id)
        if previous is not None:
            previous.cancel()

        token = CancelToken()
        self._network_starts[network.id] = token
        try:
            return await self._start_network(network, token)
        finally:
            if self._network_starts.get(network.id) is token:
                del self._network_starts[network.id]

    async def _start_network(self, network: Network, token: CancelToken) -> Network:
        logger.info(f"Starting network {network.name} ({len(network.all_nodes())} node(s))")
        self.store.set_network_status(network, Status.STARTING)

        try:
            # Resolve every service up front so an unsupported node fails
            # before any container is touched
            services = {node.name: self.locator.resolve_service(node) for node in network.all_nodes()}

            await self.runtime.save_compose_file(network)

            for kind, tier in zip(TIER_ORDER, tiers(network)):
                if not tier:
                    continue
                token.raise_if_cancelled(f"Start of {network.name}")

                logger.info(f"Starting {kind.value} tier: {', '.join(n.name for n in tier)}")
                results = await asyncio.gather(
                    *(self._start_node(network, node, services[node.name], token) for node in tier),
                    return_exceptions=True
                )
                token.raise_if_cancelled(f"Start of {network.name}")

                failures = [(node, r) for node, r in zip(tier, results) if isinstance(r, BaseException)]
                for node, error in failures:
                    logger.error(f"{node.name} failed to start: {error}")
                if failures:
                    raise failures[0][1]

            await self._connect_peers(network, services)
            token.raise_if_cancelled(f"Start of {network.name}")

        except OperationCancelled:
            logger.info(f"Start of {network.name} abandoned")
            raise
        except Exception:
            if not token.cancelled:
                self.store.set_network_status(network, Status.ERROR)
            raise

        self.store.set_network_status(network, Status.STARTED)
        logger.info(f"Network {network.name} started")
        self._schedule_auto_mine(network)
        return network

    async def _start_node(self, network: Network, node: CommonNode, service, token: CancelToken):
        self.store.set_node_status(node, Status.STARTING)
        try:
            await self.runtime.start_node(network, node)
            await poll_until_online(service, node, self.policy, token)
            token.raise_if_cancelled(f"Start of {node.name}")
            if node.kind == NodeKind.BITCOIN:
                await service.create_default_wallet(node)
        except OperationCancelled:
            raise
        except Exception:
            if not token.cancelled:
                self.store.set_node_status(node, Status.ERROR)
            raise

        if not token.cancelled:
            self.store.set_node_status(node, Status.STARTED)
            logger.info(f"{node.name} is online")

    async def _connect_peers(self, network: Network, services):
        """
        Connect bitcoin nodes to each other and lightning nodes to each other.

        Best-effort: a node that can't be connected is logged and skipped.
        """
        for node in network.bitcoin:
            if not node.peers:
                continue
            try:
                await services[node.name].connect_peers(node)
            except Exception as e:
                logger.warning(f"Could not connect {node.name} to its peers: {e}")

        if len(network.lightning) < 2:
            return

        urls = {}
        for node in network.lightning:
            try:
                info = await services[node.name].get_info(node)
                urls[node.name] = info.rpc_url
            except Exception as e:
                logger.warning(f"Could not get info for {node.name}: {e}")

        for node in network.lightning:
            peer_urls = [url for name, url in urls.items() if name != node.name]
            if not peer_urls:
                continue
            try:
                await services[node.name].connect_peers(node, peer_urls)
            except Exception as e:
                logger.warning(f"Could not connect {node.name} to its peers: {e}")

    async def stop_network(self, network: Network) -> Dict[str, BaseException]:
        """
        Stop every node of a network, in reverse tier order.

        Returns:
            Node name -> error for nodes that failed to stop (already logged)
        """
        token = self._network_starts.pop(network.id, None)
        if token is not None:
            logger.info(f"Abandoning in-flight start of {network.name}")
            token.cancel()

        self._cancel_auto_mine(network.id)

        logger.info(f"Stopping network {network.name}")
        self.store.set_network_status(network, Status.STOPPING)

        failures: Dict[str, BaseException] = {}
        for tier in reversed(tiers(network)):
            if not tier:
                continue
            results = await asyncio.gather(
                *(self._stop_node(network, node) for node in tier),
                return_exceptions=True
            )
            for node, result in zip(tier, results):
                if isinstance(result, BaseException):
                    logger.warning(f"Failed to stop {node.name}: {result}")
                    failures[node.name] = result

        self.store.set_network_status(network, Status.STOPPED)
        logger.info(
            f"Network {network.name} stopped"
            + (f" ({len(failures)} node(s) failed to stop)" if failures else "")
        )
        return failures

    async def _stop_node(self, network: Network, node: CommonNode):
        token = self._node_starts.pop((network.id, node.name), None)
        if token is not None:
            token.cancel()

        self.store.set_node_status(node, Status.STOPPING)
        try:
            await self.runtime.stop_node(network, node)
        except Exception:
            self.store.set_node_status(node, Status.ERROR)
            raise
        self.store.set_node_status(node, Status.STOPPED)

    # ------------------------------------------------------------------
    # Single nodes
    # ------------------------------------------------------------------

    async def start_node(self, network: Network, node: CommonNode):
        """
        Start one node and wait until it is online.

        Raises:
            UnsupportedImplementation: If the node has no service
            NodeUnreachable: If it did not come online (node -> Error)
            OperationCancelled: If stop_node() abandoned this start
        """
        service = self.locator.resolve_service(node)

        key = (network.id, node.name)
        previous = self._node_starts.get(key)
        if previous is not None:
            previous.cancel()

        token = CancelToken()
        self._node_starts[key] = token
        try:
            await self._start_node(network, node, service, token)
        finally:
            if self._node_starts.get(key) is token:
                del self._node_starts[key]

    async def stop_node(self, network: Network, node: CommonNode):
        await self._stop_node(network, node)

    async def remove_node(self, network: Network, node: CommonNode):
        """
        Remove a node and its container.

        Raises:
            ValueError: If the node is not part of the network (nothing is
                touched)
            DanglingReference: If other nodes use it as backend or paired
                lightning node (nothing is touched)
        """
        if node not in network.nodes_of(node.kind):
            raise ValueError(f"Node {node.name} is not part of {network.name}")

        dependents = dependents_of(network, node)
        if dependents:
            raise DanglingReference(node.name, dependents)

        token = self._node_starts.pop((network.id, node.name), None)
        if token is not None:
            token.cancel()

        logger.info(f"Removing {node.name} from {network.name}")
        await self.runtime.remove_node(network, node)
        self.store.remove_node(network, node)
        await self.runtime.save_compose_file(network)
        await self.store.save()

        if node.kind == NodeKind.BITCOIN:
            # The first bitcoin node may have changed
            self._schedule_auto_mine(network)

    # ------------------------------------------------------------------
    # Auto-mine
    # ------------------------------------------------------------------

    async def set_auto_mine_mode(self, network: Network, mode):
        """Change the auto-mine interval; the timer restarts immediately."""
        self.store.set_auto_mine_mode(network, AutoMineMode(mode))
        await self.store.save()
        self._schedule_auto_mine(network)

    def auto_mining(self, network: Network) -> bool:
        task = self._auto_miners.get(network.id)
        return task is not None and not task.done()

    def _schedule_auto_mine(self, network: Network):
        self._cancel_auto_mine(network.id)
        if (network.auto_mine_mode == AutoMineMode.OFF
                or network.status != Status.STARTED
                or not network.bitcoin):
            return

        logger.info(f"Auto-mining {network.name} every {int(network.auto_mine_mode)}s")
        self._auto_miners[network.id] = asyncio.ensure_future(self._auto_mine_loop(network))

    def _cancel_auto_mine(self, network_id: int):
        task = self._auto_miners.pop(network_id, None)
        if task is not None:
            task.cancel()

    def _auto_mine_interval(self, network: Network) -> float:
        return float(int(network.auto_mine_mode))

    async def _auto_mine_loop(self, network: Network):
        interval = self._auto_mine_interval(network)
        while network.status == Status.STARTED:
            await asyncio.sleep(interval)
            if network.status != Status.STARTED or not network.bitcoin:
                break

            node = network.bitcoin[0]
            try:
                await self.locator.bitcoin(node).mine(1, node)
                await self.store.fetch(node, 'chain_info')
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Auto-mine on {node.name} failed: {e}")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def teardown(self):
        """Cancel auto-mine timers and in-flight starts."""
        for token in [*self._network_starts.values(), *self._node_starts.values()]:
            token.cancel()
        self._network_starts.clear()
        self._node_starts.clear()

        tasks: List[asyncio.Task] = list(self._auto_miners.values())
        self._auto_miners.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
