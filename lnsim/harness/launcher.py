"""
launcher.py - Process-level wiring

Creates the registry, service locator, container runtime, State Store,
orchestrator and composite engine, and owns their init/teardown:

    async with Launcher(config) as launcher:
        network = await launcher.create_network("demo", lightning=2, tap=1)
        await launcher.orchestrator.start_network(network)

Design philosophy:
- Fail fast during init (invalid persisted networks raise InvalidNetwork)
- Always tear down: auto-mine timers are cancelled and in-flight fetches
  awaited before the process exits
"""

from typing import Dict, List, Optional

from lnsim.config.settings import LnsimConfig
from lnsim.harness.orchestrator import LifecycleOrchestrator
from lnsim.log import get_logger
from lnsim.network.factory import create_network
from lnsim.network.graph import validate_network
from lnsim.network.models import Network, Status
from lnsim.operations.engine import CompositeEngine
from lnsim.services.docker_runtime import DockerRuntime
from lnsim.services.registry import NodeRegistry, ServiceLocator
from lnsim.store.state import StateStore

logger = get_logger('launcher')


class Launcher:
    """
    Owns every core component for one process.

    Args:
        config: LnsimConfig (default: all defaults)
        locator: ServiceLocator with node services registered (default: empty)
        runtime: ContainerRuntime (default: DockerRuntime)
    """

    def __init__(self, config: Optional[LnsimConfig] = None, locator: Optional[ServiceLocator] = None,
                 runtime=None):
        self.config = config or LnsimConfig()
        self.registry = NodeRegistry(
            managed_images=self.config.managed_images,
            custom_images=self.config.custom_images,
        )
        self.locator = locator or ServiceLocator(self.registry)
        self.runtime = runtime or DockerRuntime(self.registry, self.config.orchestrator)
        self.store = StateStore(self.locator, self.runtime)
        self.orchestrator = LifecycleOrchestrator(
            self.store, self.locator, self.runtime, self.config.orchestrator
        )
        self.engine = CompositeEngine(self.store, self.locator, self.config.operations)
        self._initialized = False

    async def init(self):
        """Load persisted networks."""
        await self.store.init()
        self._initialized = True

    async def shutdown(self):
        """Cancel timers and wait for in-flight work; containers are left as they are."""
        await self.orchestrator.teardown()
        await self.store.teardown()
        logger.info("Shutdown complete")

    async def __aenter__(self):
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.shutdown()

    def validate_networks(self) -> Dict[int, List[str]]:
        """
        Validate all loaded networks.

        Returns:
            Network id -> validation errors, for invalid networks only
        """
        errors = {}
        for network in self.store.networks.values():
            problems = validate_network(network)
            if problems:
                errors[network.id] = problems
        return errors

    async def create_network(self, name: str, lightning: int = 2, bitcoin: int = 1, tap: int = 0,
                             lightning_implementation: str = 'LND', description: str = '') -> Network:
        """Build a network, write its compose file and persist it."""
        network = create_network(
            self.store.next_network_id(),
            name,
            self.config.orchestrator.data_path / 'networks',
            lightning=lightning,
            bitcoin=bitcoin,
            tap=tap,
            lightning_implementation=lightning_implementation,
            description=description,
        )
        self.store.add_network(network)
        await self.runtime.save_compose_file(network)
        await self.store.save()
        logger.info(f"Created network {network.name} (id {network.id})")
        return network

    async def remove_network(self, network: Network):
        """Stop (if needed) and delete a network, dropping its cached state."""
        if network.status != Status.STOPPED:
            await self.orchestrator.stop_network(network)
        for node in reversed(network.all_nodes()):
            await self.runtime.remove_node(network, node)
        self.store.remove_network(network.id)
        await self.store.save()
        logger.info(f"Removed network {network.name}")
