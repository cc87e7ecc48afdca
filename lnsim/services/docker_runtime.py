"""
docker_runtime.py - Docker container runtime

Runs one container per node through the docker SDK and keeps the
persisted networks file.

Design:
- Containers are named lnsim-<network id>-<node name> and labelled
  lnsim=true so leftovers can be found and cleaned up
- Nodes of a network share a docker network (lnsim-<network id>) and
  reach each other by node name
- A docker-compose.yml mirroring the same setup is written into the
  network's folder, so a network can also be inspected or run by hand
- SDK calls block, so they run in a worker thread (asyncio.to_thread)
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

import docker
import yaml
from docker.errors import APIError, ImageNotFound, NotFound

from lnsim.config.settings import OrchestratorConfig
from lnsim.log import get_logger
from lnsim.network.graph import backend_of
from lnsim.network.models import CommonNode, Network, NodeKind
from lnsim.network.persistence import NetworksFile, dump_networks, read_networks
from lnsim.services.contracts import ContainerRuntime

logger = get_logger('docker')

COMPOSE_FILE_NAME = 'docker-compose.yml'

# Port name -> port inside the container
INTERNAL_PORTS: Dict[NodeKind, Dict[str, int]] = {
    NodeKind.BITCOIN: {'rpc': 18443, 'p2p': 18444, 'zmqBlock': 28334, 'zmqTx': 28335},
    NodeKind.LIGHTNING: {'rest': 8080, 'grpc': 10009, 'p2p': 9735},
    NodeKind.TAP: {'grpc': 10029, 'rest': 8089},
}

# Implementation -> data folder inside the container
DATA_DIRS = {
    'bitcoind': '/home/bitcoin/.bitcoin',
    'LND': '/home/lnd/.lnd',
    'c-lightning': '/home/clightning/.lightning',
    'eclair': '/home/eclair/.eclair',
    'litd': '/home/litd/.lit',
    'tapd': '/home/tap/.tapd',
}


class _Placeholders(dict):
    """format_map() mapping that leaves unknown placeholders untouched."""

    def __missing__(self, key):
        return '{' + key + '}'


def container_name(network: Network, node: CommonNode) -> str:
    return f"lnsim-{network.id}-{node.name}"


def network_name(network: Network) -> str:
    return f"lnsim-{network.id}"


class DockerRuntime(ContainerRuntime):
    """
    ContainerRuntime backed by the local docker daemon.

    Args:
        registry: NodeRegistry resolving images and commands
        config: OrchestratorConfig (data folder, stop timeout)
        client: docker client (default: docker.from_env() on first use)
    """

    def __init__(self, registry, config: Optional[OrchestratorConfig] = None, client=None):
        self.registry = registry
        self.config = config or OrchestratorConfig()
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    # ------------------------------------------------------------------
    # Container definitions
    # ------------------------------------------------------------------

    def volume_path(self, network: Network, node: CommonNode) -> Path:
        return Path(network.path) / 'volumes' / node.implementation.lower() / node.name

    def command_for(self, network: Network, node: CommonNode) -> str:
        """Container command with the node's placeholders filled in."""
        _, template = self.registry.image_for(node)
        backend = backend_of(network, node)
        values = _Placeholders(
            name=node.name,
            backendName=backend.name if backend else '',
            lndName=getattr(node, 'lnd_name', ''),
            rpcUser=backend.rpc_user if backend else '',
            rpcPass=backend.rpc_password if backend else '',
        )
        return template.format_map(values)

    def port_bindings(self, node: CommonNode) -> Dict[str, int]:
        """docker SDK port mapping: '<internal>/tcp' -> host port."""
        internal = INTERNAL_PORTS[node.kind]
        return {
            f"{internal[name]}/tcp": host_port
            for name, host_port in node.ports.items()
            if name in internal
        }

    def volumes_for(self, network: Network, node: CommonNode) -> Dict[str, Dict[str, str]]:
        volumes = {
            str(self.volume_path(network, node)): {
                'bind': DATA_DIRS.get(node.implementation, '/data'),
                'mode': 'rw',
            }
        }
        if node.kind == NodeKind.TAP and node.lnd_name:
            # tapd reads the paired LND node's TLS cert and macaroon
            lnd = network.find_node(node.lnd_name)
            if lnd is not None:
                volumes[str(self.volume_path(network, lnd))] = {'bind': '/home/tap/.lnd', 'mode': 'ro'}
        return volumes

    def compose_config(self, network: Network) -> Dict[str, Any]:
        """docker compose document for a network."""
        services = {}
        for node in network.all_nodes():
            image, _ = self.registry.image_for(node)
            service = {
                'image': image,
                'container_name': container_name(network, node),
                'hostname': node.name,
                'command': self.command_for(network, node),
                'restart': 'unless-stopped',
                'labels': {'lnsim': 'true', 'lnsim_network_id': str(network.id)},
                'ports': [
                    f"{host}:{internal.split('/')[0]}"
                    for internal, host in self.port_bindings(node).items()
                ],
                'volumes': [
                    f"{src}:{spec['bind']}" + (':ro' if spec['mode'] == 'ro' else '')
                    for src, spec in self.volumes_for(network, node).items()
                ],
            }
            backend = backend_of(network, node)
            if backend is not None and backend is not node:
                service['depends_on'] = [backend.name]
            services[node.name] = service

        return {
            'name': network_name(network),
            'services': services,
        }

    # ------------------------------------------------------------------
    # ContainerRuntime
    # ------------------------------------------------------------------

    async def save_compose_file(self, network: Network):
        await asyncio.to_thread(self._write_compose_file, network)

    def _write_compose_file(self, network: Network) -> Path:
        path = Path(network.path) / COMPOSE_FILE_NAME
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(self.compose_config(network), f, sort_keys=False)
        logger.debug(f"Wrote {path}")
        return path

    async def start(self, network: Network):
        for node in network.all_nodes():
            await self.start_node(network, node)

    async def stop(self, network: Network):
        for node in reversed(network.all_nodes()):
            await self.stop_node(network, node)

    async def start_node(self, network: Network, node: CommonNode):
        await asyncio.to_thread(self._start_container, network, node)

    async def stop_node(self, network: Network, node: CommonNode):
        await asyncio.to_thread(self._stop_container, network, node)

    async def remove_node(self, network: Network, node: CommonNode):
        await asyncio.to_thread(self._remove_container, network, node)

    async def save_networks(self, networks_file: NetworksFile):
        await asyncio.to_thread(dump_networks, networks_file, self.config.networks_path)

    async def load_networks(self) -> NetworksFile:
        return await asyncio.to_thread(read_networks, self.config.networks_path)

    # ------------------------------------------------------------------
    # docker SDK calls (worker thread)
    # ------------------------------------------------------------------

    def _ensure_network(self, network: Network):
        name = network_name(network)
        try:
            self.client.networks.get(name)
        except NotFound:
            logger.info(f"Creating docker network {name}")
            self.client.networks.create(name, labels={'lnsim': 'true'})
        return name

    def _start_container(self, network: Network, node: CommonNode):
        name = container_name(network, node)
        try:
            container = self.client.containers.get(name)
        except NotFound:
            container = None

        if container is not None:
            logger.info(f"Starting existing container {name}")
            container.start()
            return

        image, _ = self.registry.image_for(node)

        # Pull image if not present (may take time on first run)
        try:
            self.client.images.get(image)
        except ImageNotFound:
            logger.info(f"Pulling image {image}...")
            self.client.images.pull(image)

        for path in self.volumes_for(network, node):
            Path(path).mkdir(parents=True, exist_ok=True)

        logger.info(f"Creating container {name} ({image})")
        self.client.containers.run(
            image=image,
            command=self.command_for(network, node),
            detach=True,
            name=name,
            hostname=node.name,
            network=self._ensure_network(network),
            labels={
                'lnsim': 'true',
                'lnsim_network_id': str(network.id),
                'lnsim_node': node.name,
            },
            ports=self.port_bindings(node),
            volumes=self.volumes_for(network, node),
            auto_remove=False,
        )

    def _stop_container(self, network: Network, node: CommonNode):
        name = container_name(network, node)
        try:
            container = self.client.containers.get(name)
        except NotFound:
            logger.debug(f"Container {name} not found; nothing to stop")
            return
        container.stop(timeout=self.config.stop_timeout_s)

    def _remove_container(self, network: Network, node: CommonNode):
        name = container_name(network, node)
        try:
            container = self.client.containers.get(name)
        except NotFound:
            logger.debug(f"Container {name} not found; nothing to remove")
            return
        container.remove(force=True)


def cleanup_lnsim_containers(client=None, network_id: Optional[int] = None):
    """
    Remove lnsim containers (running or stopped).

    Utility for cleanup after tests or crashes.

    Args:
        client: docker client (creates new one if None)
        network_id: Only remove containers of this network
    """
    if client is None:
        client = docker.from_env()

    filters = {'label': ['lnsim=true']}
    if network_id is not None:
        filters['label'].append(f"lnsim_network_id={network_id}")

    for container in client.containers.list(all=True, filters=filters):
        try:
            container.remove(force=True)
        except (NotFound, APIError) as e:
            logger.warning(f"Could not remove {container.name}: {e}")
