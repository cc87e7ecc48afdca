"""
registry.py - Node Registry and Service Locator

NodeRegistry is the catalog of node implementations: which kind each one
belongs to, which docker image and command it runs with, and on which
platforms it can run. It also decides which custom images are usable on
the current platform.

ServiceLocator maps a node to the service object that speaks its
protocol. Services are registered per implementation (optionally limited
to a set of versions) and must implement the capability contract of the
implementation's kind.

Design:
- Resolution is pure: same node, same answer, no side effects
- Unknown implementation/version -> UnsupportedImplementation
- All mutable runtime state lives in the State Store, not here
"""

import sys
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from lnsim.errors import UnsupportedImplementation
from lnsim.network.models import CommonNode, CustomImage, ManagedImage, NodeKind
from lnsim.services.contracts import (
    KIND_CONTRACTS,
    BitcoinService,
    LightningService,
    NodeService,
    TapService,
)

PLATFORMS = ('mac', 'linux', 'windows')


def current_platform() -> str:
    """Platform name of the running host: mac, linux or windows."""
    if sys.platform == 'darwin':
        return 'mac'
    if sys.platform in ('win32', 'cygwin'):
        return 'windows'
    return 'linux'


@dataclass(frozen=True)
class ImplementationSpec:
    """
    Static description of a node implementation.

    Attributes:
        name: Implementation name (e.g. "LND")
        kind: Node kind it implements
        image: Docker repository of the managed image
        command: Default container command; ``{name}`` and port/credential
            placeholders are filled in by the container runtime
        platforms: Platforms the implementation runs on
        versions: Managed versions, latest first
    """
    name: str
    kind: NodeKind
    image: str
    command: str
    platforms: Tuple[str, ...]
    versions: Tuple[str, ...]

    @property
    def latest(self) -> str:
        return self.versions[0]


DEFAULT_IMPLEMENTATIONS = (
    ImplementationSpec(
        name='bitcoind',
        kind=NodeKind.BITCOIN,
        image='polarlightning/bitcoind',
        command=(
            'bitcoind -server=1 -regtest=1 -rpcuser={rpcUser} -rpcpassword={rpcPass} '
            '-debug=1 -zmqpubrawblock=tcp://0.0.0.0:28334 '
            '-zmqpubrawtx=tcp://0.0.0.0:28335 -txindex=1 -dnsseed=0 -upnp=0 '
            '-rpcbind=0.0.0.0 -rpcallowip=0.0.0.0/0 -rpcport=18443 -rest '
            '-listen=1 -listenonion=0 -fallbackfee=0.0002 -blockfilterindex=1 '
            '-peerblockfilters=1'
        ),
        platforms=PLATFORMS,
        versions=('27.0', '26.0', '25.0'),
    ),
    ImplementationSpec(
        name='LND',
        kind=NodeKind.LIGHTNING,
        image='polarlightning/lnd',
        command=(
            'lnd --noseedbackup --trickledelay=5000 --alias={name} '
            '--externalip={name} --tlsextradomain={name} --listen=0.0.0.0:9735 '
            '--rpclisten=0.0.0.0:10009 --restlisten=0.0.0.0:8080 '
            '--bitcoin.active --bitcoin.regtest --bitcoin.node=bitcoind '
            '--bitcoind.rpchost={backendName} --bitcoind.rpcuser={rpcUser} '
            '--bitcoind.rpcpass={rpcPass} '
            '--bitcoind.zmqpubrawblock=tcp://{backendName}:28334 '
            '--bitcoind.zmqpubrawtx=tcp://{backendName}:28335'
        ),
        platforms=PLATFORMS,
        versions=('0.18.0-beta', '0.17.5-beta', '0.16.4-beta'),
    ),
    ImplementationSpec(
        name='c-lightning',
        kind=NodeKind.LIGHTNING,
        image='polarlightning/clightning',
        command=(
            'lightningd --alias={name} --addr={name} --network=regtest '
            '--bitcoin-rpcuser={rpcUser} --bitcoin-rpcpassword={rpcPass} '
            '--bitcoin-rpcconnect={backendName} --bitcoin-rpcport=18443 '
            '--log-level=debug --dev-bitcoind-poll=2 --dev-fast-gossip'
        ),
        platforms=('mac', 'linux'),
        versions=('24.05', '23.11'),
    ),
    ImplementationSpec(
        name='eclair',
        kind=NodeKind.LIGHTNING,
        image='polarlightning/eclair',
        command=(
            'polar-eclair --node-alias={name} --server.public-ips.0={name} '
            '--server.port=9735 --api.enabled=true --api.binding-ip=0.0.0.0 '
            '--api.port=8080 --api.password=eclairpw --chain=regtest '
            '--bitcoind.host={backendName} --bitcoind.rpcport=18443 '
            '--bitcoind.rpcuser={rpcUser} --bitcoind.rpcpassword={rpcPass} '
            '--bitcoind.zmqblock=tcp://{backendName}:28334 '
            '--bitcoind.zmqtx=tcp://{backendName}:28335'
        ),
        platforms=PLATFORMS,
        versions=('0.10.0', '0.9.0'),
    ),
    ImplementationSpec(
        name='litd',
        kind=NodeKind.LIGHTNING,
        image='polarlightning/litd',
        command=(
            'litd --httpslisten=0.0.0.0:8443 --uipassword=polarpass '
            '--network=regtest --lnd-mode=integrated --lnd.alias={name} '
            '--lnd.bitcoin.active --lnd.bitcoin.node=bitcoind '
            '--lnd.bitcoind.rpchost={backendName} --lnd.bitcoind.rpcuser={rpcUser} '
            '--lnd.bitcoind.rpcpass={rpcPass}'
        ),
        platforms=PLATFORMS,
        versions=('0.13.0-alpha',),
    ),
    ImplementationSpec(
        name='tapd',
        kind=NodeKind.TAP,
        image='polarlightning/tapd',
        command=(
            'tapd --network=regtest --debuglevel=debug --tlsextradomain={name} '
            '--rpclisten=0.0.0.0:10029 --restlisten=0.0.0.0:8089 '
            '--lnd.host={lndName}:10009 '
            '--lnd.macaroonpath=/home/tap/.lnd/data/chain/bitcoin/regtest/admin.macaroon '
            '--lnd.tlspath=/home/tap/.lnd/tls.cert --allow-public-uni-proof-courier '
            '--allow-public-stats --universe.public-access=rw'
        ),
        platforms=PLATFORMS,
        versions=('0.4.1-alpha', '0.3.3-alpha'),
    ),
)


class NodeRegistry:
    """
    Catalog of node implementations and their images.

    Args:
        implementations: Implementation specs (default: DEFAULT_IMPLEMENTATIONS)
        managed_images: Command overrides for managed implementation/versions
        custom_images: User-registered custom images
    """

    def __init__(self, implementations: Iterable[ImplementationSpec] = DEFAULT_IMPLEMENTATIONS,
                 managed_images: Optional[List[ManagedImage]] = None,
                 custom_images: Optional[List[CustomImage]] = None):
        self.implementations: Dict[str, ImplementationSpec] = {
            spec.name: spec for spec in implementations
        }
        self.managed_images: List[ManagedImage] = list(managed_images or [])
        self.custom_images: List[CustomImage] = list(custom_images or [])

    def spec_for(self, implementation: str) -> ImplementationSpec:
        """
        Raises:
            UnsupportedImplementation: If the implementation is unknown
        """
        spec = self.implementations.get(implementation)
        if spec is None:
            raise UnsupportedImplementation(implementation)
        return spec

    def kind_of(self, implementation: str) -> NodeKind:
        return self.spec_for(implementation).kind

    def implementations_for(self, kind: NodeKind, platform: Optional[str] = None) -> List[ImplementationSpec]:
        """Implementations of a kind that run on ``platform`` (default: current)."""
        platform = platform or current_platform()
        return [
            spec for spec in self.implementations.values()
            if spec.kind == kind and platform in spec.platforms
        ]

    def is_supported(self, implementation: str, platform: Optional[str] = None) -> bool:
        spec = self.implementations.get(implementation)
        if spec is None:
            return False
        return (platform or current_platform()) in spec.platforms

    def custom_images_for(self, platform: Optional[str] = None) -> List[CustomImage]:
        """Custom images whose implementation runs on ``platform`` (default: current)."""
        return [
            image for image in self.custom_images
            if self.is_supported(image.implementation, platform)
        ]

    def find_custom_image(self, image_id: str) -> Optional[CustomImage]:
        for image in self.custom_images:
            if image.id == image_id:
                return image
        return None

    def image_for(self, node: CommonNode) -> Tuple[str, str]:
        """
        Docker image reference and command template for a node.

        A node's own docker reference (set when it was created from a custom
        image) wins over the managed image. Managed commands may be
        overridden per implementation/version.
        """
        spec = self.spec_for(node.implementation)

        command = spec.command
        for managed in self.managed_images:
            if (managed.implementation == node.implementation
                    and managed.version == node.version and managed.command):
                command = managed.command

        if node.docker.image:
            return node.docker.image, node.docker.command or command
        return f"{spec.image}:{node.version}", command


class ServiceLocator:
    """
    Resolves nodes to the service implementing their protocol.

    Usage:
        locator = ServiceLocator(registry)
        locator.register('LND', LndService())
        service = locator.resolve_service(alice)
        await service.get_info(alice)
    """

    def __init__(self, registry: Optional[NodeRegistry] = None):
        self.registry = registry or NodeRegistry()
        self._services: Dict[str, List[Tuple[Optional[frozenset], NodeService]]] = {}

    def register(self, implementation: str, service: NodeService, versions: Optional[Iterable[str]] = None):
        """
        Register a service for an implementation.

        Args:
            implementation: Implementation name known to the registry
            service: Object implementing the kind's contract
            versions: Versions it speaks (None = all)

        Raises:
            UnsupportedImplementation: If the registry doesn't know the implementation
            TypeError: If the service doesn't implement the kind's contract
        """
        kind = self.registry.kind_of(implementation)
        contract = KIND_CONTRACTS[kind]
        if not isinstance(service, contract):
            raise TypeError(
                f"Service for {implementation} must implement {contract.__name__}, "
                f"got {type(service).__name__}"
            )

        allowed = frozenset(versions) if versions is not None else None
        self._services.setdefault(implementation, []).append((allowed, service))

    def resolve_service(self, node: CommonNode) -> NodeService:
        """
        Service handle for a node.

        Version-specific registrations take precedence over catch-all ones.

        Raises:
            UnsupportedImplementation: If no registered service speaks the
                node's implementation and version
        """
        spec = self.registry.spec_for(node.implementation)
        if spec.kind != node.kind:
            raise UnsupportedImplementation(node.implementation, node.version)

        fallback = None
        for versions, service in self._services.get(node.implementation, []):
            if versions is None:
                fallback = fallback or service
            elif node.version in versions:
                return service

        if fallback is None:
            raise UnsupportedImplementation(node.implementation, node.version)
        return fallback

    def bitcoin(self, node) -> BitcoinService:
        return self._resolve_kind(node, NodeKind.BITCOIN)

    def lightning(self, node) -> LightningService:
        return self._resolve_kind(node, NodeKind.LIGHTNING)

    def tap(self, node) -> TapService:
        return self._resolve_kind(node, NodeKind.TAP)

    def _resolve_kind(self, node, kind):
        if node.kind != kind:
            raise TypeError(f"Node {node.name} is a {node.kind.value} node, not {kind.value}")
        return self.resolve_service(node)
