"""
models.py - Network topology data model

Declarative description of a simulated network: the network itself, its
bitcoin / lightning / tap nodes and the container images backing them.

Nodes are plain dataclasses. The lifecycle status of each node is tracked
individually, so a node may be Started while its network is still Starting.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, ClassVar, Dict, List, Optional


class Status(str, Enum):
    """Lifecycle status shared by networks and nodes."""
    STARTING = "Starting"
    STARTED = "Started"
    STOPPING = "Stopping"
    STOPPED = "Stopped"
    ERROR = "Error"


class NodeKind(str, Enum):
    """Node kinds, in startup (tier) order."""
    BITCOIN = "bitcoin"
    LIGHTNING = "lightning"
    TAP = "tap"


# Startup order; stop order is the reverse
TIER_ORDER = (NodeKind.BITCOIN, NodeKind.LIGHTNING, NodeKind.TAP)


class AutoMineMode(IntEnum):
    """Automatic block production interval in seconds (0 = disabled)."""
    OFF = 0
    AUTO_30S = 30
    AUTO_1M = 60
    AUTO_5M = 300
    AUTO_10M = 600


@dataclass
class DockerRef:
    """
    Container reference for a node.

    Empty image/command means "use the managed image for the node's
    implementation and version".
    """
    image: str = ""
    command: str = ""


@dataclass
class CommonNode:
    """Fields shared by every node kind."""
    kind: ClassVar[NodeKind]

    id: int
    network_id: int
    name: str
    implementation: str
    version: str
    status: Status = Status.STOPPED
    docker: DockerRef = field(default_factory=DockerRef)
    ports: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            'kind': self.kind.value,
            'id': self.id,
            'networkId': self.network_id,
            'name': self.name,
            'implementation': self.implementation,
            'version': self.version,
            'status': self.status.value,
            'docker': {'image': self.docker.image, 'command': self.docker.command},
            'ports': dict(self.ports),
        }
        data.update(self._extra_fields())
        return data

    def _extra_fields(self) -> Dict[str, Any]:
        return {}


@dataclass
class BitcoinNode(CommonNode):
    kind: ClassVar[NodeKind] = NodeKind.BITCOIN

    peers: List[str] = field(default_factory=list)
    rpc_user: str = "lnsimuser"
    rpc_password: str = "lnsimpass"

    def _extra_fields(self):
        return {
            'peers': list(self.peers),
            'rpcUser': self.rpc_user,
            'rpcPassword': self.rpc_password,
        }


@dataclass
class LightningNode(CommonNode):
    kind: ClassVar[NodeKind] = NodeKind.LIGHTNING

    backend_name: str = ""

    def _extra_fields(self):
        return {'backendName': self.backend_name}


@dataclass
class TapNode(CommonNode):
    """Taproot-Assets node, paired with a lightning node (lnd_name)."""
    kind: ClassVar[NodeKind] = NodeKind.TAP

    backend_name: str = ""
    lnd_name: str = ""

    def _extra_fields(self):
        return {'backendName': self.backend_name, 'lndName': self.lnd_name}


NODE_CLASSES = {
    NodeKind.BITCOIN: BitcoinNode,
    NodeKind.LIGHTNING: LightningNode,
    NodeKind.TAP: TapNode,
}


def node_from_dict(data: Dict[str, Any]) -> CommonNode:
    """
    Create a node from its dictionary form.

    Raises:
        ValueError: If the kind tag is missing or unknown
    """
    try:
        kind = NodeKind(data['kind'])
    except (KeyError, ValueError):
        raise ValueError(f"Node {data.get('name', '?')}: invalid kind {data.get('kind')!r}")

    docker = data.get('docker') or {}
    common = dict(
        id=int(data['id']),
        network_id=int(data['networkId']),
        name=data['name'],
        implementation=data['implementation'],
        version=data['version'],
        status=Status(data.get('status', Status.STOPPED.value)),
        docker=DockerRef(image=docker.get('image', ''), command=docker.get('command', '')),
        ports={k: int(v) for k, v in (data.get('ports') or {}).items()},
    )

    if kind == NodeKind.BITCOIN:
        return BitcoinNode(
            peers=list(data.get('peers', [])),
            rpc_user=data.get('rpcUser', 'lnsimuser'),
            rpc_password=data.get('rpcPassword', 'lnsimpass'),
            **common
        )
    if kind == NodeKind.LIGHTNING:
        return LightningNode(backend_name=data.get('backendName', ''), **common)
    return TapNode(
        backend_name=data.get('backendName', ''),
        lnd_name=data.get('lndName', ''),
        **common
    )


@dataclass
class Network:
    """
    A simulated network.

    Nodes are held in three ordered collections, one per kind. Node names
    are unique across all three.
    """
    id: int
    name: str
    path: str
    description: str = ""
    status: Status = Status.STOPPED
    auto_mine_mode: AutoMineMode = AutoMineMode.OFF
    bitcoin: List[BitcoinNode] = field(default_factory=list)
    lightning: List[LightningNode] = field(default_factory=list)
    tap: List[TapNode] = field(default_factory=list)

    def nodes_of(self, kind: NodeKind) -> List[CommonNode]:
        """Return the ordered node collection for a kind."""
        if kind == NodeKind.BITCOIN:
            return self.bitcoin
        if kind == NodeKind.LIGHTNING:
            return self.lightning
        return self.tap

    def all_nodes(self) -> List[CommonNode]:
        """All nodes in tier order."""
        return [*self.bitcoin, *self.lightning, *self.tap]

    def find_node(self, name: str) -> Optional[CommonNode]:
        for node in self.all_nodes():
            if node.name == name:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'status': self.status.value,
            'path': self.path,
            'autoMineMode': int(self.auto_mine_mode),
            'nodes': {
                'bitcoin': [n.to_dict() for n in self.bitcoin],
                'lightning': [n.to_dict() for n in self.lightning],
                'tap': [n.to_dict() for n in self.tap],
            },
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'Network':
        nodes = data.get('nodes') or {}
        return Network(
            id=int(data['id']),
            name=data['name'],
            path=data['path'],
            description=data.get('description', ''),
            status=Status(data.get('status', Status.STOPPED.value)),
            auto_mine_mode=AutoMineMode(int(data.get('autoMineMode', 0))),
            bitcoin=[node_from_dict(n) for n in nodes.get('bitcoin', [])],
            lightning=[node_from_dict(n) for n in nodes.get('lightning', [])],
            tap=[node_from_dict(n) for n in nodes.get('tap', [])],
        )


@dataclass
class ManagedImage:
    """Image shipped for an implementation/version, with an optional command override."""
    implementation: str
    version: str
    command: str = ""


@dataclass
class CustomImage:
    """
    User-registered local docker image.

    A custom image is an implementation choice for its node kind, not a
    node type of its own. Whether it can run on a platform is decided by
    its implementation (see NodeRegistry.custom_images_for).
    """
    id: str
    name: str
    implementation: str
    docker_image: str
    command: str = ""
