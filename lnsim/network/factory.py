"""
factory.py - Network and node builders

Builds well-formed networks: names, ports, backend assignment and
lightning/tap pairing follow fixed rules so a freshly created network
always passes validate_network().

Rules:
- Bitcoin nodes are named backend1..N
- Lightning nodes take names from LIGHTNING_NAMES; their backend is
  assigned round-robin over the bitcoin nodes
- Each tap node is paired with a lightning node ("<lnd>-tap") and uses
  that node's backend
- Ports are base + index within the network, per port kind
"""

from pathlib import Path
from typing import Dict, Optional

from lnsim.errors import InvalidNetwork
from lnsim.network.graph import ensure_valid
from lnsim.network.models import (
    BitcoinNode,
    CommonNode,
    CustomImage,
    DockerRef,
    LightningNode,
    Network,
    NodeKind,
    TapNode,
)

LIGHTNING_NAMES = [
    'alice', 'bob', 'carol', 'dave', 'erin', 'frank', 'grace', 'heidi',
    'ivan', 'judy', 'mallory', 'niaj', 'oscar', 'peggy', 'rupert', 'sybil',
    'trent', 'victor', 'walter',
]

BASE_PORTS: Dict[NodeKind, Dict[str, int]] = {
    NodeKind.BITCOIN: {'rpc': 18443, 'p2p': 19444, 'zmqBlock': 28334, 'zmqTx': 29335},
    NodeKind.LIGHTNING: {'rest': 8081, 'grpc': 10001, 'p2p': 9735},
    NodeKind.TAP: {'grpc': 12029, 'rest': 8289},
}

DEFAULT_IMPLEMENTATION = {
    NodeKind.BITCOIN: 'bitcoind',
    NodeKind.LIGHTNING: 'LND',
    NodeKind.TAP: 'tapd',
}

DEFAULT_VERSION = {
    'bitcoind': '27.0',
    'LND': '0.18.0-beta',
    'c-lightning': '24.05',
    'eclair': '0.10.0',
    'litd': '0.13.0-alpha',
    'tapd': '0.4.1-alpha',
}


def _ports(kind: NodeKind, index: int) -> Dict[str, int]:
    return {name: base + index for name, base in BASE_PORTS[kind].items()}


def _next_id(network: Network) -> int:
    return max((n.id for n in network.all_nodes()), default=-1) + 1


def _next_lightning_name(network: Network) -> str:
    taken = {n.name for n in network.all_nodes()}
    for name in LIGHTNING_NAMES:
        if name not in taken:
            return name
    # Ran out of names; fall back to numbered ones
    i = len(LIGHTNING_NAMES) + 1
    while f"node{i}" in taken:
        i += 1
    return f"node{i}"


def _next_bitcoin_name(network: Network) -> str:
    taken = {n.name for n in network.all_nodes()}
    i = 1
    while f"backend{i}" in taken:
        i += 1
    return f"backend{i}"


def add_node(network: Network, kind: NodeKind, implementation: Optional[str] = None,
             version: Optional[str] = None, custom_image: Optional[CustomImage] = None,
             backend_name: Optional[str] = None, lnd_name: Optional[str] = None) -> CommonNode:
    """
    Append a new node to a network.

    Args:
        network: Network to extend
        kind: Node kind
        implementation: Implementation name (default per kind, or the
            custom image's implementation)
        version: Version (default per implementation)
        custom_image: Run the node from a user-registered image
        backend_name: Bitcoin backend for lightning/tap nodes (default:
            round-robin for lightning, the paired node's backend for tap)
        lnd_name: Paired lightning node for a tap node (default: the first
            lightning node without a tap node)

    Returns:
        The new node

    Raises:
        InvalidNetwork: If the resulting network is invalid (the node is
            removed again before raising)
    """
    if custom_image is not None:
        implementation = custom_image.implementation
    implementation = implementation or DEFAULT_IMPLEMENTATION[kind]
    version = version or DEFAULT_VERSION.get(implementation, 'latest')

    docker = DockerRef()
    if custom_image is not None:
        docker = DockerRef(image=custom_image.docker_image, command=custom_image.command)

    index = len(network.nodes_of(kind))
    common = dict(
        id=_next_id(network),
        network_id=network.id,
        implementation=implementation,
        version=version,
        docker=docker,
        ports=_ports(kind, index),
    )

    if kind == NodeKind.BITCOIN:
        node = BitcoinNode(name=_next_bitcoin_name(network), **common)
        # Every bitcoin node peers with the existing ones
        node.peers = [b.name for b in network.bitcoin]
        for other in network.bitcoin:
            other.peers.append(node.name)
    elif kind == NodeKind.LIGHTNING:
        if backend_name is None and network.bitcoin:
            backend_name = network.bitcoin[index % len(network.bitcoin)].name
        node = LightningNode(name=_next_lightning_name(network), backend_name=backend_name or '', **common)
    else:
        if lnd_name is None:
            paired = {t.lnd_name for t in network.tap}
            free = [ln for ln in network.lightning if ln.name not in paired]
            lnd_name = free[0].name if free else ''
        lnd = next((ln for ln in network.lightning if ln.name == lnd_name), None)
        if backend_name is None:
            backend_name = lnd.backend_name if lnd else (network.bitcoin[0].name if network.bitcoin else '')
        name = f"{lnd_name}-tap" if lnd_name else f"tap{index + 1}"
        node = TapNode(name=name, backend_name=backend_name, lnd_name=lnd_name, **common)

    network.nodes_of(kind).append(node)
    try:
        ensure_valid(network)
    except InvalidNetwork:
        network.nodes_of(kind).remove(node)
        if kind == NodeKind.BITCOIN:
            for other in network.bitcoin:
                if node.name in other.peers:
                    other.peers.remove(node.name)
        raise
    return node


def create_network(network_id: int, name: str, base_dir, lightning: int = 2, bitcoin: int = 1,
                   tap: int = 0, lightning_implementation: str = 'LND',
                   description: str = '') -> Network:
    """
    Create a new network.

    Args:
        network_id: Network id
        name: Display name
        base_dir: Folder that will contain the network's folder
        lightning: Number of lightning nodes
        bitcoin: Number of bitcoin nodes (at least one)
        tap: Number of tap nodes (at most one per lightning node)

    Raises:
        ValueError: If the node counts are impossible
    """
    if bitcoin < 1:
        raise ValueError("A network needs at least one bitcoin node")
    if lightning < 0 or tap < 0:
        raise ValueError("Node counts must be non-negative")
    if tap > lightning:
        raise ValueError(f"Cannot pair {tap} tap node(s) with {lightning} lightning node(s)")

    network = Network(
        id=network_id,
        name=name,
        description=description,
        path=str(Path(base_dir) / str(network_id)),
    )

    for _ in range(bitcoin):
        add_node(network, NodeKind.BITCOIN)
    for _ in range(lightning):
        add_node(network, NodeKind.LIGHTNING, implementation=lightning_implementation)
    for _ in range(tap):
        add_node(network, NodeKind.TAP)

    return network
