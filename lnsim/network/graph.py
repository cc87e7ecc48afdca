"""
graph.py - Network graph queries and validation

Structural questions about a network's topology: which nodes start in
which tier, which bitcoin node backs a lightning/tap node, and which nodes
would be left dangling by a removal.

Design:
- Pure functions over the models (no I/O, no mutation)
- validate_network() collects every problem instead of stopping at the first
"""

from typing import List, Optional

from lnsim.errors import InvalidNetwork
from lnsim.network.models import (
    TIER_ORDER,
    BitcoinNode,
    CommonNode,
    LightningNode,
    Network,
    NodeKind,
    TapNode,
)


def validate_network(network: Network) -> List[str]:
    """
    Check the graph invariants of a network.

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    seen = set()
    for node in network.all_nodes():
        if node.name in seen:
            errors.append(f"Duplicate node name: {node.name}")
        seen.add(node.name)

        if node.network_id != network.id:
            errors.append(
                f"Node {node.name}: belongs to network {node.network_id}, not {network.id}"
            )

    bitcoin_names = {n.name for n in network.bitcoin}
    lightning_names = {n.name for n in network.lightning}

    for node in [*network.lightning, *network.tap]:
        if not node.backend_name:
            errors.append(f"Node {node.name}: 'backend_name' is required")
        elif node.backend_name not in bitcoin_names:
            errors.append(
                f"Node {node.name}: backend '{node.backend_name}' is not a bitcoin node "
                f"in network {network.name}"
            )

    for node in network.tap:
        if node.lnd_name and node.lnd_name not in lightning_names:
            errors.append(
                f"Node {node.name}: lightning node '{node.lnd_name}' not found "
                f"in network {network.name}"
            )

    return errors


def ensure_valid(network: Network):
    """
    Raise InvalidNetwork if the network violates any invariant.

    Raises:
        InvalidNetwork: With the full list of problems
    """
    errors = validate_network(network)
    if errors:
        raise InvalidNetwork(errors)


def tiers(network: Network) -> List[List[CommonNode]]:
    """Nodes grouped by startup tier: bitcoin, lightning, tap."""
    return [list(network.nodes_of(kind)) for kind in TIER_ORDER]


def find_bitcoin(network: Network, name: str) -> Optional[BitcoinNode]:
    for node in network.bitcoin:
        if node.name == name:
            return node
    return None


def backend_of(network: Network, node: CommonNode) -> Optional[BitcoinNode]:
    """
    Bitcoin node backing a node.

    A bitcoin node is its own backend.
    """
    if isinstance(node, BitcoinNode):
        return node
    return find_bitcoin(network, node.backend_name)


def lightning_of(network: Network, node: TapNode) -> Optional[LightningNode]:
    """Lightning node paired with a tap node, if any."""
    for ln in network.lightning:
        if ln.name == node.lnd_name:
            return ln
    return None


def mint_backend(network: Network) -> Optional[BitcoinNode]:
    """
    Bitcoin node used to confirm asset mints.

    This is the backend of the first lightning node in the network, no
    matter which lightning node or backend the minting tap node uses. Falls
    back to the first bitcoin node when there is no lightning node or its
    backend cannot be found.
    """
    if network.lightning:
        backend = find_bitcoin(network, network.lightning[0].backend_name)
        if backend is not None:
            return backend
    return network.bitcoin[0] if network.bitcoin else None


def dependents_of(network: Network, node: CommonNode) -> List[str]:
    """Names of nodes that reference ``node`` as backend or paired lightning node."""
    dependents = []
    if node.kind == NodeKind.BITCOIN:
        for other in [*network.lightning, *network.tap]:
            if other.backend_name == node.name:
                dependents.append(other.name)
    elif node.kind == NodeKind.LIGHTNING:
        for other in network.tap:
            if other.lnd_name == node.name:
                dependents.append(other.name)
    return dependents
