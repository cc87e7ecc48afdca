"""
lnsim.network - Network topology

Data model, graph queries, builders and the networks-file codec.
"""

from lnsim.network.models import (
    AutoMineMode,
    BitcoinNode,
    CustomImage,
    LightningNode,
    ManagedImage,
    Network,
    NodeKind,
    Status,
    TapNode,
)
from lnsim.network.persistence import NetworksFile

__all__ = [
    'AutoMineMode',
    'BitcoinNode',
    'CustomImage',
    'LightningNode',
    'ManagedImage',
    'Network',
    'NetworksFile',
    'NodeKind',
    'Status',
    'TapNode',
]
