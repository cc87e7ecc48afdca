"""
lnsim.services - Node service contracts, registry and container runtime
"""

from .contracts import BitcoinService, ContainerRuntime, LightningService, NodeService, TapService
from .registry import NodeRegistry, ServiceLocator

__all__ = [
    'BitcoinService',
    'ContainerRuntime',
    'LightningService',
    'NodeRegistry',
    'NodeService',
    'ServiceLocator',
    'TapService',
]
