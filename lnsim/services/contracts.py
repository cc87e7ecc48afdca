"""
contracts.py - Capability contracts consumed by the orchestration core

One abstract interface per node kind, plus the container runtime. Concrete
RPC clients (bitcoind JSON-RPC, LND gRPC, tapd, ...) live outside this
package; they implement these interfaces and are registered with the
ServiceLocator.

All methods are coroutines. Return values are passed through to the
State Store as-is; the core only reads the few fields documented in
lnsim.services.types.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from lnsim.network.models import (
    BitcoinNode,
    CommonNode,
    LightningNode,
    Network,
    NodeKind,
    TapNode,
)
from lnsim.network.persistence import NetworksFile
from lnsim.services.types import LightningNodeInfo, MintAssetRequest, OpenChannelOptions


class NodeService(ABC):
    """Capabilities every node kind provides."""

    @abstractmethod
    async def wait_until_online(self, node: CommonNode):
        """
        Return once the node's RPC surface answers.

        Raises whatever the underlying client raises while the node is not
        reachable yet; the readiness poller retries.
        """
        pass


class BitcoinService(NodeService):
    """Bitcoin backend capabilities."""

    @abstractmethod
    async def create_default_wallet(self, node: BitcoinNode):
        pass

    @abstractmethod
    async def get_blockchain_info(self, node: BitcoinNode) -> Any:
        pass

    @abstractmethod
    async def get_wallet_info(self, node: BitcoinNode) -> Any:
        pass

    @abstractmethod
    async def get_new_address(self, node: BitcoinNode) -> str:
        pass

    @abstractmethod
    async def connect_peers(self, node: BitcoinNode):
        pass

    @abstractmethod
    async def mine(self, num_blocks: int, node: BitcoinNode) -> List[str]:
        """Mine blocks and return their hashes."""
        pass

    @abstractmethod
    async def send_funds(self, node: BitcoinNode, addr: str, amount: float) -> str:
        """Send ``amount`` BTC to ``addr`` and return the txid."""
        pass


class LightningService(NodeService):
    """Lightning node capabilities."""

    @abstractmethod
    async def get_info(self, node: LightningNode) -> LightningNodeInfo:
        pass

    @abstractmethod
    async def get_balances(self, node: LightningNode, backend: Optional[BitcoinNode] = None) -> Any:
        pass

    @abstractmethod
    async def get_new_address(self, node: LightningNode) -> str:
        pass

    @abstractmethod
    async def get_channels(self, node: LightningNode) -> List[Any]:
        pass

    @abstractmethod
    async def get_peers(self, node: LightningNode) -> List[Any]:
        pass

    @abstractmethod
    async def connect_peers(self, node: LightningNode, peer_urls: List[str]):
        pass

    @abstractmethod
    async def open_channel(self, options: OpenChannelOptions) -> Any:
        """Open a channel and return its channel point."""
        pass

    @abstractmethod
    async def close_channel(self, node: LightningNode, channel_point: str) -> Any:
        pass

    @abstractmethod
    async def create_invoice(self, node: LightningNode, amount: int, memo: Optional[str] = None) -> str:
        pass

    @abstractmethod
    async def pay_invoice(self, node: LightningNode, invoice: str, amount: Optional[int] = None) -> Any:
        pass


class TapService(NodeService):
    """Taproot-Assets node capabilities."""

    @abstractmethod
    async def list_assets(self, node: TapNode) -> List[Any]:
        pass

    @abstractmethod
    async def list_balances(self, node: TapNode) -> List[Any]:
        pass

    @abstractmethod
    async def mint_asset(self, node: TapNode, request: MintAssetRequest) -> Any:
        pass

    @abstractmethod
    async def finalize_batch(self, node: TapNode) -> Any:
        pass

    @abstractmethod
    async def new_address(self, node: TapNode, asset_id: str, amount: int) -> str:
        """Create a receive address and return it encoded."""
        pass

    @abstractmethod
    async def send_asset(self, node: TapNode, address: str) -> Any:
        pass

    @abstractmethod
    async def decode_address(self, node: TapNode, address: str) -> Any:
        pass

    @abstractmethod
    async def asset_roots(self, node: TapNode) -> List[Any]:
        pass

    @abstractmethod
    async def sync_universe(self, node: TapNode, universe_host: str) -> Any:
        pass


KIND_CONTRACTS = {
    NodeKind.BITCOIN: BitcoinService,
    NodeKind.LIGHTNING: LightningService,
    NodeKind.TAP: TapService,
}


class ContainerRuntime(ABC):
    """Container runtime collaborator (docker / docker compose)."""

    @abstractmethod
    async def save_compose_file(self, network: Network):
        pass

    @abstractmethod
    async def start(self, network: Network):
        pass

    @abstractmethod
    async def stop(self, network: Network):
        pass

    @abstractmethod
    async def start_node(self, network: Network, node: CommonNode):
        pass

    @abstractmethod
    async def stop_node(self, network: Network, node: CommonNode):
        pass

    @abstractmethod
    async def remove_node(self, network: Network, node: CommonNode):
        pass

    @abstractmethod
    async def save_networks(self, networks_file: NetworksFile):
        pass

    @abstractmethod
    async def load_networks(self) -> NetworksFile:
        pass
