"""
types.py - Service payloads the core reads or builds

Most service results are opaque to the core and cached as returned. The
dataclasses here are the exceptions: values the core builds (requests) or
reads fields from (node info).
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from lnsim.network.models import LightningNode


class TapAssetType(IntEnum):
    NORMAL = 0
    COLLECTIBLE = 1


@dataclass
class LightningNodeInfo:
    """Subset of a lightning node's info the core relies on."""
    pubkey: str
    alias: str
    rpc_url: str
    synced_to_chain: bool = False
    num_active_channels: int = 0
    num_pending_channels: int = 0


@dataclass
class OpenChannelOptions:
    from_node: LightningNode
    to_rpc_url: str
    amount: int
    is_private: bool = False


@dataclass
class MintAssetRequest:
    """Request sent to a tap node's mint call."""
    asset_type: TapAssetType
    name: str
    amount: int
    enable_emission: bool = False
    group_key: Optional[str] = None
