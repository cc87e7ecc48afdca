"""
engine.py - Composite Operation Engine

Multi-step operations that sequence calls across several nodes, e.g.
minting an asset on a tap node and confirming the batch by mining on a
bitcoin node.

Every operation runs its steps strictly in order through a StepRunner:
- A failing step raises OperationStepFailure naming the step and the
  steps that already committed; later steps are not attempted
- Nothing is rolled back (node-side effects such as a submitted mint
  cannot be undone)
- After the last step the touched nodes are refreshed in the State Store;
  refresh failures are reported in the result, not raised

The engine never writes node-state entries itself; it goes through the
store's actions.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, List, Optional

from lnsim.config.settings import OperationsConfig
from lnsim.errors import InvalidNetwork, OperationStepFailure
from lnsim.log import get_logger
from lnsim.network.graph import backend_of, lightning_of, mint_backend
from lnsim.network.models import BitcoinNode, LightningNode, Network, TapNode
from lnsim.services.types import MintAssetRequest, OpenChannelOptions, TapAssetType

logger = get_logger('operations')

SATS_PER_BTC = 100_000_000


class StepRunner:
    """
    Runs the steps of one composite operation and records what committed.

    Usage:
        steps = StepRunner('mint_asset')
        response = await steps.run('mint', service.mint_asset(node, request))
    """

    def __init__(self, operation: str):
        self.operation = operation
        self.completed: List[str] = []

    async def run(self, step: str, awaitable):
        logger.info(f"{self.operation}: {step}")
        try:
            result = await awaitable
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.operation}: step '{step}' failed: {e}")
            raise OperationStepFailure(self.operation, step, self.completed) from e
        self.completed.append(step)
        return result


@dataclass
class MintAssetPayload:
    """
    Mint request for a tap node.

    Attributes:
        node: Tap node that mints
        name: Asset name
        amount: Units to mint
        asset_type: Normal or collectible
        enable_emission: Allow future issuance into the same group
        finalize: Finalize the batch and confirm it on-chain; when False
            the mint stays pending in an unconfirmed batch
        auto_fund: Deposit funds to the paired lightning node first
    """
    node: TapNode
    name: str
    amount: int
    asset_type: TapAssetType = TapAssetType.NORMAL
    enable_emission: bool = False
    finalize: bool = True
    auto_fund: bool = False


@dataclass
class OperationResult:
    """
    Attributes:
        value: Main result of the operation (txid, channel point, ...)
        completed_steps: Steps that committed, in order
        refresh: FetchResults of the post-operation refresh
    """
    value: Any = None
    completed_steps: List[str] = field(default_factory=list)
    refresh: List[Any] = field(default_factory=list)


@dataclass
class MintAssetResult(OperationResult):
    finalize_response: Any = None
    block_hashes: List[str] = field(default_factory=list)


class CompositeEngine:
    """
    Executes cross-node operations.

    Args:
        store: StateStore (networks, cache refresh)
        locator: ServiceLocator
        config: OperationsConfig (confirmation depth, funding amounts)
    """

    def __init__(self, store, locator, config: Optional[OperationsConfig] = None):
        self.store = store
        self.locator = locator
        self.config = config or OperationsConfig()

    def _same_network(self, *nodes) -> Network:
        network = self.store.network_of(nodes[0])
        for node in nodes[1:]:
            if node.network_id != network.id:
                raise ValueError(f"{nodes[0].name} and {node.name} are in different networks")
        return network

    def _backend(self, network: Network, node) -> BitcoinNode:
        backend = backend_of(network, node)
        if backend is None:
            raise InvalidNetwork([f"Node {node.name}: backend '{node.backend_name}' not found"])
        return backend

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    async def mint_asset(self, payload: MintAssetPayload) -> MintAssetResult:
        """
        Mint an asset, optionally finalizing and confirming the batch.

        Steps: [fund] -> mint -> [finalize -> mine]

        Blocks are mined on the backend of the network's first lightning
        node, whatever backend the tap node itself uses.
        """
        node = payload.node
        network = self.store.network_of(node)
        tap = self.locator.tap(node)

        # Transient, derived from the network at call time
        backend = mint_backend(network)
        confirmations = self.config.confirmation_blocks
        if backend is None:
            raise InvalidNetwork([f"Network {network.name} has no bitcoin node to mine on"])
        bitcoin = self.locator.bitcoin(backend)

        steps = StepRunner('mint_asset')
        result = MintAssetResult()

        if payload.auto_fund:
            lnd = lightning_of(network, node)
            if lnd is None:
                raise InvalidNetwork([f"Node {node.name}: no paired lightning node to fund"])
            await steps.run('fund', self.deposit_funds(lnd, self.config.auto_fund_sats))

        request = MintAssetRequest(
            asset_type=payload.asset_type,
            name=payload.name,
            amount=payload.amount,
            enable_emission=payload.enable_emission,
        )
        result.value = await steps.run('mint', tap.mint_asset(node, request))

        if payload.finalize:
            result.finalize_response = await steps.run('finalize', tap.finalize_batch(node))
            result.block_hashes = await steps.run('mine', bitcoin.mine(confirmations, backend))
            result.refresh = await self.store.refresh(node, backend)
        else:
            result.refresh = await self.store.refresh(node)

        result.completed_steps = list(steps.completed)
        return result

    async def send_asset(self, from_node: TapNode, to_node: TapNode, asset_id: str, amount: int) -> OperationResult:
        """Steps: address (receiver) -> send -> mine."""
        network = self._same_network(from_node, to_node)
        backend = self._backend(network, from_node)
        sender = self.locator.tap(from_node)
        receiver = self.locator.tap(to_node)
        bitcoin = self.locator.bitcoin(backend)

        steps = StepRunner('send_asset')
        address = await steps.run('address', receiver.new_address(to_node, asset_id, amount))
        receipt = await steps.run('send', sender.send_asset(from_node, address))
        await steps.run('mine', bitcoin.mine(self.config.confirmation_blocks, backend))

        refresh = await self.store.refresh(from_node, to_node)
        return OperationResult(value=receipt, completed_steps=list(steps.completed), refresh=refresh)

    # ------------------------------------------------------------------
    # On-chain
    # ------------------------------------------------------------------

    async def mine_blocks(self, network: Network, blocks: Optional[int] = None,
                          node: Optional[BitcoinNode] = None) -> OperationResult:
        """Mine on ``node`` (default: the network's first bitcoin node)."""
        if node is None:
            if not network.bitcoin:
                raise InvalidNetwork([f"Network {network.name} has no bitcoin node"])
            node = network.bitcoin[0]
        if blocks is None:
            blocks = self.config.confirmation_blocks
        if blocks < 1:
            raise ValueError(f"blocks must be >= 1, got {blocks}")

        bitcoin = self.locator.bitcoin(node)
        steps = StepRunner('mine_blocks')
        hashes = await steps.run('mine', bitcoin.mine(blocks, node))

        refresh = await self.store.refresh(node)
        return OperationResult(value=hashes, completed_steps=list(steps.completed), refresh=refresh)

    async def deposit_funds(self, node: LightningNode, sats: Optional[int] = None) -> OperationResult:
        """
        Fund a lightning node's on-chain wallet from its backend.

        Steps: address -> send -> mine
        """
        if sats is None:
            sats = self.config.deposit_sats
        network = self.store.network_of(node)
        backend = self._backend(network, node)
        lightning = self.locator.lightning(node)
        bitcoin = self.locator.bitcoin(backend)

        steps = StepRunner('deposit_funds')
        address = await steps.run('address', lightning.get_new_address(node))
        txid = await steps.run('send', bitcoin.send_funds(backend, address, sats / SATS_PER_BTC))
        await steps.run('mine', bitcoin.mine(self.config.confirmation_blocks, backend))

        refresh = await self.store.refresh(node, backend)
        return OperationResult(value=txid, completed_steps=list(steps.completed), refresh=refresh)

    # ------------------------------------------------------------------
    # Lightning
    # ------------------------------------------------------------------

    async def open_channel(self, from_node: LightningNode, to_node: LightningNode, sats: int,
                           auto_fund: bool = False, is_private: bool = False) -> OperationResult:
        """
        Open a channel from ``from_node`` to ``to_node``.

        Steps: [fund] -> info (target) -> connect -> open -> mine
        """
        network = self._same_network(from_node, to_node)
        backend = self._backend(network, from_node)
        opener = self.locator.lightning(from_node)
        target = self.locator.lightning(to_node)
        bitcoin = self.locator.bitcoin(backend)

        steps = StepRunner('open_channel')
        if auto_fund:
            # Twice the capacity leaves room for fees
            await steps.run('fund', self.deposit_funds(from_node, sats * 2))

        info = await steps.run('info', target.get_info(to_node))
        await steps.run('connect', opener.connect_peers(from_node, [info.rpc_url]))
        options = OpenChannelOptions(
            from_node=from_node,
            to_rpc_url=info.rpc_url,
            amount=sats,
            is_private=is_private,
        )
        channel_point = await steps.run('open', opener.open_channel(options))
        await steps.run('mine', bitcoin.mine(self.config.confirmation_blocks, backend))

        refresh = await self.store.refresh(from_node, to_node)
        return OperationResult(value=channel_point, completed_steps=list(steps.completed), refresh=refresh)

    async def close_channel(self, node: LightningNode, channel_point: str) -> OperationResult:
        """Steps: close -> mine."""
        network = self.store.network_of(node)
        backend = self._backend(network, node)
        lightning = self.locator.lightning(node)
        bitcoin = self.locator.bitcoin(backend)

        steps = StepRunner('close_channel')
        response = await steps.run('close', lightning.close_channel(node, channel_point))
        await steps.run('mine', bitcoin.mine(self.config.confirmation_blocks, backend))

        refresh = await self.store.refresh(node)
        return OperationResult(value=response, completed_steps=list(steps.completed), refresh=refresh)

    async def pay(self, from_node: LightningNode, to_node: LightningNode, amount: int,
                  memo: Optional[str] = None) -> OperationResult:
        """Steps: invoice (receiver) -> pay (sender)."""
        self._same_network(from_node, to_node)
        payer = self.locator.lightning(from_node)
        payee = self.locator.lightning(to_node)

        steps = StepRunner('pay')
        invoice = await steps.run('invoice', payee.create_invoice(to_node, amount, memo))
        receipt = await steps.run('pay', payer.pay_invoice(from_node, invoice))

        refresh = await self.store.refresh(from_node, to_node)
        return OperationResult(value=receipt, completed_steps=list(steps.completed), refresh=refresh)
