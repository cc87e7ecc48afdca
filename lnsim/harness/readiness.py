"""
readiness.py - Readiness polling with exponential backoff

A freshly started container accepts connections some time after docker
reports it running. poll_until_online() keeps calling the node service's
wait_until_online() until it succeeds, sleeping with exponential backoff
between failed attempts, and gives up with NodeUnreachable once the
attempt budget is spent.

Polling can be abandoned at any point through a CancelToken.
"""

import asyncio
from dataclasses import dataclass

from lnsim.errors import NodeUnreachable, OperationCancelled
from lnsim.log import get_logger

logger = get_logger('readiness')


class CancelToken:
    """
    Discrete cancellation signal shared between a caller and an operation.

    The operation checks ``cancelled`` (or awaits ``wait()``) at its
    suspension points; the caller calls ``cancel()``.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        self._event.set()

    async def wait(self):
        await self._event.wait()

    def raise_if_cancelled(self, what: str = "operation"):
        """
        Raises:
            OperationCancelled: If the token was cancelled
        """
        if self.cancelled:
            raise OperationCancelled(f"{what} was cancelled")


@dataclass
class BackoffPolicy:
    """
    Retry budget for readiness polling.

    Delay after failed attempt n (1-based) is
    min(initial_delay_s * factor ** (n - 1), max_delay_s).
    """
    retries: int = 10
    initial_delay_s: float = 0.5
    max_delay_s: float = 8.0
    factor: float = 2.0

    @staticmethod
    def from_config(config) -> 'BackoffPolicy':
        return BackoffPolicy(
            retries=config.readiness_retries,
            initial_delay_s=config.readiness_initial_delay_s,
            max_delay_s=config.readiness_max_delay_s,
            factor=config.readiness_backoff_factor,
        )

    def delay(self, attempt: int) -> float:
        return min(self.initial_delay_s * self.factor ** (attempt - 1), self.max_delay_s)


async def _sleep_or_cancel(delay_s: float, token: CancelToken):
    """Sleep for delay_s, returning early if the token is cancelled."""
    try:
        await asyncio.wait_for(token.wait(), timeout=delay_s)
    except asyncio.TimeoutError:
        pass


async def poll_until_online(service, node, policy: BackoffPolicy, token: CancelToken = None):
    """
    Wait until a node's RPC surface is usable.

    Args:
        service: Node service (any kind) providing wait_until_online()
        node: Node to poll
        policy: Retry budget and backoff
        token: Optional cancel token

    Raises:
        NodeUnreachable: If every attempt failed
        OperationCancelled: If the token was cancelled while polling
    """
    token = token or CancelToken()
    last_error = None

    for attempt in range(1, policy.retries + 1):
        token.raise_if_cancelled(f"Readiness polling for {node.name}")
        try:
            await service.wait_until_online(node)
            logger.debug(f"{node.name} online after {attempt} attempt(s)")
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            if attempt == policy.retries:
                break
            delay = policy.delay(attempt)
            logger.debug(
                f"{node.name} not online yet (attempt {attempt}/{policy.retries}): {e}; "
                f"retrying in {delay:.2f}s"
            )
            await _sleep_or_cancel(delay, token)

    token.raise_if_cancelled(f"Readiness polling for {node.name}")
    raise NodeUnreachable(node.name, policy.retries, last_error)
