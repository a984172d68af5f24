"""Clock: Monotonic height sources for the price feed engine.

The engine never computes heights itself. It reads them from an injected
Clock so that staleness can be reasoned about deterministically in tests
(ManualClock) and against a live chain in production (Web3Clock).
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod

from web3 import Web3

logger = logging.getLogger(__name__)

# JSON-RPC endpoints per network name.
NETWORK_RPC_URLS: dict[str, str] = {
    "sapphire": "https://sapphire.oasis.io",
    "sapphire-testnet": "https://testnet.sapphire.oasis.io",
    "sapphire-localnet": "http://localhost:8545",
}


class Clock(ABC):
    """Abstract source of a monotonically increasing integer height."""

    @abstractmethod
    def height(self) -> int:
        """Return the current height.

        :returns: Current height, never lower than a previously returned one.
        """
        pass


class ManualClock(Clock):
    """Clock advanced explicitly by the caller.

    :ivar current: The height returned by height().

    .. code-block:: python

        >>> clock = ManualClock(100)
        >>> clock.advance(21)
        121
    """

    def __init__(self, start: int = 0) -> None:
        """Initialize the clock.

        :param start: Initial height.
        :raises ValueError: If start is negative.
        """
        if start < 0:
            raise ValueError("start height must be non-negative")
        self.current = start

    def height(self) -> int:
        return self.current

    def advance(self, blocks: int = 1) -> int:
        """Move the clock forward.

        :param blocks: Number of height units to advance.
        :returns: The new height.
        :raises ValueError: If blocks is negative.
        """
        if blocks < 0:
            raise ValueError("cannot advance clock by a negative amount")
        self.current += blocks
        return self.current

    def set_height(self, height: int) -> None:
        """Jump to an absolute height.

        :param height: Target height, must not be lower than the current one.
        :raises ValueError: If height would move the clock backwards.
        """
        if height < self.current:
            raise ValueError(
                f"clock is monotonic: {height} is lower than current {self.current}"
            )
        self.current = height


class Web3Clock(Clock):
    """Clock reading the latest block number from a JSON-RPC node.

    :ivar w3: Web3 instance used for block number queries.
    """

    def __init__(self, w3: Web3) -> None:
        self.w3 = w3
        self._last_height = 0

    @classmethod
    def for_network(cls, network_name: str) -> Web3Clock:
        """Build a clock connected to a named network.

        The RPC_URL environment variable overrides the default endpoint.

        :param network_name: Network name (sapphire, sapphire-testnet,
            sapphire-localnet) or a raw RPC URL.
        :returns: New Web3Clock instance.
        """
        url = os.environ.get("RPC_URL") or NETWORK_RPC_URLS.get(network_name, network_name)
        logger.debug("Connecting height clock to %s", url)
        return cls(Web3(Web3.HTTPProvider(url)))

    def height(self) -> int:
        block_number = int(self.w3.eth.block_number)
        if block_number < self._last_height:
            # Load-balanced RPC endpoints can briefly lag behind.
            logger.debug(
                f"Node reported block {block_number} behind {self._last_height}, "
                "keeping last height"
            )
            return self._last_height
        self._last_height = block_number
        return block_number
