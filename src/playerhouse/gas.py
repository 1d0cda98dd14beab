"""Gas-payment strategy selection.

Two interchangeable strategies: ``SPONSORED`` (a third-party paymaster covers
network fees) and ``FEE_TOKEN`` (fees are paid in the bet token). Sponsored is
preferred; after a sponsored failure it is skipped until it recovers, either
through the periodic recovery task or lazily once the cooldown has elapsed
since the failure.
"""

import asyncio
import time
from enum import Enum
from typing import Callable, Optional

from src.logging_utils import get_logger

logger = get_logger(__name__)


class GasStrategy(str, Enum):
    """How network fees of an operation are paid."""

    SPONSORED = "sponsored"
    FEE_TOKEN = "fee_token"


class GasStrategySelector:
    """Availability state of the gas-payment strategies."""

    def __init__(
        self,
        fee_token_supported: bool,
        cooldown: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the selector.

        Args:
            fee_token_supported: Whether the network offers fee-token payment.
            cooldown: Seconds after which a disabled sponsored strategy is retried.
            clock: Monotonic time source.
        """
        self.fee_token_supported = fee_token_supported
        self.cooldown = cooldown
        self._clock = clock
        self.sponsored_enabled = True
        self.fee_token_enabled = fee_token_supported
        self.last_failure: Optional[float] = None
        self._recovery_task: Optional[asyncio.Task] = None

    def sponsored_available(self) -> bool:
        """Whether the next request should try sponsored payment first."""
        if (
            not self.sponsored_enabled
            and self.last_failure is not None
            and self._clock() - self.last_failure >= self.cooldown
        ):
            self.recover()
        return self.sponsored_enabled

    def plan(self) -> list[GasStrategy]:
        """Ordered strategies to attempt for one request."""
        strategies = []
        if self.sponsored_available():
            strategies.append(GasStrategy.SPONSORED)
        if self.fee_token_enabled:
            strategies.append(GasStrategy.FEE_TOKEN)
        return strategies

    def mark_sponsored_failed(self) -> None:
        """Disable sponsored payment for this and subsequent requests."""
        self.sponsored_enabled = False
        self.last_failure = self._clock()
        logger.warning("Sponsored gas disabled after failure")

    def recover(self) -> bool:
        """Re-enable sponsored payment if it is disabled.

        Returns:
            True if the strategy was re-enabled by this call.
        """
        if self.sponsored_enabled:
            return False
        self.sponsored_enabled = True
        logger.info("Re-enabling sponsored gas for retry")
        return True

    async def _recovery_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cooldown)
            self.recover()

    def start_recovery(self) -> None:
        """Start the background task re-enabling sponsored payment every cooldown."""
        if self._recovery_task is None or self._recovery_task.done():
            self._recovery_task = asyncio.create_task(self._recovery_loop())

    def stop_recovery(self) -> None:
        """Cancel the background recovery task."""
        if self._recovery_task is not None:
            self._recovery_task.cancel()
            self._recovery_task = None

    @property
    def recovery_running(self) -> bool:
        return self._recovery_task is not None and not self._recovery_task.done()

    @property
    def payment_mode(self) -> str:
        if self.sponsored_enabled:
            return "Sponsored Gas"
        if self.fee_token_enabled:
            return "USDC Gas"
        return "Manual Gas"
