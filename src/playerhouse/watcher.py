"""Confirmation watcher: live log subscription raced against a polling fallback.

Both paths report into a single once-only future. The live path subscribes to
SpinResult logs of the player from the submission block. If it has not
produced a result after ``fallback_delay`` seconds, the fallback path
unsubscribes it and polls historical logs a bounded number of times. Whichever
path resolves the future first wins; the other is cancelled.
"""

import asyncio
from typing import Optional

from src.config import config
from src.logging_utils import get_logger
from src.models import SpinResultEvent

from .chain import ChainClient, LogSubscription
from .errors import ConfirmationTimeout

logger = get_logger(__name__)


class ConfirmationWatcher:
    """Determines the on-chain outcome of a submitted spin operation."""

    def __init__(
        self,
        chain: ChainClient,
        fallback_delay: Optional[float] = None,
        retries: Optional[int] = None,
        retry_interval: Optional[float] = None,
    ):
        """Initialize the watcher.

        Args:
            chain: Network capability interface.
            fallback_delay: Seconds before the polling fallback takes over.
            retries: Historical log queries made by the fallback.
            retry_interval: Seconds between fallback queries.
        """
        self.chain = chain
        self.fallback_delay = config.fallback_delay_seconds if fallback_delay is None else fallback_delay
        self.retries = config.poll_retries if retries is None else retries
        self.retry_interval = config.poll_interval_seconds if retry_interval is None else retry_interval

    async def wait_for_result(self, contract: str, player: str, from_block: int) -> SpinResultEvent:
        """Wait for the SpinResult log of a player.

        Args:
            contract: Slot contract emitting the event.
            player: Account the event is filtered on.
            from_block: Block height at submission time.

        Returns:
            The first matching decoded event.

        Raises:
            ConfirmationTimeout: If the fallback exhausted its retries without logs.
        """
        loop = asyncio.get_running_loop()
        outcome: asyncio.Future = loop.create_future()
        subscription: Optional[LogSubscription] = None
        live_stopped = False

        def stop_live() -> None:
            nonlocal live_stopped
            live_stopped = True
            if subscription is not None:
                subscription.unsubscribe()

        async def on_logs(events: list[SpinResultEvent]) -> None:
            if live_stopped or outcome.done() or not events:
                return
            logger.info("SpinResult event received from live subscription")
            outcome.set_result(events[0])

        async def fallback() -> None:
            await asyncio.sleep(self.fallback_delay)
            if outcome.done():
                return
            logger.info("Fallback poll starting")
            stop_live()
            for attempt in range(1, self.retries + 1):
                try:
                    events = await self.chain.get_logs(contract, player, from_block)
                except Exception as e:
                    logger.warning(f"Log poll failed: {e}")
                    events = []
                if events:
                    if not outcome.done():
                        logger.info(f"SpinResult found by fallback poll (attempt {attempt})")
                        outcome.set_result(events[0])
                    return
                logger.info(f"Retrying log poll ({attempt}/{self.retries})...")
                if attempt < self.retries:
                    await asyncio.sleep(self.retry_interval)
            if not outcome.done():
                outcome.set_exception(ConfirmationTimeout("timeout"))

        try:
            subscription = await self.chain.subscribe_logs(contract, player, from_block, on_logs)
        except Exception as e:
            logger.warning(f"Live subscription unavailable, relying on fallback poll: {e}")

        fallback_task = asyncio.create_task(fallback())
        try:
            return await outcome
        finally:
            stop_live()
            if not fallback_task.done():
                fallback_task.cancel()
