"""Player session: the active network, its delegation and the spin pipeline.

Owns the lifecycle the game surface sees:

- setup on the preferred network (persisted across restarts),
- network switching, which invalidates the delegation and re-runs setup,
- the outbound message stream (``wallet``, ``spin:loading``, ``spinResult``),
- a coarse status line for the wallet indicator.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Sequence

from src.config import config
from src.database import Database, db
from src.logging_utils import get_logger
from src.models import SessionDelegation, SessionStatus, WalletMessage, WalletType

from .chain import ChainClient, Web3ChainClient
from .delegation import DelegatedAccount, DelegationManager
from .errors import NetworkSwitchRequired, SetupError
from .gas import GasStrategySelector
from .health import ConnectionHealthTracker
from .networks import get_profile, is_known_network
from .orchestrator import SpinOrchestrator
from .wallets import ExternalWallet, ExtensionWallet, select_wallet, wait_for_wallet_settle

logger = get_logger(__name__)

Listener = Callable[[dict], Awaitable[None]]


class PlayerSession:
    """One player's connection to the slot across network switches."""

    def __init__(
        self,
        database: Optional[Database] = None,
        chain_factory: Callable[..., ChainClient] = Web3ChainClient,
        wallets: Optional[Sequence[ExternalWallet]] = None,
        network_key: Optional[str] = None,
    ):
        """Initialize the session.

        Args:
            database: Preference store, defaults to the global database.
            chain_factory: Builds the chain client for a network profile.
            wallets: Wallets offered by the connection layer.
            network_key: Initial network, defaults to config.default_network.
        """
        self.database = database or db
        self._chain_factory = chain_factory
        self.wallets: list[ExternalWallet] = list(wallets or [])
        self.network_key = network_key or config.default_network

        self.health = ConnectionHealthTracker()
        self.orchestrator = SpinOrchestrator(self.health, emit=self._broadcast, reissue=self.spawn_spin)

        self.chain: Optional[ChainClient] = None
        self.delegation: Optional[SessionDelegation] = None
        self.account: Optional[DelegatedAccount] = None
        self.selector: Optional[GasStrategySelector] = None

        self.is_setting_up = False
        self.setup_error: Optional[str] = None
        self.pending_network_switch: Optional[str] = None

        self._listeners: list[Listener] = []
        self._spins: set[asyncio.Task] = set()

    @property
    def profile(self):
        return get_profile(self.network_key)

    @property
    def wallet_type(self) -> WalletType:
        if self.delegation is not None:
            return self.delegation.wallet_type
        wallet = select_wallet(self.wallets)
        return wallet.wallet_type if wallet else "unknown"

    @property
    def is_ready(self) -> bool:
        return self.account is not None

    async def load_preferences(self) -> str:
        """Restore the persisted network preference if it names a known network."""
        saved = await self.database.get_network_preference()
        logger.info(f"Loading saved network preference: {saved}")
        if saved and is_known_network(saved):
            self.network_key = saved
        elif saved:
            logger.warning(f"Ignoring unknown saved network {saved!r}")
        return self.network_key

    # Setup

    async def setup(self, wallets: Optional[Sequence[ExternalWallet]] = None) -> SessionDelegation:
        """Mint a fresh delegation on the current network and bind the spin pipeline.

        Raises:
            NetworkSwitchRequired: The extension wallet must switch chains first;
                the switch is left pending for ``confirm_network_switch``.
            SetupError: Setup is blocked; the reason is kept in ``setup_error``.
        """
        if wallets is not None:
            self.wallets = list(wallets)

        await self._teardown()
        profile = self.profile
        self.is_setting_up = True
        self.setup_error = None
        logger.info(f"Setting up {profile.key} integration...")

        try:
            if self.chain is None:
                self.chain = self._chain_factory(profile)
            manager = DelegationManager(self.chain, profile)
            delegation = await manager.setup(self.wallets)
            account = manager.rehydrate(delegation)
        except NetworkSwitchRequired as e:
            logger.info(f"Wallet is on the wrong network, prompting switch to {e.target_network}")
            self.pending_network_switch = e.target_network
            raise
        except SetupError as e:
            logger.error(f"Smart account setup failed: {e}")
            self.setup_error = str(e)
            raise
        except Exception as e:
            logger.error(f"Smart account setup failed: {e}", exc_info=True)
            self.setup_error = "Failed to setup smart account"
            raise SetupError("provider", self.setup_error) from e
        finally:
            self.is_setting_up = False

        selector = GasStrategySelector(
            profile.supports_fee_token_payment, cooldown=config.sponsor_cooldown_seconds
        )
        selector.start_recovery()

        self.delegation = delegation
        self.account = account
        self.selector = selector
        self.orchestrator.bind(account, profile, self.chain, selector)
        logger.info(f"Smart account setup complete: {account.address} ({selector.payment_mode})")

        await self._broadcast(self.wallet_message())
        return delegation

    async def _teardown(self) -> None:
        if self.selector is not None:
            self.selector.stop_recovery()
        self.orchestrator.unbind()
        self.delegation = None
        self.account = None
        self.selector = None

    # Network switching

    async def switch_network(self, network_key: str) -> bool:
        """Request a network change.

        Extension wallets must move their own chain first, so the change is left
        pending until ``confirm_network_switch``. Other wallets switch at once.

        Returns:
            True if the switch completed, False if it is pending or was ignored.

        Raises:
            KeyError: Unknown network key.
        """
        get_profile(network_key)
        if self.is_setting_up:
            logger.info(f"Ignoring network change to {network_key} while setting up")
            return False

        logger.info(f"Network change requested: {network_key}")
        if isinstance(select_wallet(self.wallets), ExtensionWallet):
            self.pending_network_switch = network_key
            return False

        await self._complete_switch(network_key)
        return True

    async def confirm_network_switch(self) -> bool:
        """Move the extension wallet to the pending network, then complete the switch.

        Returns:
            False if nothing was pending or the wallet refused to switch.
        """
        target = self.pending_network_switch
        if target is None:
            return False

        wallet = select_wallet(self.wallets)
        if isinstance(wallet, ExtensionWallet):
            switched = await wallet.switch_chain(get_profile(target))
            if not switched:
                self.setup_error = "Failed to switch MetaMask network. Please switch manually."
                self.pending_network_switch = None
                return False
            await wait_for_wallet_settle(config.network_switch_settle_seconds)

        self.pending_network_switch = None
        await self._complete_switch(target)
        return True

    def cancel_network_switch(self) -> None:
        self.pending_network_switch = None

    async def _complete_switch(self, network_key: str) -> None:
        logger.info(f"Completing network switch to {network_key}")
        await self.database.set_network_preference(network_key)
        await self._teardown()
        if self.chain is not None and network_key != self.network_key:
            await self.chain.close()
            self.chain = None
        self.network_key = network_key
        self.health.reset()
        try:
            await self.setup()
        except SetupError as e:
            logger.warning(f"Setup after network switch did not complete: {e}")

    async def disconnect(self) -> None:
        """Drop the delegation and release network resources."""
        await self._teardown()
        await self.orchestrator.aclose()
        for task in list(self._spins):
            task.cancel()
        if self._spins:
            await asyncio.gather(*self._spins, return_exceptions=True)
        if self.chain is not None:
            await self.chain.close()
            self.chain = None

    async def close(self) -> None:
        """Disconnect and release the wallets' provider connections."""
        await self.disconnect()
        for wallet in self.wallets:
            try:
                await wallet.close()
            except Exception as e:
                logger.warning(f"Failed to close {wallet!r}: {e}")

    # Spins

    async def submit_spin(self, message: dict) -> Optional[int]:
        """Run one spin intent to completion."""
        return await self.orchestrator.handle_intent(message)

    def spawn_spin(self, message: dict) -> asyncio.Task:
        """Start a spin intent in the background; a newer spin supersedes older ones."""
        task = asyncio.create_task(self.submit_spin(message))
        self._spins.add(task)
        task.add_done_callback(self._spins.discard)
        return task

    # Outbound messages

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _broadcast(self, message: dict) -> None:
        for listener in list(self._listeners):
            try:
                await listener(message)
            except Exception as e:
                logger.warning(f"Dropping listener after send failure: {e}")
                self.remove_listener(listener)

    def wallet_message(self) -> Optional[dict]:
        """Wallet context for the game surface, or None before setup completes."""
        if self.account is None:
            return None
        return WalletMessage(
            wallet=self.account.address.lower(),
            network=self.network_key,
            walletType=self.wallet_type,
        ).model_dump()

    def status(self) -> SessionStatus:
        """Coarse state behind the wallet indicator."""
        if self.setup_error:
            text, state = "Setup Error", "error"
        elif self.is_setting_up:
            text, state = "Setting up...", "setting_up"
        elif not self.wallets:
            text, state = "No wallet found", "no_wallet"
        elif self.account is None or self.selector is None:
            text, state = "Configuring...", "configuring"
        elif self.account.deployed:
            text, state = f"Ready ({self.selector.payment_mode})", "ready"
        else:
            text, state = "Ready (First tx deploys)", "ready_undeployed"

        return SessionStatus(
            text=text,
            state=state,
            network=self.network_key,
            wallet_type=self.wallet_type,
            address=self.account.address if self.account else None,
            payment_mode=self.selector.payment_mode if self.selector else None,
            health=self.health.status,
            failure_count=self.health.failure_count,
            deployed=bool(self.account and self.account.deployed),
            is_spinning=self.orchestrator.is_spinning,
            setup_error=self.setup_error,
            pending_network_switch=self.pending_network_switch,
        )
