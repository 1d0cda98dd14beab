"""Blockchain network capability interface.

``ChainClient`` is the narrow surface the orchestrator depends on:
``read_balance``, ``read_allowance``, ``read_code``, ``current_block``,
``get_logs``, ``subscribe_logs`` and ``submit_operation``.
``Web3ChainClient`` implements it against a public RPC (web3.py) and the
operation relay.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Sequence, Union

from eth_utils import keccak, to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3

from src.logging_utils import get_logger
from src.models import Call, NetworkProfile, SpinResultEvent

from .gas import GasStrategy

if TYPE_CHECKING:
    from .delegation import DelegatedAccount
    from .relay import RelayClient

logger = get_logger(__name__)

ERC20_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "nonces",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

SPIN_RESULT_EVENT = {
    "name": "SpinResult",
    "type": "event",
    "anonymous": False,
    "inputs": [
        {"name": "player", "type": "address", "indexed": True},
        {"name": "totWin", "type": "uint256", "indexed": False},
        {"name": "pattern", "type": "uint8[5][3]", "indexed": False},
        {"name": "freespin", "type": "bool", "indexed": False},
        {"name": "bonus", "type": "bool", "indexed": False},
        {"name": "numFreespin", "type": "uint8", "indexed": False},
        {"name": "bonusPrize", "type": "uint256", "indexed": False},
        {"name": "bonusPrizeIndexes", "type": "uint8[]", "indexed": False},
    ],
}

SPIN_RESULT_TOPIC = "0x" + keccak(
    text="SpinResult(address,uint256,uint8[5][3],bool,bool,uint8,uint256,uint8[])"
).hex()

LogCallback = Callable[[list[SpinResultEvent]], Union[Awaitable[None], None]]


def player_topic(player: str) -> str:
    """Indexed address topic (left padded to 32 bytes)."""
    return "0x" + "00" * 12 + to_checksum_address(player)[2:].lower()


class LogSubscription:
    """Handle of a live log subscription; ``unsubscribe`` stops delivery."""

    def __init__(self, task: Optional[asyncio.Task] = None):
        self._task = task
        self._stopped = False

    @property
    def active(self) -> bool:
        return not self._stopped

    def unsubscribe(self) -> None:
        """Stop the subscription. Safe to call more than once."""
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


class ChainClient(ABC):
    """Capability interface over the blockchain network."""

    @abstractmethod
    async def read_balance(self, token: str, owner: str) -> int:
        """ERC-20 balance in token units."""

    @abstractmethod
    async def read_allowance(self, token: str, owner: str, spender: str) -> int:
        """ERC-20 allowance in token units."""

    @abstractmethod
    async def read_code(self, address: str) -> bytes:
        """Contract bytecode at an address (empty when none)."""

    @abstractmethod
    async def current_block(self) -> int:
        """Latest block height."""

    @abstractmethod
    async def get_logs(self, contract: str, player: str, from_block: int) -> list[SpinResultEvent]:
        """Historical SpinResult logs for a player since a block."""

    @abstractmethod
    async def subscribe_logs(
        self, contract: str, player: str, from_block: int, on_logs: LogCallback
    ) -> LogSubscription:
        """Deliver new SpinResult logs for a player to ``on_logs`` until unsubscribed."""

    @abstractmethod
    async def submit_operation(
        self, account: "DelegatedAccount", calls: Sequence[Call], strategy: GasStrategy
    ) -> str:
        """Submit a batched operation through the delegated account, returning its hash."""

    async def close(self) -> None:
        """Release network resources."""


def decode_spin_result(processed) -> SpinResultEvent:
    """Map a web3-processed SpinResult log onto the event model."""
    args = processed["args"]
    tx_hash = processed.get("transactionHash")
    return SpinResultEvent(
        player=args["player"],
        tot_win=int(args["totWin"]),
        pattern=[list(row) for row in args["pattern"]],
        freespin=bool(args["freespin"]),
        bonus=bool(args["bonus"]),
        num_freespin=int(args["numFreespin"]),
        bonus_prize=int(args["bonusPrize"]),
        bonus_prize_indexes=[int(i) for i in args["bonusPrizeIndexes"]],
        block_number=processed.get("blockNumber"),
        transaction_hash=tx_hash.hex() if hasattr(tx_hash, "hex") else tx_hash,
    )


class Web3ChainClient(ChainClient):
    """ChainClient backed by web3.py and the operation relay."""

    def __init__(
        self,
        profile: NetworkProfile,
        relay: Optional["RelayClient"] = None,
        w3: Optional[AsyncWeb3] = None,
        poll_interval: float = 1.0,
    ):
        """Initialize the client.

        Args:
            profile: Network the client talks to.
            relay: Operation relay used by ``submit_operation``.
            w3: Preconfigured AsyncWeb3 instance, defaults to the profile's public RPC.
            poll_interval: Seconds between new-block checks of live subscriptions.
        """
        self.profile = profile
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(profile.public_rpc))
        self.poll_interval = poll_interval
        if relay is None:
            from .relay import RelayClient

            relay = RelayClient(profile, self.w3)
        self.relay = relay
        self._slot = self.w3.eth.contract(
            address=to_checksum_address(profile.action_contract), abi=[SPIN_RESULT_EVENT]
        )

    def _token(self, token: str):
        return self.w3.eth.contract(address=to_checksum_address(token), abi=ERC20_ABI)

    async def read_balance(self, token: str, owner: str) -> int:
        return await self._token(token).functions.balanceOf(to_checksum_address(owner)).call()

    async def read_allowance(self, token: str, owner: str, spender: str) -> int:
        return await self._token(token).functions.allowance(
            to_checksum_address(owner), to_checksum_address(spender)
        ).call()

    async def read_code(self, address: str) -> bytes:
        return bytes(await self.w3.eth.get_code(to_checksum_address(address)))

    async def current_block(self) -> int:
        return await self.w3.eth.block_number

    async def _logs_between(
        self, contract: str, player: str, from_block: int, to_block: Union[int, str] = "latest"
    ) -> list[SpinResultEvent]:
        raw_logs = await self.w3.eth.get_logs(
            {
                "address": to_checksum_address(contract),
                "fromBlock": from_block,
                "toBlock": to_block,
                "topics": [SPIN_RESULT_TOPIC, player_topic(player)],
            }
        )
        event = self._slot.events.SpinResult()
        return [decode_spin_result(event.process_log(log)) for log in raw_logs]

    async def get_logs(self, contract: str, player: str, from_block: int) -> list[SpinResultEvent]:
        return await self._logs_between(contract, player, from_block)

    async def subscribe_logs(
        self, contract: str, player: str, from_block: int, on_logs: LogCallback
    ) -> LogSubscription:
        subscription = LogSubscription()

        async def watch() -> None:
            next_block = from_block
            while subscription.active:
                try:
                    head = await self.current_block()
                    if head >= next_block:
                        events = await self._logs_between(contract, player, next_block, head)
                        next_block = head + 1
                        if events and subscription.active:
                            result = on_logs(events)
                            if inspect.isawaitable(result):
                                await result
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    # A failed poll is retried on the next tick
                    logger.warning(f"Log subscription poll failed: {e}")
                await asyncio.sleep(self.poll_interval)

        subscription._task = asyncio.create_task(watch())
        return subscription

    async def submit_operation(
        self, account: "DelegatedAccount", calls: Sequence[Call], strategy: GasStrategy
    ) -> str:
        return await self.relay.send_operation(account, calls, strategy)

    async def close(self) -> None:
        await self.relay.close()
