"""Test doubles shared across suites."""

import asyncio
import inspect

from eth_account import Account
from eth_account.messages import encode_defunct

from src.models import SpinResultEvent
from src.playerhouse.chain import ChainClient, LogSubscription
from src.playerhouse.errors import ProviderRpcError


def make_spin_event(player: str = "0x0000000000000000000000000000000000000001", **overrides) -> SpinResultEvent:
    fields = dict(
        player=player,
        tot_win=0,
        pattern=[[1, 2, 3, 4, 5], [2, 3, 4, 5, 6], [3, 4, 5, 6, 7]],
        freespin=False,
        bonus=False,
        num_freespin=0,
        bonus_prize=0,
        bonus_prize_indexes=[],
        block_number=101,
    )
    fields.update(overrides)
    return SpinResultEvent(**fields)


class FakeChain(ChainClient):
    """In-memory chain capability recording every call made to it."""

    def __init__(self, balance: int = 1_000_000, allowance: int = 0, code: bytes = b"", block: int = 100):
        self.balance = balance
        self.allowance = allowance
        self.code = code
        self.block = block

        # Live subscription delivers these events after live_delay (None: never)
        self.live_events = None
        self.live_delay = 0.0
        self.subscribe_error = None

        # Each get_logs call pops the next entry; empty list once exhausted
        self.poll_results = []

        # strategy -> exception raised by submit_operation
        self.submit_errors = {}
        self.submit_delays = []

        self.get_logs_calls = 0
        self.subscriptions = []
        self.submissions = []
        self.code_reads = 0
        self.closed = False

    async def read_balance(self, token, owner):
        return self.balance

    async def read_allowance(self, token, owner, spender):
        return self.allowance

    async def read_code(self, address):
        self.code_reads += 1
        if isinstance(self.code, Exception):
            raise self.code
        return self.code

    async def current_block(self):
        return self.block

    async def get_logs(self, contract, player, from_block):
        self.get_logs_calls += 1
        if self.poll_results:
            result = self.poll_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return []

    async def subscribe_logs(self, contract, player, from_block, on_logs):
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscriptions.append((contract, player, from_block))
        task = None
        if self.live_events is not None:
            task = asyncio.create_task(self._deliver_live(on_logs, list(self.live_events)))
        return LogSubscription(task)

    async def _deliver_live(self, on_logs, events):
        await asyncio.sleep(self.live_delay)
        result = on_logs(events)
        if inspect.isawaitable(result):
            await result

    async def submit_operation(self, account, calls, strategy):
        self.submissions.append((list(calls), strategy))
        if self.submit_delays:
            await asyncio.sleep(self.submit_delays.pop(0))
        if strategy in self.submit_errors:
            raise self.submit_errors[strategy]
        return "0x" + "ab" * 32

    async def close(self):
        self.closed = True


class StubProvider:
    """EIP-1193 style provider backed by a local key."""

    def __init__(self, chain_id: int, known_chains=None):
        self.chain_id = chain_id
        self.account = Account.create()
        self.known_chains = set(known_chains or [chain_id])
        self.methods = []
        self.closed = False

    async def request(self, method, params=None):
        self.methods.append(method)
        if method == "eth_chainId":
            return hex(self.chain_id)
        if method == "eth_requestAccounts":
            return [self.account.address]
        if method == "personal_sign":
            signed = self.account.sign_message(encode_defunct(hexstr=params[0]))
            return "0x" + bytes(signed.signature).hex()
        if method == "wallet_switchEthereumChain":
            chain_id = int(params[0]["chainId"], 16)
            if chain_id not in self.known_chains:
                raise ProviderRpcError(4902, "Unrecognized chain ID")
            self.chain_id = chain_id
            return None
        if method == "wallet_addEthereumChain":
            chain_id = int(params[0]["chainId"], 16)
            self.known_chains.add(chain_id)
            self.chain_id = chain_id
            return None
        raise ProviderRpcError(4200, f"Unsupported method {method}")

    async def close(self):
        self.closed = True
