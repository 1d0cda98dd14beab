"""Owner signer capability interface.

Closed set of wallet variants, one per signer class:

- ``EmbeddedWallet``: custodial key held by the service, never needs a chain check.
- ``ExtensionWallet``: injected/extension wallet reached through an EIP-1193
  style JSON-RPC bridge, has its own active chain.
- ``GenericWallet``: any other provider-backed wallet.
"""

import asyncio
import itertools
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from src.logging_utils import get_logger
from src.models import NetworkProfile, WalletType

from .errors import ProviderRpcError

logger = get_logger(__name__)

# EIP-1193 error code for "chain not added to the wallet"
UNRECOGNIZED_CHAIN = 4902


class HttpJsonRpcProvider:
    """Minimal EIP-1193 style provider speaking JSON-RPC over HTTP."""

    def __init__(self, url: str, timeout: float = 30.0):
        self.url = url
        self._ids = itertools.count(1)
        self._http = httpx.AsyncClient(timeout=timeout)

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        """Send one JSON-RPC request.

        Raises:
            ProviderRpcError: If the provider answered with an error object.
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        response = await self._http.post(self.url, json=payload)
        response.raise_for_status()
        data = response.json()
        if data.get("error"):
            error = data["error"]
            raise ProviderRpcError(int(error.get("code", -32000)), error.get("message", "provider error"))
        return data.get("result")

    async def close(self):
        """Close the underlying HTTP client."""
        await self._http.aclose()


class ExternalWallet(ABC):
    """Owner signer capability shared by every wallet class."""

    wallet_type: WalletType = "unknown"

    def __init__(self, address: Optional[str] = None):
        self.address = address

    @property
    def needs_chain_check(self) -> bool:
        """Whether the wallet's own active chain must match the target network."""
        return False

    @abstractmethod
    async def get_provider(self) -> Any:
        """Return the underlying provider/signer handle."""

    @abstractmethod
    async def request_accounts(self) -> list[str]:
        """Ask the wallet to expose (unlock) its accounts."""

    @abstractmethod
    async def current_chain(self) -> int:
        """Chain id the wallet is currently operating on."""

    @abstractmethod
    async def switch_chain(self, profile: NetworkProfile) -> bool:
        """Move the wallet to the profile's chain. Returns False on refusal."""

    @abstractmethod
    async def sign_message(self, message: bytes) -> str:
        """EIP-191 personal signature, 0x-prefixed hex."""

    async def close(self) -> None:
        """Release connections held by the wallet."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(address={self.address!r})"


class EmbeddedWallet(ExternalWallet):
    """Custodial signer whose key is held locally."""

    wallet_type: WalletType = "privy"

    def __init__(self, account: LocalAccount, chain_id: int = 0):
        super().__init__(account.address)
        self._account = account
        self._chain_id = chain_id

    @classmethod
    def from_key(cls, private_key: str, chain_id: int = 0) -> "EmbeddedWallet":
        return cls(Account.from_key(private_key), chain_id)

    async def get_provider(self) -> LocalAccount:
        return self._account

    async def request_accounts(self) -> list[str]:
        return [self._account.address]

    async def current_chain(self) -> int:
        return self._chain_id

    async def switch_chain(self, profile: NetworkProfile) -> bool:
        self._chain_id = profile.chain_id
        return True

    async def sign_message(self, message: bytes) -> str:
        signed = self._account.sign_message(encode_defunct(primitive=message))
        return "0x" + bytes(signed.signature).hex()


class ProviderWallet(ExternalWallet):
    """Wallet reached through a JSON-RPC provider."""

    def __init__(self, provider: HttpJsonRpcProvider, address: Optional[str] = None):
        super().__init__(address)
        self._provider = provider

    async def get_provider(self) -> HttpJsonRpcProvider:
        return self._provider

    async def request_accounts(self) -> list[str]:
        accounts = await self._provider.request("eth_requestAccounts")
        if accounts and not self.address:
            self.address = accounts[0]
        return accounts

    async def current_chain(self) -> int:
        chain_id = await self._provider.request("eth_chainId")
        return int(chain_id, 16) if isinstance(chain_id, str) else int(chain_id)

    async def switch_chain(self, profile: NetworkProfile) -> bool:
        chain_id_hex = hex(profile.chain_id)
        logger.info(f"Switching {self.wallet_type} wallet to {profile.key} ({chain_id_hex})")
        try:
            try:
                await self._provider.request("wallet_switchEthereumChain", [{"chainId": chain_id_hex}])
                return True
            except ProviderRpcError as switch_error:
                if switch_error.code != UNRECOGNIZED_CHAIN:
                    raise
                # Chain unknown to the wallet: register it, which also selects it
                await self._provider.request(
                    "wallet_addEthereumChain",
                    [
                        {
                            "chainId": chain_id_hex,
                            "chainName": profile.name,
                            "nativeCurrency": profile.native_currency,
                            "rpcUrls": [profile.public_rpc],
                            "blockExplorerUrls": [profile.explorer_url] if profile.explorer_url else [],
                        }
                    ],
                )
                return True
        except (ProviderRpcError, httpx.HTTPError) as e:
            logger.error(f"Failed to switch wallet network: {e}")
            return False

    async def sign_message(self, message: bytes) -> str:
        return await self._provider.request("personal_sign", ["0x" + message.hex(), self.address])

    async def close(self) -> None:
        await self._provider.close()


class ExtensionWallet(ProviderWallet):
    """Injected/extension wallet; has an active chain of its own."""

    wallet_type: WalletType = "metamask"

    @property
    def needs_chain_check(self) -> bool:
        return True


class GenericWallet(ProviderWallet):
    """Any other provider-backed wallet."""

    wallet_type: WalletType = "unknown"


def select_wallet(wallets: Sequence[ExternalWallet]) -> Optional[ExternalWallet]:
    """Pick the owner signer: embedded first, then extension, then anything.

    Args:
        wallets: Wallets offered by the connection layer.

    Returns:
        The chosen wallet, or None when no wallet is available.
    """
    if not wallets:
        return None
    for wallet_class in (EmbeddedWallet, ExtensionWallet):
        for wallet in wallets:
            if isinstance(wallet, wallet_class):
                return wallet
    return wallets[0]


async def wait_for_wallet_settle(seconds: float) -> None:
    """Give an extension wallet time to apply a chain switch."""
    if seconds > 0:
        await asyncio.sleep(seconds)
