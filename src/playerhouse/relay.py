"""Operation relay client (ERC-4337 bundler and paymasters over JSON-RPC).

Builds a user operation for a batch of calls, attaches paymaster data for the
chosen gas strategy, signs it with the session key and submits it.
"""

import itertools
from typing import TYPE_CHECKING, Any, Optional, Sequence

import httpx
from eth_account.messages import encode_typed_data
from eth_utils import keccak, to_checksum_address
from web3 import AsyncWeb3

from src.config import config
from src.logging_utils import get_logger
from src.models import Call, NetworkProfile

from . import kernel
from .errors import RelayError
from .gas import GasStrategy
from .networks import relay_url_for

if TYPE_CHECKING:
    from .delegation import DelegatedAccount

logger = get_logger(__name__)

ENTRY_POINT_ABI = [
    {
        "name": "getNonce",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "sender", "type": "address"}, {"name": "key", "type": "uint192"}],
        "outputs": [{"name": "nonce", "type": "uint256"}],
    }
]

TOKEN_NONCES_ABI = [
    {
        "name": "nonces",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    }
]

# Allowance granted to the fee-token paymaster through the permit.
FEE_TOKEN_PERMIT_AMOUNT = 10_000_000
PERMIT_DEADLINE = 2**256 - 1
FEE_TOKEN_PAYMASTER_VERIFICATION_GAS = 200_000
FEE_TOKEN_PAYMASTER_POST_OP_GAS = 15_000


class RelayClient:
    """JSON-RPC client for the bundler and paymaster endpoints of one network."""

    def __init__(
        self,
        profile: NetworkProfile,
        w3: AsyncWeb3,
        project_id: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """Initialize the relay client.

        Args:
            profile: Network the relay serves.
            w3: Web3 instance for the reads an operation needs (nonces).
            project_id: Relay project id, defaults to config.relay_project_id.
            http: Preconfigured HTTP client.
            timeout: HTTP timeout in seconds.
        """
        self.profile = profile
        self.w3 = w3
        self.url = relay_url_for(profile, project_id if project_id is not None else config.relay_project_id)
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def close(self):
        """Close the underlying HTTP client."""
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _rpc(self, method: str, params: list, url: Optional[str] = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        response = await self._http.post(url or self.url, json=payload)
        response.raise_for_status()
        data = response.json()
        if data.get("error"):
            error = data["error"]
            raise RelayError(int(error.get("code", -32000)), error.get("message", "relay error"), error.get("data"))
        return data.get("result")

    async def gas_price(self, strategy: GasStrategy) -> dict:
        """Fee fields for the next operation."""
        if strategy is GasStrategy.SPONSORED:
            result = await self._rpc("zd_getUserOperationGasPrice", [])
        else:
            result = await self._rpc("pimlico_getUserOperationGasPrice", [], url=self.profile.gas_price_url)
        fees = result["standard"]
        return {"maxFeePerGas": fees["maxFeePerGas"], "maxPriorityFeePerGas": fees["maxPriorityFeePerGas"]}

    async def get_nonce(self, account: "DelegatedAccount") -> int:
        entry_point = self.w3.eth.contract(
            address=to_checksum_address(kernel.ENTRY_POINT_V07), abi=ENTRY_POINT_ABI
        )
        return await entry_point.functions.getNonce(to_checksum_address(account.address), account.nonce_key).call()

    async def sponsor(self, user_op: dict) -> dict:
        """Paymaster and gas fields from the sponsoring paymaster."""
        return await self._rpc(
            "zd_sponsorUserOperation",
            [
                {
                    "chainId": self.profile.chain_id,
                    "userOp": user_op,
                    "entryPointAddress": kernel.ENTRY_POINT_V07,
                    "shouldOverrideFee": False,
                    "shouldConsume": True,
                }
            ],
        )

    async def fee_token_paymaster_fields(self, account: "DelegatedAccount") -> dict:
        """Paymaster fields paying fees in the fee token via an EIP-2612 permit."""
        token = self.w3.eth.contract(address=to_checksum_address(self.profile.fee_token), abi=TOKEN_NONCES_ABI)
        permit_nonce = await token.functions.nonces(to_checksum_address(account.address)).call()
        typed_data = {
            "types": {
                "EIP712Domain": [
                    {"name": "name", "type": "string"},
                    {"name": "version", "type": "string"},
                    {"name": "chainId", "type": "uint256"},
                    {"name": "verifyingContract", "type": "address"},
                ],
                "Permit": [
                    {"name": "owner", "type": "address"},
                    {"name": "spender", "type": "address"},
                    {"name": "value", "type": "uint256"},
                    {"name": "nonce", "type": "uint256"},
                    {"name": "deadline", "type": "uint256"},
                ],
            },
            "primaryType": "Permit",
            "domain": {
                "name": "USD Coin",
                "version": "2",
                "chainId": self.profile.chain_id,
                "verifyingContract": to_checksum_address(self.profile.fee_token),
            },
            "message": {
                "owner": to_checksum_address(account.address),
                "spender": to_checksum_address(self.profile.fee_token_paymaster),
                "value": FEE_TOKEN_PERMIT_AMOUNT,
                "nonce": permit_nonce,
                "deadline": PERMIT_DEADLINE,
            },
        }
        signable = encode_typed_data(full_message=typed_data)
        digest = keccak(b"\x19" + signable.version + signable.header + signable.body)
        permit_signature = account.sign_digest(digest)
        paymaster_data = (
            b"\x00"
            + bytes.fromhex(to_checksum_address(self.profile.fee_token)[2:])
            + FEE_TOKEN_PERMIT_AMOUNT.to_bytes(32, "big")
            + bytes.fromhex(permit_signature[2:])
        )
        return {
            "paymaster": to_checksum_address(self.profile.fee_token_paymaster),
            "paymasterData": "0x" + paymaster_data.hex(),
            "paymasterVerificationGasLimit": hex(FEE_TOKEN_PAYMASTER_VERIFICATION_GAS),
            "paymasterPostOpGasLimit": hex(FEE_TOKEN_PAYMASTER_POST_OP_GAS),
        }

    async def estimate_gas(self, user_op: dict) -> dict:
        return await self._rpc("eth_estimateUserOperationGas", [user_op, kernel.ENTRY_POINT_V07])

    async def build_operation(
        self, account: "DelegatedAccount", calls: Sequence[Call], strategy: GasStrategy
    ) -> dict:
        """Unsigned user operation with gas and paymaster fields filled in."""
        nonce = await self.get_nonce(account)
        user_op = {
            "sender": to_checksum_address(account.address),
            "nonce": hex(nonce),
            "callData": account.encode_calls(calls),
            "signature": kernel.DUMMY_SIGNATURE,
            **account.factory_fields(),
            **await self.gas_price(strategy),
        }

        if strategy is GasStrategy.SPONSORED:
            user_op.update(await self.sponsor(user_op))
        else:
            user_op.update(await self.fee_token_paymaster_fields(account))
            estimate = await self.estimate_gas(user_op)
            for field in (
                "callGasLimit",
                "verificationGasLimit",
                "preVerificationGas",
                "paymasterVerificationGasLimit",
                "paymasterPostOpGasLimit",
            ):
                if estimate.get(field):
                    user_op[field] = estimate[field]
        return user_op

    async def send_operation(
        self, account: "DelegatedAccount", calls: Sequence[Call], strategy: GasStrategy
    ) -> str:
        """Build, sign and submit an operation.

        Returns:
            The operation hash reported by the relay.

        Raises:
            RelayError: If the relay rejects the operation.
        """
        user_op = await self.build_operation(account, calls, strategy)
        op_hash = kernel.user_operation_hash(user_op, self.profile.chain_id)
        user_op["signature"] = account.sign_operation_hash(op_hash)
        logger.info(f"Sending operation with {len(calls)} calls ({strategy.value})")
        submitted = await self._rpc("eth_sendUserOperation", [user_op, kernel.ENTRY_POINT_V07])
        if submitted and submitted.lower() != op_hash.lower():
            logger.warning(f"Relay reported hash {submitted}, computed {op_hash}")
        return submitted or op_hash
