"""Kernel v3.1 smart account encoding helpers (ERC-4337, EntryPoint v0.7).

Pure functions: counterfactual address derivation, account init code,
batched execute calldata, nonce keys and user operation hashing.
"""

from typing import Iterable, Optional

from eth_abi import encode as abi_encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import function_signature_to_4byte_selector, keccak, to_bytes, to_checksum_address

from src.models import Call

ENTRY_POINT_V07 = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"
KERNEL_V31_IMPLEMENTATION = "0xBAC849bB641841b44E965fB01A4Bf5F074f84b4D"
KERNEL_V31_FACTORY = "0xaac5D4240AF87249B3f71BC8E4A2cae074A3E419"
KERNEL_META_FACTORY = "0xd703aaE79538628d27099B8c4f621bE4CCd142d5"
ECDSA_VALIDATOR = "0x845ADb2C711129d4f3966735eD98a9F09fC4cE57"

MAX_UINT256 = 2**256 - 1

VALIDATION_TYPE_VALIDATOR = b"\x01"
VALIDATION_TYPE_PERMISSION = b"\x02"
EXEC_MODE_BATCH = b"\x01" + b"\x00" * 31

_INITIALIZE = function_signature_to_4byte_selector("initialize(bytes21,address,bytes,bytes,bytes[])")
_DEPLOY_WITH_FACTORY = function_signature_to_4byte_selector("deployWithFactory(address,bytes,bytes32)")
_EXECUTE = function_signature_to_4byte_selector("execute(bytes32,bytes)")
_APPROVE = function_signature_to_4byte_selector("approve(address,uint256)")
_SPIN = function_signature_to_4byte_selector("spin(bytes32,uint256,uint8)")


def _hex(data: bytes) -> str:
    return "0x" + data.hex()


def initialize_data(owner: str) -> bytes:
    """Kernel ``initialize`` calldata rooting the account in an ECDSA owner."""
    root_validator = VALIDATION_TYPE_VALIDATOR + to_bytes(hexstr=ECDSA_VALIDATOR)
    args = abi_encode(
        ["bytes21", "address", "bytes", "bytes", "bytes[]"],
        [root_validator, "0x" + "00" * 20, to_bytes(hexstr=owner), b"", []],
    )
    return _INITIALIZE + args


def _init_code_hash(implementation: str) -> bytes:
    # ERC-1967 proxy creation code emitted by the factory's LibClone.
    creation_code = (
        bytes.fromhex("603d3d8160223d3973")
        + to_bytes(hexstr=implementation)
        + bytes.fromhex("6009")
        + bytes.fromhex("5155f3363d3d373d3d363d7f360894a13ba1a3210667c828492db98dca3e2076")
        + bytes.fromhex("cc3735a920a3ca505d382bbc545af43d6000803e6038573d6000fd5b3d6000f3")
    )
    return keccak(creation_code)


def counterfactual_address(owner: str, index: int = 0) -> str:
    """Deterministic smart account address for an owner (CREATE2)."""
    salt = keccak(initialize_data(owner) + index.to_bytes(32, "big"))
    digest = keccak(
        b"\xff"
        + to_bytes(hexstr=KERNEL_V31_FACTORY)
        + salt
        + _init_code_hash(KERNEL_V31_IMPLEMENTATION)
    )
    return to_checksum_address(digest[12:])


def factory_data(owner: str, index: int = 0) -> str:
    """Calldata for the meta factory deploying the account on first use."""
    create_data = initialize_data(owner)
    args = abi_encode(
        ["address", "bytes", "bytes32"],
        [to_checksum_address(KERNEL_V31_FACTORY), create_data, index.to_bytes(32, "big")],
    )
    return _hex(_DEPLOY_WITH_FACTORY + args)


def encode_calls(calls: Iterable[Call]) -> str:
    """Kernel ``execute`` calldata running the calls as one batch."""
    executions = [(to_checksum_address(c.to), c.value, to_bytes(hexstr=c.data)) for c in calls]
    execution_calldata = abi_encode(["(address,uint256,bytes)[]"], [executions])
    return _hex(_EXECUTE + abi_encode(["bytes32", "bytes"], [EXEC_MODE_BATCH, execution_calldata]))


def approve_call(token: str, spender: str, amount: int = MAX_UINT256) -> Call:
    """ERC-20 approval call."""
    data = _APPROVE + abi_encode(["address", "uint256"], [to_checksum_address(spender), amount])
    return Call(to=to_checksum_address(token), data=_hex(data))


def spin_call(slot: str, secret: bytes, bet_units: int, paylines: int) -> Call:
    """Slot ``spin(secret, bet, numLines)`` call."""
    data = _SPIN + abi_encode(["bytes32", "uint256", "uint8"], [secret, bet_units, paylines])
    return Call(to=to_checksum_address(slot), data=_hex(data))


def permission_id(approval: str) -> bytes:
    """4-byte permission id derived from a serialized certificate."""
    return keccak(text=approval)[:4]


def permission_nonce_key(perm_id: bytes) -> int:
    """EntryPoint nonce key (uint192) selecting the permission validator."""
    key = b"\x00" + VALIDATION_TYPE_PERMISSION + perm_id
    return int.from_bytes(key.ljust(24, b"\x00"), "big")


def pack_paymaster_and_data(user_op: dict) -> bytes:
    paymaster = user_op.get("paymaster")
    if not paymaster:
        return b""
    return (
        to_bytes(hexstr=paymaster)
        + int(user_op.get("paymasterVerificationGasLimit", "0x0"), 16).to_bytes(16, "big")
        + int(user_op.get("paymasterPostOpGasLimit", "0x0"), 16).to_bytes(16, "big")
        + to_bytes(hexstr=user_op.get("paymasterData") or "0x")
    )


def user_operation_hash(user_op: dict, chain_id: int, entry_point: str = ENTRY_POINT_V07) -> str:
    """EntryPoint v0.7 hash of a JSON-RPC shaped user operation."""

    def as_int(field: str) -> int:
        return int(user_op.get(field) or "0x0", 16)

    init_code = b""
    if user_op.get("factory"):
        init_code = to_bytes(hexstr=user_op["factory"]) + to_bytes(hexstr=user_op.get("factoryData") or "0x")

    account_gas_limits = (as_int("verificationGasLimit") << 128) | as_int("callGasLimit")
    gas_fees = (as_int("maxPriorityFeePerGas") << 128) | as_int("maxFeePerGas")

    packed = abi_encode(
        ["address", "uint256", "bytes32", "bytes32", "bytes32", "uint256", "bytes32", "bytes32"],
        [
            to_checksum_address(user_op["sender"]),
            as_int("nonce"),
            keccak(init_code),
            keccak(to_bytes(hexstr=user_op["callData"])),
            account_gas_limits.to_bytes(32, "big"),
            as_int("preVerificationGas"),
            gas_fees.to_bytes(32, "big"),
            keccak(pack_paymaster_and_data(user_op)),
        ],
    )
    digest = keccak(abi_encode(["bytes32", "address", "uint256"], [keccak(packed), to_checksum_address(entry_point), chain_id]))
    return _hex(digest)


def sign_user_operation_hash(private_key: str, op_hash: str, prefix: Optional[bytes] = b"\xff") -> str:
    """Session-key signature over a user operation hash."""
    signed = Account.sign_message(encode_defunct(primitive=to_bytes(hexstr=op_hash)), private_key=private_key)
    return _hex((prefix or b"") + bytes(signed.signature))


# Placeholder signature for gas estimation (length-correct, never valid).
DUMMY_SIGNATURE = "0xff" + "ff" * 64 + "1c"
