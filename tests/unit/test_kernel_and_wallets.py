"""Unit tests for account encoding helpers, wallets and the network registry."""

import pytest
from eth_abi import decode as abi_decode
from eth_account import Account
from eth_utils import function_signature_to_4byte_selector

from src.models import NetworkProfile
from src.playerhouse import kernel
from src.playerhouse.networks import get_profile, is_known_network, list_networks, relay_url_for
from src.playerhouse.wallets import (
    EmbeddedWallet,
    ExtensionWallet,
    GenericWallet,
    select_wallet,
)

from tests.stubs import StubProvider

OWNER = "0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1"


@pytest.mark.unit
class TestKernelEncoding:
    """Test smart account encoding helpers."""

    def test_counterfactual_address_is_deterministic(self):
        assert kernel.counterfactual_address(OWNER) == kernel.counterfactual_address(OWNER.lower())
        assert kernel.counterfactual_address(OWNER) != kernel.counterfactual_address(OWNER, index=1)
        assert kernel.counterfactual_address(OWNER).startswith("0x")

    def test_spin_call_encoding(self):
        secret = b"\x07" * 32
        call = kernel.spin_call("0x9Dc3e731cfa840c83253b4e16155E0b8a74399ab", secret, 100_000, 20)

        selector = function_signature_to_4byte_selector("spin(bytes32,uint256,uint8)")
        assert call.data.startswith("0x" + selector.hex())
        assert abi_decode(["bytes32", "uint256", "uint8"], bytes.fromhex(call.data[10:])) == (secret, 100_000, 20)

    def test_approve_call_defaults_to_max(self):
        call = kernel.approve_call("0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d", OWNER)
        spender, amount = abi_decode(["address", "uint256"], bytes.fromhex(call.data[10:]))
        assert spender.lower() == OWNER.lower()
        assert amount == kernel.MAX_UINT256

    def test_batch_encoding_keeps_order(self):
        approve = kernel.approve_call("0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d", OWNER)
        spin = kernel.spin_call("0x9Dc3e731cfa840c83253b4e16155E0b8a74399ab", b"\x01" * 32, 1, 1)

        calldata = bytes.fromhex(kernel.encode_calls([approve, spin])[2:])
        mode, execution = abi_decode(["bytes32", "bytes"], calldata[4:])
        (executions,) = abi_decode(["(address,uint256,bytes)[]"], execution)

        assert mode == kernel.EXEC_MODE_BATCH
        assert [e[0].lower() for e in executions] == [approve.to.lower(), spin.to.lower()]

    def test_operation_hash_depends_on_chain(self):
        user_op = {
            "sender": OWNER,
            "nonce": "0x0",
            "callData": "0x",
            "callGasLimit": "0x1",
            "verificationGasLimit": "0x1",
            "preVerificationGas": "0x1",
            "maxFeePerGas": "0x1",
            "maxPriorityFeePerGas": "0x1",
        }
        assert kernel.user_operation_hash(user_op, 42161) != kernel.user_operation_hash(user_op, 421614)
        assert kernel.user_operation_hash(user_op, 42161) == kernel.user_operation_hash(dict(user_op), 42161)

    def test_session_signature_prefix(self):
        account = Account.create()
        op_hash = "0x" + "11" * 32
        signature = kernel.sign_user_operation_hash(account.key.hex(), op_hash)
        assert signature.startswith("0xff")
        assert len(bytes.fromhex(signature[2:])) == 66

    def test_permission_nonce_key_selects_permission_validator(self):
        key = kernel.permission_nonce_key(b"\xaa\xbb\xcc\xdd")
        raw = key.to_bytes(24, "big")
        assert raw[1:2] == kernel.VALIDATION_TYPE_PERMISSION
        assert raw[2:6] == b"\xaa\xbb\xcc\xdd"


@pytest.mark.unit
class TestWallets:
    """Test wallet selection and extension chain switching."""

    def test_select_wallet_priority(self):
        embedded = EmbeddedWallet(Account.create())
        extension = ExtensionWallet(StubProvider(1))
        generic = GenericWallet(StubProvider(1))

        assert select_wallet([generic, extension, embedded]) is embedded
        assert select_wallet([generic, extension]) is extension
        assert select_wallet([generic]) is generic
        assert select_wallet([]) is None

    def test_only_extension_wallets_check_chain(self):
        assert ExtensionWallet(StubProvider(1)).needs_chain_check is True
        assert EmbeddedWallet(Account.create()).needs_chain_check is False
        assert GenericWallet(StubProvider(1)).needs_chain_check is False

    @pytest.mark.asyncio
    async def test_switch_to_known_chain(self):
        profile = get_profile("arbitrum")
        provider = StubProvider(1, known_chains=[1, profile.chain_id])
        wallet = ExtensionWallet(provider)

        assert await wallet.switch_chain(profile) is True
        assert await wallet.current_chain() == profile.chain_id
        assert "wallet_addEthereumChain" not in provider.methods

    @pytest.mark.asyncio
    async def test_switch_adds_unknown_chain(self):
        """Test error 4902 registers the chain with the wallet."""
        profile = get_profile("arbitrumSepolia")
        provider = StubProvider(1)
        wallet = ExtensionWallet(provider)

        assert await wallet.switch_chain(profile) is True
        assert provider.methods[-2:] == ["wallet_switchEthereumChain", "wallet_addEthereumChain"]
        assert await wallet.current_chain() == profile.chain_id

    @pytest.mark.asyncio
    async def test_switch_refused(self):
        from src.playerhouse.errors import ProviderRpcError

        provider = StubProvider(1)

        async def refuse(method, params=None):
            raise ProviderRpcError(4001, "User rejected the request")

        provider.request = refuse

        assert await ExtensionWallet(provider).switch_chain(get_profile("arbitrum")) is False


@pytest.mark.unit
class TestNetworkRegistry:
    """Test profile lookup."""

    def test_known_networks(self):
        assert is_known_network("arbitrum")
        assert is_known_network("arbitrumSepolia")
        assert not is_known_network("base")
        assert {p.key for p in list_networks()} == {"arbitrum", "arbitrumSepolia"}

    def test_unknown_network(self):
        with pytest.raises(KeyError, match="arbitrumSepolia"):
            get_profile("base")

    def test_profiles_are_immutable(self):
        profile = get_profile("arbitrum")
        assert isinstance(profile, NetworkProfile)
        with pytest.raises(Exception):
            profile.chain_id = 1

    def test_relay_url(self):
        assert relay_url_for(get_profile("arbitrum"), "proj-1").endswith("/proj-1/chain/42161")
