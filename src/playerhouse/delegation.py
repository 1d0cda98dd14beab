"""Delegation manager: primary smart account plus an ephemeral session key.

Setup selects the owner signer, derives the counterfactual smart account,
detects its deployment, mints a fresh session key and has the owner sign a
permission certificate authorizing that key on the target network. The
certificate is serialized as the "approval"; ``rehydrate`` turns approval plus
session key back into an executable account handle.
"""

import base64
import json
import time
from typing import Callable, Sequence

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from pydantic import ValidationError as ModelValidationError

from src.logging_utils import get_logger
from src.models import (
    Call,
    NetworkProfile,
    PermissionCertificate,
    PrimaryAccount,
    SessionDelegation,
)

from . import kernel
from .chain import ChainClient
from .errors import NetworkSwitchRequired, SetupError
from .wallets import ExternalWallet, select_wallet

logger = get_logger(__name__)


def serialize_approval(certificate: PermissionCertificate, owner_signature: str) -> str:
    """Encode a signed certificate for storage."""
    document = {"certificate": certificate.model_dump(), "signature": owner_signature}
    raw = json.dumps(document, sort_keys=True, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode()


def deserialize_approval(approval: str) -> tuple[PermissionCertificate, str]:
    """Decode a serialized approval into certificate and owner signature.

    Raises:
        SetupError: If the approval is malformed.
    """
    try:
        document = json.loads(base64.urlsafe_b64decode(approval.encode()))
        return PermissionCertificate(**document["certificate"]), document["signature"]
    except (ValueError, KeyError, TypeError, ModelValidationError) as e:
        raise SetupError("invalid-approval", f"Malformed approval: {e}") from e


class DelegatedAccount:
    """Executable handle of the primary account driven by the session key."""

    def __init__(
        self,
        certificate: PermissionCertificate,
        session_account: LocalAccount,
        approval: str,
        deployed: bool = False,
    ):
        self.certificate = certificate
        self._session = session_account
        self.approval = approval
        self.deployed = deployed

    @property
    def address(self) -> str:
        return self.certificate.account

    @property
    def owner(self) -> str:
        return self.certificate.owner

    @property
    def chain_id(self) -> int:
        return self.certificate.chain_id

    @property
    def network_key(self) -> str:
        return self.certificate.network_key

    @property
    def session_address(self) -> str:
        return self._session.address

    @property
    def nonce_key(self) -> int:
        return kernel.permission_nonce_key(kernel.permission_id(self.approval))

    def encode_calls(self, calls: Sequence[Call]) -> str:
        return kernel.encode_calls(calls)

    def factory_fields(self) -> dict:
        """``factory``/``factoryData`` of the first, deploying operation."""
        if self.deployed:
            return {}
        return {"factory": kernel.KERNEL_META_FACTORY, "factoryData": kernel.factory_data(self.owner)}

    def _validator_prefix(self) -> bytes:
        return kernel.VALIDATION_TYPE_PERMISSION + kernel.permission_id(self.approval)

    def sign_operation_hash(self, op_hash: str) -> str:
        return kernel.sign_user_operation_hash(self._session.key.hex(), op_hash)

    def sign_digest(self, digest: bytes) -> str:
        """Account (ERC-1271) signature over a 32-byte digest."""
        signed = self._session.unsafe_sign_hash(digest)
        return "0x" + (self._validator_prefix() + b"\xff" + bytes(signed.signature)).hex()


def rehydrate(
    approval: str, session_private_key: str, profile: NetworkProfile, deployed: bool = False
) -> DelegatedAccount:
    """Reproduce an executable account handle from approval and session key.

    Raises:
        SetupError: ``invalid-approval`` when the certificate is not signed by its
            owner or not bound to this session key, ``wrong-chain`` when it was
            minted for another network.
    """
    certificate, signature = deserialize_approval(approval)

    recovered = Account.recover_message(
        encode_defunct(primitive=certificate.signing_payload()), signature=signature
    )
    if recovered.lower() != certificate.owner.lower():
        raise SetupError("invalid-approval", "Approval is not signed by the account owner")

    session_account = Account.from_key(session_private_key)
    if session_account.address.lower() != certificate.session_key.lower():
        raise SetupError("invalid-approval", "Approval was minted for another session key")

    if kernel.counterfactual_address(certificate.owner).lower() != certificate.account.lower():
        raise SetupError("invalid-approval", "Approval names a foreign account")

    if certificate.chain_id != profile.chain_id or certificate.network_key != profile.key:
        raise SetupError(
            "wrong-chain",
            f"Approval minted for {certificate.network_key} cannot be used on {profile.key}",
        )

    return DelegatedAccount(certificate, session_account, approval, deployed=deployed)


class DelegationManager:
    """Establishes session delegations for one network."""

    def __init__(
        self,
        chain: ChainClient,
        profile: NetworkProfile,
        clock: Callable[[], float] = time.time,
    ):
        self.chain = chain
        self.profile = profile
        self._clock = clock

    async def check_deployment(self, address: str) -> bool:
        """Whether bytecode exists at the account address.

        A failed read counts as "not deployed"; deployment then happens with the
        first submitted operation.
        """
        try:
            code = await self.chain.read_code(address)
        except Exception as e:
            logger.warning(f"Bytecode check failed for {address}: {e}")
            return False
        return bool(code) and code not in (b"", b"\x00")

    async def setup(self, wallets: Sequence[ExternalWallet]) -> SessionDelegation:
        """Create the primary account handle and mint a session delegation.

        Args:
            wallets: Wallets offered by the connection layer.

        Returns:
            The new delegation bound to this manager's network.

        Raises:
            SetupError: ``no-wallet`` or ``provider``.
            NetworkSwitchRequired: Extension wallet on another chain.
        """
        wallet = select_wallet(wallets)
        if wallet is None:
            raise SetupError("no-wallet", "No wallet available. Please try reconnecting.")

        logger.info(f"Setting up {self.profile.key} delegation with {wallet.wallet_type} wallet {wallet.address}")

        if wallet.needs_chain_check:
            try:
                chain_id = await wallet.current_chain()
            except Exception as e:
                logger.error(f"Failed to check wallet network: {e}")
                raise SetupError("provider", f"Failed to read {wallet.wallet_type} wallet network") from e
            logger.info(f"Wallet network check: current={chain_id}, expected={self.profile.chain_id}")
            if chain_id != self.profile.chain_id:
                raise NetworkSwitchRequired(self.profile.key, chain_id)

        try:
            await wallet.get_provider()
            await wallet.request_accounts()
        except Exception as e:
            logger.error(f"Failed to get provider: {e}")
            raise SetupError("provider", f"Failed to connect to {wallet.wallet_type} wallet provider") from e

        address = kernel.counterfactual_address(wallet.address)
        deployed = await self.check_deployment(address)
        logger.info(f"Smart account {address} deployed={deployed}")

        session_account = Account.create()
        certificate = PermissionCertificate(
            account=address,
            owner=wallet.address,
            session_key=session_account.address,
            chain_id=self.profile.chain_id,
            network_key=self.profile.key,
            issued_at=int(self._clock()),
        )

        try:
            signature = await wallet.sign_message(certificate.signing_payload())
        except Exception as e:
            logger.error(f"Owner refused or failed to sign the session approval: {e}")
            raise SetupError("provider", "Failed to sign session approval") from e

        approval = serialize_approval(certificate, signature)
        logger.info(f"Session key generated: {session_account.address}")

        return SessionDelegation(
            primary=PrimaryAccount(address=address, owner=wallet.address, deployed=deployed),
            session_key=session_account.key.hex(),
            session_address=session_account.address,
            approval=approval,
            network_key=self.profile.key,
            chain_id=self.profile.chain_id,
            wallet_type=wallet.wallet_type,
        )

    def rehydrate(self, delegation: SessionDelegation) -> DelegatedAccount:
        """Executable account for a delegation minted by this manager's network."""
        return rehydrate(
            delegation.approval,
            delegation.session_key.get_secret_value(),
            self.profile,
            deployed=delegation.primary.deployed,
        )
