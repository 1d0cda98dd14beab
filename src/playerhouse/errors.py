"""Exception taxonomy for delegation setup, payment and confirmation."""

from typing import Optional


class PlayerHouseError(Exception):
    """Base class for all orchestrator errors."""


class SetupError(PlayerHouseError):
    """Delegation setup is blocked.

    Reasons: ``no-wallet``, ``provider``, ``wrong-chain``, ``not-ready``.
    Retryable by re-invoking setup.
    """

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or reason)


class NetworkSwitchRequired(SetupError):
    """An extension-class signer is on another chain than the target network."""

    def __init__(self, target_network: str, current_chain_id: Optional[int] = None):
        self.target_network = target_network
        self.current_chain_id = current_chain_id
        super().__init__(
            "wrong-chain",
            f"Wallet is on chain {current_chain_id}, switch to {target_network} required",
        )


class ValidationError(PlayerHouseError):
    """Bet outside the accepted bounds. Never leaves the orchestrator."""


class PaymentUnavailable(PlayerHouseError):
    """No usable gas-payment strategy, or the balance cannot cover the spin."""


class PaymentExhausted(PaymentUnavailable):
    """Every gas-payment strategy was attempted and failed."""


class ConfirmationTimeout(PlayerHouseError):
    """Neither the live subscription nor the polling fallback found the result."""


class SubmissionError(PlayerHouseError):
    """An operation could not be submitted."""


class RelayError(SubmissionError):
    """JSON-RPC error object returned by the operation relay."""

    def __init__(self, code: int, message: str, data=None):
        self.code = code
        self.data = data
        super().__init__(f"{message} (code {code})")

    @property
    def short_message(self) -> str:
        return str(self).split("\n", 1)[0][:160]


def short_message(error: BaseException) -> str:
    """Caller-facing one-line form of an exception message."""
    text = getattr(error, "short_message", None) or str(error) or error.__class__.__name__
    return text.split("\n", 1)[0][:160]


class ProviderRpcError(PlayerHouseError):
    """Error object returned by a wallet provider (EIP-1193 style)."""

    def __init__(self, code: int, message: str):
        self.code = code
        super().__init__(f"{message} (code {code})")
