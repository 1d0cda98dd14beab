"""Shared data models for the PlayerHouse spin service.

All Pydantic models used across modules for type safety and validation.
"""

import json
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

HealthStatus = Literal["good", "degraded", "poor"]
WalletType = Literal["privy", "metamask", "unknown"]

# Token amounts on the wire are 6-decimal fixed point.
TOKEN_DECIMALS = 6
TOKEN_SCALE = 10**TOKEN_DECIMALS

# Bonus prize indexes emitted by the slot contract map onto these multipliers.
BONUS_PRIZE_TABLE = (10, 20, 40, 60, 80)


def to_units(amount: float) -> int:
    """Convert a decimal token amount to 6-decimal fixed point units."""
    return int(round(amount * TOKEN_SCALE))


def from_units(units: int) -> float:
    """Convert 6-decimal fixed point units to a decimal token amount."""
    return int(units) / TOKEN_SCALE


class NetworkProfile(BaseModel):
    """Static per-chain configuration."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(description="Network key (e.g. 'arbitrum')")
    name: str = Field(description="Display name")
    chain_id: int = Field(description="EIP-155 chain id")
    public_rpc: str = Field(description="Public JSON-RPC endpoint")
    relay_url: str = Field(description="Operation relay URL template, '{project_id}' is substituted")
    gas_price_url: str = Field(description="Endpoint answering user operation gas price queries")
    action_contract: str = Field(description="Slot contract address")
    fee_token: str = Field(description="Fee-bearing token (USDC) address")
    fee_token_paymaster: str = Field(description="Paymaster accepting the fee token")
    supports_fee_token_payment: bool = Field(default=False)
    explorer_url: str = Field(default="")
    native_currency: dict = Field(default_factory=lambda: {"name": "Ether", "symbol": "ETH", "decimals": 18})


class PrimaryAccount(BaseModel):
    """The durable smart account controlled by the owner signer."""

    address: str = Field(description="Deterministic smart account address")
    owner: str = Field(description="Owner signer address")
    deployed: bool = Field(default=False, description="Whether bytecode was found at the address")


class PermissionCertificate(BaseModel):
    """Authorizes a session key to act for a primary account on one network."""

    account: str
    owner: str
    session_key: str = Field(description="Address of the ephemeral session signer")
    chain_id: int
    network_key: str
    policy: Literal["sudo"] = "sudo"
    issued_at: int = Field(description="Unix timestamp of issuance")

    def signing_payload(self) -> bytes:
        """Canonical bytes signed by the owner."""
        return json.dumps(self.model_dump(), sort_keys=True, separators=(",", ":")).encode()


class SessionDelegation(BaseModel):
    """Ephemeral key material plus the serialized permission certificate."""

    primary: PrimaryAccount
    session_key: SecretStr = Field(description="Ephemeral session private key (hex)")
    session_address: str
    approval: str = Field(description="Serialized, owner-signed permission certificate")
    network_key: str
    chain_id: int
    wallet_type: WalletType = "unknown"
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Call(BaseModel):
    """One call of a batched operation."""

    to: str
    data: str = Field(description="0x-prefixed calldata")
    value: int = 0


class SpinIntent(BaseModel):
    """Inbound spin intent from the game surface."""

    type: Literal["spin"] = "spin"
    bet: Any = None
    payline: Any = None


class SpinRequest(BaseModel):
    """A validated spin request."""

    id: int
    bet: float
    bet_units: int
    paylines: int
    secret: bytes = Field(repr=False, description="Fresh 32-byte unpredictability commitment")


class SpinResultEvent(BaseModel):
    """Decoded SpinResult log."""

    player: str
    tot_win: int
    pattern: list[list[int]]
    freespin: bool
    bonus: bool
    num_freespin: int
    bonus_prize: int
    bonus_prize_indexes: list[int] = Field(default_factory=list)
    block_number: Optional[int] = None
    transaction_hash: Optional[str] = None


class SpinOutcome(BaseModel):
    """Terminal successful result of one spin request."""

    win: bool
    total_win: float
    pattern: list[list[int]]
    freespin: bool
    bonus: bool
    freespin_count: int
    bonus_prize: float
    balance: float
    prize_list: list[int] = Field(default_factory=list)

    @classmethod
    def from_event(cls, event: SpinResultEvent, balance_units: int) -> "SpinOutcome":
        """Build an outcome from a decoded event and a post-confirmation balance read."""
        return cls(
            win=event.tot_win > 0 or event.bonus_prize > 0,
            total_win=from_units(event.tot_win),
            pattern=event.pattern,
            freespin=event.freespin,
            bonus=event.bonus,
            freespin_count=event.num_freespin,
            bonus_prize=from_units(event.bonus_prize),
            balance=from_units(balance_units),
            prize_list=[BONUS_PRIZE_TABLE[int(i)] for i in event.bonus_prize_indexes],
        )

    def to_payload(self) -> dict:
        """Wire shape understood by the game client."""
        prize_list = json.dumps(self.prize_list)
        return {
            "res": True,
            "win": self.win,
            "tot_win": self.total_win,
            "pattern": self.pattern,
            "freespin": self.freespin,
            "bonus": self.bonus,
            "num_freespin": self.freespin_count,
            "money": self.balance,
            "bonus_prize": self.bonus_prize,
            "prize_list": prize_list,
            "_aBonusId": ["BONUS_GAME"] if self.bonus else [],
            "bonusData": {
                "prize_list": prize_list,
                "bonus_win": self.bonus_prize,
                "money": self.balance,
            },
        }


class SpinFailure(BaseModel):
    """Terminal failed result of one spin request."""

    err: str = Field(description="Short, caller-facing reason")
    kind: str = Field(default="submission", description="Error class that ended the request")

    def to_payload(self) -> dict:
        return {"res": False, "err": self.err}


class SpinResultMessage(BaseModel):
    """Outbound result message."""

    type: Literal["spinResult"] = "spinResult"
    id: int
    result: dict


class LoadingMessage(BaseModel):
    """Outbound progress message, emitted once submission begins."""

    type: Literal["spin:loading"] = "spin:loading"


class WalletMessage(BaseModel):
    """Outbound wallet context."""

    type: Literal["wallet"] = "wallet"
    wallet: str
    network: str
    walletType: WalletType


class SessionStatus(BaseModel):
    """Coarse session state reported to callers."""

    text: str
    state: Literal["error", "setting_up", "no_wallet", "configuring", "ready", "ready_undeployed"]
    network: str
    wallet_type: WalletType = "unknown"
    address: Optional[str] = None
    payment_mode: Optional[str] = None
    health: HealthStatus = "good"
    failure_count: int = 0
    deployed: bool = False
    is_spinning: bool = False
    setup_error: Optional[str] = None
    pending_network_switch: Optional[str] = None
