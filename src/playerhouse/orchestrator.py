"""Spin orchestrator.

Drives one spin request through validate -> build batch -> submit ->
await confirmation -> settle/fail, and delivers exactly one outbound
``spinResult`` per request, but only while that request is still the latest
one. A newer request does not abort an older one's network calls; the older
result is simply discarded at delivery time.
"""

import asyncio
import math
import secrets
from typing import Awaitable, Callable, NamedTuple, Optional, Sequence, Union

from src.config import config
from src.logging_utils import CorrelationIdContext, get_logger, spin_correlation_id
from src.models import (
    Call,
    LoadingMessage,
    NetworkProfile,
    SpinFailure,
    SpinIntent,
    SpinOutcome,
    SpinRequest,
    SpinResultMessage,
    from_units,
    to_units,
)

from . import kernel
from .chain import ChainClient
from .delegation import DelegatedAccount
from .errors import (
    ConfirmationTimeout,
    PaymentExhausted,
    PaymentUnavailable,
    SetupError,
    ValidationError,
    short_message,
)
from .gas import GasStrategy, GasStrategySelector
from .health import ConnectionHealthTracker
from .watcher import ConfirmationWatcher

logger = get_logger(__name__)

Emitter = Callable[[dict], Awaitable[None]]

# Neutral notice for failed spins; nothing is refunded by this service.
FAILURE_NOTICE = "Transaction failed"


class SpinBinding(NamedTuple):
    """Delegation and network capabilities one request runs against."""

    account: DelegatedAccount
    profile: NetworkProfile
    chain: ChainClient
    selector: GasStrategySelector
    watcher: ConfirmationWatcher


class SpinOrchestrator:
    """Turns spin intents into on-chain operations and outcomes."""

    def __init__(
        self,
        health: ConnectionHealthTracker,
        emit: Emitter,
        reissue: Optional[Callable[[dict], Awaitable]] = None,
        min_bet: Optional[float] = None,
        max_bet: Optional[float] = None,
        reissue_delay: Optional[float] = None,
        fee_reserve_units: Optional[int] = None,
    ):
        """Initialize the orchestrator.

        Args:
            health: Connection health tracker updated on every terminal result.
            emit: Coroutine sending one outbound message to the game surface.
            reissue: Entry point receiving corrected re-intents, defaults to
                ``handle_intent``.
            min_bet: Lowest accepted bet (fee-token units).
            max_bet: Highest accepted bet (fee-token units).
            reissue_delay: Seconds before a corrected re-intent is issued.
            fee_reserve_units: Fee reserve required on top of the bet for
                fee-token payment.
        """
        self.health = health
        self._emit = emit
        self._reissue = reissue or self.handle_intent
        self.min_bet = config.min_bet if min_bet is None else min_bet
        self.max_bet = config.max_bet if max_bet is None else max_bet
        self.reissue_delay = config.reissue_delay_seconds if reissue_delay is None else reissue_delay
        self.fee_reserve_units = config.fee_reserve_units if fee_reserve_units is None else fee_reserve_units

        self.binding: Optional[SpinBinding] = None

        self._latest_id = 0
        self._tasks: set[asyncio.Task] = set()
        self.is_spinning = False
        self.last_failure_notice: Optional[str] = None

    # Binding

    def bind(
        self,
        account: DelegatedAccount,
        profile: NetworkProfile,
        chain: ChainClient,
        selector: GasStrategySelector,
        watcher: Optional[ConfirmationWatcher] = None,
    ) -> None:
        """Attach a freshly minted delegation and its network."""
        if account.network_key != profile.key or account.chain_id != profile.chain_id:
            raise SetupError("wrong-chain", f"Delegation for {account.network_key} cannot run on {profile.key}")
        self.binding = SpinBinding(account, profile, chain, selector, watcher or ConfirmationWatcher(chain))

    def unbind(self) -> None:
        """Drop the delegation; later submissions fail fast until rebound."""
        self.binding = None
        self.is_spinning = False

    @property
    def account(self) -> Optional[DelegatedAccount]:
        return self.binding.account if self.binding else None

    @property
    def profile(self) -> Optional[NetworkProfile]:
        return self.binding.profile if self.binding else None

    @property
    def selector(self) -> Optional[GasStrategySelector]:
        return self.binding.selector if self.binding else None

    @property
    def latest_id(self) -> int:
        return self._latest_id

    # Intake

    def _next_id(self) -> int:
        self._latest_id += 1
        return self._latest_id

    def validate(self, request_id: int, intent: SpinIntent) -> SpinRequest:
        """Check the bet bounds and produce a request with a fresh secret.

        Raises:
            ValidationError: Non-numeric, non-finite or out-of-bounds bet, or
                an unusable line count.
        """
        try:
            bet = float(intent.bet)
        except (TypeError, ValueError):
            raise ValidationError(f"Bet {intent.bet!r} is not a number") from None
        if not math.isfinite(bet) or bet < self.min_bet or bet > self.max_bet:
            raise ValidationError(f"Bet {bet} outside [{self.min_bet}, {self.max_bet}]")

        try:
            paylines = config.default_paylines if intent.payline is None else int(intent.payline)
        except (TypeError, ValueError):
            raise ValidationError(f"Line count {intent.payline!r} is not a number") from None
        if not 1 <= paylines <= 255:
            raise ValidationError(f"Line count {paylines} out of range")

        return SpinRequest(
            id=request_id,
            bet=bet,
            bet_units=to_units(bet),
            paylines=paylines,
            secret=secrets.token_bytes(32),
        )

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _reissue_default(self) -> None:
        await asyncio.sleep(self.reissue_delay)
        await self._reissue({"type": "spin", "bet": config.default_bet, "payline": config.default_paylines})

    async def handle_intent(self, message: Union[dict, SpinIntent]) -> Optional[int]:
        """Process one inbound spin intent to completion.

        Args:
            message: ``{"type": "spin", "bet": ..., "payline": ...}``.

        Returns:
            The request id, or None when the intent was replaced by a corrected one.
        """
        intent = message if isinstance(message, SpinIntent) else SpinIntent(**message)
        request_id = self._next_id()

        with CorrelationIdContext(spin_correlation_id(request_id)):
            logger.info(f"Spin #{request_id}: bet={intent.bet} lines={intent.payline}")
            try:
                request = self.validate(request_id, intent)
            except ValidationError as e:
                logger.warning(f"Invalid spin intent ({e}), re-issuing default in {self.reissue_delay}s")
                self._spawn(self._reissue_default())
                return None

            await self._run(request)
            return request_id

    # Pipeline

    async def _run(self, request: SpinRequest) -> None:
        binding = self.binding
        self.is_spinning = True
        try:
            if binding is None:
                raise SetupError("not-ready", "Session is not set up")
            outcome = await self._execute(request, binding)
        except ConfirmationTimeout:
            logger.warning("Spin confirmation timed out")
            self._record_failure()
            await self._deliver(request.id, SpinFailure(err="timeout", kind="timeout"))
        except PaymentExhausted as e:
            logger.error(f"Gas payment exhausted: {e}")
            self._record_failure()
            await self._deliver(request.id, SpinFailure(err=str(e), kind="payment"))
        except PaymentUnavailable as e:
            logger.warning(f"Payment unavailable: {e}")
            await self._deliver(request.id, SpinFailure(err=str(e), kind="payment"))
        except SetupError as e:
            logger.warning(f"Spin blocked by setup state: {e}")
            await self._deliver(request.id, SpinFailure(err=str(e), kind="setup"))
        except Exception as e:
            logger.error(f"Spin failed: {e}", exc_info=True)
            self._record_failure()
            await self._deliver(request.id, SpinFailure(err=short_message(e), kind="submission"))
        else:
            self.health.record_success()
            self.last_failure_notice = None
            await self._deliver(request.id, outcome)
        finally:
            if request.id == self._latest_id:
                self.is_spinning = False

    def _record_failure(self) -> None:
        self.health.record_failure()
        self.last_failure_notice = FAILURE_NOTICE

    async def _refresh_deployment(self, binding: SpinBinding) -> None:
        account = binding.account
        if account.deployed:
            return
        try:
            code = await binding.chain.read_code(account.address)
        except Exception as e:
            logger.warning(f"Bytecode check failed: {e}")
            code = b""
        account.deployed = bool(code)
        if not account.deployed:
            logger.info("Account not deployed, this operation will deploy it")

    def build_calls(
        self, request: SpinRequest, allowance: int, profile: Optional[NetworkProfile] = None
    ) -> list[Call]:
        """Ordered batch: optional max approval, then the spin call."""
        profile = profile or self.profile
        calls = []
        if allowance < request.bet_units:
            calls.append(kernel.approve_call(profile.fee_token, profile.action_contract))
            logger.info("Adding slot approval call")
        calls.append(kernel.spin_call(profile.action_contract, request.secret, request.bet_units, request.paylines))
        return calls

    def _ensure_bound(self, binding: SpinBinding) -> None:
        if self.binding is not binding:
            raise SetupError("wrong-chain", "Delegation was replaced during the request")

    async def _execute(self, request: SpinRequest, binding: SpinBinding) -> SpinOutcome:
        account, profile, chain = binding.account, binding.profile, binding.chain

        await self._refresh_deployment(binding)

        allowance = await chain.read_allowance(profile.fee_token, account.address, profile.action_contract)
        calls = self.build_calls(request, allowance, profile)

        start_block = await self._submit(request, binding, calls)

        event = await binding.watcher.wait_for_result(profile.action_contract, account.address, start_block)
        logger.info(f"Spin settled: totWin={from_units(event.tot_win)}")

        balance = await chain.read_balance(profile.fee_token, account.address)
        return SpinOutcome.from_event(event, balance)

    async def _submit(self, request: SpinRequest, binding: SpinBinding, calls: Sequence[Call]) -> int:
        """Submit the batch with sponsored payment, falling back to fee-token payment.

        Every attempt runs on the request's own binding and is refused once the
        session has been rebound to another delegation.

        Returns:
            Block height at submission time.
        """
        account, profile, chain, selector = binding.account, binding.profile, binding.chain, binding.selector

        strategies = selector.plan()
        if not strategies:
            raise PaymentExhausted("No gas payment option available")

        balance = await chain.read_balance(profile.fee_token, account.address)
        logger.info(f"Fee-token balance {from_units(balance)}")
        if balance < request.bet_units:
            raise PaymentUnavailable(f"Insufficient USDC for bet. Need {from_units(request.bet_units)} USDC")

        loading_sent = False
        last_error: Optional[Exception] = None
        for strategy in strategies:
            if strategy is GasStrategy.FEE_TOKEN:
                required = request.bet_units + self.fee_reserve_units
                if balance < required:
                    raise PaymentUnavailable(
                        f"Insufficient USDC. You have {from_units(balance)} USDC but need "
                        f"{from_units(required)} USDC ({from_units(request.bet_units)} for bet + "
                        f"{from_units(self.fee_reserve_units)} estimated gas)."
                    )

            start_block = await chain.current_block()
            if not loading_sent:
                await self._send(LoadingMessage().model_dump())
                loading_sent = True

            self._ensure_bound(binding)
            logger.info(f"Submitting {len(calls)} calls from block {start_block} ({strategy.value})")
            try:
                op_hash = await chain.submit_operation(account, calls, strategy)
            except Exception as e:
                last_error = e
                logger.warning(f"{strategy.value} submission failed: {e}")
                self._ensure_bound(binding)
                if strategy is GasStrategy.SPONSORED:
                    selector.mark_sponsored_failed()
                continue

            logger.info(f"Operation submitted: {op_hash}")
            return start_block

        reason = short_message(last_error) if last_error else "no strategy succeeded"
        raise PaymentExhausted(f"All gas payment options failed: {reason}")

    # Delivery

    async def _send(self, message: dict) -> None:
        try:
            await self._emit(message)
        except Exception as e:
            logger.error(f"Failed to emit {message.get('type')} message: {e}", exc_info=True)

    async def _deliver(self, request_id: int, result: Union[SpinOutcome, SpinFailure]) -> bool:
        """Send the terminal result if the request is still the latest one."""
        if request_id != self._latest_id:
            logger.info(f"Discarding result of superseded spin #{request_id} (latest #{self._latest_id})")
            return False
        message = SpinResultMessage(id=request_id, result=result.to_payload())
        await self._send(message.model_dump())
        return True

    async def aclose(self) -> None:
        """Cancel pending corrected re-intents."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
