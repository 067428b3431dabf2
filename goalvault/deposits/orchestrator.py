"""Deposit orchestrator: drives the state machine against wallet, chain and API.

Both ways into a deposit (create a goal then fund it, or top up an existing
goal) differ only in how the target goal is obtained, which is the
``GoalTarget`` passed to ``DepositOrchestrator.deposit``.
"""
import logging
import uuid
from collections import deque
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Protocol, Union

from goalvault.deposits.errors import (
    AttemptInProgress,
    ConfirmationFailed,
    ConfirmationTimeout,
    DepositError,
    GoalsApiError,
    InvalidDepositInput,
    LedgerOutOfSync,
)
from goalvault.deposits.ledger import GoalsApiClient
from goalvault.deposits.network import NetworkGuard
from goalvault.deposits.reconciliation import ReconciliationQueue
from goalvault.deposits.state import (
    BroadcastRejected,
    CheckNetwork,
    DepositAttempt,
    Effect,
    Event,
    LedgerRejected,
    LedgerUpdated,
    NetworkReady,
    NetworkRejected,
    Phase,
    QueueReconciliation,
    SendApproval,
    SendDeposit,
    StartRequested,
    TxBroadcast,
    TxConfirmed,
    TxFailed,
    UpdateLedger,
    WatchTransaction,
    transition,
    validate_amount,
)
from goalvault.deposits.steps import ApprovalStep, VaultDepositStep
from goalvault.deposits.wallet import Wallet
from goalvault.deposits.watcher import ConfirmationWatcher, TxStatus
from goalvault.schemas.goal import GoalRead
from goalvault.utils.units import parse_amount

logger = logging.getLogger(__name__)

TransitionListener = Callable[[DepositAttempt, DepositAttempt], None]


class GoalTarget(Protocol):
    def validate(self, amount: Decimal) -> None:
        """Reject input before anything is created or signed."""

    async def resolve(self, api: GoalsApiClient, default_vault: str) -> GoalRead:
        """Return the goal the deposit goes to."""


class ExistingGoal:
    """Top up a goal that already exists."""

    def __init__(self, goal_id: str):
        self.goal_id = str(goal_id)

    def validate(self, amount: Decimal) -> None:
        try:
            uuid.UUID(self.goal_id)
        except ValueError:
            raise InvalidDepositInput(f"Invalid goal id: {self.goal_id!r}")

    async def resolve(self, api: GoalsApiClient, default_vault: str) -> GoalRead:
        return await api.get_goal(self.goal_id)


class NewGoal:
    """Create a goal, then make its first deposit."""

    def __init__(
        self,
        title: str,
        target_amount: Union[str, Decimal],
        description: Optional[str] = None,
        end_date: Optional[datetime] = None,
        vault_address: Optional[str] = None,
    ):
        self.title = (title or "").strip()
        self.target_amount = target_amount
        self.description = description
        self.end_date = end_date
        self.vault_address = vault_address

    def validate(self, amount: Decimal) -> None:
        if not self.title:
            raise InvalidDepositInput("Title is required.")
        try:
            target = parse_amount(self.target_amount)
        except ValueError:
            raise InvalidDepositInput("Please enter a valid positive number for the goal target amount.")
        if target <= 0:
            raise InvalidDepositInput("Please enter a valid positive number for the goal target amount.")
        if target <= amount:
            raise InvalidDepositInput("Goal Target Amount must be greater than the Initial Deposit Amount.")
        self.target_amount = target

    async def resolve(self, api: GoalsApiClient, default_vault: str) -> GoalRead:
        goal = await api.create_goal(
            title=self.title,
            target_amount=self.target_amount,
            vault_address=self.vault_address or default_vault,
            description=self.description,
            end_date=self.end_date,
        )
        logger.info(f"Goal {goal.id} saved, proceeding to deposit")
        return goal


class DepositOrchestrator:
    """
    Owns the one deposit attempt a session may run at a time.

    ``deposit`` returns the attempt once it is SETTLED or FAILED; afterwards
    the orchestrator is back in IDLE. Input errors and goal lookup/creation
    errors raise before an attempt exists.
    """

    def __init__(
        self,
        wallet: Wallet,
        api: GoalsApiClient,
        watcher: ConfirmationWatcher,
        guard: NetworkGuard,
        token_address: str,
        token_decimals: int,
        vault_address: str,
        queue: Optional[ReconciliationQueue] = None,
        on_transition: Optional[TransitionListener] = None,
    ):
        self.wallet = wallet
        self.api = api
        self.watcher = watcher
        self.guard = guard
        self.token_address = token_address
        self.token_decimals = token_decimals
        self.vault_address = vault_address
        self.queue = queue
        self.on_transition = on_transition
        self.approval_step = ApprovalStep(wallet)
        self.deposit_step = VaultDepositStep(wallet)
        self._busy = False
        self._active: Optional[DepositAttempt] = None

    @property
    def state(self) -> Phase:
        return self._active.phase if self._active is not None else Phase.IDLE

    @property
    def active_attempt(self) -> Optional[DepositAttempt]:
        return self._active

    async def deposit(self, target: GoalTarget, amount: Union[str, Decimal]) -> DepositAttempt:
        if self._busy:
            raise AttemptInProgress("Another deposit is still in progress. Wait for it to finish.")
        self._busy = True
        try:
            try:
                amount = parse_amount(amount)
            except ValueError:
                raise InvalidDepositInput("Please enter a valid positive amount to deposit.")
            validate_amount(amount, None, self.token_decimals)
            target.validate(amount)

            goal = await target.resolve(self.api, self.vault_address)
            attempt = DepositAttempt(
                goal_id=str(goal.id),
                amount=amount,
                token_address=self.token_address,
                vault_address=goal.vault_address,
            )
            remaining = goal.target_amount - goal.current_funded_amount
            attempt, effects = self._apply(attempt, StartRequested(remaining, self.token_decimals))
            return await self._run(attempt, effects)
        finally:
            self._active = None
            self._busy = False

    def _apply(self, attempt: DepositAttempt, event: Event):
        previous = attempt
        attempt, effects = transition(attempt, event)
        self._active = attempt
        if attempt.phase is not previous.phase:
            logger.info(f"Deposit {attempt.attempt_id}: {previous.phase.value} -> {attempt.phase.value}")
            if self.on_transition is not None:
                self.on_transition(previous, attempt)
        return attempt, effects

    async def _run(self, attempt: DepositAttempt, effects) -> DepositAttempt:
        pending = deque(effects)
        while pending:
            event = await self._execute(attempt, pending.popleft())
            if event is None:
                continue
            attempt, effects = self._apply(attempt, event)
            pending.extend(effects)

        if attempt.phase is Phase.FAILED:
            failure = attempt.failure
            log = logger.error if failure.reconciliation_required else logger.warning
            log(f"Deposit {attempt.attempt_id} failed in {failure.phase.value}: [{failure.kind}] {failure.message}")
        return attempt

    async def _execute(self, attempt: DepositAttempt, effect: Effect) -> Optional[Event]:
        if isinstance(effect, CheckNetwork):
            try:
                address, chain_id = await self.guard.ensure(self.wallet)
            except DepositError as e:
                return NetworkRejected(e)
            return NetworkReady(address, chain_id)

        if isinstance(effect, SendApproval):
            try:
                handle = await self.approval_step.submit(
                    effect.token_address, effect.spender, effect.amount_units, attempt.chain_id
                )
            except DepositError as e:
                return BroadcastRejected(e)
            return TxBroadcast(handle)

        if isinstance(effect, WatchTransaction):
            handle = effect.handle
            try:
                observation = await self.watcher.wait(handle)
            except ConfirmationTimeout as e:
                return TxFailed(handle, e)
            if observation.status is TxStatus.CONFIRMED:
                return TxConfirmed(handle)
            label = handle.kind.value.capitalize()
            return TxFailed(handle, ConfirmationFailed(f"{label} failed: {observation.reason or 'Unknown error'}"))

        if isinstance(effect, SendDeposit):
            try:
                handle = await self.deposit_step.submit(
                    effect.vault_address, effect.amount_units, effect.receiver, attempt.chain_id,
                    existing=attempt.deposit,
                )
            except DepositError as e:
                return BroadcastRejected(e)
            return TxBroadcast(handle)

        if isinstance(effect, UpdateLedger):
            try:
                goal = await self.api.update_funding(effect.goal_id, effect.amount, effect.tx_hash)
            except GoalsApiError as e:
                return LedgerRejected(LedgerOutOfSync(
                    f"Deposit confirmed, but failed to update goal funding: {e.message}",
                    details={"tx_hash": effect.tx_hash, "status_code": e.status_code},
                ))
            return LedgerUpdated(goal.current_funded_amount)

        if isinstance(effect, QueueReconciliation):
            self._queue_reconciliation(effect)
            return None

        raise TypeError(f"Unknown effect {effect!r}")

    def _queue_reconciliation(self, effect: QueueReconciliation) -> None:
        if self.queue is None:
            logger.error(
                f"Deposit {effect.tx_hash} for goal {effect.goal_id} needs reconciliation "
                f"but no queue is configured: {effect.reason}"
            )
            return
        try:
            self.queue.put(
                effect.goal_id, effect.amount, effect.tx_hash, effect.reason,
                chain_id=effect.chain_id, confirmed=effect.confirmed,
            )
        except (OSError, ValueError) as e:
            logger.error(
                f"Could not persist reconciliation entry for {effect.tx_hash} "
                f"(goal {effect.goal_id}, amount {effect.amount}): {e}"
            )


def status_message(attempt: DepositAttempt) -> str:
    """User-facing summary of a finished attempt."""
    if attempt.phase is Phase.SETTLED:
        return (
            f"Transaction {attempt.deposit.tx_hash} successful! Deposit confirmed & goal updated "
            f"(funded: {attempt.funded_amount})."
        )
    failure = attempt.failure
    if failure is None:
        return f"Deposit {attempt.phase.value}..."
    if failure.reconciliation_required and failure.kind == LedgerOutOfSync.kind:
        return (
            f"Your deposit of {attempt.amount} is safe in the vault (transaction {attempt.deposit.tx_hash}), "
            f"but the goal's recorded progress could not be updated. It will be reconciled automatically; "
            f"no need to deposit again. ({failure.message})"
        )
    if failure.reconciliation_required:
        return (
            f"Deposit transaction {attempt.deposit.tx_hash} has not confirmed yet. "
            f"Check its status later; it will be credited to your goal once it lands."
        )
    return f"Error: {failure.message}"
