"""Deposit attempt state machine.

``transition(attempt, event)`` is a pure function returning the next attempt
and the effects the coordinator has to carry out. Nothing in this module
talks to a wallet, a chain or the goals API, so every path can be exercised
without any of them.

    IDLE -> NETWORK_CHECK -> APPROVING -> APPROVAL_CONFIRMING -> DEPOSITING
         -> DEPOSIT_CONFIRMING -> LEDGER_UPDATING -> SETTLED

Any non-terminal phase may end in FAILED.
"""
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple, Type, Union

from goalvault.deposits.errors import ConfirmationTimeout, DepositError, InvalidDepositInput
from goalvault.utils.units import to_smallest_unit


class Phase(str, enum.Enum):
    IDLE = "idle"
    NETWORK_CHECK = "network_check"
    APPROVING = "approving"
    APPROVAL_CONFIRMING = "approval_confirming"
    DEPOSITING = "depositing"
    DEPOSIT_CONFIRMING = "deposit_confirming"
    LEDGER_UPDATING = "ledger_updating"
    SETTLED = "settled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.SETTLED, Phase.FAILED)


class TxKind(str, enum.Enum):
    APPROVAL = "approval"
    DEPOSIT = "deposit"


@dataclass(frozen=True)
class TxHandle:
    tx_hash: str
    kind: TxKind
    chain_id: int


@dataclass(frozen=True)
class Failure:
    kind: str
    message: str
    phase: Phase
    recoverable: bool
    # Funds may have moved on-chain without the goal ledger knowing
    reconciliation_required: bool = False


@dataclass(frozen=True)
class DepositAttempt:
    goal_id: str
    amount: Decimal
    token_address: str
    vault_address: str
    amount_units: int = 0
    receiver: Optional[str] = None
    chain_id: Optional[int] = None
    phase: Phase = Phase.IDLE
    approval: Optional[TxHandle] = None
    deposit: Optional[TxHandle] = None
    failure: Optional[Failure] = None
    funded_amount: Optional[Decimal] = None
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


# ---------------------------------------------------------------- events

@dataclass(frozen=True)
class StartRequested:
    remaining_capacity: Decimal
    token_decimals: int


@dataclass(frozen=True)
class NetworkReady:
    address: str
    chain_id: int


@dataclass(frozen=True)
class NetworkRejected:
    error: DepositError


@dataclass(frozen=True)
class TxBroadcast:
    handle: TxHandle


@dataclass(frozen=True)
class BroadcastRejected:
    error: DepositError


@dataclass(frozen=True)
class TxConfirmed:
    handle: TxHandle


@dataclass(frozen=True)
class TxFailed:
    handle: TxHandle
    error: DepositError


@dataclass(frozen=True)
class LedgerUpdated:
    funded_amount: Decimal


@dataclass(frozen=True)
class LedgerRejected:
    error: DepositError


Event = Union[
    StartRequested, NetworkReady, NetworkRejected, TxBroadcast, BroadcastRejected,
    TxConfirmed, TxFailed, LedgerUpdated, LedgerRejected,
]


# ---------------------------------------------------------------- effects

@dataclass(frozen=True)
class CheckNetwork:
    pass


@dataclass(frozen=True)
class SendApproval:
    token_address: str
    spender: str
    amount_units: int


@dataclass(frozen=True)
class WatchTransaction:
    handle: TxHandle


@dataclass(frozen=True)
class SendDeposit:
    vault_address: str
    amount_units: int
    receiver: str


@dataclass(frozen=True)
class UpdateLedger:
    goal_id: str
    amount: Decimal
    tx_hash: str


@dataclass(frozen=True)
class QueueReconciliation:
    goal_id: str
    amount: Decimal
    tx_hash: str
    reason: str
    chain_id: Optional[int] = None
    # False while the deposit itself has not been seen confirmed
    confirmed: bool = True


Effect = Union[CheckNetwork, SendApproval, WatchTransaction, SendDeposit, UpdateLedger, QueueReconciliation]

Result = Tuple[DepositAttempt, List[Effect]]


class InvalidTransition(Exception):
    def __init__(self, phase: Phase, event: Event):
        super().__init__(f"{type(event).__name__} is not valid in phase {phase.value}")
        self.phase = phase
        self.event = event


# ---------------------------------------------------------------- handlers

def _fail(attempt: DepositAttempt, error: DepositError, reconciliation_required: bool = False) -> DepositAttempt:
    failure = Failure(
        kind=error.kind,
        message=error.message,
        phase=attempt.phase,
        recoverable=error.recoverable and not reconciliation_required,
        reconciliation_required=reconciliation_required,
    )
    return replace(attempt, phase=Phase.FAILED, failure=failure)


def validate_amount(amount: Decimal, remaining_capacity: Optional[Decimal], token_decimals: int) -> int:
    """Check a deposit amount and return it in the token's smallest unit.

    ``remaining_capacity`` of ``None`` skips the goal capacity check.
    """
    if not amount.is_finite() or amount <= 0:
        raise InvalidDepositInput("Please enter a valid positive amount to deposit.")
    if remaining_capacity is not None and amount > remaining_capacity:
        raise InvalidDepositInput(
            f"You can deposit a maximum of {max(remaining_capacity, Decimal(0))} for this goal.",
            details={"remaining_capacity": str(remaining_capacity)},
        )
    try:
        units = to_smallest_unit(amount, token_decimals)
    except ValueError as e:
        raise InvalidDepositInput(str(e))
    if units < 1:
        raise InvalidDepositInput("Amount is smaller than the token's smallest unit.")
    return units


def _on_start(attempt: DepositAttempt, event: StartRequested) -> Result:
    # Raises before leaving IDLE: nothing has happened yet
    units = validate_amount(attempt.amount, event.remaining_capacity, event.token_decimals)
    return replace(attempt, phase=Phase.NETWORK_CHECK, amount_units=units), [CheckNetwork()]


def _on_network_ready(attempt: DepositAttempt, event: NetworkReady) -> Result:
    attempt = replace(attempt, phase=Phase.APPROVING, receiver=event.address, chain_id=event.chain_id)
    return attempt, [SendApproval(attempt.token_address, attempt.vault_address, attempt.amount_units)]


def _on_rejected(attempt: DepositAttempt, event: Union[NetworkRejected, BroadcastRejected]) -> Result:
    return _fail(attempt, event.error), []


def _on_approval_broadcast(attempt: DepositAttempt, event: TxBroadcast) -> Result:
    if event.handle.kind is not TxKind.APPROVAL:
        raise InvalidTransition(attempt.phase, event)
    attempt = replace(attempt, phase=Phase.APPROVAL_CONFIRMING, approval=event.handle)
    return attempt, [WatchTransaction(event.handle)]


def _on_deposit_broadcast(attempt: DepositAttempt, event: TxBroadcast) -> Result:
    if event.handle.kind is not TxKind.DEPOSIT:
        raise InvalidTransition(attempt.phase, event)
    attempt = replace(attempt, phase=Phase.DEPOSIT_CONFIRMING, deposit=event.handle)
    return attempt, [WatchTransaction(event.handle)]


def _on_approval_confirmed(attempt: DepositAttempt, event: TxConfirmed) -> Result:
    if event.handle != attempt.approval:
        return attempt, []
    attempt = replace(attempt, phase=Phase.DEPOSITING)
    if attempt.deposit is not None:
        # Never broadcast a second deposit for the same attempt
        return attempt, []
    return attempt, [SendDeposit(attempt.vault_address, attempt.amount_units, attempt.receiver)]


def _on_approval_failed(attempt: DepositAttempt, event: TxFailed) -> Result:
    if event.handle != attempt.approval:
        return attempt, []
    return _fail(attempt, event.error), []


def _on_deposit_confirmed(attempt: DepositAttempt, event: TxConfirmed) -> Result:
    if event.handle != attempt.deposit:
        return attempt, []
    attempt = replace(attempt, phase=Phase.LEDGER_UPDATING)
    return attempt, [UpdateLedger(attempt.goal_id, attempt.amount, attempt.deposit.tx_hash)]


def _on_deposit_failed(attempt: DepositAttempt, event: TxFailed) -> Result:
    if event.handle != attempt.deposit:
        return attempt, []
    if isinstance(event.error, ConfirmationTimeout):
        # Still pending: it may land later, so keep it for reconciliation
        failed = _fail(attempt, event.error, reconciliation_required=True)
        return failed, [QueueReconciliation(
            attempt.goal_id, attempt.amount, attempt.deposit.tx_hash, event.error.message,
            chain_id=attempt.chain_id, confirmed=False,
        )]
    return _fail(attempt, event.error), []


def _on_ledger_updated(attempt: DepositAttempt, event: LedgerUpdated) -> Result:
    return replace(attempt, phase=Phase.SETTLED, funded_amount=event.funded_amount), []


def _on_ledger_rejected(attempt: DepositAttempt, event: LedgerRejected) -> Result:
    failed = _fail(attempt, event.error, reconciliation_required=True)
    return failed, [QueueReconciliation(
        attempt.goal_id, attempt.amount, attempt.deposit.tx_hash, event.error.message,
        chain_id=attempt.chain_id, confirmed=True,
    )]


def _ignore(attempt: DepositAttempt, event: Event) -> Result:
    return attempt, []


Handler = Callable[[DepositAttempt, Event], Result]

TRANSITIONS: Dict[Tuple[Phase, Type], Handler] = {
    (Phase.IDLE, StartRequested): _on_start,
    (Phase.NETWORK_CHECK, NetworkReady): _on_network_ready,
    (Phase.NETWORK_CHECK, NetworkRejected): _on_rejected,
    (Phase.APPROVING, TxBroadcast): _on_approval_broadcast,
    (Phase.APPROVING, BroadcastRejected): _on_rejected,
    (Phase.APPROVAL_CONFIRMING, TxConfirmed): _on_approval_confirmed,
    (Phase.APPROVAL_CONFIRMING, TxFailed): _on_approval_failed,
    (Phase.DEPOSITING, TxBroadcast): _on_deposit_broadcast,
    (Phase.DEPOSITING, BroadcastRejected): _on_rejected,
    # Late or duplicate approval notifications after the machine moved on
    (Phase.DEPOSITING, TxConfirmed): _ignore,
    (Phase.DEPOSIT_CONFIRMING, TxConfirmed): _on_deposit_confirmed,
    (Phase.DEPOSIT_CONFIRMING, TxFailed): _on_deposit_failed,
    (Phase.LEDGER_UPDATING, LedgerUpdated): _on_ledger_updated,
    (Phase.LEDGER_UPDATING, LedgerRejected): _on_ledger_rejected,
}


def transition(attempt: DepositAttempt, event: Event) -> Result:
    handler = TRANSITIONS.get((attempt.phase, type(event)))
    if handler is None:
        raise InvalidTransition(attempt.phase, event)
    return handler(attempt, event)
