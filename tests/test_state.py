from dataclasses import replace
from decimal import Decimal

import pytest

from conftest import TOKEN, VAULT, WALLET_ADDRESS
from goalvault.deposits.errors import (
    BroadcastFailed,
    ConfirmationFailed,
    ConfirmationTimeout,
    InvalidDepositInput,
    LedgerOutOfSync,
    NetworkSwitchRequested,
)
from goalvault.deposits.state import (
    BroadcastRejected,
    CheckNetwork,
    DepositAttempt,
    InvalidTransition,
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
    TxHandle,
    TxKind,
    UpdateLedger,
    WatchTransaction,
    transition,
    validate_amount,
)

APPROVAL = TxHandle("0x" + "01" * 32, TxKind.APPROVAL, 8453)
DEPOSIT = TxHandle("0x" + "02" * 32, TxKind.DEPOSIT, 8453)


def new_attempt(amount="100"):
    return DepositAttempt(goal_id="goal-1", amount=Decimal(amount), token_address=TOKEN, vault_address=VAULT)


def run(attempt, *events):
    effects = []
    for event in events:
        attempt, effects = transition(attempt, event)
    return attempt, effects


def at_deposit_confirming():
    attempt, _ = run(
        new_attempt(),
        StartRequested(Decimal("500"), 6),
        NetworkReady(WALLET_ADDRESS, 8453),
        TxBroadcast(APPROVAL),
        TxConfirmed(APPROVAL),
        TxBroadcast(DEPOSIT),
    )
    return attempt


def test_happy_path():
    attempt = new_attempt()

    attempt, effects = transition(attempt, StartRequested(Decimal("500"), 6))
    assert attempt.phase is Phase.NETWORK_CHECK
    assert attempt.amount_units == 100_000_000
    assert effects == [CheckNetwork()]

    attempt, effects = transition(attempt, NetworkReady(WALLET_ADDRESS, 8453))
    assert attempt.phase is Phase.APPROVING
    assert effects == [SendApproval(TOKEN, VAULT, 100_000_000)]

    attempt, effects = transition(attempt, TxBroadcast(APPROVAL))
    assert attempt.phase is Phase.APPROVAL_CONFIRMING
    assert effects == [WatchTransaction(APPROVAL)]

    attempt, effects = transition(attempt, TxConfirmed(APPROVAL))
    assert attempt.phase is Phase.DEPOSITING
    assert effects == [SendDeposit(VAULT, 100_000_000, WALLET_ADDRESS)]

    attempt, effects = transition(attempt, TxBroadcast(DEPOSIT))
    assert attempt.phase is Phase.DEPOSIT_CONFIRMING
    assert effects == [WatchTransaction(DEPOSIT)]

    attempt, effects = transition(attempt, TxConfirmed(DEPOSIT))
    assert attempt.phase is Phase.LEDGER_UPDATING
    assert effects == [UpdateLedger("goal-1", Decimal("100"), DEPOSIT.tx_hash)]

    attempt, effects = transition(attempt, LedgerUpdated(Decimal("100")))
    assert attempt.phase is Phase.SETTLED
    assert attempt.phase.is_terminal
    assert attempt.funded_amount == Decimal("100")
    assert effects == []


def test_transition_does_not_mutate_input():
    attempt = new_attempt()
    transition(attempt, StartRequested(Decimal("500"), 6))
    assert attempt.phase is Phase.IDLE


@pytest.mark.parametrize("amount,capacity", [
    ("600", "500"),
    ("0", "500"),
    ("-1", "500"),
    ("0.0000001", "500"),
    ("10", "0"),
])
def test_start_rejects_invalid_amounts(amount, capacity):
    with pytest.raises(InvalidDepositInput):
        transition(new_attempt(amount), StartRequested(Decimal(capacity), 6))


def test_start_allows_exact_remaining_capacity():
    attempt, _ = transition(new_attempt("500"), StartRequested(Decimal("500"), 6))
    assert attempt.phase is Phase.NETWORK_CHECK


def test_validate_amount_without_capacity():
    assert validate_amount(Decimal("1.5"), None, 6) == 1_500_000
    with pytest.raises(InvalidDepositInput):
        validate_amount(Decimal("NaN"), None, 6)


def test_network_rejection_fails_attempt():
    attempt, effects = run(
        new_attempt(),
        StartRequested(Decimal("500"), 6),
        NetworkRejected(NetworkSwitchRequested("Switched to Base. Please start the deposit again.")),
    )
    assert attempt.phase is Phase.FAILED
    assert attempt.failure.kind == "network_switch_requested"
    assert attempt.failure.phase is Phase.NETWORK_CHECK
    assert attempt.failure.recoverable
    assert effects == []


def test_approval_broadcast_rejected():
    attempt, effects = run(
        new_attempt(),
        StartRequested(Decimal("500"), 6),
        NetworkReady(WALLET_ADDRESS, 8453),
        BroadcastRejected(BroadcastFailed("insufficient funds for gas")),
    )
    assert attempt.phase is Phase.FAILED
    assert attempt.failure.phase is Phase.APPROVING
    assert effects == []


def test_failed_approval_never_sends_deposit():
    attempt, effects = run(
        new_attempt(),
        StartRequested(Decimal("500"), 6),
        NetworkReady(WALLET_ADDRESS, 8453),
        TxBroadcast(APPROVAL),
        TxFailed(APPROVAL, ConfirmationFailed("Approval failed: Transaction reverted")),
    )
    assert attempt.phase is Phase.FAILED
    assert attempt.failure.kind == "confirmation_failed"
    assert not any(isinstance(e, SendDeposit) for e in effects)


def test_failed_deposit_never_updates_ledger():
    attempt, effects = transition(
        at_deposit_confirming(), TxFailed(DEPOSIT, ConfirmationFailed("Deposit failed: Transaction reverted"))
    )
    assert attempt.phase is Phase.FAILED
    assert attempt.failure.phase is Phase.DEPOSIT_CONFIRMING
    assert not attempt.failure.reconciliation_required
    assert effects == []


def test_deposit_timeout_queues_reconciliation():
    attempt, effects = transition(at_deposit_confirming(), TxFailed(DEPOSIT, ConfirmationTimeout("still pending")))
    assert attempt.phase is Phase.FAILED
    assert attempt.failure.reconciliation_required
    assert not attempt.failure.recoverable
    assert effects == [QueueReconciliation(
        "goal-1", Decimal("100"), DEPOSIT.tx_hash, "still pending", chain_id=8453, confirmed=False,
    )]


def test_ledger_rejection_requires_reconciliation():
    attempt, _ = transition(at_deposit_confirming(), TxConfirmed(DEPOSIT))
    attempt, effects = transition(attempt, LedgerRejected(LedgerOutOfSync("goals API down")))
    assert attempt.phase is Phase.FAILED
    assert attempt.failure.kind == "ledger_out_of_sync"
    assert attempt.failure.reconciliation_required
    assert effects == [QueueReconciliation(
        "goal-1", Decimal("100"), DEPOSIT.tx_hash, "goals API down", chain_id=8453, confirmed=True,
    )]


def test_duplicate_approval_confirmation_does_not_resend_deposit():
    attempt = at_deposit_confirming()
    # Force the machine back to the approval phase with a deposit already recorded
    attempt = replace(attempt, phase=Phase.APPROVAL_CONFIRMING)
    attempt, effects = transition(attempt, TxConfirmed(APPROVAL))
    assert effects == []


def test_late_approval_confirmation_is_ignored():
    attempt, _ = run(
        new_attempt(),
        StartRequested(Decimal("500"), 6),
        NetworkReady(WALLET_ADDRESS, 8453),
        TxBroadcast(APPROVAL),
        TxConfirmed(APPROVAL),
    )
    again, effects = transition(attempt, TxConfirmed(APPROVAL))
    assert again == attempt
    assert effects == []


def test_confirmation_for_foreign_handle_is_ignored():
    attempt = at_deposit_confirming()
    stranger = TxHandle("0x" + "09" * 32, TxKind.DEPOSIT, 8453)
    again, effects = transition(attempt, TxConfirmed(stranger))
    assert again == attempt
    assert effects == []


def test_deposit_handle_in_approval_phase_is_invalid():
    attempt, _ = run(new_attempt(), StartRequested(Decimal("500"), 6), NetworkReady(WALLET_ADDRESS, 8453))
    with pytest.raises(InvalidTransition):
        transition(attempt, TxBroadcast(DEPOSIT))


@pytest.mark.parametrize("event", [
    TxConfirmed(APPROVAL),
    LedgerUpdated(Decimal("1")),
    NetworkReady(WALLET_ADDRESS, 8453),
])
def test_invalid_events_in_idle(event):
    with pytest.raises(InvalidTransition):
        transition(new_attempt(), event)


def test_terminal_states_accept_nothing():
    attempt, _ = transition(at_deposit_confirming(), TxFailed(DEPOSIT, ConfirmationFailed("reverted")))
    with pytest.raises(InvalidTransition):
        transition(attempt, TxConfirmed(DEPOSIT))
