"""Errors raised while moving funds into the vault and recording them.

Every error carries a ``kind`` (stable identifier stored on a failed
attempt) and a ``recoverable`` flag: recoverable errors left no on-chain or
off-chain mutation behind and the user may simply try again.
"""
from typing import Any, Optional


class DepositError(Exception):
    kind = "deposit_error"
    recoverable = True

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidDepositInput(DepositError):
    """Rejected before any side effect (bad amount, missing field...)."""

    kind = "invalid_input"


class AttemptInProgress(DepositError):
    kind = "attempt_in_progress"


class WalletUnavailable(DepositError):
    """No connected address or no active network."""

    kind = "wallet_unavailable"


class WalletRejected(DepositError):
    """The user declined to sign."""

    kind = "wallet_rejected"


class NetworkSwitchRequested(DepositError):
    """Wallet was on the wrong chain and a switch was requested.

    The attempt stops here even when the switch succeeds; the user has to
    start the deposit again on the right network.
    """

    kind = "network_switch_requested"


class NetworkSwitchFailed(DepositError):
    kind = "network_switch_failed"


class BroadcastFailed(DepositError):
    """RPC failure, insufficient gas, nonce problems..."""

    kind = "broadcast_failed"


class ConfirmationFailed(DepositError):
    """The transaction was mined but reverted."""

    kind = "confirmation_failed"
    recoverable = False


class ConfirmationTimeout(DepositError):
    """No receipt within the configured wait; the transaction may still land."""

    kind = "confirmation_timeout"
    recoverable = False


class GoalsApiError(DepositError):
    """Non-2xx answer (or no answer) from the goals API."""

    kind = "goals_api_error"

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message, details)
        self.status_code = status_code


class GoalsApiUnauthorized(GoalsApiError):
    kind = "unauthorized"
    recoverable = False


class GoalForbidden(GoalsApiError):
    kind = "forbidden"
    recoverable = False


class GoalMissing(GoalsApiError):
    kind = "goal_not_found"
    recoverable = False


class GoalTitleTaken(GoalsApiError):
    kind = "duplicate_title"
    recoverable = False


class GoalsApiRejected(GoalsApiError):
    """400 or 409 other than a duplicate title."""

    kind = "rejected"
    recoverable = False


class GoalsApiUnavailable(GoalsApiError):
    """Transport failure or 5xx: worth retrying later."""

    kind = "unavailable"


class LedgerOutOfSync(DepositError):
    """The deposit is on-chain but the goal's recorded progress is stale."""

    kind = "ledger_out_of_sync"
    recoverable = False
