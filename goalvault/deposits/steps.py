import logging
from typing import Optional

from goalvault.deposits.errors import AttemptInProgress, BroadcastFailed, DepositError, InvalidDepositInput
from goalvault.deposits.state import TxHandle, TxKind
from goalvault.deposits.wallet import Wallet

logger = logging.getLogger(__name__)


async def _broadcast(send, kind: TxKind, chain_id: int) -> TxHandle:
    try:
        tx_hash = await send
    except DepositError:
        raise
    except Exception as e:
        raise BroadcastFailed(str(e) or f"Failed to send {kind.value} transaction.")
    logger.info(f"{kind.value.capitalize()} transaction sent: {tx_hash}")
    return TxHandle(tx_hash=tx_hash, kind=kind, chain_id=chain_id)


class ApprovalStep:
    """Grants the vault an allowance over the depositor's tokens."""

    def __init__(self, wallet: Wallet):
        self.wallet = wallet

    async def submit(self, token_address: str, spender: str, amount_units: int, chain_id: int) -> TxHandle:
        if amount_units < 1:
            raise InvalidDepositInput("Approval amount must be at least one unit.")
        return await _broadcast(
            self.wallet.send_approve(token_address, spender, amount_units),
            TxKind.APPROVAL,
            chain_id,
        )


class VaultDepositStep:
    """Moves the approved tokens into the vault, shares credited to ``receiver``."""

    def __init__(self, wallet: Wallet):
        self.wallet = wallet

    async def submit(
        self,
        vault_address: str,
        amount_units: int,
        receiver: str,
        chain_id: int,
        existing: Optional[TxHandle] = None,
    ) -> TxHandle:
        if existing is not None:
            raise AttemptInProgress(f"Deposit already sent for this attempt: {existing.tx_hash}")
        return await _broadcast(
            self.wallet.send_deposit(vault_address, amount_units, receiver),
            TxKind.DEPOSIT,
            chain_id,
        )
