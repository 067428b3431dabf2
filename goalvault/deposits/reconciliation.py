"""Durable queue of deposits that reached the chain but not the goal ledger.

Entries are keyed by the deposit transaction hash, which the goals API uses
as its idempotency key, so replaying an entry can never credit twice.
"""
import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Union

from goalvault.deposits.errors import GoalsApiError
from goalvault.deposits.ledger import GoalsApiClient
from goalvault.deposits.state import TxHandle, TxKind
from goalvault.deposits.wallet import RPC_ERRORS
from goalvault.deposits.watcher import ConfirmationWatcher, TxStatus

logger = logging.getLogger(__name__)


@dataclass
class PendingFunding:
    tx_hash: str
    goal_id: str
    amount: str
    reason: str
    chain_id: Optional[int] = None
    confirmed: bool = True
    attempts: int = 0
    last_error: Optional[str] = None
    queued_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def decimal_amount(self) -> Decimal:
        return Decimal(self.amount)


class ReconciliationQueue:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _load(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as f:
            entries = json.load(f)
        if not isinstance(entries, dict):
            raise ValueError(f"Reconciliation queue {self.path} is not a JSON object")
        return entries

    def _save(self, entries: Dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(entries, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)

    def put(
        self,
        goal_id: str,
        amount: Decimal,
        tx_hash: str,
        reason: str,
        chain_id: Optional[int] = None,
        confirmed: bool = True,
    ) -> PendingFunding:
        entries = self._load()
        key = tx_hash.lower()
        if key in entries:
            entry = PendingFunding(**entries[key])
            entry.reason = reason
            entry.confirmed = entry.confirmed or confirmed
        else:
            entry = PendingFunding(
                tx_hash=key, goal_id=str(goal_id), amount=str(amount),
                reason=reason, chain_id=chain_id, confirmed=confirmed,
            )
        entries[key] = asdict(entry)
        self._save(entries)
        logger.info(f"Queued deposit {key} for goal {goal_id} for reconciliation: {reason}")
        return entry

    def update(self, entry: PendingFunding) -> None:
        entries = self._load()
        entries[entry.tx_hash] = asdict(entry)
        self._save(entries)

    def remove(self, tx_hash: str) -> None:
        entries = self._load()
        if entries.pop(tx_hash.lower(), None) is not None:
            self._save(entries)

    def pending(self) -> List[PendingFunding]:
        return [PendingFunding(**data) for data in self._load().values()]

    def __len__(self) -> int:
        return len(self._load())


@dataclass
class ReconciliationReport:
    credited: List[str] = field(default_factory=list)
    waiting: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class Reconciler:
    """
    Replays queued deposits against the goals API.

    Unconfirmed entries are checked on-chain first: still pending stays
    queued, reverted is dropped, confirmed is credited.
    """

    def __init__(
        self,
        queue: ReconciliationQueue,
        api: GoalsApiClient,
        watcher: Optional[ConfirmationWatcher] = None,
    ):
        self.queue = queue
        self.api = api
        self.watcher = watcher

    async def _deposit_status(self, entry: PendingFunding) -> TxStatus:
        if entry.confirmed:
            return TxStatus.CONFIRMED
        if self.watcher is None:
            return TxStatus.PENDING
        handle = TxHandle(entry.tx_hash, TxKind.DEPOSIT, entry.chain_id or 0)
        try:
            observation = await self.watcher.check(handle)
        except RPC_ERRORS as e:
            logger.warning(f"Could not check deposit {entry.tx_hash}: {e}")
            return TxStatus.PENDING
        return observation.status

    async def drain(self) -> ReconciliationReport:
        report = ReconciliationReport()
        for entry in self.queue.pending():
            status = await self._deposit_status(entry)
            if status is TxStatus.PENDING:
                report.waiting.append(entry.tx_hash)
                continue
            if status is TxStatus.FAILED:
                logger.info(f"Deposit {entry.tx_hash} reverted on-chain, nothing to credit")
                self.queue.remove(entry.tx_hash)
                report.dropped.append(entry.tx_hash)
                continue

            entry.confirmed = True
            try:
                goal = await self.api.update_funding(entry.goal_id, entry.decimal_amount, entry.tx_hash)
            except GoalsApiError as e:
                entry.attempts += 1
                entry.last_error = e.message
                self.queue.update(entry)
                logger.error(f"Reconciliation of {entry.tx_hash} failed (attempt {entry.attempts}): {e.message}")
                report.failed.append(entry.tx_hash)
                continue

            self.queue.remove(entry.tx_hash)
            logger.info(f"Reconciled deposit {entry.tx_hash}: goal {goal.id} now at {goal.current_funded_amount}")
            report.credited.append(entry.tx_hash)
        return report
