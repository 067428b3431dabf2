import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from goalvault.deposits.errors import ConfirmationTimeout
from goalvault.deposits.state import TxHandle
from goalvault.deposits.wallet import RPC_ERRORS, ChainReader

logger = logging.getLogger(__name__)


class TxStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class TxObservation:
    handle: TxHandle
    status: TxStatus
    block_number: Optional[int] = None
    confirmations: int = 0
    reason: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return self.status is not TxStatus.PENDING


class ConfirmationWatcher:
    """
    Follows broadcast transactions until they are confirmed or fail.

    The watcher keeps no per-transaction state, so any number of handles can
    be observed concurrently. ``timeout`` bounds how long ``observe`` and
    ``wait`` keep polling (``None`` waits forever).
    """

    def __init__(
        self,
        chain: ChainReader,
        confirmations: int = 1,
        poll_interval: float = 2.0,
        timeout: Optional[float] = 600.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if confirmations < 1:
            raise ValueError("confirmations must be >= 1")
        self.chain = chain
        self.confirmations = confirmations
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    async def check(self, handle: TxHandle) -> TxObservation:
        """Poll the chain once."""
        receipt = await self.chain.get_transaction_receipt(handle.tx_hash)
        if receipt is None:
            return TxObservation(handle, TxStatus.PENDING)

        block_number = receipt.get("blockNumber")
        if receipt.get("status") == 0:
            return TxObservation(handle, TxStatus.FAILED, block_number, reason="Transaction reverted")
        if block_number is None:
            return TxObservation(handle, TxStatus.PENDING)

        head = await self.chain.get_block_number()
        confirmations = max(head - block_number + 1, 0)
        status = TxStatus.CONFIRMED if confirmations >= self.confirmations else TxStatus.PENDING
        return TxObservation(handle, status, block_number, confirmations)

    async def observe(self, handle: TxHandle) -> AsyncIterator[TxObservation]:
        """Yield an observation on every status change, ending with a final one."""
        deadline = self._clock() + self.timeout if self.timeout is not None else None
        last_status = None
        while True:
            try:
                observation = await self.check(handle)
            except RPC_ERRORS as e:
                # A flaky node says nothing about the transaction itself
                logger.warning(f"Receipt lookup for {handle.tx_hash} failed, retrying: {e}")
                observation = TxObservation(handle, TxStatus.PENDING)

            if observation.status is not last_status:
                last_status = observation.status
                yield observation
            if observation.is_final:
                return

            if deadline is not None and self._clock() >= deadline:
                raise ConfirmationTimeout(
                    f"{handle.kind.value.capitalize()} transaction {handle.tx_hash} is still pending "
                    f"after {self.timeout:.0f}s. Check its status later.",
                    details={"tx_hash": handle.tx_hash},
                )
            await self._sleep(self.poll_interval)

    async def wait(self, handle: TxHandle) -> TxObservation:
        """Block until the transaction is final; raises ``ConfirmationTimeout``."""
        final = None
        async for observation in self.observe(handle):
            final = observation
            logger.debug(f"{handle.tx_hash}: {observation.status.value}")
        return final
