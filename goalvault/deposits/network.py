import enum
import logging
from typing import Optional, Tuple

from goalvault.deposits.errors import (
    DepositError,
    NetworkSwitchFailed,
    NetworkSwitchRequested,
    WalletUnavailable,
)
from goalvault.deposits.wallet import Wallet

logger = logging.getLogger(__name__)


class NetworkStatus(str, enum.Enum):
    COMPATIBLE = "compatible"
    SWITCH_REQUIRED = "switch_required"
    UNKNOWN = "unknown"


class NetworkGuard:
    """Makes sure nothing is signed while the wallet sits on another chain."""

    def __init__(self, required_chain_id: int, chain_name: Optional[str] = None):
        self.required_chain_id = required_chain_id
        self.chain_name = chain_name or f"chain {required_chain_id}"

    def check(self, chain_id: Optional[int]) -> NetworkStatus:
        if chain_id is None:
            return NetworkStatus.UNKNOWN
        if chain_id == self.required_chain_id:
            return NetworkStatus.COMPATIBLE
        return NetworkStatus.SWITCH_REQUIRED

    async def ensure(self, wallet: Wallet) -> Tuple[str, int]:
        """
        Return ``(address, chain_id)`` when the wallet can transact.

        On the wrong chain a switch is requested and the call still raises:
        ``NetworkSwitchRequested`` if the wallet accepted, otherwise
        ``NetworkSwitchFailed``. Either way the caller stops and the user
        starts over.
        """
        address = await wallet.get_address()
        if not address:
            raise WalletUnavailable("Please connect your wallet to deposit.")
        chain_id = await wallet.get_chain_id()
        status = self.check(chain_id)
        if status is NetworkStatus.UNKNOWN:
            raise WalletUnavailable(
                "Chain information not available. Please ensure your wallet is connected properly and retry."
            )
        if status is NetworkStatus.COMPATIBLE:
            return address, chain_id

        logger.info(f"Wallet on chain {chain_id}, requesting switch to {self.required_chain_id}")
        try:
            await wallet.switch_chain(self.required_chain_id)
        except NetworkSwitchFailed:
            raise
        except DepositError as e:
            raise NetworkSwitchFailed(e.message)
        except Exception as e:
            logger.warning(f"Network switch to {self.required_chain_id} failed: {e}")
            raise NetworkSwitchFailed(str(e) or "Failed to switch network. Please do it manually in your wallet.")
        raise NetworkSwitchRequested(f"Switched to {self.chain_name}. Please start the deposit again.")
