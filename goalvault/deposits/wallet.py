"""Wallet adapter: a locally held key that signs and broadcasts through web3."""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TransactionNotFound, Web3Exception

from goalvault.deposits.abi import ERC20_ABI, ERC4626_ABI
from goalvault.deposits.errors import BroadcastFailed, NetworkSwitchFailed, WalletRejected, WalletUnavailable

logger = logging.getLogger(__name__)

# Receives a human readable description of the transaction, returns whether the user signs
ConfirmCallback = Callable[[str], Awaitable[bool]]

# Errors an RPC call can end with: node errors (ValueError on older web3),
# reverts during gas estimation, transport failures
RPC_ERRORS = (Web3Exception, ValueError, OSError, TimeoutError)


class ChainReader(Protocol):
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]: ...

    async def get_block_number(self) -> int: ...


class Wallet(ChainReader, Protocol):
    async def get_address(self) -> Optional[str]: ...

    async def get_chain_id(self) -> Optional[int]: ...

    async def switch_chain(self, chain_id: int) -> None: ...

    async def send_approve(self, token_address: str, spender: str, amount_units: int) -> str: ...

    async def send_deposit(self, vault_address: str, amount_units: int, receiver: str) -> str: ...


class Web3Wallet:
    """
    Signs with an eth-account key and talks to the chain over AsyncWeb3.

    ``rpc_urls`` maps chain ids to RPC endpoints; switching chains means
    reconnecting to the endpoint of the requested chain, so only configured
    chains can be switched to.
    """

    def __init__(
        self,
        account: LocalAccount,
        rpc_urls: Dict[int, str],
        chain_id: int,
        confirm: Optional[ConfirmCallback] = None,
    ):
        self.account = account
        self.rpc_urls = dict(rpc_urls)
        self.confirm = confirm
        self.w3: Optional[AsyncWeb3] = None
        if chain_id in self.rpc_urls:
            self._connect(chain_id)

    @classmethod
    def from_private_key(cls, private_key: str, rpc_urls: Dict[int, str], chain_id: int, **kwargs) -> "Web3Wallet":
        return cls(Account.from_key(private_key), rpc_urls, chain_id, **kwargs)

    def _connect(self, chain_id: int) -> None:
        self.w3 = AsyncWeb3(AsyncHTTPProvider(self.rpc_urls[chain_id]))
        logger.info(f"Wallet {self.account.address} using RPC for chain {chain_id}")

    @property
    def eth(self):
        if self.w3 is None:
            raise WalletUnavailable("Wallet is not connected to any configured network.")
        return self.w3.eth

    async def get_address(self) -> Optional[str]:
        return self.account.address

    async def get_chain_id(self) -> Optional[int]:
        if self.w3 is None:
            return None
        try:
            return await self.w3.eth.chain_id
        except RPC_ERRORS as e:
            logger.warning(f"Could not read chain id from RPC: {e}")
            return None

    async def switch_chain(self, chain_id: int) -> None:
        if chain_id not in self.rpc_urls:
            raise NetworkSwitchFailed(f"No RPC endpoint configured for chain {chain_id}. Please switch manually.")
        self._connect(chain_id)
        actual = await self.get_chain_id()
        if actual != chain_id:
            raise NetworkSwitchFailed(f"RPC for chain {chain_id} reports chain {actual}")

    async def send_approve(self, token_address: str, spender: str, amount_units: int) -> str:
        token = self.eth.contract(address=AsyncWeb3.to_checksum_address(token_address), abi=ERC20_ABI)
        call = token.functions.approve(AsyncWeb3.to_checksum_address(spender), amount_units)
        return await self._sign_and_send(call, f"Approve {spender} to spend {amount_units} units of {token_address}")

    async def send_deposit(self, vault_address: str, amount_units: int, receiver: str) -> str:
        vault = self.eth.contract(address=AsyncWeb3.to_checksum_address(vault_address), abi=ERC4626_ABI)
        call = vault.functions.deposit(amount_units, AsyncWeb3.to_checksum_address(receiver))
        return await self._sign_and_send(call, f"Deposit {amount_units} units into vault {vault_address}")

    async def _sign_and_send(self, call, description: str) -> str:
        if self.confirm is not None and not await self.confirm(description):
            raise WalletRejected("User rejected the signature request.")
        try:
            tx = await call.build_transaction({
                "from": self.account.address,
                "nonce": await self.eth.get_transaction_count(self.account.address, "pending"),
            })
            signed = self.account.sign_transaction(tx)
            tx_hash = await self.eth.send_raw_transaction(signed.raw_transaction)
        except RPC_ERRORS as e:
            logger.error(f"Broadcast failed ({description}): {e}")
            raise BroadcastFailed(str(e) or type(e).__name__)
        return AsyncWeb3.to_hex(tx_hash)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

    async def get_block_number(self) -> int:
        return await self.eth.block_number
