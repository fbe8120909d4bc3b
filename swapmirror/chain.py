"""
Chain client for swap replication
Async access to an EVM node: block feed, queries and transaction submission
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Protocol

from eth_abi import decode
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import BlockNotFound, TimeExhausted, TransactionNotFound

from .abi import ERC20_ALLOWANCE, ERC20_BALANCE_OF
from .errors import ExecutionError, ExecutionErrorKind, WatcherError

logger = logging.getLogger(__name__)


@dataclass
class BlockActivity:
    """Transactions sent by tracked addresses in one block"""
    block_number: int
    transactions: List[Dict[str, Any]] = field(default_factory=list)


class ChainClient(Protocol):
    """Capabilities the replication engine needs from a node"""

    async def current_block(self) -> int: ...

    def subscribe(
        self,
        addresses: Callable[[], Iterable[str]],
        from_block: Optional[int] = None,
    ) -> AsyncIterator[BlockActivity]: ...

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]: ...

    async def get_balance(self, address: str) -> int: ...

    async def get_token_balance(self, token: str, owner: str) -> int: ...

    async def get_allowance(self, token: str, owner: str, spender: str) -> int: ...

    async def call(self, to: str, data: bytes) -> bytes: ...

    async def prepare_transaction(self, sender: str, tx: Dict[str, Any]) -> Dict[str, Any]: ...

    async def broadcast(self, raw_transaction: bytes, tx_hash: str) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Dict[str, Any]: ...


class Web3ChainClient:
    """
    ChainClient backed by web3's AsyncWeb3.

    Polls new blocks (the node-agnostic equivalent of an address
    subscription) and fails over across a list of RPC URLs.
    """

    def __init__(
        self,
        rpc_urls: List[str],
        poll_interval: float = 1.0,
        confirmation_blocks: int = 2,
        lookback_blocks: int = 0,
        gas_price_multiplier: float = 1.1,
        gas_limit_multiplier: float = 1.2,
        request_timeout: int = 30,
    ):
        """
        Args:
            rpc_urls: RPC URLs, tried in order
            poll_interval: Seconds between block polls
            confirmation_blocks: Only report blocks this deep
            lookback_blocks: Blocks to replay on first subscribe
            gas_price_multiplier: Applied to the node's gas price
            gas_limit_multiplier: Applied to the gas estimate
            request_timeout: HTTP timeout per RPC call (seconds)
        """
        if not rpc_urls:
            raise ValueError("At least one RPC URL is required")

        self.rpc_urls = rpc_urls
        self.poll_interval = poll_interval
        self.confirmation_blocks = confirmation_blocks
        self.lookback_blocks = lookback_blocks
        self.gas_price_multiplier = gas_price_multiplier
        self.gas_limit_multiplier = gas_limit_multiplier
        self.request_timeout = request_timeout

        self.current_rpc_index = 0
        self.web3 = self._make_web3(rpc_urls[0])
        self._chain_id: Optional[int] = None

    def _make_web3(self, rpc_url: str) -> AsyncWeb3:
        return AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": self.request_timeout}))

    async def connect(self) -> bool:
        """Connect to the first reachable RPC endpoint"""
        for i, rpc_url in enumerate(self.rpc_urls):
            try:
                web3 = self._make_web3(rpc_url)
                if await web3.is_connected():
                    self.web3 = web3
                    self.current_rpc_index = i
                    logger.info(f"Connected to RPC: {rpc_url}")
                    return True
            except Exception as e:
                logger.warning(f"Failed to connect to {rpc_url}: {e}")

        logger.error("Failed to connect to any RPC endpoint")
        return False

    def _switch_rpc(self) -> None:
        """Rotate to the next RPC endpoint"""
        if len(self.rpc_urls) < 2:
            return
        self.current_rpc_index = (self.current_rpc_index + 1) % len(self.rpc_urls)
        rpc_url = self.rpc_urls[self.current_rpc_index]
        self.web3 = self._make_web3(rpc_url)
        logger.warning(f"Switched RPC to {rpc_url}")

    @property
    def current_rpc(self) -> str:
        return self.rpc_urls[self.current_rpc_index]

    async def current_block(self) -> int:
        return await self.web3.eth.block_number

    async def subscribe(
        self,
        addresses: Callable[[], Iterable[str]],
        from_block: Optional[int] = None,
    ) -> AsyncIterator[BlockActivity]:
        """
        Yield one BlockActivity per confirmed block, starting at from_block.

        Args:
            addresses: Returns the addresses to watch; re-read every block so
                tracking changes apply without resubscribing
            from_block: First block to report (default: head - lookback)

        Raises:
            WatcherError: when the node cannot be reached
        """
        try:
            head = await self.web3.eth.block_number
        except Exception as e:
            self._switch_rpc()
            raise WatcherError(f"Cannot read block number: {e}") from e

        next_block = from_block if from_block is not None else head - self.lookback_blocks
        logger.info(f"Subscribed from block {next_block} via {self.current_rpc}")

        while True:
            try:
                head = await self.web3.eth.block_number
                safe_block = head - self.confirmation_blocks

                while next_block <= safe_block:
                    watched = {addr.lower() for addr in addresses()}
                    activity = await self._block_activity(next_block, watched)
                    yield activity
                    next_block += 1

            except BlockNotFound:
                logger.warning(f"Block {next_block} not found yet")
            except WatcherError:
                raise
            except Exception as e:
                self._switch_rpc()
                raise WatcherError(f"Block feed failed at {next_block}: {e}") from e

            await asyncio.sleep(self.poll_interval)

    async def _block_activity(self, block_number: int, watched: set) -> BlockActivity:
        block = await self.web3.eth.get_block(block_number, full_transactions=True)
        activity = BlockActivity(block_number=block_number)
        if not watched:
            return activity

        for tx in block["transactions"]:
            sender = tx.get("from")
            if sender and sender.lower() in watched:
                activity.transactions.append(dict(tx))
        return activity

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            return dict(await self.web3.eth.get_transaction(tx_hash))
        except TransactionNotFound:
            return None

    async def get_balance(self, address: str) -> int:
        return await self.web3.eth.get_balance(Web3.to_checksum_address(address))

    async def call(self, to: str, data: bytes) -> bytes:
        result = await self.web3.eth.call({"to": Web3.to_checksum_address(to), "data": data})
        return bytes(result)

    async def get_token_balance(self, token: str, owner: str) -> int:
        data = ERC20_BALANCE_OF.encode_call(Web3.to_checksum_address(owner))
        return decode(["uint256"], await self.call(token, data))[0]

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        data = ERC20_ALLOWANCE.encode_call(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender),
        )
        return decode(["uint256"], await self.call(token, data))[0]

    async def prepare_transaction(self, sender: str, tx: Dict[str, Any]) -> Dict[str, Any]:
        """
        Fill nonce, gas, gas price and chain id.

        Raises:
            ExecutionError(SUBMISSION_REJECTED): gas estimation failed, which
                means the node expects the call to revert
        """
        sender = Web3.to_checksum_address(sender)
        if self._chain_id is None:
            self._chain_id = await self.web3.eth.chain_id

        prepared = {
            "from": sender,
            "to": Web3.to_checksum_address(tx["to"]),
            "data": tx.get("data", b""),
            "value": tx.get("value", 0),
            "chainId": self._chain_id,
        }
        try:
            prepared["nonce"] = await self.web3.eth.get_transaction_count(sender, "pending")
            gas_estimate = await self.web3.eth.estimate_gas(prepared)
            gas_price = await self.web3.eth.gas_price
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise ExecutionError(ExecutionErrorKind.TIMEOUT, f"node did not answer: {e}") from e
        except Exception as e:
            raise ExecutionError(ExecutionErrorKind.SUBMISSION_REJECTED, f"gas estimation failed: {e}") from e

        prepared["gas"] = int(gas_estimate * self.gas_limit_multiplier)
        prepared["gasPrice"] = int(gas_price * self.gas_price_multiplier)
        return prepared

    async def broadcast(self, raw_transaction: bytes, tx_hash: str) -> str:
        """
        Send a signed transaction.

        Re-sending the same signed payload is safe: the node either accepts
        it or reports it as already known.
        """
        try:
            sent = await self.web3.eth.send_raw_transaction(raw_transaction)
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise ExecutionError(ExecutionErrorKind.TIMEOUT, f"broadcast timed out: {e}") from e
        except Exception as e:
            if "already known" in str(e).lower():
                return tx_hash
            raise ExecutionError(ExecutionErrorKind.SUBMISSION_REJECTED, str(e)) from e
        return Web3.to_hex(sent)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Dict[str, Any]:
        try:
            receipt = await self.web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout, poll_latency=self.poll_interval
            )
        except TimeExhausted as e:
            raise ExecutionError(
                ExecutionErrorKind.TIMEOUT, f"no receipt after {timeout:.0f}s", tx_hash=tx_hash
            ) from e
        return dict(receipt)
