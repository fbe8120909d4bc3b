"""
Swap Intent Decoder
Turns a raw leader transaction into a SwapIntent for the fixed router
"""

import logging
from typing import Any, Mapping, Union

from eth_abi.exceptions import DecodingError
from web3 import Web3

from .abi import NATIVE_IN_FUNCTIONS, NATIVE_OUT_FUNCTIONS, SWAP_SELECTORS, to_bytes
from .types import NATIVE_TOKEN, NotASwap, SwapIntent

logger = logging.getLogger(__name__)


def _field(tx: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        value = tx.get(name)
        if value is not None:
            return value
    return default


def _quantity(value: Any) -> int:
    """Integer from a JSON-RPC quantity: int, 0x-prefixed hex or decimal text."""
    if isinstance(value, bool):
        raise ValueError(f"not a quantity: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, "big")
    if isinstance(value, str):
        text = value.strip()
        if text[:2].lower() == "0x":
            return int(text, 16)
        return int(text, 10)
    raise ValueError(f"not a quantity: {value!r}")


def _hash_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value or "")
    if text and not text.startswith("0x"):
        text = "0x" + text
    return text


class SwapIntentDecoder:
    """
    Decodes exact-input swap calls sent to a single router.

    Anything else (other contracts, other router functions, calldata that
    does not match the expected schema) is reported as NotASwap.
    """

    def __init__(self, router_address: str):
        """
        Args:
            router_address: Address of the router whose swaps are replicated
        """
        self.router_address = Web3.to_checksum_address(router_address)

    def decode(self, tx: Mapping[str, Any]) -> Union[SwapIntent, NotASwap]:
        """
        Decode a transaction.

        Args:
            tx: Transaction as returned by eth_getTransactionByHash (or an
                equivalent mapping with from/to/input/value/hash)

        Returns:
            SwapIntent for recognised swaps, NotASwap otherwise
        """
        tx_hash = _hash_text(_field(tx, "hash", "tx_hash"))

        to_address = _field(tx, "to")
        if not to_address or str(to_address).lower() != self.router_address.lower():
            return NotASwap(tx_hash, "not sent to router")

        try:
            calldata = to_bytes(_field(tx, "input", "data", default=b""))
        except (TypeError, ValueError):
            return NotASwap(tx_hash, "unreadable calldata")

        if len(calldata) < 4:
            return NotASwap(tx_hash, "no function selector")

        function = SWAP_SELECTORS.get(calldata[:4])
        if function is None:
            return NotASwap(tx_hash, f"unsupported selector 0x{calldata[:4].hex()}")

        try:
            args = function.decode_args(calldata)
        except (DecodingError, ValueError, OverflowError) as e:
            logger.debug(f"Calldata for {tx_hash} does not match {function.name}: {e}")
            return NotASwap(tx_hash, f"malformed {function.name} calldata")

        path = tuple(Web3.to_checksum_address(addr) for addr in args["path"])
        if len(path) < 2:
            return NotASwap(tx_hash, "swap path shorter than two tokens")

        if function.name in NATIVE_IN_FUNCTIONS:
            try:
                amount_in = _quantity(_field(tx, "value", default=0))
            except ValueError:
                return NotASwap(tx_hash, "unreadable value")
            source_token = NATIVE_TOKEN
        else:
            amount_in = int(args["amountIn"])
            source_token = path[0]

        destination_token = NATIVE_TOKEN if function.name in NATIVE_OUT_FUNCTIONS else path[-1]

        if amount_in <= 0:
            return NotASwap(tx_hash, "zero input amount")

        leader = _field(tx, "from", "from_address", default="")
        block_number = _field(tx, "blockNumber", "block_number")
        try:
            leader = Web3.to_checksum_address(leader) if leader else ""
            block_number = _quantity(block_number) if block_number is not None else None
        except (TypeError, ValueError):
            return NotASwap(tx_hash, "unreadable sender or block number")

        return SwapIntent(
            source_token=source_token,
            destination_token=destination_token,
            amount_in=amount_in,
            deadline=int(args["deadline"]),
            leader=leader,
            tx_hash=tx_hash,
            method=function.name,
            path=path,
            amount_out_min=int(args["amountOutMin"]),
            block_number=block_number,
        )
