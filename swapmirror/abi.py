"""
Router and ERC20 call signatures
Calldata encoding shared by the decoder and the executor
"""

from dataclasses import dataclass
from typing import Any, Dict, Sequence, Tuple

from eth_abi import decode, encode
from web3 import Web3


@dataclass(frozen=True)
class FunctionSpec:
    """One contract function: name, argument names and ABI types"""
    name: str
    arg_names: Tuple[str, ...]
    arg_types: Tuple[str, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.arg_types)})"

    @property
    def selector(self) -> bytes:
        return bytes(Web3.keccak(text=self.signature)[:4])

    def encode_call(self, *args: Any) -> bytes:
        """Build calldata (selector + ABI encoded args)."""
        return self.selector + encode(list(self.arg_types), list(args))

    def decode_args(self, calldata: bytes) -> Dict[str, Any]:
        """Decode calldata that already starts with this selector."""
        values = decode(list(self.arg_types), calldata[4:])
        return dict(zip(self.arg_names, values))


# === Uniswap V2 router: exact-input swaps ===
SWAP_EXACT_TOKENS_FOR_TOKENS = FunctionSpec(
    "swapExactTokensForTokens",
    ("amountIn", "amountOutMin", "path", "to", "deadline"),
    ("uint256", "uint256", "address[]", "address", "uint256"),
)
SWAP_EXACT_ETH_FOR_TOKENS = FunctionSpec(
    "swapExactETHForTokens",
    ("amountOutMin", "path", "to", "deadline"),
    ("uint256", "address[]", "address", "uint256"),
)
SWAP_EXACT_TOKENS_FOR_ETH = FunctionSpec(
    "swapExactTokensForETH",
    ("amountIn", "amountOutMin", "path", "to", "deadline"),
    ("uint256", "uint256", "address[]", "address", "uint256"),
)
SWAP_EXACT_TOKENS_FOR_TOKENS_FOT = FunctionSpec(
    "swapExactTokensForTokensSupportingFeeOnTransferTokens",
    SWAP_EXACT_TOKENS_FOR_TOKENS.arg_names,
    SWAP_EXACT_TOKENS_FOR_TOKENS.arg_types,
)
SWAP_EXACT_ETH_FOR_TOKENS_FOT = FunctionSpec(
    "swapExactETHForTokensSupportingFeeOnTransferTokens",
    SWAP_EXACT_ETH_FOR_TOKENS.arg_names,
    SWAP_EXACT_ETH_FOR_TOKENS.arg_types,
)
SWAP_EXACT_TOKENS_FOR_ETH_FOT = FunctionSpec(
    "swapExactTokensForETHSupportingFeeOnTransferTokens",
    SWAP_EXACT_TOKENS_FOR_ETH.arg_names,
    SWAP_EXACT_TOKENS_FOR_ETH.arg_types,
)

# Router quote
GET_AMOUNTS_OUT = FunctionSpec(
    "getAmountsOut",
    ("amountIn", "path"),
    ("uint256", "address[]"),
)

# === ERC20 ===
ERC20_APPROVE = FunctionSpec("approve", ("spender", "amount"), ("address", "uint256"))
ERC20_ALLOWANCE = FunctionSpec("allowance", ("owner", "spender"), ("address", "address"))
ERC20_BALANCE_OF = FunctionSpec("balanceOf", ("account",), ("address",))

SWAP_FUNCTIONS: Sequence[FunctionSpec] = (
    SWAP_EXACT_TOKENS_FOR_TOKENS,
    SWAP_EXACT_ETH_FOR_TOKENS,
    SWAP_EXACT_TOKENS_FOR_ETH,
    SWAP_EXACT_TOKENS_FOR_TOKENS_FOT,
    SWAP_EXACT_ETH_FOR_TOKENS_FOT,
    SWAP_EXACT_TOKENS_FOR_ETH_FOT,
)

# Selector -> function, for the decoder
SWAP_SELECTORS: Dict[bytes, FunctionSpec] = {fn.selector: fn for fn in SWAP_FUNCTIONS}

NATIVE_IN_FUNCTIONS = frozenset({SWAP_EXACT_ETH_FOR_TOKENS.name, SWAP_EXACT_ETH_FOR_TOKENS_FOT.name})
NATIVE_OUT_FUNCTIONS = frozenset({SWAP_EXACT_TOKENS_FOR_ETH.name, SWAP_EXACT_TOKENS_FOR_ETH_FOT.name})

# Maximum uint256
MAX_UINT256 = 2**256 - 1


def to_bytes(data: Any) -> bytes:
    """Normalize tx input (hex string, HexBytes, bytes) to bytes."""
    if data is None:
        return b""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if isinstance(data, str):
        text = data[2:] if data.startswith(("0x", "0X")) else data
        return bytes.fromhex(text)
    raise TypeError(f"Unsupported calldata type: {type(data).__name__}")
