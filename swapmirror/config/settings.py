"""
Copy Trading Defaults
Leader swaps through a fixed Uniswap V2 router are replicated for followers
"""

# === CHAIN RPC ===
# Holesky testnet by default; override with RPC_URLS (comma separated)
RPC_URLS = [
    "https://ethereum-holesky-rpc.publicnode.com",
    "https://holesky.drpc.org",
]

# === EXCHANGE CONTRACTS ===
# Uniswap V2 Router02
ROUTER_ADDRESS = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"

# === COPY TRADE SETTINGS ===
# Share of the leader's input amount to copy, in basis points (1000 = 10%)
COPY_BPS = 1000

# Optional cap on a single replica, in base units of the input token (0 = no cap)
MAX_REPLICA_AMOUNT = 0

# === SLIPPAGE PROTECTION ===
# "slippage" quotes the router, "leader" scales the leader's own minimum,
# "none" accepts any output (explicit opt-out)
OUTPUT_PROTECTION = "slippage"

# Maximum slippage tolerance in basis points (50 = 0.5%)
MAX_SLIPPAGE_BPS = 50

# === MONITORING SETTINGS ===
# How often to check for new blocks (seconds)
POLL_INTERVAL = 1.0

# Number of blocks to look back when starting
LOOKBACK_BLOCKS = 0

# How many blocks to wait for confirmation
CONFIRMATION_BLOCKS = 2

# Processed transaction hashes remembered per leader
DEDUPE_WINDOW = 1000

# Consecutive feed failures before the watcher gives up (0 = never)
MAX_RESUBSCRIBE_ATTEMPTS = 10
RESUBSCRIBE_BACKOFF = 1.0
RESUBSCRIBE_BACKOFF_MAX = 60.0

# Re-read the follower registry every N processed blocks, so subscriptions
# written by another process (e.g. the CLI) are picked up while running
REGISTRY_REFRESH_BLOCKS = 1

# === TRADE EXECUTION ===
# Concurrent replication workers and queue bound
WORKERS = 8
QUEUE_SIZE = 1000

# Seconds from submission until a replica swap expires on-chain
DEADLINE_WINDOW = 20 * 60

# Seconds to wait for a receipt, and for a whole replication
RECEIPT_TIMEOUT = 120.0
EXECUTION_TIMEOUT = 300.0

# Seconds a stopping watcher waits for queued replications to finish
SHUTDOWN_TIMEOUT = 30.0

# Gas settings
GAS_PRICE_MULTIPLIER = 1.1  # 10% above node gas price
GAS_LIMIT_MULTIPLIER = 1.2  # 20% above estimate

# Retry settings (timed out broadcasts only)
MAX_RETRIES = 3
RETRY_DELAY = 2  # seconds

# === STORAGE ===
DB_PATH = "data/swapmirror.sqlite"

# === LOGGING ===
LOG_FILE = "data/logs/swapmirror.log"
LOG_LEVEL = "INFO"
