"""
Swap Copy Trading Module
Watch leader wallets and replicate their swaps for followers
"""

__version__ = "0.1.0"

from .chain import BlockActivity, ChainClient, Web3ChainClient
from .decoder import SwapIntentDecoder
from .errors import (
    CredentialError,
    ExecutionError,
    ExecutionErrorKind,
    PolicyError,
    ReplicatorError,
    WatcherError,
)
from .executor import (
    AcceptAnyOutput,
    DryRunExecutor,
    MatchLeaderLimit,
    ReplicationExecutor,
    SlippageTolerance,
)
from .scaler import CappedPolicy, FixedFractionPolicy, scale
from .types import (
    NATIVE_TOKEN,
    CredentialRecord,
    FollowerProfile,
    LeaderState,
    NotASwap,
    ReplicationAttempt,
    SwapIntent,
)
from .vault import CredentialVault, SecretKeeper, provision_wallet
from .watcher import AddressWatcher

__all__ = [
    'BlockActivity',
    'ChainClient',
    'Web3ChainClient',
    'SwapIntentDecoder',
    'CredentialError',
    'ExecutionError',
    'ExecutionErrorKind',
    'PolicyError',
    'ReplicatorError',
    'WatcherError',
    'AcceptAnyOutput',
    'DryRunExecutor',
    'MatchLeaderLimit',
    'ReplicationExecutor',
    'SlippageTolerance',
    'CappedPolicy',
    'FixedFractionPolicy',
    'scale',
    'NATIVE_TOKEN',
    'CredentialRecord',
    'FollowerProfile',
    'LeaderState',
    'NotASwap',
    'ReplicationAttempt',
    'SwapIntent',
    'CredentialVault',
    'SecretKeeper',
    'provision_wallet',
    'AddressWatcher',
]
