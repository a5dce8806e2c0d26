"""Account rotation engine for Code Revolver.

Tracks quota usage for every account, ranks switch candidates and rotates the
active account manually or automatically when it nears exhaustion.
"""

from code_revolver.rotation.cache import CacheEntry, UsageCache
from code_revolver.rotation.controller import RefreshPhase, RotationController
from code_revolver.rotation.interfaces import (
    AccountStore,
    FetchFailure,
    UsageProvider,
    classify_fetch_failure,
)
from code_revolver.rotation.models import (
    Account,
    ScanResult,
    UsageSnapshot,
    UsageWindow,
)
from code_revolver.rotation.scoring import exhaustion_sort_key, switch_score
from code_revolver.rotation.selector import (
    auto_switch_target,
    best_switch_target,
    ranked_candidates,
)
from code_revolver.rotation.usage_client import HttpUsageProvider, UsageCredentials


__all__ = [
    "Account",
    "AccountStore",
    "CacheEntry",
    "FetchFailure",
    "HttpUsageProvider",
    "RefreshPhase",
    "RotationController",
    "ScanResult",
    "UsageCache",
    "UsageCredentials",
    "UsageProvider",
    "UsageSnapshot",
    "UsageWindow",
    "auto_switch_target",
    "best_switch_target",
    "classify_fetch_failure",
    "exhaustion_sort_key",
    "ranked_candidates",
    "switch_score",
]
