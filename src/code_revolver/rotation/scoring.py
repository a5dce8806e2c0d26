"""Account scoring.

`switch_score` ranks switch candidates: user priority dominates, remaining
quota comes second, and accounts whose weekly window resets sooner are
preferred so load drifts toward quota that regenerates first.

`exhaustion_sort_key` is the display ordering of the live account list.
"""

import locale
import math
import time

from code_revolver.rotation.constants import (
    EXHAUSTION_GROUP_THRESHOLD_PERCENT,
    PRIORITY_WEIGHT,
    SECONDS_PER_DAY,
    SECONDS_PER_HOUR,
    UNKNOWN_RESET_PENALTY,
    UNKNOWN_USED_PERCENT,
    USAGE_WEIGHT,
)
from code_revolver.rotation.models import Account


def usage_score(account: Account) -> float:
    """200 minus both windows' usage; an unknown window counts as fully used."""
    return (
        200.0
        - account.primary_used_percent(UNKNOWN_USED_PERCENT)
        - account.secondary_used_percent(UNKNOWN_USED_PERCENT)
    )


def reset_penalty(account: Account, now: float | None = None) -> float:
    """Hours until the secondary window resets, or a flat penalty if unknown."""
    resets_at = account.secondary_resets_at
    if resets_at is None:
        return float(UNKNOWN_RESET_PENALTY)
    if now is None:
        now = time.time()
    return max(0.0, resets_at - now) / SECONDS_PER_HOUR


def switch_score(account: Account, now: float | None = None) -> float:
    """Score an account as a switch target. Higher is better."""
    return (
        account.priority * PRIORITY_WEIGHT
        + usage_score(account) * USAGE_WEIGHT
        - reset_penalty(account, now)
    )


def days_until_secondary_reset(account: Account, now: float | None = None) -> float:
    """Whole days until the secondary reset; infinity when unknown."""
    resets_at = account.secondary_resets_at
    if resets_at is None:
        return math.inf
    if now is None:
        now = time.time()
    return float(max(0, math.floor((resets_at - now) / SECONDS_PER_DAY)))


def exhaustion_sort_key(
    account: Account, now: float | None = None
) -> tuple[int, float, str, str]:
    """Sort key grouping accounts near weekly exhaustion after the rest.

    Order: secondary usage <= 90% first, then whole days to the secondary
    reset, then case-insensitive name, then file path.

    Names collate with `locale.strxfrm` under the process's LC_COLLATE. This
    module never calls `setlocale`; under the default "C" locale the order is
    plain code-point order of the casefolded name.
    """
    group = (
        0
        if account.secondary_used_percent(UNKNOWN_USED_PERCENT)
        <= EXHAUSTION_GROUP_THRESHOLD_PERCENT
        else 1
    )
    return (
        group,
        days_until_secondary_reset(account, now),
        locale.strxfrm(account.name.casefold()),
        account.file_path,
    )


def sort_for_display(accounts: list[Account], now: float | None = None) -> list[Account]:
    if now is None:
        now = time.time()
    return sorted(accounts, key=lambda account: exhaustion_sort_key(account, now))
