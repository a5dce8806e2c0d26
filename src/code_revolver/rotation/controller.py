"""Rotation controller.

Owns the live account set and drives refresh cycles:

    IDLE -> SCANNING -> AWAITING_USAGE -> SETTLED

A cycle scans the account store, seeds every account with its cached usage,
then fetches fresh usage for all accounts concurrently. Each fetch result is
applied to its own account as soon as it arrives. When every fetch of a
cycle has completed, the auto-switch loop evaluates once against the live
set, unless a newer cycle has already been evaluated.

Switching is a two-phase operation: after the store confirms activation the
active flag is flipped locally (phase 1), then a full refresh reconciles with
the store (phase 2), whose result always wins.
"""

import asyncio
import time
from collections.abc import Callable, Coroutine, Iterable
from enum import StrEnum
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from structlog import get_logger

from code_revolver.config.rotation import (
    PoolMetadata,
    RotationConfig,
    RotationConfigStore,
    resolve_pool,
)
from code_revolver.exceptions import (
    AccountNotFoundError,
    ActivationError,
    ScanError,
)
from code_revolver.rotation.cache import UsageCache
from code_revolver.rotation.constants import (
    DEFAULT_RANKED_CANDIDATES_LIMIT,
    USAGE_REFRESH_JOB_ID,
)
from code_revolver.rotation.interfaces import (
    AccountStore,
    FetchFailure,
    UsageProvider,
    classify_fetch_failure,
)
from code_revolver.rotation.models import Account, UsageSnapshot
from code_revolver.rotation.scoring import sort_for_display
from code_revolver.rotation.selector import (
    auto_switch_target,
    best_switch_target,
    find_active,
    needs_rotation,
    ranked_candidates,
)


logger = get_logger(__name__)

AccountsListener = Callable[[list[Account]], None]


class RefreshPhase(StrEnum):
    """Refresh cycle phases."""

    IDLE = "idle"
    SCANNING = "scanning"
    AWAITING_USAGE = "awaiting_usage"
    SETTLED = "settled"


class RotationController:
    """Keeps account usage current and decides which account is active.

    Features:
    - Non-blocking refresh: returns once accounts and cached usage are known
    - Concurrent, order-independent usage fetches per account
    - Optimistic switch followed by authoritative reconciliation
    - Auto-switch evaluated exactly once per settled refresh cycle
    - Periodic refresh via APScheduler
    """

    def __init__(
        self,
        store: AccountStore,
        provider: UsageProvider,
        cache: UsageCache,
        config: RotationConfig | None = None,
        config_store: RotationConfigStore | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the controller.

        Args:
            store: Account store to scan and activate accounts with
            provider: Usage provider queried once per account per cycle
            cache: Persistent usage cache
            config: Initial rotation config. Loaded from `config_store` (or
                defaults) when omitted
            config_store: Where config changes are persisted, if anywhere
            clock: Returns the current time in epoch seconds
        """
        self._store = store
        self._provider = provider
        self._cache = cache
        self._config_store = config_store
        if config is None:
            config = config_store.load() if config_store else RotationConfig()
        self._config = config
        self._clock = clock

        self._accounts: list[Account] = []
        self._accounts_dir = ""
        self._phase = RefreshPhase.IDLE
        self._cycle = 0
        self._last_evaluated_cycle = 0
        self._settled_event = asyncio.Event()
        self._settled_event.set()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._switch_lock = asyncio.Lock()
        self._listeners: list[AccountsListener] = []
        self._scheduler: Any = None  # AsyncIOScheduler from apscheduler
        self._running = False

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def accounts(self) -> list[Account]:
        """Snapshot of the live account set in display order."""
        return list(self._accounts)

    @property
    def accounts_dir(self) -> str:
        return self._accounts_dir

    @property
    def phase(self) -> RefreshPhase:
        return self._phase

    @property
    def cycle(self) -> int:
        """Number of the latest refresh cycle that scanned successfully."""
        return self._cycle

    @property
    def config(self) -> RotationConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_account(self) -> Account | None:
        return find_active(self._accounts)

    def get_account(self, file_path: str) -> Account | None:
        return next((a for a in self._accounts if a.key == file_path), None)

    def best_switch_target(self) -> Account | None:
        """Best account overall, excluding expired and near-exhausted ones."""
        return best_switch_target(self._accounts, self._clock())

    def ranked_candidates(
        self, limit: int = DEFAULT_RANKED_CANDIDATES_LIMIT
    ) -> list[Account]:
        """Top alternatives to the active account."""
        return ranked_candidates(self._accounts, limit, self._clock())

    def get_status(self) -> dict[str, Any]:
        """Get controller status for monitoring."""
        best = self.best_switch_target()
        active = self.active_account
        return {
            "phase": self._phase.value,
            "cycle": self._cycle,
            "accountsDir": self._accounts_dir,
            "totalAccounts": len(self._accounts),
            "expiredAccounts": sum(1 for a in self._accounts if a.is_token_expired),
            "activeAccount": active.key if active else None,
            "bestCandidate": best.key if best else None,
            "autoSwitch": self._config.auto_switch.model_dump(by_alias=True),
        }

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: AccountsListener) -> Callable[[], None]:
        """Register a listener called with the account list after each change.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = self.accounts
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001 - a broken listener must not stop rotation
                logger.exception("rotation_listener_failed")

    def _set_accounts(self, accounts: Iterable[Account]) -> None:
        self._accounts = sort_for_display(list(accounts), self._clock())
        self._publish()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start periodic refresh and run an initial cycle."""
        if self._running:
            logger.warning("rotation_controller_already_running")
            return

        self._scheduler = AsyncIOScheduler()
        self._schedule_refresh_job()
        self._scheduler.start()
        self._running = True

        logger.info(
            "rotation_controller_started",
            auto_check=self._config.auto_check,
            check_interval_minutes=self._config.check_interval,
            auto_switch=self._config.auto_switch.enabled,
        )

        await self.refresh()

    async def stop(self) -> None:
        """Stop periodic refresh and cancel in-flight usage fetches."""
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._settled_event.set()

        if self._running:
            self._running = False
            logger.info("rotation_controller_stopped")

    def _schedule_refresh_job(self) -> None:
        if self._scheduler is None:
            return

        if self._scheduler.get_job(USAGE_REFRESH_JOB_ID):
            self._scheduler.remove_job(USAGE_REFRESH_JOB_ID)

        if not self._config.auto_check or self._config.check_interval <= 0:
            logger.info("usage_refresh_job_disabled")
            return

        self._scheduler.add_job(
            self.refresh,
            "interval",
            minutes=self._config.check_interval,
            id=USAGE_REFRESH_JOB_ID,
            name="Usage Refresh",
            coalesce=True,
        )

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Refresh cycle
    # ------------------------------------------------------------------

    async def refresh(self) -> list[Account]:
        """Start a refresh cycle.

        Returns once the account list is scanned and seeded with cached
        usage; live usage arrives later and is published to subscribers.
        On a scan failure the previous account set is kept and returned.
        """
        previous_phase = self._phase
        self._phase = RefreshPhase.SCANNING

        try:
            scan = await self._store.scan_accounts()
        except (ScanError, OSError) as e:
            self._phase = previous_phase
            logger.error("account_scan_failed", error=str(e))
            return self.accounts

        self._cycle += 1
        cycle = self._cycle
        accounts = self._seed(scan.accounts)
        self._accounts_dir = scan.accounts_dir
        self._phase = RefreshPhase.AWAITING_USAGE
        self._set_accounts(accounts)

        logger.info("refresh_cycle_started", cycle=cycle, accounts=len(accounts))

        settled = asyncio.Event()
        self._settled_event = settled
        fetches = [self._spawn(self._fetch_one(account)) for account in accounts]
        self._spawn(self._settle(cycle, fetches, settled))

        return self.accounts

    async def wait_settled(self) -> None:
        """Wait until the latest refresh cycle has settled.

        Cycles started while waiting (for example by an automatic switch)
        are waited for as well.
        """
        while True:
            cycle = self._cycle
            await self._settled_event.wait()
            if cycle == self._cycle:
                return

    def _seed(self, scanned: list[Account]) -> list[Account]:
        """Apply pool metadata and cached usage to freshly scanned accounts."""
        migrations: dict[str, PoolMetadata] = {}
        seeded: list[Account] = []
        active_seen = False

        for account in scanned:
            pool, migrated = resolve_pool(self._config, account)
            if migrated:
                migrations[account.id] = pool

            is_active = account.is_active and not active_seen
            if account.is_active and active_seen:
                logger.warning("multiple_active_accounts", account=account.key)
            active_seen = active_seen or is_active

            entry = self._cache.get(account.key)
            seeded.append(
                account.copy(
                    pool=pool,
                    is_active=is_active,
                    is_token_expired=False,
                    usage=entry.usage if entry else account.usage,
                    last_usage_update=(
                        entry.cached_at if entry else account.last_usage_update
                    ),
                )
            )

        if migrations:
            logger.info("pool_metadata_migrated", accounts=list(migrations))
            self._apply_config(self._config.merged(account_pool=migrations))

        return seeded

    async def _fetch_one(self, account: Account) -> None:
        try:
            usage = await self._provider.fetch_usage(account)
        except Exception as e:  # noqa: BLE001 - every fetch failure is per-account
            self._apply_failure(account, e)
            return
        self._apply_usage(account, usage)

    def _replace_account(self, key: str, **changes: Any) -> bool:
        for index, current in enumerate(self._accounts):
            if current.key == key:
                accounts = list(self._accounts)
                accounts[index] = current.copy(**changes)
                self._set_accounts(accounts)
                return True
        return False

    def _apply_usage(self, account: Account, usage: UsageSnapshot) -> None:
        timestamp = int(self._clock() * 1000)
        self._cache.put(account.key, usage, timestamp)
        self._replace_account(
            account.key,
            usage=usage,
            is_token_expired=False,
            last_usage_update=timestamp,
        )
        logger.debug(
            "usage_updated",
            account=account.name,
            primary=usage.primary_used_percent(),
            secondary=usage.secondary_used_percent(),
        )

    def _apply_failure(self, account: Account, error: BaseException) -> None:
        timestamp = int(self._clock() * 1000)
        failure = classify_fetch_failure(error)
        current = self.get_account(account.key)

        changes: dict[str, Any] = {"last_usage_update": timestamp}
        if failure is FetchFailure.UNAUTHORIZED:
            changes["is_token_expired"] = True
        self._replace_account(account.key, **changes)

        if failure is FetchFailure.UNAUTHORIZED:
            logger.warning(
                "account_token_expired",
                account=account.name,
                error=str(error),
            )
        else:
            logger.warning(
                "usage_fetch_failed",
                account=account.name,
                error=str(error),
                kept_cached_usage=bool(current and current.usage),
            )

    async def _settle(
        self,
        cycle: int,
        fetches: list[asyncio.Task[Any]],
        settled: asyncio.Event,
    ) -> None:
        try:
            await asyncio.gather(*fetches, return_exceptions=True)
            if cycle == self._cycle:
                self._phase = RefreshPhase.SETTLED
                self._publish()
                logger.info("refresh_cycle_settled", cycle=cycle)
            else:
                # Still evaluated, or a refresh timer faster than the fetches
                # would starve the auto-switch loop
                logger.debug("refresh_cycle_superseded", cycle=cycle, latest=self._cycle)
            await self._evaluate_auto_switch(cycle)
        finally:
            settled.set()

    # ------------------------------------------------------------------
    # Switching
    # ------------------------------------------------------------------

    async def switch_account(self, file_path: str) -> Account:
        """Activate an account and reconcile.

        Args:
            file_path: Identity of the account to activate

        Returns:
            The target account as it was when the switch was issued

        Raises:
            AccountNotFoundError: If the account is not in the live set
            ActivationError: If the store failed to activate it; no local
                state is changed in that case
        """
        async with self._switch_lock:
            return await self._switch_locked(file_path)

    async def _switch_locked(self, file_path: str) -> Account:
        """Switch body shared by manual and automatic rotation.

        Caller must hold `_switch_lock`.
        """
        target = self.get_account(file_path)
        if target is None:
            raise AccountNotFoundError(file_path)

        previous = self.active_account
        try:
            await self._store.activate_account(target)
        except ActivationError as e:
            logger.error("account_switch_failed", account=target.name, error=str(e))
            raise
        except OSError as e:
            logger.error("account_switch_failed", account=target.name, error=str(e))
            raise ActivationError(str(e), file_path=file_path) from e

        # Phase 1: optimistic local flip
        self._set_accounts(
            account.copy(is_active=account.key == file_path)
            if account.is_active or account.key == file_path
            else account
            for account in self._accounts
        )
        logger.info(
            "account_switched",
            account=target.name,
            previous=previous.name if previous else None,
        )

        # Phase 2: authoritative reconciliation
        await self.refresh()
        return target

    async def _evaluate_auto_switch(self, cycle: int) -> None:
        if cycle <= self._last_evaluated_cycle:
            return
        self._last_evaluated_cycle = cycle

        if not self._config.auto_switch.enabled:
            return

        # Decide under the lock so a switch that finished while we waited
        # is seen before choosing a target
        async with self._switch_lock:
            auto_switch = self._config.auto_switch
            active = self.active_account
            if not auto_switch.enabled or active is None:
                return

            target = auto_switch_target(
                self._accounts, auto_switch.threshold_percent, self._clock()
            )
            if target is None:
                if needs_rotation(active, auto_switch.used_percent_limit):
                    logger.info(
                        "auto_switch_no_candidate",
                        account=active.name,
                        threshold=auto_switch.threshold_percent,
                    )
                return

            logger.info(
                "auto_switch_triggered",
                account=active.name,
                target=target.name,
                expired=active.is_token_expired,
                primary=active.primary_used_percent(),
                secondary=active.secondary_used_percent(),
                threshold=auto_switch.threshold_percent,
            )
            try:
                await self._switch_locked(target.key)
            except ActivationError as e:
                logger.error("auto_switch_failed", target=target.name, error=str(e))
            except Exception:  # noqa: BLE001 - the loop runs in a background task
                logger.exception("auto_switch_failed", target=target.name)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def _apply_config(self, config: RotationConfig) -> None:
        previous = self._config
        self._config = config
        if self._config_store is not None:
            self._config_store.save(config)
        if (
            previous.auto_check != config.auto_check
            or previous.check_interval != config.check_interval
        ):
            self._schedule_refresh_job()

    def update_config(self, **changes: Any) -> RotationConfig:
        """Apply config changes, persist them and reschedule if needed."""
        self._apply_config(self._config.merged(**changes))
        logger.info("rotation_config_updated", changes=sorted(changes))
        return self._config

    def set_auto_switch(
        self, enabled: bool | None = None, threshold_percent: Any = None
    ) -> RotationConfig:
        changes: dict[str, Any] = {}
        if enabled is not None:
            changes["enabled"] = enabled
        if threshold_percent is not None:
            changes["threshold_percent"] = threshold_percent
        return self.update_config(auto_switch=changes)

    def set_priority(self, account_id: str, priority: Any) -> PoolMetadata:
        """Set an account's pool priority (normalised to 1-10).

        Args:
            account_id: Account id (or file path for accounts without an id)
            priority: Requested priority

        Returns:
            The stored metadata
        """
        metadata = PoolMetadata.coerce(priority)
        self.update_config(account_pool={account_id: metadata})
        matching = [
            a.key
            for a in self._accounts
            if a.id == account_id or (not a.id and a.file_path == account_id)
        ]
        if matching:
            self._set_accounts(
                a.copy(pool=metadata) if a.key in matching else a
                for a in self._accounts
            )
        return metadata
