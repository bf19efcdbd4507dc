"""
Sort Pipeline: Serialized Sorting with Self-Healing Retries
==============================================================

One sort run:
  1. resolve the engine for the active context (no engine → silent no-op)
  2. candidates = deployed plugins in last known order, as file names
  3. wait for the previous run (at most one dispatch at a time)
  4. reload rule lists if the userlist changed on disk
  5. dispatch the sort and publish the result

Engine failures arrive already typed (see ``translate_engine_error``):

  EngineClosedError        → empty result, nothing published
  CyclicInteractionError   → cycle warning with fix dialog, no retry
  InvalidItemError         → drop the item and retry, unless it exists on disk
  MissingGroupError        → warning
  ConditionEvalError       → detailed report with file probe
  EngineError              → generic report
"""

from __future__ import annotations

import asyncio
import os
import time
import uuid
from collections.abc import Callable
from enum import StrEnum

import aiofiles.os

from autosort.core.config import Settings, get_settings
from autosort.core.exceptions import (
    ConditionEvalError,
    CyclicInteractionError,
    EngineClosedError,
    EngineError,
    InvalidItemError,
    MissingGroupError,
)
from autosort.core.games import is_supported
from autosort.core.host import HostState, RuleStore
from autosort.core.types import same_item
from autosort.infra.engine import EngineHandle
from autosort.infra.telemetry import (
    MetricsCollector,
    clear_log_context,
    get_logger,
    get_metrics,
    set_log_context,
)
from autosort.services.cycles import CYCLE_NOTIFICATION_ID, CycleResolver
from autosort.services.diagnostics import probe_file
from autosort.services.lifecycle import LifecycleManager
from autosort.services.notifications import NotificationCenter
from autosort.services.rule_lists import RuleListLoader

logger = get_logger(__name__)

FAILED_NOTIFICATION_ID = "autosort-failed"
ACTIVITY_GROUP = "plugins"
ACTIVITY_SORTING = "sorting"

SortCallback = Callable[[BaseException | None], None]


class SortOutcome(StrEnum):
    SORTED = "sorted"
    SKIPPED = "skipped"
    CLOSED = "closed"
    CYCLE = "cycle"
    FAILED = "failed"


class SortPipeline:
    """
    Runs sorts against the current engine.

    Usage:
        pipeline = SortPipeline(host, rules, lifecycle, rule_lists, notifications)
        await pipeline.on_sort(manual=False)   # respects the auto-sort preference
        await pipeline.sort()                  # raises unexpected errors
    """

    def __init__(
        self,
        host: HostState,
        rules: RuleStore,
        lifecycle: LifecycleManager,
        rule_lists: RuleListLoader,
        notifications: NotificationCenter,
        *,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._host = host
        self._lifecycle = lifecycle
        self._rule_lists = rule_lists
        self._notifications = notifications
        self._settings = settings or get_settings()
        self._metrics = metrics or get_metrics()
        self._lock = asyncio.Lock()
        self.cycles = CycleResolver(
            rules,
            notifications,
            lambda: self.on_sort(True),
            metrics=self._metrics,
        )

    # ── Entry points ───────────────────────────────────────────────

    async def on_sort(self, manual: bool, callback: SortCallback | None = None) -> SortOutcome:
        """Never raises; ``callback`` gets None or the unexpected error."""
        error: BaseException | None = None
        outcome = SortOutcome.SKIPPED
        try:
            if manual or self._host.autosort_enabled():
                outcome = await self._run()
        except Exception as e:  # handed to the callback instead
            logger.error("sort_failed", exc=e)
            error = e
            outcome = SortOutcome.FAILED
        if callback is not None:
            callback(error)
        return outcome

    async def sort(self) -> SortOutcome:
        """Manual sort that raises what ``on_sort`` would hand to its callback."""
        errors: list[BaseException | None] = []
        outcome = await self.on_sort(True, errors.append)
        if errors and errors[0] is not None:
            raise errors[0]
        return outcome

    async def wait(self) -> None:
        """Wait for pending engine initialization and the running sort."""
        try:
            await self._lifecycle.current()
        except Exception as e:  # waiting only, the owner reports it
            logger.debug("wait_init_failed", error=str(e))
        async with self._lock:
            pass

    # ── Candidates ─────────────────────────────────────────────────

    def build_candidates(self) -> list[str]:
        """Deployed plugins by last known position (unknown first), as file names."""
        deployed = [entry for entry in self._host.plugins().values() if entry.deployed]
        deployed.sort(key=lambda entry: entry.position)
        return [os.path.basename(entry.file_path) for entry in deployed]

    # ── Run ────────────────────────────────────────────────────────

    async def _run(self) -> SortOutcome:
        slot = await self._lifecycle.current()
        context = self._host.active_context()
        if not slot.serves(context) or not is_supported(context, self._settings):
            logger.debug("sort_skipped", game=context, engine_game=slot.context)
            return SortOutcome.SKIPPED

        candidates = self.build_candidates()
        async with self._lock:
            return await self._dispatch(slot.engine, context, candidates)

    async def _dispatch(self, engine: EngineHandle, context: str, candidates: list[str]) -> SortOutcome:
        set_log_context(context_id=context, run_id=uuid.uuid4().hex[:12])
        self._notifications.dismiss(CYCLE_NOTIFICATION_ID)
        self._notifications.start_activity(ACTIVITY_GROUP, ACTIVITY_SORTING)
        started = time.monotonic()
        outcome = SortOutcome.FAILED
        try:
            outcome = await self._sort_with_retry(engine, context, candidates)
            return outcome
        finally:
            self._notifications.stop_activity(ACTIVITY_GROUP, ACTIVITY_SORTING)
            self._metrics.record_sort(outcome.value, time.monotonic() - started)
            logger.info("sort_finished", game=context, outcome=outcome.value)
            clear_log_context()

    async def _sort_with_retry(
        self, engine: EngineHandle, context: str, candidates: list[str],
    ) -> SortOutcome:
        remaining = list(candidates)
        # every retry drops one candidate, so this can't run out of attempts
        for _ in range(len(candidates) + 1):
            try:
                await self._rule_lists.refresh(engine, context)
                ordered = await engine.sort_plugins(remaining)
            except EngineClosedError:
                logger.info("sort_engine_closed", game=context)
                return SortOutcome.CLOSED
            except CyclicInteractionError as e:
                await self.cycles.report(engine, e.cycle)
                return SortOutcome.CYCLE
            except InvalidItemError as e:
                if not await self._drop_invalid(e, remaining):
                    return SortOutcome.FAILED
                continue
            except MissingGroupError as e:
                self._warn_not_sorted(e)
                return SortOutcome.FAILED
            except ConditionEvalError as e:
                await self._report_condition_failure(e)
                return SortOutcome.FAILED
            except EngineError as e:
                self._notifications.show_error(
                    "Sorting engine operation failed",
                    e,
                    notification_id=FAILED_NOTIFICATION_ID,
                )
                return SortOutcome.FAILED

            self._host.update_plugin_order(ordered)
            logger.info("plugins_sorted", game=context, count=len(ordered))
            return SortOutcome.SORTED

        return SortOutcome.FAILED

    # ── Failure handling ───────────────────────────────────────────

    def _warn_not_sorted(self, error: EngineError) -> None:
        self._notifications.warn(
            FAILED_NOTIFICATION_ID,
            f"Plugins not sorted because: {error.detail}",
        )

    def _data_path(self, name: str) -> str:
        return os.path.abspath(os.path.join(self._host.game_path() or "", "data", name))

    async def _drop_invalid(self, error: InvalidItemError, remaining: list[str]) -> bool:
        """Remove the rejected item from ``remaining``. False if it can't be dropped."""
        game_path = self._host.game_path()
        if game_path and await aiofiles.os.path.exists(self._data_path(error.item)):
            # the file is there, the engine has a different problem with it
            self._warn_not_sorted(error)
            return False

        index = next(
            (idx for idx, candidate in enumerate(remaining) if same_item(candidate, error.item)),
            None,
        )
        if index is None:
            self._warn_not_sorted(error)
            return False

        logger.info("sort_retry_without_item", item=remaining[index])
        self._metrics.record_retry()
        del remaining[index]
        return True

    async def _report_condition_failure(self, error: ConditionEvalError) -> None:
        if error.path is None:
            self._notifications.show_error(
                "Sorting engine operation failed",
                error,
                notification_id=FAILED_NOTIFICATION_ID,
            )
            return

        probe = await probe_file(self._data_path(error.path), self._settings.PROBE_TIMEOUT_S)
        self._notifications.show_error(
            "Sorting engine operation failed",
            {"error": error, **probe.to_report()},
            notification_id=FAILED_NOTIFICATION_ID,
            allow_report=error.allow_report,
        )
