"""
Engine Lifecycle: One Live Engine per Active Context
=======================================================

Keeps exactly one authoritative task resolving to an ``EngineSlot`` (the
context it was built for plus its engine, or None when the context has no
engine). Context switches replace that task immediately; the task being
replaced is never cancelled, its result is just no longer read by anyone
but the switch that superseded it.

Engines that stop being current are retired: closed after a grace delay
so work they already accepted can finish. If their context becomes active
again before the delay runs out, the engine is reclaimed instead.

Initialization:
  working directory → native engine → masterlist refresh → rule lists
Only engine creation is fatal (slot without engine); the other steps are
reported and the engine stays usable.
"""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass

import aiofiles.os

from autosort.core.config import Settings, get_settings
from autosort.core.events import RULE_LISTS_UPDATED
from autosort.core.exceptions import EngineClosedError, EngineError, EngineInitError
from autosort.core.games import ContextPaths, engine_game_id, is_supported, masterlist_repository
from autosort.core.host import HostState
from autosort.infra.engine import EngineFactory, EngineHandle
from autosort.infra.telemetry import MetricsCollector, engine_log_callback, get_logger, get_metrics
from autosort.services.notifications import NotificationCenter
from autosort.services.rule_lists import RuleListLoader

logger = get_logger(__name__)

NOT_INITIALISED = "Sorting engine not initialised"
DIRECTORY_ERROR_ID = "autosort-directory-failed"
INIT_ERROR_ID = "autosort-init-failed"
MASTERLIST_ERROR_ID = "autosort-masterlist-update-failed"


@dataclass(frozen=True)
class EngineSlot:
    """Engine for a context, ``engine`` is None if there is none."""

    context: str | None = None
    engine: EngineHandle | None = None
    masterlist_updated: bool | None = None

    @property
    def usable(self) -> bool:
        return self.engine is not None and not self.engine.is_closed()

    def serves(self, context: str | None) -> bool:
        return self.usable and context is not None and self.context == context


@dataclass
class _Retiring:
    engine: EngineHandle
    timer: asyncio.TimerHandle
    reclaimable: bool


class LifecycleManager:
    """
    Starts and stops engines as the active context changes.

    Usage:
        lifecycle = LifecycleManager(host, factory, notifications, rule_lists)
        lifecycle.on_context_changed("skyrimse")
        slot = await lifecycle.current()
    """

    def __init__(
        self,
        host: HostState,
        factory: EngineFactory,
        notifications: NotificationCenter,
        rule_lists: RuleListLoader,
        *,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._host = host
        self._factory = factory
        self._notifications = notifications
        self._rule_lists = rule_lists
        self._settings = settings or get_settings()
        self._metrics = metrics or get_metrics()
        self._slot: asyncio.Future[EngineSlot] | None = None
        self._retiring: dict[int, _Retiring] = {}

    # ── Slot access ────────────────────────────────────────────────

    def _current_future(self) -> asyncio.Future[EngineSlot]:
        if self._slot is None:
            fut: asyncio.Future[EngineSlot] = asyncio.get_running_loop().create_future()
            fut.set_result(EngineSlot())
            self._slot = fut
        return self._slot

    async def current(self, context: str | None = None) -> EngineSlot:
        """
        Wait for the current slot.

        If ``context`` is given and isn't what the slot was built for, switch
        to it first.
        """
        slot = await asyncio.shield(self._current_future())
        if context is not None and slot.context != context:
            self.on_context_changed(context)
            slot = await asyncio.shield(self._current_future())
        return slot

    def on_context_changed(self, context: str | None) -> asyncio.Future[EngineSlot]:
        """Switch to ``context``. Fire-and-forget; returns the new slot task."""
        previous = self._current_future()
        task = asyncio.ensure_future(self._switch(previous, context))
        self._slot = task
        return task

    def restart(self) -> asyncio.Future[EngineSlot]:
        """Stop and start the engine for the active context, e.g. after it was killed."""
        previous = self._current_future()
        task = asyncio.ensure_future(self._restart(previous))
        self._slot = task
        return task

    async def _settled(self, previous: asyncio.Future[EngineSlot]) -> EngineSlot:
        try:
            return await previous
        except Exception as e:  # a broken predecessor must not block switching
            logger.error("engine_slot_failed", exc=e)
            return EngineSlot()

    async def _switch(self, previous: asyncio.Future[EngineSlot], context: str | None) -> EngineSlot:
        slot = await self._settled(previous)
        if slot.context == context:
            return slot
        logger.info("context_changed", previous=slot.context, game=context)
        self._retire(slot.engine)
        return await self._start(context)

    async def _restart(self, previous: asyncio.Future[EngineSlot]) -> EngineSlot:
        slot = await self._settled(previous)
        context = self._host.active_context()
        logger.info("engine_restart", game=context)
        self._retire(slot.engine, reclaimable=False)
        return await self._start(context)

    # ── Teardown ───────────────────────────────────────────────────

    def _retire(self, engine: EngineHandle | None, *, reclaimable: bool = True) -> None:
        if engine is None:
            return
        if engine.is_closed():
            # native side is gone already, only the handle needs releasing
            engine.close()
            return
        loop = asyncio.get_running_loop()
        timer = loop.call_later(self._settings.ENGINE_CLOSE_GRACE_S, self._close_retired, engine)
        self._retiring[id(engine)] = _Retiring(engine=engine, timer=timer, reclaimable=reclaimable)
        logger.info(
            "engine_retiring",
            game=engine.context,
            grace_s=self._settings.ENGINE_CLOSE_GRACE_S,
        )

    def _close_retired(self, engine: EngineHandle) -> None:
        if self._retiring.pop(id(engine), None) is not None:
            engine.close()

    def _reclaim(self, context: str) -> EngineHandle | None:
        for key, entry in list(self._retiring.items()):
            if entry.reclaimable and entry.engine.context == context and not entry.engine.is_closed():
                entry.timer.cancel()
                del self._retiring[key]
                return entry.engine
        return None

    @property
    def retiring_count(self) -> int:
        return len(self._retiring)

    async def shutdown(self) -> None:
        """Close every engine now, current one included."""
        for entry in list(self._retiring.values()):
            entry.timer.cancel()
            entry.engine.close()
        self._retiring.clear()
        slot = await self._settled(self._current_future())
        if slot.engine is not None:
            slot.engine.close()
        logger.info("lifecycle_shutdown")

    # ── Startup ────────────────────────────────────────────────────

    async def _start(self, context: str | None) -> EngineSlot:
        if not is_supported(context, self._settings):
            return EngineSlot(context=context)
        engine = self._reclaim(context)
        if engine is not None:
            logger.info("engine_reclaimed", game=context)
            return EngineSlot(context=context, engine=engine)
        return await self._initialize(context)

    async def _initialize(self, context: str) -> EngineSlot:
        paths = ContextPaths.for_context(context, self._settings)
        game_path = self._host.game_path()
        self._rule_lists.forget(context)

        try:
            await aiofiles.os.makedirs(paths.local, exist_ok=True)
        except OSError as e:
            self._notifications.show_error(
                "Failed to create necessary directory", e,
                notification_id=DIRECTORY_ERROR_ID, allow_report=False,
            )

        try:
            native = await self._factory.create(
                engine_game_id(context, False, self._settings),
                game_path,
                str(paths.local),
                self._settings.ENGINE_LANGUAGE,
                engine_log_callback(),
            )
        except Exception as e:  # any binding failure leaves this context without engine
            error = EngineInitError(str(e), game=context, original_error=e)
            self._notifications.show_error(
                "Failed to initialize the sorting engine",
                {"error": error, "game": context, "path": game_path},
                notification_id=INIT_ERROR_ID,
                allow_report=False,
            )
            self._metrics.record_engine_init("failed")
            return EngineSlot(context=context)

        engine = EngineHandle(context, native, metrics=self._metrics)
        self._metrics.record_engine_init("created")
        logger.info("engine_created", game=context, path=game_path)

        updated = await self._refresh_masterlist(engine, context, paths)
        try:
            # lists have to be loaded once; sorts only reload them when the userlist changes
            await self._rule_lists.load(engine, context, with_state=True)
        except EngineClosedError:
            logger.warning("engine_closed_during_init", game=context)
        return EngineSlot(context=context, engine=engine, masterlist_updated=updated)

    async def _refresh_masterlist(
        self, engine: EngineHandle, context: str, paths: ContextPaths,
    ) -> bool | None:
        try:
            await aiofiles.os.makedirs(paths.masterlist_dir, exist_ok=True)
            updated = await engine.refresh_shared_list(
                str(paths.masterlist),
                masterlist_repository(context, self._settings),
                self._settings.LIST_REVISION,
            )
        except (OSError, EngineError) as e:
            self._notifications.show_error(
                "Failed to update masterlist",
                {
                    "message": (
                        "This might be a temporary network error. If it persists, "
                        f'please delete "{paths.masterlist_dir}" to force a new copy '
                        "to be downloaded."
                    ),
                    "error": e,
                },
                notification_id=MASTERLIST_ERROR_ID,
                allow_report=False,
            )
            return None
        logger.info("masterlist_updated", game=context, updated=updated)
        self._notifications.events.emit(RULE_LISTS_UPDATED, context, updated)
        return updated

    # ── Masterlist reset ───────────────────────────────────────────

    async def reset_masterlist(self) -> str | None:
        """
        Delete the local masterlist and restart the engine so it fetches a
        fresh copy. Returns None on success, otherwise a status message.
        """
        slot = await self.current()
        context = self._host.active_context()
        if not slot.serves(context) or not is_supported(context, self._settings):
            return NOT_INITIALISED

        paths = ContextPaths.for_context(context, self._settings)
        await asyncio.to_thread(shutil.rmtree, paths.masterlist_dir, True)

        slot = await asyncio.shield(self.restart())
        if not slot.usable:
            return NOT_INITIALISED
        if slot.masterlist_updated is None:
            return "Masterlist update failed"
        return None if slot.masterlist_updated else "Masterlist unmodified"
