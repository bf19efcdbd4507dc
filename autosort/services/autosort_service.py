"""
Autosort Service: Facade
===========================

Wires lifecycle, sort pipeline, cycle resolution and metadata queries
together and exposes the operations hosts call:

  on_context_activated(context)   active game changed
  restart_helpers()               engine process was killed externally
  trigger_sort(manual)            sort, auto-sort preference applies if not manual
  sort()                          manual sort, raises unexpected errors
  reset_masterlist()              delete and re-download the masterlist
  query_metadata(...)             per-item metadata
  wait()                          settle pending init and sorts

configure_runtime(settings) sets up directories and logging once per process.

Usage:
    service = AutosortService(host, rules, factory)
    service.events.on("activity-started", show_spinner)
    service.on_context_activated("skyrimse")
    await service.trigger_sort(manual=True)
"""

from __future__ import annotations

import asyncio

from autosort.core.config import Settings, get_settings
from autosort.core.events import EventEmitter
from autosort.core.host import HostState, RuleStore
from autosort.infra.engine import EngineFactory
from autosort.infra.telemetry import MetricsCollector, get_logger, get_metrics, setup_logging
from autosort.services.cycles import CycleResolver
from autosort.services.lifecycle import EngineSlot, LifecycleManager
from autosort.services.metadata import MetadataCallback, MetadataQuery, PluginMetadata
from autosort.services.notifications import DialogHandler, NotificationCenter
from autosort.services.rule_lists import RuleListLoader
from autosort.services.sort_pipeline import SortCallback, SortOutcome, SortPipeline

logger = get_logger(__name__)


def configure_runtime(settings: Settings | None = None) -> Settings:
    """
    Process-wide startup for hosts: data and log directories, then logging.

    JSON log lines are used outside development.
    """
    settings = settings or get_settings()
    settings.ensure_directories()
    setup_logging(
        level=settings.LOG_LEVEL,
        json_output=settings.ENVIRONMENT != "development",
        log_dir=settings.LOG_DIR,
    )
    logger.info(
        "autosort_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )
    return settings


class AutosortService:
    """Entry point for hosts embedding the orchestration layer."""

    def __init__(
        self,
        host: HostState,
        rules: RuleStore,
        factory: EngineFactory,
        *,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
        events: EventEmitter | None = None,
        dialog_handler: DialogHandler | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.metrics = metrics or get_metrics()
        self.notifications = NotificationCenter(events, dialog_handler)
        self.rule_lists = RuleListLoader(self.notifications, self.settings)
        self.lifecycle = LifecycleManager(
            host,
            factory,
            self.notifications,
            self.rule_lists,
            settings=self.settings,
            metrics=self.metrics,
        )
        self.pipeline = SortPipeline(
            host,
            rules,
            self.lifecycle,
            self.rule_lists,
            self.notifications,
            settings=self.settings,
            metrics=self.metrics,
        )
        self.metadata = MetadataQuery(host, self.lifecycle, self.notifications, metrics=self.metrics)

    @property
    def events(self) -> EventEmitter:
        return self.notifications.events

    @property
    def cycles(self) -> CycleResolver:
        return self.pipeline.cycles

    # ── Lifecycle ──────────────────────────────────────────────────

    def on_context_activated(self, context: str | None) -> asyncio.Future[EngineSlot]:
        return self.lifecycle.on_context_changed(context)

    def restart_helpers(self) -> asyncio.Future[EngineSlot]:
        return self.lifecycle.restart()

    async def reset_masterlist(self) -> str | None:
        status = await self.lifecycle.reset_masterlist()
        logger.info("masterlist_reset", status=status or "ok")
        return status

    async def shutdown(self) -> None:
        await self.lifecycle.shutdown()

    # ── Sorting ────────────────────────────────────────────────────

    async def trigger_sort(self, manual: bool = False, callback: SortCallback | None = None) -> SortOutcome:
        return await self.pipeline.on_sort(manual, callback)

    async def sort(self) -> SortOutcome:
        return await self.pipeline.sort()

    async def wait(self) -> None:
        await self.pipeline.wait()

    # ── Metadata ───────────────────────────────────────────────────

    async def query_metadata(
        self, context: str, items: list[str], callback: MetadataCallback,
    ) -> dict[str, PluginMetadata]:
        return await self.metadata.query(context, items, callback)
