"""
Per-item metadata query.

Read path independent of sorting: asks the engine for messages, tags,
cleaning info and file details of a batch of items. Never raises; items
that couldn't be queried get an empty record. Failures are aggregated
into a single report per batch.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from pydantic import BaseModel, Field

from autosort.core.exceptions import EngineClosedError, EngineError, InvalidParameterError
from autosort.core.host import HostState
from autosort.core.types import item_key
from autosort.infra.engine import EngineHandle, ItemInfo, ItemMetadata
from autosort.infra.telemetry import MetricsCollector, get_logger, get_metrics
from autosort.services.lifecycle import LifecycleManager
from autosort.services.notifications import NotificationCenter

logger = get_logger(__name__)

METADATA_ERROR_ID = "autosort-metadata-error"
DETAILS_ERROR_ID = "autosort-metadata-details-error"
PARSE_ERROR_ID = "autosort-plugins-parse-failed"
DETAILS_ERROR_TITLE = "There were errors getting plugin information from the sorting engine"


class PluginMetadata(BaseModel):
    """Metadata of one item as shown to the user."""
    messages: list[Any] = Field(default_factory=list)
    tags: list[Any] = Field(default_factory=list)
    cleanliness: list[Any] = Field(default_factory=list)
    dirtyness: list[Any] = Field(default_factory=list)
    group: str | None = None
    is_valid_as_light_master: bool = False
    loads_archive: bool = False
    version: str = ""

    @classmethod
    def build(cls, meta: ItemMetadata, info: ItemInfo | None) -> PluginMetadata:
        record = cls(
            messages=list(meta.messages or []),
            tags=list(meta.tags or []),
            cleanliness=list(meta.clean_info or []),
            dirtyness=list(meta.dirty_info or []),
            group=meta.group,
        )
        if info is not None:
            record.is_valid_as_light_master = info.is_valid_as_light_master
            record.loads_archive = info.loads_archive
            record.version = info.version
        return record


MetadataCallback = Callable[[dict[str, PluginMetadata]], Any]


def _empty(items: Iterable[str]) -> dict[str, PluginMetadata]:
    return {name: PluginMetadata() for name in items}


class MetadataQuery:
    """Fetches ``PluginMetadata`` for batches of items."""

    def __init__(
        self,
        host: HostState,
        lifecycle: LifecycleManager,
        notifications: NotificationCenter,
        *,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._host = host
        self._lifecycle = lifecycle
        self._notifications = notifications
        self._metrics = metrics or get_metrics()

    async def query(self, context: str, items: list[str], callback: MetadataCallback) -> dict[str, PluginMetadata]:
        result = await self.fetch(context, items)
        callback(result)
        return result

    async def fetch(self, context: str, items: list[str]) -> dict[str, PluginMetadata]:
        items = list(dict.fromkeys(items))
        try:
            slot = await self._lifecycle.current(context)
        except Exception as e:  # initialization problems were reported by the lifecycle
            logger.warning("metadata_no_engine", game=context, error=str(e))
            return _empty(items)
        if not slot.usable:
            return _empty(items)
        engine = slot.engine

        try:
            # evaluating general messages is what drops the engine's condition cache
            await engine.refresh_evaluation_cache()
            await engine.load_current_ordering_state()
        except EngineClosedError:
            return _empty(items)
        except EngineError as e:
            self._notifications.show_error(
                DETAILS_ERROR_TITLE, e, notification_id=METADATA_ERROR_ID, allow_report=False,
            )
            return _empty(items)

        plugins = self._host.plugins()
        deployed = {
            item_key(name) for name in items
            if (entry := plugins.get(item_key(name))) is not None and entry.deployed
        }

        loaded = False
        try:
            await engine.load_plugins(sorted(deployed), header_only=False)
            loaded = True
        except EngineClosedError:
            return _empty(items)
        except EngineError as e:
            self._notifications.show_error(
                "Failed to parse plugins", e, notification_id=PARSE_ERROR_ID, allow_report=False,
            )

        return await self._collect(engine, items, deployed if loaded else set())

    async def _collect(
        self, engine: EngineHandle, items: list[str], parsed: set[str],
    ) -> dict[str, PluginMetadata]:
        result: dict[str, PluginMetadata] = {}
        failure: EngineError | None = None
        closed = engine.is_closed()

        for name in items:
            if closed:
                result[name] = PluginMetadata()
                continue
            try:
                meta = await engine.get_item_metadata(name)
            except EngineClosedError:
                closed = True
                result[name] = PluginMetadata()
                continue
            except InvalidParameterError:
                # no metadata for this item, that's normal
                result[name] = PluginMetadata()
                continue
            except EngineError as e:
                logger.error("metadata_failed", item=name, error=str(e))
                self._metrics.record_metadata_failure()
                failure = e
                result[name] = PluginMetadata()
                continue

            info = None
            if item_key(name) in parsed:
                try:
                    info = await engine.get_item_info(name)
                except EngineClosedError:
                    closed = True
                except EngineError as e:
                    logger.error("plugin_info_failed", item=name, error=str(e))
            result[name] = PluginMetadata.build(meta, info)

        if closed:
            logger.info("metadata_engine_closed", resolved=len(result))
        if failure is not None:
            self._notifications.show_error(
                DETAILS_ERROR_TITLE, failure, notification_id=DETAILS_ERROR_ID, allow_report=False,
            )
        return result
