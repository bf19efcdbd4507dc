"""
Rule list loading.

Masterlist and userlist are loaded into the engine once per engine
instance and again whenever the userlist's modification time changes.
Edits are therefore picked up lazily, at the next sort.
"""

from __future__ import annotations

import aiofiles.os

from autosort.core.config import Settings, get_settings
from autosort.core.exceptions import EngineClosedError, EngineError
from autosort.core.games import ContextPaths
from autosort.infra.engine import EngineHandle
from autosort.infra.telemetry import get_logger
from autosort.services.notifications import NotificationCenter

logger = get_logger(__name__)

LOAD_ERROR_ID = "autosort-lists-load-failed"


async def file_mtime(path) -> float | None:
    try:
        return (await aiofiles.os.stat(path)).st_mtime
    except OSError:
        return None


class RuleListLoader:
    """Tracks, per context, which userlist revision the engine has seen."""

    def __init__(self, notifications: NotificationCenter, settings: Settings | None = None) -> None:
        self._notifications = notifications
        self._settings = settings or get_settings()
        self._userlist_mtime: dict[str, float | None] = {}

    def forget(self, context: str) -> None:
        """Force a reload on the next refresh, e.g. for a fresh engine."""
        self._userlist_mtime.pop(context, None)

    def is_loaded(self, context: str) -> bool:
        return context in self._userlist_mtime

    async def load(self, engine: EngineHandle, context: str, *, with_state: bool = False) -> bool:
        """
        Load both lists (and optionally the on-disk load order state).

        Failures are reported and leave the engine usable; the load is
        retried at the next refresh. Returns True on success.
        """
        paths = ContextPaths.for_context(context, self._settings)
        mtime = await file_mtime(paths.userlist)
        logger.info(
            "rule_lists_loading",
            game=context,
            userlist_mtime=mtime,
            last=self._userlist_mtime.get(context),
        )
        try:
            # the masterlist has to be on disk, the userlist is optional
            await aiofiles.os.stat(paths.masterlist)
            await engine.load_lists(
                str(paths.masterlist),
                str(paths.userlist) if mtime is not None else None,
            )
            if with_state:
                await engine.load_current_ordering_state()
        except EngineClosedError:
            raise
        except (OSError, EngineError) as e:
            self._notifications.show_error(
                "Failed to load master-/userlist", e,
                notification_id=LOAD_ERROR_ID, allow_report=False,
            )
            return False
        self._userlist_mtime[context] = mtime
        self._notifications.dismiss(LOAD_ERROR_ID)
        logger.info("rule_lists_loaded", game=context)
        return True

    async def refresh(self, engine: EngineHandle, context: str) -> bool:
        """Reload lists if the userlist changed or they were never loaded."""
        paths = ContextPaths.for_context(context, self._settings)
        mtime = await file_mtime(paths.userlist)
        if self.is_loaded(context) and self._userlist_mtime[context] == mtime:
            return False
        return await self.load(engine, context)
