"""
Engine Handle: Typed Adapter Around a Native Engine
======================================================

Wraps one ``NativeEngine`` for one context and is the only place that
looks at native error messages. Every call either returns the engine's
result or raises a subclass of ``EngineError``:

  already closed                         → EngineClosedError
  Cyclic interaction ...                 → CyclicInteractionError
  "<name>" is not a valid plugin         → InvalidItemError
  The group "<name>" does not exist      → MissingGroupError
  Failed to evaluate condition ...       → ConditionEvalError
  error with an ``arg`` attribute        → InvalidParameterError
  anything else                          → EngineError
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from autosort.core.exceptions import (
    AutosortException,
    ConditionEvalError,
    CyclicInteractionError,
    EngineClosedError,
    EngineError,
    InvalidItemError,
    InvalidParameterError,
    MissingGroupError,
)
from autosort.core.types import CycleEdge
from autosort.infra.engine.base import ItemInfo, ItemMetadata, NativeEngine
from autosort.infra.telemetry import MetricsCollector, get_logger, get_metrics

logger = get_logger(__name__)

T = TypeVar("T")

CLOSED_MESSAGE = "already closed"

_INVALID_ITEM = re.compile(r'"([^"]*)" is not a valid plugin')
_MISSING_GROUP = re.compile(r'The group "([^"]*)" does not exist')
_CONDITION_VERSION = re.compile(r'Failed to evaluate condition ".*version\("([^"]*\.exe)",')

# Native errors containing these are environment problems, not bugs
_UNREPORTABLE_MARKERS = ("boost::filesystem",)


def allow_report(message: str) -> bool:
    return not any(marker in message for marker in _UNREPORTABLE_MARKERS)


def translate_engine_error(exc: BaseException, operation: str = "unknown") -> EngineError:
    """Map a native engine failure onto the typed error taxonomy."""
    message = str(getattr(exc, "message", None) or exc)

    if message == CLOSED_MESSAGE:
        return EngineClosedError(operation, original_error=exc)

    if message.startswith("Cyclic interaction"):
        cycle = CycleEdge.parse_sequence(getattr(exc, "cycle", None))
        if cycle:
            return CyclicInteractionError(message, cycle=cycle, original_error=exc)

    if message.endswith("is not a valid plugin"):
        match = _INVALID_ITEM.search(message)
        if match:
            return InvalidItemError(message, item=match.group(1), original_error=exc)

    match = _MISSING_GROUP.search(message)
    if match:
        return MissingGroupError(message, group=match.group(1), original_error=exc)

    if "Failed to evaluate condition" in message:
        match = _CONDITION_VERSION.search(message)
        return ConditionEvalError(
            message,
            path=match.group(1) if match else None,
            original_error=exc,
            allow_report=allow_report(message),
        )

    if getattr(exc, "arg", None) is not None:
        return InvalidParameterError(
            message, operation=operation, arg=exc.arg, original_error=exc,  # type: ignore[attr-defined]
        )

    return EngineError(
        message,
        operation=operation,
        original_error=exc,
        allow_report=allow_report(message),
    )


class EngineHandle:
    """
    Handle to a running engine instance scoped to one context.

    Usage:
        handle = EngineHandle("skyrimse", native)
        order = await handle.sort_plugins(["Skyrim.esm", "Foo.esp"])
        handle.close()
    """

    def __init__(
        self,
        context: str,
        native: NativeEngine,
        *,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.context = context
        self._native = native
        self._metrics = metrics or get_metrics()
        self._closed = False
        self._log = logger.bind(game=context)
        self._metrics.engine_opened()

    async def _call(self, operation: str, factory: Callable[[], Awaitable[T]]) -> T:
        if self.is_closed():
            raise EngineClosedError(operation)
        try:
            return await factory()
        except AutosortException:
            raise
        except Exception as exc:
            raise translate_engine_error(exc, operation) from exc

    # ── Rule lists & state ─────────────────────────────────────────

    async def refresh_shared_list(self, path: str, repository: str, revision: str) -> bool:
        return await self._call(
            "update_masterlist",
            lambda: self._native.update_masterlist(path, repository, revision),
        )

    async def load_lists(self, masterlist_path: str, userlist_path: str | None) -> None:
        await self._call(
            "load_lists",
            lambda: self._native.load_lists(masterlist_path, userlist_path or ""),
        )

    async def load_current_ordering_state(self) -> None:
        await self._call("load_state", self._native.load_current_load_order_state)

    async def refresh_evaluation_cache(self) -> None:
        await self._call("general_messages", lambda: self._native.get_general_messages(True))

    # ── Sorting ────────────────────────────────────────────────────

    async def sort_plugins(self, plugins: list[str]) -> list[str]:
        return list(await self._call("sort", lambda: self._native.sort_plugins(list(plugins))))

    async def get_groups_path(self, from_group: str, to_group: str) -> list[CycleEdge]:
        raw = await self._call(
            "groups_path",
            lambda: self._native.get_groups_path(from_group, to_group),
        )
        return CycleEdge.parse_sequence(raw)

    # ── Per-item queries ───────────────────────────────────────────

    async def load_plugins(self, plugins: list[str], header_only: bool = False) -> None:
        await self._call("load_plugins", lambda: self._native.load_plugins(list(plugins), header_only))

    async def get_item_metadata(self, plugin: str) -> ItemMetadata:
        return await self._call("metadata", lambda: self._native.get_plugin_metadata(plugin))

    async def get_item_info(self, plugin: str) -> ItemInfo:
        return await self._call("plugin_info", lambda: self._native.get_plugin(plugin))

    # ── Lifetime ───────────────────────────────────────────────────

    def is_closed(self) -> bool:
        return self._closed or self._native.is_closed()

    def close(self) -> bool:
        """Close the engine. Returns False if this handle was already closed."""
        if self._closed:
            return False
        self._closed = True
        self._metrics.engine_closed()
        try:
            self._native.close()
        except Exception as e:  # native teardown failures leave nothing to recover
            self._log.warning("engine_close_failed", error=str(e))
            return True
        self._log.info("engine_closed")
        return True

    def __repr__(self) -> str:
        state = "closed" if self.is_closed() else "open"
        return f"<EngineHandle {self.context} {state}>"
