"""
Event Channel
==============

Minimal publish/subscribe used to tell consumers about rule list updates,
sorting activity and notifications. Subscribers may be plain functions or
coroutine functions; coroutine results are scheduled on the running loop.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

from autosort.infra.telemetry import get_logger

logger = get_logger(__name__)

RULE_LISTS_UPDATED = "rule-lists-updated"
ACTIVITY_STARTED = "activity-started"
ACTIVITY_STOPPED = "activity-stopped"
NOTIFICATION = "notification"


class EventEmitter:
    """Named-event subscriber registry."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable[..., Any]]] = {}
        self._pending: set[asyncio.Task] = set()

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        self._subscribers.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Callable[..., Any]) -> None:
        callbacks = self._subscribers.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event: str, *args: Any) -> None:
        for callback in list(self._subscribers.get(event, [])):
            try:
                result = callback(*args)
            except Exception as e:  # subscriber errors must not break the emitter
                logger.error("event_subscriber_failed", exc=e, event_name=event)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(lambda done, name=event: self._settle(done, name))

    def _settle(self, task: asyncio.Task, event: str) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("event_subscriber_failed", exc=error, event_name=event)

    def subscriber_count(self, event: str) -> int:
        return len(self._subscribers.get(event, []))
