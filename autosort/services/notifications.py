"""
Notification Channel
=====================

User-facing reporting surface:
  - Dismissible notifications (warnings, detailed error reports) keyed by id;
    sending with an existing id replaces the previous notification
  - Notification actions (e.g. "More" on the cycle warning)
  - Dialogs, delegated to a host-supplied async handler
  - Activity flags ("plugins/sorting") consumers use to show progress

Every change is mirrored on the ``EventEmitter`` so hosts can render it.
"""

from __future__ import annotations

import inspect
import time
from collections import Counter
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from autosort.core.events import (
    ACTIVITY_STARTED,
    ACTIVITY_STOPPED,
    NOTIFICATION,
    EventEmitter,
)
from autosort.core.exceptions import AutosortException, EngineError
from autosort.infra.telemetry import get_logger

logger = get_logger(__name__)


class NotificationType(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class NotificationAction:
    """Button on a notification. ``action`` receives a dismiss callback."""

    title: str
    action: Callable[[Callable[[], None]], Any]


@dataclass
class Notification:
    id: str
    type: NotificationType
    message: str
    detail: dict[str, Any] = field(default_factory=dict)
    actions: list[NotificationAction] = field(default_factory=list)
    allow_report: bool = True
    created_at: float = field(default_factory=time.time)


@dataclass
class DialogCheckbox:
    id: str
    text: str
    value: bool = False


@dataclass
class DialogRequest:
    title: str
    bbcode: str
    checkboxes: list[DialogCheckbox] = field(default_factory=list)
    actions: list[str] = field(default_factory=lambda: ["Close"])
    type: str = "info"


@dataclass
class DialogResult:
    action: str
    input: dict[str, bool] = field(default_factory=dict)

    def selected(self) -> list[str]:
        return [key for key, checked in self.input.items() if checked]


DialogHandler = Callable[[DialogRequest], Awaitable[DialogResult]]


def error_detail(error: BaseException | Mapping[str, Any] | str | None) -> dict[str, Any]:
    """Flatten an error (or a detail mapping holding one) into report fields."""
    if error is None:
        return {}
    if isinstance(error, str):
        return {"message": error}
    if isinstance(error, BaseException):
        detail: dict[str, Any] = {"message": str(error), "type": type(error).__name__}
        if isinstance(error, AutosortException):
            detail.update(error.to_dict())
        return detail
    detail = {}
    for key, value in error.items():
        if isinstance(value, BaseException):
            detail.update({f"{key}_{k}": v for k, v in error_detail(value).items()})
        else:
            detail[key] = value
    return detail


class NotificationCenter:
    """Collects notifications and activity state for one service instance."""

    def __init__(
        self,
        events: EventEmitter | None = None,
        dialog_handler: DialogHandler | None = None,
    ) -> None:
        self.events = events or EventEmitter()
        self._dialog_handler = dialog_handler
        self._notifications: dict[str, Notification] = {}
        self._activities: Counter[tuple[str, str]] = Counter()
        self._error_seq = 0

    # ── Notifications ─────────────────────────────────────────────

    def send(self, notification: Notification) -> Notification:
        self._notifications[notification.id] = notification
        logger.info(
            "notification_sent",
            notification_id=notification.id,
            kind=notification.type.value,
            text=notification.message,
        )
        self.events.emit(NOTIFICATION, notification)
        return notification

    def warn(self, notification_id: str, message: str, **detail: Any) -> Notification:
        return self.send(
            Notification(
                id=notification_id,
                type=NotificationType.WARNING,
                message=message,
                detail=detail,
            )
        )

    def show_error(
        self,
        title: str,
        error: BaseException | Mapping[str, Any] | str | None = None,
        *,
        notification_id: str | None = None,
        allow_report: bool | None = None,
    ) -> Notification:
        """Detailed error report. ``allow_report`` defaults to the error's own flag."""
        if allow_report is None:
            allow_report = error.allow_report if isinstance(error, EngineError) else True
        if notification_id is None:
            self._error_seq += 1
            notification_id = f"error-{self._error_seq}"
        logger.error("error_reported", title=title, notification_id=notification_id)
        return self.send(
            Notification(
                id=notification_id,
                type=NotificationType.ERROR,
                message=title,
                detail=error_detail(error),
                allow_report=allow_report,
            )
        )

    def dismiss(self, notification_id: str) -> bool:
        return self._notifications.pop(notification_id, None) is not None

    def get(self, notification_id: str) -> Notification | None:
        return self._notifications.get(notification_id)

    @property
    def active(self) -> list[Notification]:
        return list(self._notifications.values())

    async def trigger_action(self, notification_id: str, title: str) -> Any:
        """Run a notification action as if the user clicked it."""
        notification = self._notifications.get(notification_id)
        if notification is None:
            raise KeyError(notification_id)
        for action in notification.actions:
            if action.title == title:
                result = action.action(lambda: self.dismiss(notification_id))
                if inspect.isawaitable(result):
                    result = await result
                return result
        raise KeyError(f"{notification_id}: no action {title!r}")

    # ── Dialogs ───────────────────────────────────────────────────

    async def show_dialog(self, request: DialogRequest) -> DialogResult:
        if self._dialog_handler is None:
            logger.debug("dialog_without_handler", title=request.title)
            return DialogResult(action="Close")
        return await self._dialog_handler(request)

    # ── Activities ────────────────────────────────────────────────

    def start_activity(self, group: str, activity: str) -> None:
        self._activities[(group, activity)] += 1
        self.events.emit(ACTIVITY_STARTED, group, activity)

    def stop_activity(self, group: str, activity: str) -> None:
        key = (group, activity)
        if self._activities[key] <= 1:
            self._activities.pop(key, None)
        else:
            self._activities[key] -= 1
        self.events.emit(ACTIVITY_STOPPED, group, activity)

    def is_active(self, group: str, activity: str) -> bool:
        return self._activities.get((group, activity), 0) > 0
