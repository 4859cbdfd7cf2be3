"""
Toast notification queue shown by the web layer.

Toasts expire lazily: nothing runs on a timer, expired entries are dropped
whenever the queue is read.
"""

import itertools
import time
from typing import Callable, List, Literal, Optional

from pydantic import BaseModel

ToastKind = Literal["success", "error", "warning", "info"]

ERROR_DURATION = 8.0
DEFAULT_DURATION = 5.0


class Toast(BaseModel):
    id: str
    message: str
    kind: ToastKind = "info"
    # seconds; 0 keeps the toast until dismissed
    duration: float = DEFAULT_DURATION
    created_at: float
    action_label: Optional[str] = None
    action_url: Optional[str] = None

    def expired(self, now: float) -> bool:
        return self.duration > 0 and now - self.created_at >= self.duration


class NotificationQueue:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._toasts: List[Toast] = []
        self._ids = itertools.count(1)

    def push(
        self,
        message: str,
        kind: ToastKind = "info",
        duration: Optional[float] = None,
        action_label: Optional[str] = None,
        action_url: Optional[str] = None,
    ) -> str:
        if duration is None:
            duration = ERROR_DURATION if kind == "error" else DEFAULT_DURATION
        toast = Toast(
            id=f"toast-{next(self._ids)}",
            message=message,
            kind=kind,
            duration=duration,
            created_at=self._clock(),
            action_label=action_label,
            action_url=action_url,
        )
        self._toasts.append(toast)
        return toast.id

    def success(self, message: str, **options) -> str:
        return self.push(message, "success", **options)

    def error(self, message: str, **options) -> str:
        return self.push(message, "error", **options)

    def warning(self, message: str, **options) -> str:
        return self.push(message, "warning", **options)

    def info(self, message: str, **options) -> str:
        return self.push(message, "info", **options)

    def active(self) -> List[Toast]:
        now = self._clock()
        self._toasts = [toast for toast in self._toasts if not toast.expired(now)]
        return list(self._toasts)

    def dismiss(self, toast_id: str) -> None:
        self._toasts = [toast for toast in self._toasts if toast.id != toast_id]

    def clear(self) -> None:
        self._toasts = []

    def pop_all(self) -> List[Toast]:
        toasts = self.active()
        self._toasts = []
        return toasts
