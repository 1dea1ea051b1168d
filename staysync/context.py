from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from .errors import Cancelled


class CancelToken:
    """Cooperative cancellation signal shared by every call of one operation."""

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._cancelled = True
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise Cancelled(self.reason or "cancelled")


@dataclass
class RequestContext:
    """Per-request values passed explicitly through every call boundary."""

    trace_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    cancel: CancelToken = field(default_factory=CancelToken)

    def check(self) -> None:
        self.cancel.raise_if_cancelled()
