"""Cooperative cancellation signal."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class CancellationToken:
    """A one-shot cancellation flag with callbacks.

    Callbacks registered after cancellation run immediately.
    """

    _cancelled: bool = False
    _callbacks: list[Callable[[], None]] = field(default_factory=list)

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                log.exception("Cancellation callback failed")

    def on_cancellation_requested(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)
