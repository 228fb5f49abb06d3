# src/review_stream/core/update_channel.py
"""
Publishing of form document updates to renderers.
"""
import asyncio
import logging
import time
from typing import Callable, List, Optional

from review_stream.core.form_models import FormDocument

logger = logging.getLogger(__name__)

DocumentCallback = Callable[[FormDocument], None]


class UpdateChannel:
    """
    Fan out published documents.

    One callback can be registered (replacing any previous one) and any
    number of subscribers can be added; subscribe() returns the function
    that removes the subscription.
    """

    def __init__(self):
        self._registered: Optional[DocumentCallback] = None
        self._subscribers: List[DocumentCallback] = []

    def register(self, callback: Optional[DocumentCallback]):
        self._registered = callback

    def subscribe(self, callback: DocumentCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, document: FormDocument):
        callbacks = list(self._subscribers)
        if self._registered is not None:
            callbacks.insert(0, self._registered)

        for callback in callbacks:
            try:
                callback(document)
            except Exception as e:
                logger.error(f"Update callback failed: {e}")


class UpdateThrottle:
    """
    Publish at most once per interval.

    Updates arriving inside the window are held; the newest held document is
    published by the next allowed submit(), by flush(), or by a timer at the
    end of the window when an event loop is running. Immediate updates bypass
    the window.
    """

    def __init__(
            self,
            publish: DocumentCallback,
            interval: float = 0.2,
            clock: Callable[[], float] = time.monotonic
    ):
        self.publish = publish
        self.interval = interval
        self.clock = clock
        self.last_update: Optional[float] = None
        self._pending: Optional[FormDocument] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> Optional[FormDocument]:
        return self._pending

    def submit(self, document: FormDocument, immediate: bool = False) -> bool:
        """Publish now if allowed, otherwise hold. Returns True if published."""
        now = self.clock()
        if immediate or self.last_update is None or now - self.last_update >= self.interval:
            self._emit(document, now)
            return True

        logger.debug("Update throttled")
        self._pending = document
        self._schedule_flush(self.interval - (now - self.last_update))
        return False

    def flush(self) -> bool:
        """Publish the held document, if any."""
        if self._pending is None:
            return False
        self._emit(self._pending, self.clock())
        return True

    def reset(self):
        self._cancel_timer()
        self.last_update = None
        self._pending = None

    def _schedule_flush(self, delay: float):
        if self._timer is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the held document waits for submit() or flush()
            return
        self._timer = loop.call_later(max(0.0, delay), self._timer_flush)

    def _timer_flush(self):
        self._timer = None
        self.flush()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _emit(self, document: FormDocument, now: float):
        self._cancel_timer()
        self.last_update = now
        self._pending = None
        self.publish(document)
