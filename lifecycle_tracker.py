"""
Lifecycle tracker - follows one scratch org creation attempt on an event bus
and keeps its status view current until the attempt reaches ``done`` or fails.
"""
import logging
from typing import Callable, Optional

from lifecycle_events import SCRATCH_ORG_LIFECYCLE_EVENT, EventBus, LifecycleEvent

logger = logging.getLogger(__name__)


class LifecycleTracker:
    """Pure consumer of lifecycle events for a single creation attempt.

    The view only needs ``render(event, error=None)`` and ``unmount()``.
    The tracker makes no network calls and never raises on its own; errors
    it shows are the ones handed to ``fail()``.
    """

    def __init__(self, view, bus: EventBus, event_name: str = SCRATCH_ORG_LIFECYCLE_EVENT):
        self.view = view
        self.bus = bus
        self.event_name = event_name
        self.last_event: Optional[LifecycleEvent] = None
        self.error: Optional[BaseException] = None
        self.finished = False
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        """Subscribe to the bus.  Call before the creation call is made."""
        if self._unsubscribe is None and not self.finished:
            self._unsubscribe = self.bus.subscribe(self.event_name, self.on_event)

    def on_event(self, event: LifecycleEvent) -> None:
        if self.finished:
            return
        self.last_event = event
        self.view.render(event)
        if event.is_terminal:
            logger.debug("Lifecycle reached %s, stopping tracker", event.stage)
            self._finish()

    def fail(self, error: BaseException) -> None:
        """Draw the last known state with *error* attached, then stop."""
        self.error = error
        if self.finished:
            return
        self.view.render(self.last_event, error=error)
        self._finish()

    def stop(self) -> None:
        self._finish()

    def _finish(self) -> None:
        if self.finished:
            return
        self.finished = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.view.unmount()
