"""
Scratch org lifecycle events and the publish/subscribe channel they travel on.

The dev hub client publishes a ``LifecycleEvent`` every time a creation
attempt moves forward.  Consumers (the lifecycle tracker) subscribe to
``SCRATCH_ORG_LIFECYCLE_EVENT`` on an ``EventBus`` handed to them by reference.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

SCRATCH_ORG_LIFECYCLE_EVENT = "scratchOrgLifecycleEvent"

STAGE_PREPARE_REQUEST = "prepare request"
STAGE_SEND_REQUEST = "send request"
STAGE_WAIT_FOR_ORG = "wait for org"
STAGE_AVAILABLE = "available"
STAGE_AUTHENTICATE = "authenticate"
STAGE_DEPLOY_SETTINGS = "deploy settings"
STAGE_DONE = "done"

# Order is significant: stages of one attempt never move backwards.
LIFECYCLE_STAGES = (
    STAGE_PREPARE_REQUEST,
    STAGE_SEND_REQUEST,
    STAGE_WAIT_FOR_ORG,
    STAGE_AVAILABLE,
    STAGE_AUTHENTICATE,
    STAGE_DEPLOY_SETTINGS,
    STAGE_DONE,
)
TERMINAL_STAGE = STAGE_DONE


def stage_index(stage: str) -> int:
    """Position of *stage* in the canonical order (ValueError if unknown)."""
    return LIFECYCLE_STAGES.index(stage)


@dataclass
class ScratchOrgInfo:
    """Partially-filled view of a dev hub ScratchOrgInfo record.

    Every field may be None until the stage that fills it has completed.
    """
    id: Optional[str] = None
    scratch_org: Optional[str] = None
    signup_username: Optional[str] = None
    status: Optional[str] = None
    login_url: Optional[str] = None
    error_code: Optional[str] = None
    expiration: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ScratchOrgInfo":
        return cls(
            id=record.get("Id"),
            scratch_org=record.get("ScratchOrg"),
            signup_username=record.get("SignupUsername"),
            status=record.get("Status"),
            login_url=record.get("LoginUrl"),
            error_code=record.get("ErrorCode"),
            expiration=record.get("Expiration"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Id": self.id,
            "ScratchOrg": self.scratch_org,
            "SignupUsername": self.signup_username,
            "Status": self.status,
            "LoginUrl": self.login_url,
            "ErrorCode": self.error_code,
            "Expiration": self.expiration,
        }


@dataclass
class LifecycleEvent:
    stage: str
    info: Optional[ScratchOrgInfo] = None

    def __post_init__(self):
        if self.stage not in LIFECYCLE_STAGES:
            raise ValueError(f"Unknown lifecycle stage: {self.stage!r}")

    @property
    def is_terminal(self) -> bool:
        return self.stage == TERMINAL_STAGE


class EventBus:
    """Synchronous publish/subscribe channel keyed by event name.

    Callbacks run on the publisher's thread, in the order they subscribed.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable[[Any], None]]] = {}

    def subscribe(self, event_name: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Register *callback* and return a function that removes it again."""
        self._subscribers.setdefault(event_name, []).append(callback)

        def unsubscribe():
            callbacks = self._subscribers.get(event_name, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def publish(self, event_name: str, payload: Any) -> None:
        # Snapshot so a callback may unsubscribe itself mid-delivery.
        for callback in list(self._subscribers.get(event_name, [])):
            try:
                callback(payload)
            except Exception as exc:
                logger.warning("Subscriber for %s failed: %s", event_name, exc)

    def subscriber_count(self, event_name: str) -> int:
        return len(self._subscribers.get(event_name, []))


_process_bus: Optional[EventBus] = None


def get_process_bus() -> EventBus:
    """Return the process-wide bus, creating it on first use."""
    global _process_bus
    if _process_bus is None:
        _process_bus = EventBus()
    return _process_bus
