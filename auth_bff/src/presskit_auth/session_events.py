# src/presskit_auth/session_events.py

import enum
import logging
import typing

logger = logging.getLogger(__name__)


class SessionStateEvent(str, enum.Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


def parse_session_event(name: str) -> typing.Optional[SessionStateEvent]:
    """Maps a provider event name onto the events we act on; others give None."""
    try:
        return SessionStateEvent(name)
    except ValueError:
        return None


SessionEventCallback = typing.Callable[[SessionStateEvent], None]


class Subscription:
    def __init__(self, on_unsubscribe: typing.Callable[[], None]):
        self._on_unsubscribe = on_unsubscribe
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._on_unsubscribe()


class SessionEventChannel:
    """Session events for one user. `on_session_state_change` is the subscribe primitive."""

    def __init__(self, hub: "SessionEventHub", user_id: str):
        self.hub = hub
        self.user_id = user_id

    def on_session_state_change(self, callback: SessionEventCallback) -> Subscription:
        return self.hub.subscribe(self.user_id, callback)


class SessionEventHub:
    """
    In-process fan-out of session state changes, keyed by user id.

    Everything runs on the event loop thread: callbacks are invoked
    synchronously, in subscription order, and must not block.
    """

    def __init__(self):
        self._subscribers: typing.Dict[str, typing.List[SessionEventCallback]] = {}

    def channel(self, user_id: str) -> SessionEventChannel:
        return SessionEventChannel(self, user_id)

    def subscribe(self, user_id: str, callback: SessionEventCallback) -> Subscription:
        self._subscribers.setdefault(user_id, []).append(callback)
        logger.debug(f"[SESSION_EVENTS] subscriber added for user {user_id}")

        def remove():
            callbacks = self._subscribers.get(user_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(user_id, None)

        return Subscription(remove)

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, []))

    def publish(self, user_id: str, event: SessionStateEvent) -> int:
        # Copy: a callback may unsubscribe itself while we iterate.
        callbacks = list(self._subscribers.get(user_id, []))
        logger.info(f"[SESSION_EVENTS] {event.value} for user {user_id} -> {len(callbacks)} subscriber(s)")
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception(f"[SESSION_EVENTS] subscriber failed handling {event.value}")
        return len(callbacks)


session_event_hub = SessionEventHub()
