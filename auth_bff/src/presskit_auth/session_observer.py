# src/presskit_auth/session_observer.py

import logging
import typing

from .session_events import SessionEventCallback, SessionStateEvent, Subscription

logger = logging.getLogger(__name__)

SubscribeFn = typing.Callable[[SessionEventCallback], Subscription]


class SessionObserver:
    """
    Keeps one browser tab consistent with the real session state.

    A SIGNED_OUT only forces navigation to the login page once this tab has
    seen the user signed in; providers can emit SIGNED_OUT on a logged-out
    page load, and redirecting on that would loop.
    """

    def __init__(self, navigate: typing.Callable[[str], None], login_url: str = "/login"):
        self.navigate = navigate
        self.login_url = login_url
        self.was_signed_in = False
        self._subscription: typing.Optional[Subscription] = None

    @property
    def attached(self) -> bool:
        return self._subscription is not None

    def handle(self, event: SessionStateEvent) -> None:
        if event in (SessionStateEvent.SIGNED_IN, SessionStateEvent.TOKEN_REFRESHED):
            self.was_signed_in = True
        elif event is SessionStateEvent.SIGNED_OUT and self.was_signed_in:
            logger.info(f"[SESSION_OBSERVER] signed out elsewhere, navigating to {self.login_url}")
            self.navigate(self.login_url)

    def attach(self, subscribe: SubscribeFn) -> "SessionObserver":
        if self._subscription is not None:
            raise RuntimeError("SessionObserver is already attached")
        self._subscription = subscribe(self.handle)
        return self

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def __enter__(self) -> "SessionObserver":
        if self._subscription is None:
            raise RuntimeError("attach() the observer before entering it")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.detach()
