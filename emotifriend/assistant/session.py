"""
User session - the identity seen by the conversation store.

Authentication itself happens elsewhere; this only tracks who is signed in
and tells listeners when that changes.
"""

import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class UserSession:
    """
    Usage:
        session = UserSession()
        session.subscribe(lambda uid: store.load(uid))
        session.sign_in("uid-123")   # listeners get "uid-123"
        session.sign_out()           # listeners get None
    """

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id
        self._listeners: list[Callable[[Optional[str]], None]] = []

    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def subscribe(self, listener: Callable[[Optional[str]], None]) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def sign_in(self, user_id: str) -> None:
        if not user_id:
            raise ValueError("user_id must not be empty")
        self._user_id = user_id
        logger.info(f"👤 Session established for {user_id}")
        self._emit()

    def sign_out(self) -> None:
        if self._user_id is None:
            return
        logger.info(f"👤 Session cleared for {self._user_id}")
        self._user_id = None
        self._emit()

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._user_id)
            except Exception as e:
                logger.error(f"Session listener error: {e}")
