import logging
from typing import Callable, List, Optional

from errors import SessionInvalid, Unauthenticated, UserNotFound
from storage import SessionRecord, StorageAdapter, UserRecord

logger = logging.getLogger(__name__)

SessionInvalidListener = Callable[[str], None]


class SessionManager:
    """
    Token lifecycle on top of whichever storage adapter is active. This
    is the only component that creates or deletes sessions.
    """

    def __init__(self, storage: StorageAdapter):
        self.storage = storage
        self._listeners: List[SessionInvalidListener] = []

    def subscribe(self, listener: SessionInvalidListener) -> None:
        """
        Register a callback fired with the rejected token each time a
        request is refused with ``SessionInvalid``.
        """
        self._listeners.append(listener)

    def open_session(self, user: UserRecord, device_info: str = "") -> SessionRecord:
        session = self.storage.create_session(user.id, device_info)
        logger.info("Opened session for user %s", user.username)
        return session

    def close_session(self, token: str) -> None:
        self.storage.delete_session(token)

    def authenticate(self, token: Optional[str]) -> UserRecord:
        """
        Resolve a bearer token to its user.

        Raises ``Unauthenticated`` when no token was supplied,
        ``SessionInvalid`` when it matches no live session (for instance
        after a newer login elsewhere), and ``UserNotFound`` when the
        session outlived its user, in which case the session is dropped.
        """
        if not token:
            raise Unauthenticated()

        session = self.storage.find_session_by_token(token)
        if session is None:
            logger.info("Rejected stale session token")
            self._notify_session_invalid(token)
            raise SessionInvalid()

        user = self.storage.find_user_by_id(session.user_id)
        if user is None:
            logger.warning("Session references missing user %s, discarding", session.user_id)
            self.storage.delete_session(token)
            raise UserNotFound()
        return user

    def _notify_session_invalid(self, token: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(token)
            except Exception:
                logger.exception("Session-invalid listener failed")
