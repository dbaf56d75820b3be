"""Session state for the current identity.

Token acquisition happens outside this package; the session only holds the
resulting bearer token and the subject it belongs to. Cached state is scoped
by subject, so ending or switching a session invalidates the outgoing
subject's entries.
"""

import hashlib
import logging
from typing import Callable, List, Optional

from pixelclient.domain.interfaces.cache import CacheService
from pixelclient.domain.interfaces.session import SessionProvider
from pixelclient.domain.models.common import BearerToken

logger = logging.getLogger(__name__)

ANONYMOUS_SUBJECT = "anonymous"


def subject_for(token: Optional[str], username: Optional[str]) -> str:
    """Derives the cache subject from a username, else from the token."""
    if username and username.strip():
        return username.strip().lower()
    if token:
        return "token-" + hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]
    return ANONYMOUS_SUBJECT


class SessionService(SessionProvider):
    """In-memory session holding the bearer token."""

    def __init__(
        self,
        cache_service: CacheService,
        token: Optional[str] = None,
        username: Optional[str] = None,
    ):
        self.cache_service = cache_service
        self._token: Optional[BearerToken] = BearerToken(token) if token else None
        self._username = username
        self._logout_listeners: List[Callable[[str], None]] = []

    def get_token(self) -> Optional[BearerToken]:
        return self._token

    @property
    def username(self) -> Optional[str]:
        return self._username

    @property
    def subject(self) -> str:
        return subject_for(self._token, self._username)

    def add_logout_listener(self, listener: Callable[[str], None]) -> None:
        """Registers a callback invoked with the outgoing subject on logout."""
        self._logout_listeners.append(listener)

    def set_identity(self, token: Optional[str], username: Optional[str] = None) -> None:
        """Switches to a new identity, dropping cached state of the previous one."""
        previous = self.subject
        self._token = BearerToken(token) if token else None
        self._username = username
        if self.subject != previous:
            logger.info(f"Session identity changed from '{previous}' to '{self.subject}'.")
            self.cache_service.invalidate_subject(previous)

    def logout(self) -> None:
        outgoing = self.subject
        self._token = None
        self._username = None
        self.cache_service.invalidate_subject(outgoing)
        logger.info(f"Logged out subject '{outgoing}'.")
        for listener in list(self._logout_listeners):
            listener(outgoing)
