"""Interface for the session/identity provider.

Token acquisition (login, registration) happens elsewhere; the request layer
only needs the current bearer token, the subject it belongs to, and a way to
end the session.
"""

import abc
from typing import Optional

from pixelclient.domain.models.common import BearerToken


class SessionProvider(abc.ABC):
    """Abstract Base Class for the current identity."""

    @abc.abstractmethod
    def get_token(self) -> Optional[BearerToken]:
        """Returns the bearer token, or None when signed out."""
        pass

    @property
    @abc.abstractmethod
    def subject(self) -> str:
        """Normalized identifier used to scope cached state."""
        pass

    @property
    def is_authenticated(self) -> bool:
        return bool(self.get_token())

    @abc.abstractmethod
    def logout(self) -> None:
        """Ends the session and invalidates state owned by the outgoing subject."""
        pass
