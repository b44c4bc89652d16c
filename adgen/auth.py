"""Credential sources.

The client never reads a process-wide token. Whatever owns the session hands a
``CredentialStore`` to the ``ApiClient`` constructor.
"""

import logging
from typing import Optional, Protocol

from adgen.config import Settings
from adgen.errors import Unauthenticated

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    def get_token(self) -> Optional[str]: ...


class StaticCredentials:
    """Fixed bearer token, e.g. from a login response."""

    def __init__(self, token: Optional[str]):
        self._token = token

    def get_token(self) -> Optional[str]:
        return self._token

    def clear(self) -> None:
        self._token = None


class SettingsCredentials:
    """Token from ADGEN_API_TOKEN."""

    def __init__(self, settings: Settings):
        self._settings = settings

    def get_token(self) -> Optional[str]:
        return self._settings.adgen_api_token


def require_token(store: CredentialStore) -> str:
    """Return the bearer token or raise Unauthenticated."""
    token = store.get_token()
    if not token:
        logger.debug("No credential available")
        raise Unauthenticated("Please login to continue")
    return token
