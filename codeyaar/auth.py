"""
Request authentication.

The Authorization header must carry `Bearer <token>`. The token is
exchanged for a user through the identity provider's "get current user"
call; whatever id comes back is the callerId every later stage keys on.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass

import httpx
from supabase import AsyncSupabaseException, AuthError

from codeyaar.connection import SupabaseConnection
from codeyaar.errors import InvalidCredentials, Unauthenticated

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass
class Caller:
    """An authenticated end user."""
    id: str
    email: str = ""


def extract_bearer_token(authorization: str | None) -> str:
    """Pull the token out of an Authorization header value."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise Unauthenticated()
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise Unauthenticated()
    return token


class IdentityProvider(abc.ABC):
    """Port: validate a bearer token and return the user it belongs to."""

    @abc.abstractmethod
    async def get_user(self, token: str) -> Caller | None:
        """Return the caller, or None if the token is not accepted."""
        ...


class SupabaseIdentityProvider(IdentityProvider):
    """Resolves tokens against Supabase Auth (auth.get_user)."""

    def __init__(self, connection: SupabaseConnection):
        self.connection = connection

    async def get_user(self, token: str) -> Caller | None:
        try:
            client = await self.connection.client()
            resp = await client.auth.get_user(token)
        except AuthError as e:
            logger.debug("Identity provider rejected token: %s", e)
            return None
        except (AsyncSupabaseException, httpx.HTTPError) as e:
            logger.warning("Identity provider unreachable: %s", e)
            return None

        user = getattr(resp, "user", None)
        if user is None or not getattr(user, "id", None):
            return None
        return Caller(id=str(user.id), email=getattr(user, "email", None) or "")


class Authenticator:
    """Turns an Authorization header into a Caller or raises."""

    def __init__(self, provider: IdentityProvider):
        self.provider = provider

    async def authenticate(self, authorization: str | None) -> Caller:
        token = extract_bearer_token(authorization)
        caller = await self.provider.get_user(token)
        if caller is None:
            logger.warning("Authentication failed: token rejected by identity provider")
            raise InvalidCredentials()
        logger.info("Authenticated user: %s", caller.id)
        return caller
