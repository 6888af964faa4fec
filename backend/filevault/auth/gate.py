"""Turns credentials or a session token into a verified user."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from filevault.auth.passwords import verify_password
from filevault.auth.sessions import SessionStore
from filevault.errors import Unauthorized
from filevault.users.models import User
from filevault.users.service import get_user_by_email, get_user_by_id

log = logging.getLogger(__name__)


class AuthGate:
    """
    Verifies already-decoded inputs. Decoding Basic credentials or pulling a
    token out of headers happens at the HTTP boundary, not here.
    Every failure is the same Unauthorized so callers cannot tell which accounts exist.
    """

    def __init__(self, session: AsyncSession, sessions: SessionStore) -> None:
        self.session = session
        self.sessions = sessions

    async def authenticate(self, email: str, password: str) -> User:
        """Return the user whose stored hash matches password."""
        if not email or not password:
            raise Unauthorized("missing email or password")
        user = await get_user_by_email(self.session, email)
        if not user or not verify_password(password, user.password_hash):
            log.warning("Authentication failed for email=%s", email)
            raise Unauthorized("bad credentials")
        return user

    async def identify(self, token: str) -> User:
        """Return the live user behind a session token."""
        user_id = await self.sessions.resolve(token)
        if user_id is None:
            log.debug("Unknown or expired session token")
            raise Unauthorized("unknown token")
        user = await get_user_by_id(self.session, user_id)
        if not user:
            log.warning("Session valid but user not found: id=%s", user_id)
            raise Unauthorized("user gone")
        return user

    async def connect(self, email: str, password: str) -> str:
        """Authenticate and issue a fresh session token."""
        user = await self.authenticate(email, password)
        token = await self.sessions.issue(user.id)
        log.info("Connected user id=%s", user.id)
        return token
