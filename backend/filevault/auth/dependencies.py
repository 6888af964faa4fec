"""FastAPI dependencies for auth: header parsing lives here, not in the gate."""

import base64
import binascii
import logging
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from filevault.auth.gate import AuthGate
from filevault.auth.sessions import SessionStore
from filevault.db.session import get_db
from filevault.errors import Unauthorized
from filevault.users.models import User

bearer = HTTPBearer(auto_error=False)
log = logging.getLogger(__name__)

# Header used by older clients instead of Authorization: Bearer
TOKEN_HEADER = "X-Token"


def get_basic_credentials(request: Request) -> Optional[tuple[str, str]]:
    """
    (email, password) from Authorization: Basic, decoded as UTF-8.
    None when the header is absent or cannot be decoded.
    """
    scheme, _, param = (request.headers.get("Authorization") or "").partition(" ")
    if scheme.lower() != "basic" or not param:
        return None
    try:
        decoded = base64.b64decode(param.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        log.debug("Undecodable basic credentials")
        return None
    email, sep, password = decoded.partition(":")
    if not sep:
        return None
    return email, password


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_auth_gate(
    session: Annotated[AsyncSession, Depends(get_db)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> AuthGate:
    return AuthGate(session, sessions)


def get_token(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer)],
) -> Optional[str]:
    """Bearer token, else X-Token header, else None."""
    if credentials and credentials.credentials:
        return credentials.credentials
    token = (request.headers.get(TOKEN_HEADER) or "").strip()
    return token or None


async def get_current_user(
    token: Annotated[Optional[str], Depends(get_token)],
    gate: Annotated[AuthGate, Depends(get_auth_gate)],
) -> User:
    """Resolve the session token to current user; raise 401 if invalid or missing."""
    if not token:
        log.debug("Request missing session token")
        raise Unauthorized("missing token")
    return await gate.identify(token)


async def get_optional_user(
    token: Annotated[Optional[str], Depends(get_token)],
    gate: Annotated[AuthGate, Depends(get_auth_gate)],
) -> Optional[User]:
    """Like get_current_user but anonymous (or stale token) yields None."""
    if not token:
        return None
    try:
        return await gate.identify(token)
    except Unauthorized:
        return None
