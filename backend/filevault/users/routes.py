"""User routes: register, connect, disconnect, me."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from filevault.auth.dependencies import (
    get_auth_gate,
    get_basic_credentials,
    get_current_user,
    get_session_store,
    get_token,
)
from filevault.auth.gate import AuthGate
from filevault.auth.sessions import SessionStore
from filevault.db.session import get_db
from filevault.errors import Unauthorized
from filevault.jobs.queue import JobQueue, WelcomeJob
from filevault.limiter import limiter
from filevault.users.models import TokenResponse, User, UserCreate, UserResponse
from filevault.users.service import create_user

router = APIRouter(tags=["users"])
log = logging.getLogger(__name__)


def get_welcome_queue(request: Request) -> JobQueue:
    return request.app.state.welcome_queue


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def register(
    request: Request,
    body: UserCreate,
    session: Annotated[AsyncSession, Depends(get_db)],
    queue: Annotated[JobQueue, Depends(get_welcome_queue)],
) -> UserResponse:
    """Register with email and password. A welcome job is queued afterwards."""
    user = await create_user(session, body)
    await session.commit()
    await queue.enqueue(WelcomeJob(user_id=user.id))
    return UserResponse.model_validate(user)


@router.get("/connect", response_model=TokenResponse)
@limiter.limit("10/minute")
async def connect(
    request: Request,
    credentials: Annotated[Optional[tuple[str, str]], Depends(get_basic_credentials)],
    gate: Annotated[AuthGate, Depends(get_auth_gate)],
) -> TokenResponse:
    """Exchange Basic email:password credentials for a session token."""
    if not credentials:
        raise Unauthorized("missing or malformed basic credentials")
    email, password = credentials
    token = await gate.connect(email, password)
    return TokenResponse(token=token)


@router.get("/disconnect", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect(
    token: Annotated[Optional[str], Depends(get_token)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> Response:
    """Revoke the session token; 401 if it was not live."""
    if not token or not await sessions.revoke(token):
        raise Unauthorized("unknown token on disconnect")
    log.info("Session revoked")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/users/me", response_model=UserResponse)
async def me(
    current_user: Annotated[User, Depends(get_current_user)],
) -> UserResponse:
    """Return current authenticated user."""
    return UserResponse.model_validate(current_user)
