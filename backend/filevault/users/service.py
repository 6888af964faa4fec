"""Credential store: look up and register users, send the welcome mail."""

import logging
from email.message import EmailMessage
from typing import Optional

import aiosmtplib
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from filevault.auth.passwords import hash_password
from filevault.config import Settings
from filevault.errors import Conflict, ValidationError
from filevault.users.models import User, UserCreate

log = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """Stored form of an email address; lookups go through the same form."""
    return email.strip().lower()


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    """Return user by email (case-insensitive) or None."""
    result = await session.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[User]:
    """Return user by id or None."""
    return await session.get(User, user_id)


async def count_users(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(User))
    return result.scalar_one()


async def create_user(session: AsyncSession, payload: UserCreate) -> User:
    """
    Register a user with a hashed password.
    Raises ValidationError for missing fields and Conflict if the email is taken.
    Caller must commit session.
    """
    if not payload.email:
        raise ValidationError("Missing email")
    if not payload.password:
        raise ValidationError("Missing password")
    email = normalize_email(payload.email)
    existing = await get_user_by_email(session, email)
    if existing:
        log.info("Registration rejected, email already used: %s", email)
        raise Conflict("Already exist")
    user = User(email=email, password_hash=hash_password(payload.password))
    session.add(user)
    try:
        await session.flush()
    except IntegrityError as e:
        # Concurrent registration won the unique index
        await session.rollback()
        raise Conflict("Already exist") from e
    log.info("Registered user id=%s email=%s", user.id, user.email)
    return user


async def send_welcome_email(settings: Settings, to_email: str) -> None:
    """Send the welcome mail. Raises on SMTP failure."""
    msg = EmailMessage()
    msg["From"] = settings.smtp_from
    msg["To"] = to_email
    msg["Subject"] = "Welcome to filevault"
    msg.set_content(f"""Hello,

Your filevault account {to_email} is ready. Connect with your email and password
to start uploading files.

Best regards,
filevault
""")
    await aiosmtplib.send(
        msg,
        hostname=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_user or None,
        password=settings.smtp_password or None,
        use_tls=settings.smtp_port == 465,
        start_tls=settings.smtp_port == 587,
    )
