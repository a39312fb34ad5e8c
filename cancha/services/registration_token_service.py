"""
Registration tokens: the private, high-entropy credential that lets a friend
view or cancel their own registration.
"""

import re
import secrets
from typing import Optional
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.database.models import GameRegistration
from cancha.utils.constants import APP_URL

TOKEN_BYTES = 32
TOKEN_LENGTH = TOKEN_BYTES * 2
_TOKEN_PATTERN = re.compile(r"[0-9a-f]{%d}" % TOKEN_LENGTH)


def generate_token() -> str:
    """Return a new 64-character lowercase hex token."""
    return secrets.token_hex(TOKEN_BYTES)


def is_valid_format(token: Optional[str]) -> bool:
    """Exact length and charset check, done before any database lookup."""
    if not isinstance(token, str):
        return False
    return _TOKEN_PATTERN.fullmatch(token) is not None


def create_management_url(token: str, base_url: Optional[str] = None) -> str:
    """Self-service URL for a registration token."""
    base = (base_url or APP_URL).rstrip("/")
    return f"{base}/mi-registro/{quote(token, safe='')}"


async def find_registration_by_token(
    session: AsyncSession, token: Optional[str]
) -> Optional[GameRegistration]:
    """
    Look up the registration owning a token.

    Malformed tokens return None without querying the database.

    Args:
        session: Database session
        token: Token from the management URL

    Returns:
        GameRegistration ORM instance or None
    """
    if not is_valid_format(token):
        return None

    result = await session.execute(
        select(GameRegistration).where(GameRegistration.registration_token == token)
    )
    return result.scalar_one_or_none()
