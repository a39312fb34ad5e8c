"""
Admin user service layer: lookups, creation, password and activation changes.
"""

from typing import Optional, Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_
from cancha.database.models import AdminUser, AdminRole
from cancha.services import password_service, session_service
from cancha.utils.datetime_utils import utcnow, to_iso
import logging

logger = logging.getLogger(__name__)


def _admin_to_dict(user: AdminUser, include_password_hash: bool = False) -> Dict:
    data = {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "is_active": user.is_active,
        "last_login_at": to_iso(user.last_login_at),
        "created_at": to_iso(user.created_at),
    }
    if include_password_hash:
        data["password_hash"] = user.password_hash
    return data


async def get_admin_for_login(session: AsyncSession, identifier: str) -> Optional[Dict]:
    """
    Find an admin by username or email, including the password hash.

    Usernames match exactly; emails match case-insensitively.

    Args:
        session: Database session
        identifier: Username or email entered on the login form

    Returns:
        User dictionary with password_hash, or None
    """
    identifier = identifier.strip()
    result = await session.execute(
        select(AdminUser)
        .where(
            or_(
                AdminUser.username == identifier,
                func.lower(AdminUser.email) == identifier.lower(),
            )
        )
        .limit(1)
    )
    user = result.scalar_one_or_none()
    return _admin_to_dict(user, include_password_hash=True) if user else None


async def create_admin_user(
    session: AsyncSession,
    username: str,
    password: str,
    name: str,
    email: Optional[str] = None,
    role: str = AdminRole.ADMIN.value,
) -> int:
    """
    Create an admin account.

    Args:
        session: Database session
        username: Unique login name
        password: Plain password, must satisfy the password policy
        name: Display name
        email: Optional unique email (stored lowercase)
        role: Admin role

    Returns:
        ID of the new admin user

    Raises:
        ValueError: If the username or email is already taken
        HashingError: If the password does not satisfy the policy
    """
    email = email.strip().lower() if email else None

    conditions = [AdminUser.username == username]
    if email:
        conditions.append(func.lower(AdminUser.email) == email)
    existing = await session.execute(select(AdminUser.id).where(or_(*conditions)).limit(1))
    if existing.scalar_one_or_none():
        raise ValueError(f"Admin user {username!r} or its email is already registered")

    user = AdminUser(
        username=username,
        email=email,
        password_hash=password_service.hash_password(password),
        name=name,
        role=role,
        is_active=True,
    )
    session.add(user)
    await session.flush()
    user_id = user.id
    await session.commit()

    logger.info(f"Created admin user {user_id} ({username})")
    return user_id


async def update_admin_password(session: AsyncSession, user_id: int, new_password: str) -> bool:
    """
    Change an admin's password and sign out all of their sessions.

    Returns:
        True if the user exists and was updated
    """
    password_hash = password_service.hash_password(new_password)
    result = await session.execute(
        update(AdminUser)
        .where(AdminUser.id == user_id)
        .values(password_hash=password_hash, updated_at=func.now())
    )
    if result.rowcount == 0:
        await session.rollback()
        return False

    await session_service.destroy_all_user_sessions(session, user_id)
    await session.commit()
    return True


async def set_admin_active(session: AsyncSession, user_id: int, is_active: bool) -> bool:
    """
    Activate or deactivate an admin. Deactivation ends every session of the user.

    Returns:
        True if the user exists and was updated
    """
    result = await session.execute(
        update(AdminUser)
        .where(AdminUser.id == user_id)
        .values(is_active=is_active, updated_at=func.now())
    )
    if result.rowcount == 0:
        await session.rollback()
        return False

    if not is_active:
        await session_service.destroy_all_user_sessions(session, user_id)
    await session.commit()
    logger.info(f"Admin user {user_id} {'activated' if is_active else 'deactivated'}")
    return True


async def update_last_login(session: AsyncSession, user_id: int) -> None:
    await session.execute(
        update(AdminUser).where(AdminUser.id == user_id).values(last_login_at=utcnow())
    )
