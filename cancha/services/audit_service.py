"""
Audit trail: writing entries and listing them for admins.

Writes use their own transaction and never raise.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.database import db
from cancha.database.models import AuditLog
from cancha.services.security_service import RequestContext
from cancha.utils.datetime_utils import to_iso

logger = logging.getLogger(__name__)


async def record_audit(
    action_type: str,
    entity_type: str,
    entity_id: Optional[int],
    details: Optional[Dict[str, Any]] = None,
    context: Optional[RequestContext] = None,
    admin_user_id: Optional[int] = None,
) -> bool:
    """
    Append an audit log entry.

    Args:
        action_type: AuditAction value
        entity_type: Affected table, e.g. "game_registration"
        entity_id: Affected row id
        details: JSON-serializable description of the change
        context: Request metadata (ip, user agent)
        admin_user_id: Acting admin, None for self-service actions

    Returns:
        True if the entry was stored
    """
    try:
        async with db.AsyncSessionLocal() as session:
            session.add(
                AuditLog(
                    admin_user_id=admin_user_id,
                    action_type=action_type,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    action_details=details or {},
                    ip_address=context.ip_address if context else None,
                    user_agent=context.user_agent if context else None,
                )
            )
            await session.commit()
        return True
    except Exception as e:
        logger.error(f"Failed to write audit entry {action_type} for {entity_type} {entity_id}: {e}")
        return False


def _entry_to_dict(entry: AuditLog) -> Dict:
    return {
        "id": entry.id,
        "admin_user_id": entry.admin_user_id,
        "action_type": entry.action_type,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "action_details": entry.action_details or {},
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "created_at": to_iso(entry.created_at),
    }


async def get_audit_log(
    session: AsyncSession,
    limit: int = 10,
    offset: int = 0,
    action_type: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    admin_user_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> Tuple[List[Dict], int]:
    """
    Page through audit entries, newest first.

    Returns:
        (entries on this page, total matching entries)
    """
    conditions = []
    if action_type:
        conditions.append(AuditLog.action_type == action_type)
    if entity_type:
        conditions.append(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        conditions.append(AuditLog.entity_id == entity_id)
    if admin_user_id is not None:
        conditions.append(AuditLog.admin_user_id == admin_user_id)
    if date_from:
        conditions.append(AuditLog.created_at >= date_from)
    if date_to:
        conditions.append(AuditLog.created_at <= date_to)

    total = await session.scalar(select(func.count()).select_from(AuditLog).where(*conditions))
    result = await session.execute(
        select(AuditLog)
        .where(*conditions)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return [_entry_to_dict(entry) for entry in result.scalars().all()], total or 0
