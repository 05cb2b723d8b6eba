"""
Doxologos Payments - Audit Log
"""
import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models import AuditLog

logger = logging.getLogger(__name__)


async def record_audit(
    db: AsyncSession,
    entity_type: str,
    action: str,
    entity_id: Optional[str] = None,
    payload: Optional[Any] = None,
    performed_by: Optional[str] = None,
    commit: bool = True,
) -> AuditLog:
    """Insere uma linha em logs (nunca atualizada depois)"""
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        action=action,
        performed_by=performed_by,
        payload=payload,
    )
    db.add(entry)
    if commit:
        await db.commit()
    else:
        await db.flush()
    logger.debug(f"Audit {entity_type}/{action} registrado para {entity_id}")
    return entry
