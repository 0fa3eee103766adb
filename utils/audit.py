import json
import logging
from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from models.audit_log import AuditLog

logger = logging.getLogger(__name__)


async def log_audit_event(
    db: AsyncSession,
    actor: str,
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    detail: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        actor=actor or "system",
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        detail=json.dumps(detail, default=str) if detail is not None else None,
    )
    db.add(log)
    await db.commit()
    await db.refresh(log)
    logger.debug("audit %s %s/%s by %s", action, entity_type, entity_id, actor)
    return log
