"""
Best-effort audit trail.

Entries are written in their own session so an audit failure can never roll
back, or be rolled back by, the operation being audited. Write errors are
logged and dropped.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from hivcare.constants import ActorType, AuditAction
from hivcare.entities import AuditLog

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    actor_type: ActorType
    action: AuditAction
    user_id: Optional[str] = None
    entity: Optional[str] = None
    entity_id: Optional[str] = None
    before: Any = None
    after: Any = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class RequestInfo:
    ip: Optional[str] = None
    user_agent: Optional[str] = None


class AuditLogger:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def log(self, entry: AuditEntry) -> bool:
        """Persist *entry*; returns False (after logging) when the write fails."""
        db = self.session_factory()
        try:
            db.add(AuditLog(
                user_id=entry.user_id,
                actor_type=ActorType(entry.actor_type).value,
                action=AuditAction(entry.action).value,
                entity=entry.entity,
                entity_id=entry.entity_id,
                before=entry.before,
                after=entry.after,
                ip=entry.ip,
                user_agent=(entry.user_agent or "")[:255] or None,
            ))
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to write audit log (%s %s): %s", entry.action, entry.entity, e)
            return False
        finally:
            db.close()

    def log_user_action(self, user_id: str, action: AuditAction, entity: str,
                        entity_id: Optional[str], request: Optional[RequestInfo] = None,
                        before: Any = None, after: Any = None) -> bool:
        return self.log(AuditEntry(
            actor_type=ActorType.USER,
            action=action,
            user_id=user_id,
            entity=entity,
            entity_id=entity_id,
            before=before,
            after=after,
            ip=request.ip if request else None,
            user_agent=request.user_agent if request else None,
        ))

    def log_system_action(self, action: AuditAction, entity: Optional[str] = None,
                          entity_id: Optional[str] = None, before: Any = None,
                          after: Any = None) -> bool:
        return self.log(AuditEntry(
            actor_type=ActorType.SYSTEM,
            action=action,
            entity=entity,
            entity_id=entity_id,
            before=before,
            after=after,
        ))

    # ── Convenience wrappers ─────────────────────────────────────────

    def log_create(self, user_id, entity, entity_id, data, request=None):
        return self.log_user_action(user_id, AuditAction.CREATE, entity, entity_id, request, after=data)

    def log_update(self, user_id, entity, entity_id, before, after, request=None):
        return self.log_user_action(user_id, AuditAction.UPDATE, entity, entity_id, request,
                                    before=before, after=after)

    def log_read(self, user_id, entity, entity_id=None, request=None, filters=None):
        """Record a read; list reads pass no *entity_id* and the query *filters*."""
        after = {"filters": filters} if filters else None
        return self.log_user_action(user_id, AuditAction.READ, entity, entity_id, request, after=after)

    def log_login(self, user_id, request=None):
        return self.log_user_action(user_id, AuditAction.LOGIN, "users", user_id, request)

    def log_export(self, user_id, entity, filters=None, request=None):
        return self.log_user_action(user_id, AuditAction.EXPORT, entity, None, request,
                                    after={"filters": filters or {}})
