"""
Audit Log Repository
Append-only
"""

from pledge_engine.domain.models import AuditLogEntry
from pledge_engine.infrastructure.db.models import PledgeAuditLogModel
from pledge_engine.infrastructure.db.repositories.base import EntityRepository


class AuditLogRepository(EntityRepository[PledgeAuditLogModel, AuditLogEntry]):
    """Repository for AuditLogEntry"""

    model = PledgeAuditLogModel

    @staticmethod
    def _to_domain(model: PledgeAuditLogModel) -> AuditLogEntry:
        return AuditLogEntry(
            id=model.id,
            actor_id=model.actor_id,
            actor_role=model.actor_role,
            action=model.action,
            target_type=model.target_type,
            target_session_id=model.target_session_id,
            target_pledge_id=model.target_pledge_id,
            payload=model.payload or {},
            success=bool(model.success),
            created_at=model.created_at,
        )
