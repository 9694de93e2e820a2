"""Audit trail for the import pipeline: append-only writes to audit_logs."""
import json
import logging
import uuid
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import StorageWriteError
from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditTrail(Protocol):
    async def record(
        self,
        action: str,
        entity_type: str,
        entity_id: uuid.UUID | None = None,
        actor_id: uuid.UUID | None = None,
        after: Any | None = None,
        notes: str | None = None,
    ) -> None: ...


class SqlAuditTrail:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(
        self,
        action: str,
        entity_type: str,
        entity_id: uuid.UUID | None = None,
        actor_id: uuid.UUID | None = None,
        after: Any | None = None,
        notes: str | None = None,
    ) -> None:
        """Write one audit entry and commit it.

        Args:
            action: Short verb, e.g. 'import.uploaded', 'import.rolled_back'.
            entity_type: Domain name, e.g. 'import_job'.
            entity_id: PK of the affected record.
            actor_id: User who performed the action (None for system actions).
            after: JSON-serialisable snapshot of the outcome.
            notes: Free-text annotation, e.g. a rollback reason.
        """
        entry = AuditLog(
            id=uuid.uuid4(),
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            after_state=json.dumps(after, default=str) if after is not None else None,
            notes=notes,
        )
        self.session.add(entry)
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageWriteError(f"Writing audit entry {action} failed") from exc
        self.session.expunge(entry)
        logger.debug("Audit: %s %s/%s", action, entity_type, entity_id)
