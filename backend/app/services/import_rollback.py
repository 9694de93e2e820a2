"""Rollback manager: reverse the records an import created."""
import logging
import uuid
from datetime import datetime

from app.db.base import Base, soft_deletable
from app.models.observation import Observation
from app.repositories.import_store import OBSERVATION_TARGET, ImportStore

logger = logging.getLogger(__name__)

# Manifest target_type -> model. Soft or hard delete follows the model's capability.
ROLLBACK_TARGETS: dict[str, type[Base]] = {
    OBSERVATION_TARGET: Observation,
}


class RollbackManager:
    def __init__(self, store: ImportStore) -> None:
        self.store = store

    async def rollback(self, job_id: uuid.UUID, at: datetime) -> int:
        """Undo the job's manifest newest-first. Returns how many records were
        actually reversed; records already gone are skipped."""
        manifest = await self.store.list_manifest(job_id)
        reversed_count = 0
        skipped = 0

        for record in reversed(manifest):
            model = ROLLBACK_TARGETS.get(record.target_type)
            if model is None:
                logger.warning("Job %s: no rollback target for type %r", job_id, record.target_type)
                skipped += 1
                continue

            if soft_deletable(model):
                done = await self.store.soft_delete(model, record.target_id, at)
            else:
                done = await self.store.hard_delete(model, record.target_id)

            if done:
                reversed_count += 1
            else:
                skipped += 1

        logger.info(
            "Job %s rolled back: %d of %d records reversed (%d skipped)",
            job_id, reversed_count, len(manifest), skipped,
        )
        return reversed_count
