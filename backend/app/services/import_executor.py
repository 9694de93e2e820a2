"""Import executor: the only writer on the forward path.

Validated rows are created in fixed-size batches. A batch that fails to
commit is replayed row by row so one bad row cannot take its siblings down;
a row that still fails is recorded as REJECTED with the storage error.
Counters are persisted after every batch so status can be polled mid-run.
"""
import logging
import uuid
from dataclasses import dataclass, field

from app.core.errors import StorageWriteError
from app.repositories.import_store import ImportStore
from app.services.row_validator import Outcome, RowError, RowOutcome, ValidatedRow

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


@dataclass
class ExecutionResult:
    outcomes: list[RowOutcome] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def successful(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome == Outcome.CREATED)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome == Outcome.REJECTED)

    @property
    def errors(self) -> list[RowError]:
        return [e for o in self.outcomes for e in o.errors]


class ImportExecutor:
    def __init__(self, store: ImportStore, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.batch_size = batch_size

    async def run(
        self,
        job_id: uuid.UUID,
        audit_id: uuid.UUID,
        created_by: uuid.UUID | None,
        items: list[RowOutcome | ValidatedRow],
    ) -> ExecutionResult:
        """Create records for every ValidatedRow in ``items``.

        ``items`` is the validator output in file order; rejected rows pass
        straight through so outcomes stay in row order.
        """
        result = ExecutionResult()
        position = 0

        for start in range(0, len(items), self.batch_size):
            batch = items[start:start + self.batch_size]
            rows = [item for item in batch if isinstance(item, ValidatedRow)]
            created = await self._create_batch(job_id, audit_id, created_by, rows, position)
            position += sum(1 for record_id in created.values() if isinstance(record_id, uuid.UUID))

            for item in batch:
                if isinstance(item, RowOutcome):
                    result.outcomes.append(item)
                    continue
                record_id = created[item.row_number]
                if isinstance(record_id, uuid.UUID):
                    result.outcomes.append(RowOutcome(item.row_number, Outcome.CREATED, record_id=record_id))
                else:
                    result.outcomes.append(
                        RowOutcome(
                            item.row_number,
                            Outcome.REJECTED,
                            errors=[RowError(item.row_number, None, None, None, str(record_id))],
                        )
                    )

            await self.store.update_progress(
                job_id,
                processed=result.processed,
                successful=result.successful,
                failed=result.failed,
                errors=[e.to_dict() for e in result.errors],
            )
            logger.debug(
                "Job %s: %d/%d rows processed (%d created)",
                job_id, result.processed, len(items), result.successful,
            )

        return result

    async def _create_batch(
        self,
        job_id: uuid.UUID,
        audit_id: uuid.UUID,
        created_by: uuid.UUID | None,
        rows: list[ValidatedRow],
        position: int,
    ) -> dict[int, uuid.UUID | str]:
        """Row number -> new record id, or the storage error message for rows that failed."""
        if not rows:
            return {}
        try:
            ids = await self.store.create_observations(job_id, audit_id, created_by, rows, position)
            return {row.row_number: record_id for row, record_id in zip(rows, ids)}
        except StorageWriteError as exc:
            logger.warning(
                "Job %s: batch of %d rows failed (%s); retrying row by row",
                job_id, len(rows), exc.message,
            )

        created: dict[int, uuid.UUID | str] = {}
        for row in rows:
            try:
                created[row.row_number] = await self.store.create_observation(
                    job_id, audit_id, created_by, row, position
                )
                position += 1
            except StorageWriteError as exc:
                logger.warning("Job %s: row %d could not be saved: %s", job_id, row.row_number, exc.message)
                created[row.row_number] = exc.message
        return created
