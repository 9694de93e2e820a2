"""Seed default data into the database."""
import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import AsyncSessionLocal
from app.models.import_job import ImportMappingTemplate

logger = logging.getLogger(__name__)

# Default mapping presets: (name, description, [(source column, target field, required)])
DEFAULT_TEMPLATES = [
    (
        "ISO 27001 audit workbook",
        "Column layout of the standard ISO 27001 non-conformance register.",
        [
            ("NC Ref", "externalReference", False),
            ("Finding Title", "title", True),
            ("Finding Description", "description", False),
            ("Business Unit", "entity", False),
            ("ISO Clause", "controlClauseRef", False),
            ("Risk Rating", "riskRating", False),
            ("Root Cause", "rootCause", False),
            ("Action Owner", "responsibleParty", False),
            ("Corrective Action", "correctiveAction", False),
            ("Date Raised", "openDate", False),
            ("Due Date", "targetDate", False),
            ("Status", "status", False),
        ],
    ),
]


async def seed_mapping_templates(db: AsyncSession) -> None:
    """Insert default mapping templates that do not exist yet (matched by name)."""
    for name, description, entries in DEFAULT_TEMPLATES:
        existing = await db.execute(
            select(ImportMappingTemplate).where(ImportMappingTemplate.name == name)
        )
        if existing.scalars().first() is None:
            db.add(
                ImportMappingTemplate(
                    name=name,
                    description=description,
                    mappings=[
                        {"source_column": source, "target_field": target, "required": required}
                        for source, target, required in entries
                    ],
                    is_default=True,
                )
            )
            logger.info("Seeded mapping template: %s", name)
        else:
            logger.info("Mapping template already exists: %s, skipping", name)

    await db.commit()


async def run_seed() -> None:
    async with AsyncSessionLocal() as db:
        await seed_mapping_templates(db)
    logger.info("Seeding complete.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_seed())
