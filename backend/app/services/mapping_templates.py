"""Mapping template store: named, reusable column mappings."""
import logging
import uuid
from typing import Callable

from app.core.errors import DuplicateTemplateName, TemplateNotFound
from app.models.import_job import ImportMappingTemplate
from app.repositories.import_store import ImportStore
from app.services.column_mapper import ColumnMapping, check_entries

logger = logging.getLogger(__name__)


class MappingTemplateService:
    def __init__(self, store: ImportStore, id_factory: Callable[[], uuid.UUID] = uuid.uuid4) -> None:
        self.store = store
        self.id_factory = id_factory

    async def list_templates(self) -> list[ImportMappingTemplate]:
        """Default templates first, then alphabetical."""
        return await self.store.list_templates()

    async def get(self, template_id: uuid.UUID) -> ImportMappingTemplate:
        template = await self.store.get_template(template_id)
        if template is None:
            raise TemplateNotFound(template_id)
        return template

    async def mapping_for(self, template_id: uuid.UUID) -> ColumnMapping:
        template = await self.get(template_id)
        return ColumnMapping.from_list(template.mappings)

    async def create(
        self,
        name: str,
        mappings: ColumnMapping,
        description: str | None = None,
        is_default: bool = False,
        created_by: uuid.UUID | None = None,
    ) -> ImportMappingTemplate:
        name = name.strip()
        check_entries(mappings)
        if await self.store.get_template_by_name(name) is not None:
            raise DuplicateTemplateName(name)

        template = await self.store.create_template(
            ImportMappingTemplate(
                id=self.id_factory(),
                name=name,
                description=description,
                mappings=mappings.to_list(),
                is_default=is_default,
                created_by=created_by,
            )
        )
        logger.info("Created mapping template %s (%s, %d entries)", template.id, name, len(mappings))
        return template

    async def delete(self, template_id: uuid.UUID) -> None:
        if not await self.store.delete_template(template_id):
            raise TemplateNotFound(template_id)
        logger.info("Deleted mapping template %s", template_id)
