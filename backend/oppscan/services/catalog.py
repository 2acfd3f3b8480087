"""
Trigger catalog access and validation.

The scanner never edits a trigger during a scan. Imports go through
`import_definition`, which refuses any definition that could never produce
a correct scan. Updating an existing trigger is only safe while its scan lock
is held; `ScanEngine.import_catalog` takes care of that.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from oppscan.exceptions import TriggerConfigError
from oppscan.matching.keywords import validate_trigger
from oppscan.models import Trigger
from oppscan.schemas import TriggerDefinition

logger = logging.getLogger(__name__)


class CatalogService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_trigger(self, trigger_id: int) -> Trigger | None:
        return await self.session.get(Trigger, trigger_id)

    async def enabled_triggers(self) -> list[Trigger]:
        result = await self.session.execute(
            select(Trigger)
            .where(Trigger.is_enabled.is_(True))
            .order_by(Trigger.priority.asc(), Trigger.id.asc())
        )
        return list(result.scalars())

    async def validate_catalog(self) -> dict[str, list[str]]:
        """Problems per enabled trigger key; triggers without problems are omitted."""
        problems = {}
        for trigger in await self.enabled_triggers():
            reasons = validate_trigger(trigger)
            if reasons:
                problems[trigger.trigger_key] = reasons
        if problems:
            logger.warning("Catalog validation found %d unusable triggers", len(problems))
        return problems

    async def trigger_id_for_key(self, trigger_key: str) -> int | None:
        result = await self.session.execute(select(Trigger.id).where(Trigger.trigger_key == trigger_key))
        return result.scalar_one_or_none()

    async def import_definition(self, definition: TriggerDefinition) -> str:
        """Insert or update one trigger by key. Returns "created" or "updated".

        Raises TriggerConfigError for a definition that could never produce a
        correct scan; nothing is written in that case.
        """
        candidate = Trigger(**definition.model_dump())
        reasons = validate_trigger(candidate)
        if reasons:
            raise TriggerConfigError(definition.trigger_key, reasons)

        result = await self.session.execute(
            select(Trigger).where(Trigger.trigger_key == definition.trigger_key)
        )
        existing = result.scalar_one_or_none()
        if existing is None:
            self.session.add(candidate)
            action = "created"
        else:
            for name, value in definition.model_dump().items():
                setattr(existing, name, value)
            action = "updated"
        await self.session.flush()
        return action
