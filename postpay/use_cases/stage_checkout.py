"""Use case: stage files before handing the user to the payment provider."""
import logging
from typing import List, Sequence

from ..errors import StagingIncomplete
from ..models import PendingFile
from ..services.staging import StagingStore

logger = logging.getLogger(__name__)


class StageCheckoutUseCase:
    """Stage all files and verify them; checkout must not start otherwise."""

    async def execute(self, staging: StagingStore, files: Sequence[PendingFile]) -> List[str]:
        ids = await staging.stage_all(files)

        missing = await staging.verify_complete(ids)
        if missing:
            logger.error("[staging] %d payload(s) missing right after staging", len(missing))
            await staging.clear()
            raise StagingIncomplete(missing)

        return ids
