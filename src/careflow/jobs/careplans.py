"""
Care Plan Reconciliation Job

Paged, checkpointed scan completing care plans whose task activities are
all terminal.
"""

from dataclasses import dataclass

import structlog

from careflow.engine.lifecycle import TaskLifecycle
from careflow.models.careplan import CarePlan
from careflow.store.base import CheckpointStore, ResourceStore, SearchQuery

logger = structlog.get_logger(__name__)


@dataclass
class BatchResult:
    """Outcome of one checkpointed batch."""
    examined: int = 0
    completed: int = 0
    offset: int = 0


class CarePlanReconciler:
    """
    Completes stale care plans in fixed-size batches.

    The scan walks every care plan in store order and skips terminal ones
    in process, so completing a care plan never shifts the pages still to
    be read. The persisted offset advances by the number of care plans
    examined and wraps to 0 once a page comes back empty.
    """

    def __init__(
        self,
        store: ResourceStore,
        lifecycle: TaskLifecycle,
        checkpoints: CheckpointStore,
        batch_size: int = 50,
        key_prefix: str = "careflow",
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.checkpoints = checkpoints
        self.batch_size = batch_size
        self.checkpoint_key = f"{key_prefix}:complete-care-plans:offset"

    async def read_offset(self) -> int:
        value = await self.checkpoints.read(self.checkpoint_key, "0")
        try:
            return max(int(value or 0), 0)
        except ValueError:
            logger.warning("Invalid checkpoint value, restarting scan", key=self.checkpoint_key, value=value)
            return 0

    async def complete_stale_care_plans(self, batch_size: int | None = None) -> BatchResult:
        """
        Process one batch of care plans.

        The checkpoint is written only after the whole batch succeeded; a
        failure leaves it unadvanced so the batch is retried next run.
        """
        batch_size = batch_size or self.batch_size
        offset = await self.read_offset()

        page = await self.store.search("CarePlan", SearchQuery().page(offset, batch_size))
        if not page:
            await self.checkpoints.write(self.checkpoint_key, "0")
            logger.info("Care plan scan wrapped around", previous_offset=offset)
            return BatchResult(offset=0)

        completed = 0
        for care_plan in page:
            if await self._complete(care_plan):
                completed += 1

        next_offset = offset + len(page)
        await self.checkpoints.write(self.checkpoint_key, str(next_offset))

        logger.info(
            "Completed stale care plans",
            examined=len(page),
            completed=completed,
            offset=next_offset,
        )
        return BatchResult(examined=len(page), completed=completed, offset=next_offset)

    async def _complete(self, care_plan: CarePlan) -> bool:
        if care_plan.is_terminal or not care_plan.task_ids():
            return False
        return await self.lifecycle.try_complete_care_plan(care_plan)
