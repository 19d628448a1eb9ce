import logging
from datetime import datetime, timezone
from typing import Any, Dict

from shared.models.node_enums import TriggerSubtype
from shared.models.trigger import ExecutionResult, TriggerStatus
from workflow_lifecycle.triggers.base import BaseTrigger

logger = logging.getLogger(__name__)


class ManualTrigger(BaseTrigger):
    """Manual trigger for user-initiated workflow execution"""

    @property
    def trigger_type(self) -> str:
        return TriggerSubtype.MANUAL.value

    async def start(self) -> bool:
        if not self.enabled:
            logger.info(f"Manual trigger for workflow {self.workflow_id} is disabled")
            self.status = TriggerStatus.PAUSED
            return True

        self.status = TriggerStatus.ACTIVE
        logger.info(f"Manual trigger started for workflow {self.workflow_id}")
        return True

    async def stop(self) -> bool:
        self.status = TriggerStatus.STOPPED
        logger.info(f"Manual trigger stopped for workflow {self.workflow_id}")
        return True

    async def trigger_manual(self, user_id: str) -> ExecutionResult:
        """Run the workflow on behalf of a user"""
        trigger_data: Dict[str, Any] = {
            "user_id": user_id,
            "requested_at": datetime.now(timezone.utc).isoformat(),
        }
        return await self.fire(trigger_data)

    async def health_check(self) -> Dict[str, Any]:
        base_health = await super().health_check()
        return {
            **base_health,
            "ready_for_execution": self.enabled and self.status == TriggerStatus.ACTIVE,
        }
