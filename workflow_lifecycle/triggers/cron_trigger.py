import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger as APCronTrigger

from shared.models.node_enums import TriggerSubtype
from shared.models.trigger import TriggerStatus
from workflow_lifecycle.triggers.base import BaseTrigger

logger = logging.getLogger(__name__)

# Expression fields by length; the six-field form leads with seconds
CRON_FIELDS = {
    5: ("minute", "hour", "day", "month", "day_of_week"),
    6: ("second", "minute", "hour", "day", "month", "day_of_week"),
}


def parse_cron_expression(expression: str, tz: str) -> APCronTrigger:
    """
    Build an APScheduler trigger from a 5 or 6 field cron expression

    Raises:
        ValueError: wrong field count or a field APScheduler rejects
    """
    parts = expression.split()
    fields = CRON_FIELDS.get(len(parts))
    if fields is None:
        raise ValueError(f"Invalid cron expression '{expression}': expected 5 or 6 fields")

    try:
        return APCronTrigger(timezone=tz, **dict(zip(fields, parts)))
    except ValueError as e:
        raise ValueError(f"Invalid cron expression '{expression}': {e}") from e


class CronTrigger(BaseTrigger):
    """Runs the workflow on a cron schedule, one APScheduler job per node"""

    def __init__(self, workflow_id: str, node_name: str, trigger_config: Dict[str, Any], **kwargs):
        super().__init__(workflow_id, node_name, trigger_config, **kwargs)

        self.cron_expression = (trigger_config.get("cron_expression") or "").strip()
        if not self.cron_expression:
            raise ValueError(f"Cron node '{node_name}' has no cron_expression")

        self.timezone = trigger_config.get("timezone") or "UTC"
        if self.timezone not in pytz.all_timezones_set:
            logger.warning(f"Cron node '{node_name}' has unknown timezone {self.timezone}, falling back to UTC")
            self.timezone = "UTC"

        # A malformed expression must fail registration, not the first tick
        self.cron_trigger = parse_cron_expression(self.cron_expression, self.timezone)

        self.scheduler: Optional[AsyncIOScheduler] = None
        self.job_id = f"cron_{self.workflow_id}_{node_name}"

    @property
    def trigger_type(self) -> str:
        return TriggerSubtype.CRON.value

    async def start(self) -> bool:
        if not self.enabled:
            logger.info(f"Cron node '{self.node_name}' of workflow {self.workflow_id} is disabled")
            self.status = TriggerStatus.PAUSED
            return True

        try:
            if self.scheduler is None:
                self.scheduler = AsyncIOScheduler(timezone=self.timezone)
                self.scheduler.start()

            self.scheduler.add_job(
                self._run,
                trigger=self.cron_trigger,
                id=self.job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        except Exception as e:
            logger.error(
                f"Could not schedule cron node '{self.node_name}' of workflow {self.workflow_id}: {e}",
                exc_info=True,
            )
            self.status = TriggerStatus.ERROR
            return False

        self.status = TriggerStatus.ACTIVE
        logger.info(f"Workflow {self.workflow_id} scheduled with '{self.cron_expression}' ({self.timezone})")
        return True

    async def stop(self) -> bool:
        if self.scheduler is not None:
            if self.scheduler.get_job(self.job_id):
                self.scheduler.remove_job(self.job_id)
            self.scheduler.shutdown(wait=False)
            self.scheduler = None

        self.status = TriggerStatus.STOPPED
        logger.info(f"Cron schedule of workflow {self.workflow_id} removed")
        return True

    async def _run(self) -> None:
        result = await self.fire(
            {
                "cron_expression": self.cron_expression,
                "timezone": self.timezone,
                "scheduled_time": datetime.now(timezone.utc).isoformat(),
            }
        )
        if result.status != "running":
            logger.warning(f"Scheduled run of workflow {self.workflow_id} did not start: {result.message}")

    def next_run_time(self) -> Optional[datetime]:
        if self.scheduler is None:
            return None
        job = self.scheduler.get_job(self.job_id)
        return job.next_run_time if job else None

    async def health_check(self) -> Dict[str, Any]:
        next_run = self.next_run_time()
        return {
            **(await super().health_check()),
            "cron_expression": self.cron_expression,
            "timezone": self.timezone,
            "next_run_time": next_run.isoformat() if next_run else None,
        }
