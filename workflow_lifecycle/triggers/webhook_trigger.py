import logging
from typing import Any, Dict, List, Tuple

from shared.models.node_enums import TriggerSubtype
from shared.models.trigger import ExecutionResult, TriggerStatus
from workflow_lifecycle.triggers.base import BaseTrigger

logger = logging.getLogger(__name__)

ALLOWED_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"}


class WebhookTrigger(BaseTrigger):
    """Webhook trigger for HTTP-based workflow execution"""

    def __init__(self, workflow_id: str, node_name: str, trigger_config: Dict[str, Any], **kwargs):
        super().__init__(workflow_id, node_name, trigger_config, **kwargs)

        self.webhook_path = self.normalize_path(
            trigger_config.get("path") or f"{self.workflow_id}/{node_name}"
        )

        methods = trigger_config.get("methods") or [trigger_config.get("http_method", "POST")]
        if isinstance(methods, str):
            methods = [methods]
        self.methods = [m.upper() for m in methods]
        unknown = [m for m in self.methods if m not in ALLOWED_METHODS]
        if unknown:
            raise ValueError(f"Webhook node '{node_name}' uses unsupported HTTP method(s): {unknown}")

    @staticmethod
    def normalize_path(path: str) -> str:
        return path.strip().strip("/")

    @property
    def trigger_type(self) -> str:
        return TriggerSubtype.WEBHOOK.value

    def routes(self) -> List[Tuple[str, str]]:
        """(method, path) pairs this trigger listens on"""
        return [(method, self.webhook_path) for method in self.methods]

    def get_webhook_url(self) -> str:
        return f"{self.instance_base_url}/webhook/{self.webhook_path}"

    async def start(self) -> bool:
        if not self.enabled:
            logger.info(f"Webhook trigger for workflow {self.workflow_id} is disabled")
            self.status = TriggerStatus.PAUSED
            return True

        self.status = TriggerStatus.ACTIVE
        logger.info(f"Webhook trigger started for workflow {self.workflow_id}: {self.get_webhook_url()}")
        return True

    async def stop(self) -> bool:
        self.status = TriggerStatus.STOPPED
        logger.info(f"Webhook trigger stopped for workflow {self.workflow_id}")
        return True

    async def process_webhook(self, request_data: Dict[str, Any]) -> ExecutionResult:
        """Validate the incoming request and start the workflow"""
        method = request_data.get("method", "POST").upper()
        if method not in self.methods:
            return ExecutionResult(
                workflow_id=self.workflow_id,
                status="rejected",
                message=f"HTTP method {method} not allowed. Allowed methods: {self.methods}",
                trigger_data=request_data,
            )

        return await self.fire(request_data)

    async def health_check(self) -> Dict[str, Any]:
        base_health = await super().health_check()
        return {**base_health, "webhook_url": self.get_webhook_url(), "methods": self.methods}
