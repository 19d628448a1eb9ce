import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from shared.models.trigger import ExecutionResult, TriggerStatus

logger = logging.getLogger(__name__)


class BaseTrigger(ABC):
    """Base class for all trigger types

    A trigger is the live side of one trigger node: once started it calls the
    execution engine whenever its event fires.
    """

    def __init__(
        self,
        workflow_id: str,
        node_name: str,
        trigger_config: Dict[str, Any],
        engine_client: httpx.AsyncClient,
        engine_url: str,
        instance_base_url: str = "",
    ):
        self.workflow_id = str(workflow_id)
        self.node_name = node_name
        self.config = trigger_config
        self.enabled = trigger_config.get("enabled", True)
        self.status = TriggerStatus.PENDING
        self._client = engine_client
        self._engine_url = engine_url.rstrip("/")
        self.instance_base_url = instance_base_url.rstrip("/")

    @property
    @abstractmethod
    def trigger_type(self) -> str:
        """Return the trigger type identifier"""

    @abstractmethod
    async def start(self) -> bool:
        """Start the trigger (setup scheduling, routing, etc.)"""

    @abstractmethod
    async def stop(self) -> bool:
        """Stop the trigger (release what start acquired)"""

    async def fire(self, trigger_data: Optional[Dict[str, Any]] = None) -> ExecutionResult:
        """Ask the execution engine to run the workflow"""
        trigger_data = dict(trigger_data or {})

        if not self.enabled or self.status != TriggerStatus.ACTIVE:
            return ExecutionResult(
                workflow_id=self.workflow_id,
                status="skipped",
                message=f"Trigger {self.node_name} is not active (status: {self.status.value})",
                trigger_data=trigger_data,
            )

        execution_id = f"exec_{uuid.uuid4()}"
        payload = {
            "workflow_id": self.workflow_id,
            "execution_id": execution_id,
            "trigger": {
                "type": self.trigger_type,
                "node": self.node_name,
                "triggered_at": datetime.now(timezone.utc).isoformat(),
            },
            "trigger_data": trigger_data,
        }
        url = f"{self._engine_url}/v1/workflows/{self.workflow_id}/execute"

        try:
            response = await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Failed to reach execution engine for workflow {self.workflow_id}: {e}")
            return ExecutionResult(
                execution_id=execution_id,
                workflow_id=self.workflow_id,
                status="error",
                message=f"Execution engine unreachable: {e}",
                trigger_data=trigger_data,
            )

        if response.status_code in (200, 202):
            try:
                body = response.json() if response.content else {}
            except ValueError:
                logger.warning(f"Execution engine accepted workflow {self.workflow_id} without a JSON body")
                body = {}
            if not isinstance(body, dict):
                body = {}
            actual_execution_id = body.get("execution_id") or execution_id
            logger.info(
                f"Workflow {self.workflow_id} started by {self.trigger_type} trigger: {actual_execution_id}"
            )
            return ExecutionResult(
                execution_id=actual_execution_id,
                workflow_id=self.workflow_id,
                status="running",
                message="Workflow execution started",
                trigger_data=trigger_data,
            )

        error_msg = f"Workflow execution failed: HTTP {response.status_code} - {response.text}"
        logger.error(error_msg)
        return ExecutionResult(
            execution_id=execution_id,
            workflow_id=self.workflow_id,
            status="error",
            message=error_msg,
            trigger_data=trigger_data,
        )

    async def health_check(self) -> Dict[str, Any]:
        return {
            "trigger_type": self.trigger_type,
            "node_name": self.node_name,
            "status": self.status.value,
            "enabled": self.enabled,
        }
