import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, Type

import httpx

from shared.models.node_enums import NodeType, TriggerSubtype
from shared.models.trigger import ActivationReason, ExecutionResult, TriggerSpec, TriggerStatus
from workflow_lifecycle.core.exceptions import ActivationError
from workflow_lifecycle.triggers.base import BaseTrigger
from workflow_lifecycle.triggers.manual_trigger import ManualTrigger
from workflow_lifecycle.triggers.webhook_trigger import WebhookTrigger

logger = logging.getLogger(__name__)


class Activator(ABC):
    """Registration surface of the trigger runtime.

    A workflow id is registered exactly while its triggers are live. Only the
    lifecycle coordinator calls these methods.
    """

    @abstractmethod
    async def register(
        self, workflow_id: str, nodes: List[Dict[str, Any]], reason: ActivationReason
    ) -> None:
        """Wire every trigger node of the workflow, or raise ActivationError leaving nothing behind"""

    @abstractmethod
    async def deregister(self, workflow_id: str) -> None:
        """Tear down any live registration. Idempotent, never raises."""

    @abstractmethod
    def is_registered(self, workflow_id: str) -> bool:
        pass

    @abstractmethod
    def registered_ids(self) -> List[str]:
        pass


def extract_trigger_specs(nodes: List[Dict[str, Any]]) -> List[TriggerSpec]:
    """
    Extract trigger specifications from a workflow's node list

    The start node and disabled nodes are skipped. Unknown trigger subtypes
    raise ActivationError so the caller learns which node is wrong.
    """
    trigger_specs = []

    for node in nodes:
        if node.get("type") != NodeType.TRIGGER.value or node.get("disabled", False):
            continue

        node_name = node.get("name") or node.get("id") or "unnamed"
        subtype_value = node.get("subtype")
        if subtype_value == TriggerSubtype.START.value:
            continue

        try:
            subtype = TriggerSubtype(subtype_value)
        except ValueError:
            raise ActivationError(
                f"Node '{node_name}' has an unknown trigger subtype: {subtype_value}",
                details={"node": node_name},
            )

        parameters = node.get("parameters") or {}
        if not isinstance(parameters, dict):
            raise ActivationError(
                f"Trigger parameters of node '{node_name}' must be an object",
                details={"node": node_name},
            )

        trigger_specs.append(
            TriggerSpec(subtype=subtype, node_name=node_name, parameters=parameters)
        )

    return trigger_specs


class TriggerManager(Activator):
    """Process-wide table of live triggers, keyed by workflow id"""

    def __init__(
        self,
        engine_url: str,
        instance_base_url: str = "",
        engine_client: Optional[httpx.AsyncClient] = None,
        engine_timeout: float = 30.0,
    ):
        self.engine_url = engine_url
        self.instance_base_url = instance_base_url
        self._client = engine_client or httpx.AsyncClient(timeout=engine_timeout)
        self._triggers: Dict[str, List[BaseTrigger]] = {}  # workflow_id -> live triggers
        self._webhooks: Dict[Tuple[str, str], WebhookTrigger] = {}  # (method, path) -> trigger
        self._trigger_registry: Dict[TriggerSubtype, Type[BaseTrigger]] = {}

    def register_trigger_class(self, trigger_type: TriggerSubtype, trigger_class: type) -> None:
        """Register a trigger class for a specific trigger type"""
        self._trigger_registry[trigger_type] = trigger_class
        logger.info(f"Registered trigger class for type: {trigger_type.value}")

    def is_registered(self, workflow_id: str) -> bool:
        return workflow_id in self._triggers

    def registered_ids(self) -> List[str]:
        return list(self._triggers.keys())

    async def register(
        self, workflow_id: str, nodes: List[Dict[str, Any]], reason: ActivationReason
    ) -> None:
        """
        Register and start triggers for a workflow

        Args:
            workflow_id: Workflow identifier
            nodes: The workflow's node list as persisted
            reason: Why the workflow is being registered

        Raises:
            ActivationError: a trigger could not be created or started; every
                trigger started for this call has been stopped again
        """
        if self.is_registered(workflow_id):
            if reason in (ActivationReason.INIT, ActivationReason.CREATE):
                raise ActivationError(f"Workflow {workflow_id} is already active")
            # activate/update replace whatever is live with the current definition
            await self.deregister(workflow_id)

        trigger_specs = extract_trigger_specs(nodes)
        if not trigger_specs:
            raise ActivationError(
                "Workflow has no trigger node that can start it. "
                "Add a manual, webhook or cron trigger before activating."
            )

        logger.info(
            f"Registering {len(trigger_specs)} triggers for workflow {workflow_id} ({reason.value})"
        )

        started: List[BaseTrigger] = []
        claimed: List[Tuple[str, str]] = []
        try:
            for spec in trigger_specs:
                trigger = self._create_trigger(workflow_id, spec)

                if isinstance(trigger, WebhookTrigger):
                    claimed.extend(self._claim_webhook_routes(trigger))

                if not await trigger.start():
                    started.append(trigger)
                    raise ActivationError(
                        f"Trigger node '{spec.node_name}' could not be started",
                        details={"node": spec.node_name},
                    )
                started.append(trigger)

        except ActivationError:
            await self._rollback(workflow_id, started, claimed)
            raise
        except Exception as e:
            await self._rollback(workflow_id, started, claimed)
            logger.error(f"Failed to register triggers for workflow {workflow_id}: {e}", exc_info=True)
            raise ActivationError(f"Could not activate workflow: {e}") from e

        self._triggers[workflow_id] = started
        logger.info(f"Successfully registered {len(started)} triggers for workflow {workflow_id}")

    def _create_trigger(self, workflow_id: str, spec: TriggerSpec) -> BaseTrigger:
        trigger_class = self._trigger_registry.get(spec.subtype)
        if trigger_class is None:
            raise ActivationError(
                f"Trigger type {spec.subtype.value} of node '{spec.node_name}' is not supported",
                details={"node": spec.node_name},
            )

        try:
            return trigger_class(
                workflow_id,
                spec.node_name,
                spec.parameters,
                engine_client=self._client,
                engine_url=self.engine_url,
                instance_base_url=self.instance_base_url,
            )
        except ValueError as e:
            raise ActivationError(str(e), details={"node": spec.node_name}) from e

    def _claim_webhook_routes(self, trigger: WebhookTrigger) -> List[Tuple[str, str]]:
        routes = trigger.routes()
        for route in routes:
            owner = self._webhooks.get(route)
            if owner is not None:
                raise ActivationError(
                    f"Webhook {route[0]} /webhook/{route[1]} of node '{trigger.node_name}' "
                    f"is already used by another active workflow",
                    details={"node": trigger.node_name, "conflicting_workflow_id": owner.workflow_id},
                )

        for route in routes:
            self._webhooks[route] = trigger
        return routes

    async def _rollback(
        self, workflow_id: str, started: List[BaseTrigger], claimed: List[Tuple[str, str]]
    ) -> None:
        for route in claimed:
            self._webhooks.pop(route, None)
        for trigger in started:
            await self._stop_quietly(workflow_id, trigger)

    async def _stop_quietly(self, workflow_id: str, trigger: BaseTrigger) -> None:
        try:
            await trigger.stop()
        except Exception as e:
            logger.warning(
                f"Error stopping trigger {trigger.trigger_type} of workflow {workflow_id}: {e}",
                exc_info=True,
            )

    async def deregister(self, workflow_id: str) -> None:
        triggers = self._triggers.pop(workflow_id, [])

        if not triggers:
            logger.debug(f"No triggers to unregister for workflow {workflow_id}")
            return

        logger.info(f"Unregistering {len(triggers)} triggers for workflow {workflow_id}")

        for route, trigger in list(self._webhooks.items()):
            if trigger.workflow_id == workflow_id:
                del self._webhooks[route]

        for trigger in triggers:
            await self._stop_quietly(workflow_id, trigger)

        logger.info(f"Successfully unregistered triggers for workflow {workflow_id}")

    async def get_trigger_status(self, workflow_id: str) -> Dict[str, TriggerStatus]:
        return {trigger.node_name: trigger.status for trigger in self._triggers.get(workflow_id, [])}

    def find_webhook(self, method: str, path: str) -> Optional[WebhookTrigger]:
        return self._webhooks.get((method.upper(), WebhookTrigger.normalize_path(path)))

    async def process_webhook(
        self, method: str, path: str, request_data: Dict[str, Any]
    ) -> Optional[ExecutionResult]:
        """Route an incoming webhook call; None when no active workflow listens on it"""
        trigger = self.find_webhook(method, path)
        if trigger is None:
            return None
        return await trigger.process_webhook({**request_data, "method": method.upper()})

    async def trigger_manual(self, workflow_id: str, user_id: str) -> Optional[ExecutionResult]:
        for trigger in self._triggers.get(workflow_id, []):
            if isinstance(trigger, ManualTrigger) and trigger.status == TriggerStatus.ACTIVE:
                return await trigger.trigger_manual(user_id)
        return None

    async def health_check(self) -> Dict[str, Any]:
        """Get health status of all managed triggers"""
        health_status: Dict[str, Any] = {
            "total_workflows": len(self._triggers),
            "total_triggers": sum(len(triggers) for triggers in self._triggers.values()),
            "workflows": {},
        }

        for workflow_id, triggers in self._triggers.items():
            health_status["workflows"][workflow_id] = {
                "trigger_count": len(triggers),
                "triggers": [await trigger.health_check() for trigger in triggers],
            }

        return health_status

    async def cleanup(self) -> None:
        """Stop every trigger and close the engine client"""
        logger.info("Cleaning up TriggerManager")

        for workflow_id in self.registered_ids():
            await self.deregister(workflow_id)

        await self._client.aclose()
        logger.info("TriggerManager cleanup complete")
