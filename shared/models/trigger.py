import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field

from .node_enums import NodeType, TriggerSubtype


class TriggerStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"
    STOPPED = "stopped"


class ActivationReason(str, Enum):
    """Why a workflow is being registered with the trigger runtime"""

    INIT = "init"
    CREATE = "create"
    ACTIVATE = "activate"
    UPDATE = "update"


class TriggerSpec(BaseModel):
    node_type: str = NodeType.TRIGGER.value
    subtype: TriggerSubtype
    node_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True


class ExecutionResult(BaseModel):
    execution_id: str = Field(default_factory=lambda: f"exec_{uuid.uuid4()}")
    workflow_id: str
    status: str
    message: str
    trigger_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
