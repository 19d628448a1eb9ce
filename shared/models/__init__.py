"""
Shared models: node enums, database entities and API views
"""

from .db_models import (
    Base,
    CredentialsEntity,
    Role,
    SharedCredentials,
    SharedWorkflow,
    TagEntity,
    User,
    WorkflowEntity,
)
from .node_enums import NodeType, RoleName, RoleScope, TriggerSubtype
from .trigger import ActivationReason, ExecutionResult, TriggerSpec, TriggerStatus
from .workflow import (
    InvitationResult,
    RoleView,
    TagView,
    UserInviteItem,
    UserView,
    UserViewWithRole,
    WorkflowCreate,
    WorkflowList,
    WorkflowNode,
    WorkflowUpdate,
    WorkflowView,
)

__all__ = [
    "Base",
    "CredentialsEntity",
    "Role",
    "SharedCredentials",
    "SharedWorkflow",
    "TagEntity",
    "User",
    "WorkflowEntity",
    "NodeType",
    "RoleName",
    "RoleScope",
    "TriggerSubtype",
    "ActivationReason",
    "ExecutionResult",
    "TriggerSpec",
    "TriggerStatus",
    "InvitationResult",
    "RoleView",
    "TagView",
    "UserInviteItem",
    "UserView",
    "UserViewWithRole",
    "WorkflowCreate",
    "WorkflowList",
    "WorkflowNode",
    "WorkflowUpdate",
    "WorkflowView",
]
