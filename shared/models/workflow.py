"""
Request and response models for the public workflow and user API
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from sqlalchemy import inspect


class WorkflowNode(BaseModel):
    """One configured node of a workflow graph"""

    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    type: str
    subtype: str
    type_version: int = 1
    position: List[float] = Field(default_factory=lambda: [0.0, 0.0])
    parameters: Dict[str, Any] = Field(default_factory=dict)
    credentials: Dict[str, Any] = Field(default_factory=dict)
    disabled: bool = False


class WorkflowBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: Dict[str, Any] = Field(default_factory=dict)
    settings: Optional[Dict[str, Any]] = None
    static_data: Optional[Dict[str, Any]] = None


class WorkflowCreate(WorkflowBase):
    # Accepted for compatibility, never honored: new workflows start inactive
    active: Optional[bool] = None


class WorkflowUpdate(WorkflowBase):
    # The active flag only changes through activate/deactivate
    active: Optional[bool] = None


class TagView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str


class WorkflowView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    active: bool
    nodes: List[Dict[str, Any]]
    connections: Dict[str, Any]
    settings: Optional[Dict[str, Any]] = None
    static_data: Optional[Dict[str, Any]] = None
    tags: List[TagView] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="before")
    @classmethod
    def unloaded_tags_as_empty(cls, data: Any) -> Any:
        # Tags are only loaded for listings; elsewhere the relationship raises on access
        state = inspect(data, raiseerr=False)
        if state is None or "tags" not in state.unloaded:
            return data
        return {field: getattr(data, field) for field in cls.model_fields if field != "tags"}


class WorkflowList(BaseModel):
    data: List[WorkflowView]
    next_cursor: Optional[str] = None


class RoleView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    scope: str
    created_at: datetime
    updated_at: datetime


class UserView(BaseModel):
    """Public projection of a user"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_pending: bool
    created_at: datetime
    updated_at: datetime


class UserViewWithRole(UserView):
    global_role: RoleView


class UserInviteItem(BaseModel):
    email: EmailStr


class InvitationResult(BaseModel):
    id: str
    email: str
    email_sent: bool
