"""
FastAPI dependencies for the public API
"""

from typing import Awaitable, Callable, List, Optional

from fastapi import Depends, Header, HTTPException

from shared.models.db_models import User
from workflow_lifecycle.core.database import DatabaseManager
from workflow_lifecycle.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    InstanceNotSetUpError,
)
from workflow_lifecycle.services.lock_manager import LockManager
from workflow_lifecycle.services.trigger_manager import TriggerManager
from workflow_lifecycle.services.user_service import UserService
from workflow_lifecycle.services.workflow_service import WorkflowService

# Global service instances - set during app startup
_database: Optional[DatabaseManager] = None
_workflow_service: Optional[WorkflowService] = None
_user_service: Optional[UserService] = None
_trigger_manager: Optional[TriggerManager] = None
_lock_manager: Optional[LockManager] = None


def set_global_services(
    database: Optional[DatabaseManager],
    workflow_service: Optional[WorkflowService],
    user_service: Optional[UserService],
    trigger_manager: Optional[TriggerManager],
    lock_manager: Optional[LockManager] = None,
):
    """Set global service instances during app startup"""
    global _database, _workflow_service, _user_service, _trigger_manager, _lock_manager
    _database = database
    _workflow_service = workflow_service
    _user_service = user_service
    _trigger_manager = trigger_manager
    _lock_manager = lock_manager


def get_database() -> DatabaseManager:
    if _database is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return _database


def get_workflow_service() -> WorkflowService:
    if _workflow_service is None:
        raise HTTPException(status_code=503, detail="Workflow service not available")
    return _workflow_service


def get_user_service() -> UserService:
    if _user_service is None:
        raise HTTPException(status_code=503, detail="User service not available")
    return _user_service


def get_trigger_manager() -> Optional[TriggerManager]:
    """None when the activator in use is not the trigger runtime"""
    return _trigger_manager


def get_lock_manager() -> Optional[LockManager]:
    return _lock_manager


async def get_current_user(
    x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
    user_service: UserService = Depends(get_user_service),
) -> User:
    """Resolve the X-API-KEY header to its user"""
    if not x_api_key:
        raise AuthenticationError("X-API-KEY header required")

    user = await user_service.get_user_by_api_key(x_api_key)
    if user is None:
        raise AuthenticationError("Invalid API key")
    return user


async def instance_owner_setup(user_service: UserService = Depends(get_user_service)) -> None:
    if not await user_service.is_instance_set_up():
        raise InstanceNotSetUpError()


def authorize(roles: List[str]) -> Callable[..., Awaitable[User]]:
    """Dependency factory allowing only users whose global role is in ``roles``"""

    async def _authorize(
        _: None = Depends(instance_owner_setup),
        user: User = Depends(get_current_user),
    ) -> User:
        if user.global_role is None or user.global_role.name not in roles:
            raise AuthorizationError()
        return user

    return _authorize
