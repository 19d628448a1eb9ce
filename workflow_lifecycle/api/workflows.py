import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query

from shared.models.db_models import User
from shared.models.node_enums import RoleName
from shared.models.trigger import ExecutionResult, TriggerStatus
from shared.models.workflow import WorkflowCreate, WorkflowList, WorkflowUpdate, WorkflowView
from workflow_lifecycle.api.dependencies import authorize, get_trigger_manager, get_workflow_service
from workflow_lifecycle.api.pagination import decode_cursor, encode_next_cursor
from workflow_lifecycle.core.config import settings
from workflow_lifecycle.core.exceptions import ConflictError
from workflow_lifecycle.services.trigger_manager import TriggerManager
from workflow_lifecycle.services.workflow_service import WorkflowService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])

owner_or_member = authorize([RoleName.OWNER.value, RoleName.MEMBER.value])


@router.post("", response_model=WorkflowView)
async def create_workflow(
    workflow: WorkflowCreate,
    user: User = Depends(owner_or_member),
    workflow_service: WorkflowService = Depends(get_workflow_service),
):
    """Create a workflow; it starts inactive"""
    return await workflow_service.create_workflow(user, workflow)


@router.get("", response_model=WorkflowList)
async def list_workflows(
    active: Optional[bool] = Query(default=None),
    limit: int = Query(default=settings.default_page_limit, ge=1, le=settings.max_page_limit),
    cursor: Optional[str] = Query(default=None),
    user: User = Depends(owner_or_member),
    workflow_service: WorkflowService = Depends(get_workflow_service),
):
    offset = 0
    if cursor:
        offset, limit = decode_cursor(cursor, max_limit=settings.max_page_limit)

    workflows, total = await workflow_service.list_workflows(user, offset=offset, limit=limit, active=active)

    return WorkflowList(data=workflows, next_cursor=encode_next_cursor(offset, limit, total))


@router.get("/{workflow_id}", response_model=WorkflowView)
async def get_workflow(
    workflow_id: str,
    user: User = Depends(owner_or_member),
    workflow_service: WorkflowService = Depends(get_workflow_service),
):
    return await workflow_service.get_workflow(user, workflow_id)


@router.put("/{workflow_id}", response_model=WorkflowView)
async def update_workflow(
    workflow_id: str,
    workflow: WorkflowUpdate,
    user: User = Depends(owner_or_member),
    workflow_service: WorkflowService = Depends(get_workflow_service),
):
    """Replace a workflow; an active workflow is re-activated with the new definition"""
    return await workflow_service.update_workflow(user, workflow_id, workflow)


@router.delete("/{workflow_id}", response_model=WorkflowView)
async def delete_workflow(
    workflow_id: str,
    user: User = Depends(owner_or_member),
    workflow_service: WorkflowService = Depends(get_workflow_service),
):
    return await workflow_service.delete_workflow(user, workflow_id)


@router.post("/{workflow_id}/activate", response_model=WorkflowView)
async def activate_workflow(
    workflow_id: str,
    user: User = Depends(owner_or_member),
    workflow_service: WorkflowService = Depends(get_workflow_service),
):
    return await workflow_service.activate_workflow(user, workflow_id)


@router.post("/{workflow_id}/deactivate", response_model=WorkflowView)
async def deactivate_workflow(
    workflow_id: str,
    user: User = Depends(owner_or_member),
    workflow_service: WorkflowService = Depends(get_workflow_service),
):
    return await workflow_service.deactivate_workflow(user, workflow_id)


@router.post("/{workflow_id}/run", response_model=ExecutionResult)
async def run_workflow(
    workflow_id: str,
    user: User = Depends(owner_or_member),
    workflow_service: WorkflowService = Depends(get_workflow_service),
    trigger_manager: Optional[TriggerManager] = Depends(get_trigger_manager),
):
    """Start an execution through the workflow's manual trigger"""
    await workflow_service.get_workflow(user, workflow_id)

    result = None
    if trigger_manager is not None:
        result = await trigger_manager.trigger_manual(workflow_id, user.id)
    if result is None:
        raise ConflictError(
            "Workflow has no active manual trigger", details={"workflow_id": workflow_id}
        )

    logger.info(f"Workflow {workflow_id} run by user {user.id}: {result.status}")
    return result


@router.get("/{workflow_id}/triggers", response_model=Dict[str, TriggerStatus])
async def get_trigger_status(
    workflow_id: str,
    user: User = Depends(owner_or_member),
    workflow_service: WorkflowService = Depends(get_workflow_service),
    trigger_manager: Optional[TriggerManager] = Depends(get_trigger_manager),
):
    """Status of each live trigger node, empty while the workflow is inactive"""
    await workflow_service.get_workflow(user, workflow_id)
    if trigger_manager is None:
        return {}
    return await trigger_manager.get_trigger_status(workflow_id)
