import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from shared.models.trigger import ExecutionResult
from workflow_lifecycle.api.dependencies import get_trigger_manager
from workflow_lifecycle.core.exceptions import NotFoundOrUnauthorized
from workflow_lifecycle.services.trigger_manager import TriggerManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhooks"])


@router.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"],
    response_model=ExecutionResult,
)
async def receive_webhook(
    path: str,
    request: Request,
    trigger_manager: Optional[TriggerManager] = Depends(get_trigger_manager),
):
    """Start the active workflow whose webhook trigger listens on this path"""
    if trigger_manager is None or trigger_manager.find_webhook(request.method, path) is None:
        raise NotFoundOrUnauthorized("Webhook", details={"path": path, "method": request.method})

    body = await request.body()
    try:
        # Keep non-JSON bodies as text
        payload = json.loads(body.decode()) if body else None
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = body.decode(errors="replace")

    request_data = {
        "headers": dict(request.headers),
        "body": payload,
        "query_params": dict(request.query_params),
        "path": path,
        "remote_addr": request.client.host if request.client else "",
    }

    logger.info(f"Webhook {request.method} /webhook/{path} received")
    result = await trigger_manager.process_webhook(request.method, path, request_data)
    if result is None:
        # Deactivated between lookup and dispatch
        raise NotFoundOrUnauthorized("Webhook", details={"path": path, "method": request.method})
    return result
