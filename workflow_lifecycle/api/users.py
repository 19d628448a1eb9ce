import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Query

from shared.models.db_models import User
from shared.models.node_enums import RoleName
from shared.models.workflow import InvitationResult, UserInviteItem, UserView, UserViewWithRole
from workflow_lifecycle.api.dependencies import authorize, get_user_service
from workflow_lifecycle.api.pagination import decode_cursor, encode_next_cursor
from workflow_lifecycle.core.config import settings
from workflow_lifecycle.core.exceptions import ConflictError, NotFoundOrUnauthorized
from workflow_lifecycle.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

owner_only = authorize([RoleName.OWNER.value])


def to_user_view(user: User, include_role: bool = False) -> Union[UserView, UserViewWithRole]:
    if include_role:
        return UserViewWithRole.model_validate(user)
    return UserView.model_validate(user)


@router.get("")
async def list_users(
    include_role: bool = Query(default=False, alias="includeRole"),
    limit: int = Query(default=settings.default_page_limit, ge=1, le=settings.max_page_limit),
    cursor: Optional[str] = Query(default=None),
    _: User = Depends(owner_only),
    user_service: UserService = Depends(get_user_service),
) -> Dict[str, Any]:
    offset = 0
    if cursor:
        offset, limit = decode_cursor(cursor, max_limit=settings.max_page_limit)

    users, total = await user_service.get_all_users_and_count(limit=limit, offset=offset)

    return {
        "data": [to_user_view(user, include_role).model_dump(mode="json") for user in users],
        "next_cursor": encode_next_cursor(offset, limit, total),
    }


@router.get("/{identifier}")
async def get_user(
    identifier: str,
    include_role: bool = Query(default=False, alias="includeRole"),
    _: User = Depends(owner_only),
    user_service: UserService = Depends(get_user_service),
) -> Dict[str, Any]:
    """Look up a user by id or email"""
    user = await user_service.get_user(identifier)
    if user is None:
        raise NotFoundOrUnauthorized("User", details={"identifier": identifier})
    return to_user_view(user, include_role).model_dump(mode="json")


@router.post("", response_model=List[InvitationResult])
async def invite_users(
    invitations: List[UserInviteItem],
    inviter: User = Depends(owner_only),
    user_service: UserService = Depends(get_user_service),
):
    """Invite users by email; users who already signed up are skipped"""
    emails = [invitation.email for invitation in invitations]
    logger.info(f"Inviting {len(emails)} users on behalf of {inviter.id}")
    return await user_service.invite_users(emails, inviter)


@router.delete("/{identifier}")
async def delete_user(
    identifier: str,
    transfer_id: Optional[str] = Query(default=None, alias="transferId"),
    include_role: bool = Query(default=False, alias="includeRole"),
    api_key_owner: User = Depends(owner_only),
    user_service: UserService = Depends(get_user_service),
) -> Dict[str, Any]:
    """Delete a user, transferring its workflows and credentials to ``transferId`` when given"""
    user = await user_service.get_user(identifier)
    if user is None:
        raise NotFoundOrUnauthorized("User", details={"identifier": identifier})
    if user.id == api_key_owner.id:
        raise ConflictError("Cannot delete the user owning the API key")

    deleted = to_user_view(user, include_role).model_dump(mode="json")
    await user_service.delete_user(user, api_key_owner, transfer_id)
    return deleted
