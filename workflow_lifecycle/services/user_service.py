import asyncio
import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select

from shared.models.db_models import Role, User
from shared.models.workflow import InvitationResult
from workflow_lifecycle.core.database import DatabaseManager
from workflow_lifecycle.core.exceptions import ConflictError, NotFoundOrUnauthorized
from workflow_lifecycle.services.mailer import Mailer, SendResult
from workflow_lifecycle.services.notification_service import (
    EMAIL_FAILED,
    USER_DELETED,
    USER_INVITED,
    USER_TRANSACTIONAL_EMAIL,
    NotificationService,
)
from workflow_lifecycle.services.ownership_ledger import OwnershipLedger
from workflow_lifecycle.services.workflow_service import WorkflowService

logger = logging.getLogger(__name__)

INVITE_MESSAGE_TYPE = "New user invite"


def is_uuid(identifier: str) -> bool:
    try:
        uuid.UUID(identifier)
    except (ValueError, TypeError, AttributeError):
        return False
    return True


class UserService:
    """Invites, looks up and deletes users"""

    def __init__(
        self,
        db: DatabaseManager,
        ledger: OwnershipLedger,
        workflow_service: WorkflowService,
        mailer: Mailer,
        notifier: NotificationService,
        instance_base_url: str,
    ):
        self.db = db
        self.ledger = ledger
        self.workflow_service = workflow_service
        self.mailer = mailer
        self.notifier = notifier
        self.instance_base_url = instance_base_url.rstrip("/")

    # Lookups

    async def get_user(self, identifier: str) -> Optional[User]:
        """Find a user by id when ``identifier`` is a UUID, by email otherwise"""
        column = User.id if is_uuid(identifier) else User.email
        async with self.db.session() as session:
            result = await session.execute(select(User).where(column == identifier))
            return result.scalar_one_or_none()

    async def get_user_by_api_key(self, api_key: str) -> Optional[User]:
        async with self.db.session() as session:
            result = await session.execute(select(User).where(User.api_key == api_key))
            return result.scalar_one_or_none()

    async def get_users(self, identifiers: List[str]) -> List[User]:
        ids = [identifier for identifier in identifiers if identifier and is_uuid(identifier)]
        emails = [identifier for identifier in identifiers if identifier and not is_uuid(identifier)]

        conditions = []
        if ids:
            conditions.append(User.id.in_(ids))
        if emails:
            conditions.append(User.email.in_(emails))
        if not conditions:
            return []

        async with self.db.session() as session:
            result = await session.execute(select(User).where(or_(*conditions)))
            return list(result.scalars())

    async def get_all_users_and_count(self, limit: int = 100, offset: int = 0) -> Tuple[List[User], int]:
        async with self.db.session() as session:
            users = await session.execute(
                select(User).order_by(User.created_at, User.id).offset(offset).limit(limit)
            )
            count = await session.execute(select(func.count(User.id)))
            return list(users.scalars()), count.scalar_one()

    async def is_instance_set_up(self) -> bool:
        """True once an instance owner has completed signup"""
        owner_role = await self.ledger.get_global_owner_role()
        async with self.db.session() as session:
            result = await session.execute(
                select(func.count(User.id)).where(
                    User.global_role_id == owner_role.id, User.password.is_not(None)
                )
            )
            return result.scalar_one() > 0

    # Invitations

    async def resolve_users_to_invite(self, emails: List[str]) -> Tuple[List[str], List[User]]:
        """
        Split invite emails into addresses to create and pending users to re-invite

        Users that already completed signup appear in neither list.

        Returns:
            (emails without a user, existing users without a password)
        """
        emails = list(dict.fromkeys(emails))
        async with self.db.session() as session:
            result = await session.execute(select(User).where(User.email.in_(emails)))
            existing = list(result.scalars())

        known = {user.email for user in existing}
        users_to_save = [email for email in emails if email not in known]
        pending_users = [user for user in existing if user.is_pending]
        return users_to_save, pending_users

    async def create_pending_users(self, emails: List[str], role: Role, inviter: User) -> List[User]:
        """Create one pending user per email, all in one transaction"""
        if not emails:
            return []

        async with self.db.transaction() as session:
            users = [User(email=email, global_role=role) for email in emails]
            session.add_all(users)
            await session.flush()

        logger.info(f"Created {len(users)} pending users invited by {inviter.id}")
        self.notifier.emit(
            USER_INVITED,
            {
                "user_id": inviter.id,
                "target_user_id": [user.id for user in users],
                "public_api": True,
            },
        )
        return users

    def build_invite_url(self, inviter: User, invitee: User) -> str:
        return f"{self.instance_base_url}/signup?inviterId={inviter.id}&inviteeId={invitee.id}"

    async def send_invitations(self, users: List[User], inviter: User) -> List[InvitationResult]:
        """
        Mail a signup link to every user

        Deliveries run concurrently; a failed delivery is recorded for that
        user only. Every outcome is emitted as an event.
        """
        outcomes = await asyncio.gather(
            *[
                self.mailer.invite(
                    email=user.email,
                    invite_accept_url=self.build_invite_url(inviter, user),
                    domain=self.instance_base_url,
                )
                for user in users
            ],
            return_exceptions=True,
        )

        results = []
        for user, outcome in zip(users, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Invite delivery to {user.email} raised: {outcome}")
                outcome = SendResult(success=False, error=str(outcome))

            self.notifier.emit(
                USER_TRANSACTIONAL_EMAIL if outcome.success else EMAIL_FAILED,
                {"user_id": user.id, "message_type": INVITE_MESSAGE_TYPE, "public_api": True},
            )
            results.append(InvitationResult(id=user.id, email=user.email, email_sent=outcome.success))

        return results

    async def invite_users(self, emails: List[str], inviter: User) -> List[InvitationResult]:
        role = await self.ledger.get_global_member_role()
        users_to_save, pending_users = await self.resolve_users_to_invite(emails)
        created = await self.create_pending_users(users_to_save, role, inviter)
        return await self.send_invitations(created + pending_users, inviter)

    # Deletion

    async def delete_user(self, user: User, api_key_owner: User, transfer_id: Optional[str] = None) -> None:
        """
        Delete ``user``, transferring its data to ``transfer_id`` or deleting it

        The ``user_deleted`` event is emitted once, after the deletion committed.
        """
        if transfer_id:
            if transfer_id == user.id:
                raise ConflictError(
                    "Cannot transfer data to the user being deleted",
                    details={"transfer_id": transfer_id},
                )
            target = await self.get_user(transfer_id)
            if target is None or target.id == user.id:
                raise NotFoundOrUnauthorized("Transfer user", details={"transfer_id": transfer_id})

            await self.ledger.transfer_ownership(user, target)
        else:
            await self.ledger.cascade_delete(user, self.workflow_service.deactivate_for_deletion)

        event = {
            "user_id": api_key_owner.id,
            "target_user_id": user.id,
            "target_user_old_status": "invited" if user.is_pending else "active",
            "migration_strategy": "transfer_data" if transfer_id else "delete_data",
        }
        if transfer_id:
            event["migration_user_id"] = target.id
        self.notifier.emit(USER_DELETED, event)
