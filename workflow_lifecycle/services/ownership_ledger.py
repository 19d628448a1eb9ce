import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.db_models import (
    CredentialsEntity,
    Role,
    SharedCredentials,
    SharedWorkflow,
    User,
    WorkflowEntity,
    workflows_tags,
)
from shared.models.node_enums import RoleName, RoleScope
from workflow_lifecycle.core.database import DatabaseManager
from workflow_lifecycle.core.exceptions import ConflictError, LifecycleError

logger = logging.getLogger(__name__)

DeactivateCallback = Callable[[str], Awaitable[None]]


def is_instance_owner(user: User) -> bool:
    return user.global_role is not None and user.global_role.name == RoleName.OWNER.value


class OwnershipLedger:
    """
    Who may access which workflow and credential, and with what role.

    Multi-row mutations (ownership transfer, cascade delete) run inside a
    single storage transaction.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    @asynccontextmanager
    async def _reader(self, session: Optional[AsyncSession]) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return
        async with self.db.session() as own_session:
            yield own_session

    # Roles

    async def get_role(self, name: str, scope: str, session: Optional[AsyncSession] = None) -> Role:
        async with self._reader(session) as s:
            result = await s.execute(select(Role).where(Role.name == name, Role.scope == scope))
            role = result.scalar_one_or_none()

        if role is None:
            raise LifecycleError(
                f"Role {scope}/{name} is missing from storage",
                error_code="ROLE_NOT_FOUND",
                details={"name": name, "scope": scope},
            )
        return role

    async def get_global_owner_role(self, session: Optional[AsyncSession] = None) -> Role:
        return await self.get_role(RoleName.OWNER.value, RoleScope.GLOBAL.value, session)

    async def get_global_member_role(self, session: Optional[AsyncSession] = None) -> Role:
        return await self.get_role(RoleName.MEMBER.value, RoleScope.GLOBAL.value, session)

    async def get_workflow_owner_role(self, session: Optional[AsyncSession] = None) -> Role:
        return await self.get_role(RoleName.OWNER.value, RoleScope.WORKFLOW.value, session)

    async def get_credential_owner_role(self, session: Optional[AsyncSession] = None) -> Role:
        return await self.get_role(RoleName.OWNER.value, RoleScope.CREDENTIAL.value, session)

    # Shares

    async def share_workflow(
        self, workflow_id: str, user_id: str, role: Role, session: Optional[AsyncSession] = None
    ) -> SharedWorkflow:
        """
        Grant a user a role on a workflow

        Pass ``session`` to take part in the caller's transaction; otherwise
        the share is written in a transaction of its own.

        Raises:
            ConflictError: the user already holds a share on the workflow
        """
        if session is None:
            async with self.db.transaction() as tx:
                return await self.share_workflow(workflow_id, user_id, role, tx)

        if await session.get(SharedWorkflow, (user_id, workflow_id)) is not None:
            raise ConflictError(
                f"User {user_id} already has access to workflow {workflow_id}",
                details={"user_id": user_id, "workflow_id": workflow_id},
            )

        share = SharedWorkflow(user_id=user_id, workflow_id=workflow_id, role_id=role.id)
        session.add(share)
        await session.flush()
        logger.debug(f"Shared workflow {workflow_id} with user {user_id} as {role.scope}/{role.name}")
        return share

    async def share_credentials(
        self, credentials_id: str, user_id: str, role: Role, session: Optional[AsyncSession] = None
    ) -> SharedCredentials:
        if session is None:
            async with self.db.transaction() as tx:
                return await self.share_credentials(credentials_id, user_id, role, tx)

        if await session.get(SharedCredentials, (user_id, credentials_id)) is not None:
            raise ConflictError(
                f"User {user_id} already has access to credentials {credentials_id}",
                details={"user_id": user_id, "credentials_id": credentials_id},
            )

        share = SharedCredentials(user_id=user_id, credentials_id=credentials_id, role_id=role.id)
        session.add(share)
        await session.flush()
        return share

    async def find_shared_workflow(
        self, user: User, workflow_id: str, session: Optional[AsyncSession] = None
    ) -> Optional[SharedWorkflow]:
        """The user's share on the workflow, with the workflow loaded; None when
        the workflow does not exist or the user holds no share on it"""
        async with self._reader(session) as s:
            result = await s.execute(
                select(SharedWorkflow).where(
                    SharedWorkflow.user_id == user.id,
                    SharedWorkflow.workflow_id == workflow_id,
                )
            )
            share = result.scalar_one_or_none()

        if share is None or share.workflow is None:
            return None
        return share

    async def get_shared_workflow_ids(self, user: User) -> List[str]:
        async with self.db.session() as session:
            result = await session.execute(
                select(SharedWorkflow.workflow_id).where(SharedWorkflow.user_id == user.id)
            )
            return list(result.scalars())

    async def remove_workflow(self, session: AsyncSession, workflow_id: str) -> None:
        """Delete a workflow with its shares and tag links inside the caller's transaction"""
        await self._remove_workflows(session, [workflow_id])

    async def _remove_workflows(self, session: AsyncSession, workflow_ids: List[str]) -> None:
        if not workflow_ids:
            return
        await session.execute(
            delete(SharedWorkflow)
            .where(SharedWorkflow.workflow_id.in_(workflow_ids))
            .execution_options(synchronize_session=False)
        )
        await session.execute(delete(workflows_tags).where(workflows_tags.c.workflow_id.in_(workflow_ids)))
        await session.execute(
            delete(WorkflowEntity)
            .where(WorkflowEntity.id.in_(workflow_ids))
            .execution_options(synchronize_session=False)
        )

    async def _remove_credentials(self, session: AsyncSession, credentials_ids: List[str]) -> None:
        if not credentials_ids:
            return
        await session.execute(
            delete(SharedCredentials)
            .where(SharedCredentials.credentials_id.in_(credentials_ids))
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            delete(CredentialsEntity)
            .where(CredentialsEntity.id.in_(credentials_ids))
            .execution_options(synchronize_session=False)
        )

    # User removal

    async def transfer_ownership(self, from_user: User, to_user: User) -> None:
        """
        Move every share of ``from_user`` to ``to_user`` and delete ``from_user``

        Where ``to_user`` already holds a share on the same resource, that
        share is kept and the source share is dropped. Runs as one
        transaction.
        """
        logger.info(f"Transferring workflows and credentials of user {from_user.id} to {to_user.id}")

        async with self.db.transaction() as session:
            target_workflows = list(
                (
                    await session.execute(
                        select(SharedWorkflow.workflow_id).where(SharedWorkflow.user_id == to_user.id)
                    )
                ).scalars()
            )
            await session.execute(
                update(SharedWorkflow)
                .where(
                    SharedWorkflow.user_id == from_user.id,
                    SharedWorkflow.workflow_id.not_in(target_workflows),
                )
                .values(user_id=to_user.id)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                delete(SharedWorkflow)
                .where(SharedWorkflow.user_id == from_user.id)
                .execution_options(synchronize_session=False)
            )

            target_credentials = list(
                (
                    await session.execute(
                        select(SharedCredentials.credentials_id).where(
                            SharedCredentials.user_id == to_user.id
                        )
                    )
                ).scalars()
            )
            await session.execute(
                update(SharedCredentials)
                .where(
                    SharedCredentials.user_id == from_user.id,
                    SharedCredentials.credentials_id.not_in(target_credentials),
                )
                .values(user_id=to_user.id)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                delete(SharedCredentials)
                .where(SharedCredentials.user_id == from_user.id)
                .execution_options(synchronize_session=False)
            )

            await session.execute(
                delete(User).where(User.id == from_user.id).execution_options(synchronize_session=False)
            )

        logger.info(f"User {from_user.id} deleted, data transferred to {to_user.id}")

    async def cascade_delete(self, from_user: User, deactivate: DeactivateCallback) -> Dict[str, int]:
        """
        Delete a user together with the workflows and credentials it solely owns

        Resources another user also owns are kept; only the user's share on
        them goes. Active owned workflows are handed to ``deactivate`` before
        anything is deleted, so no workflow disappears while still registered.
        The deletions then run as one transaction.

        Returns:
            Number of deleted workflows and credentials
        """
        async with self.db.session() as session:
            workflow_role = await self.get_workflow_owner_role(session)
            credential_role = await self.get_credential_owner_role(session)

            co_owned = select(SharedWorkflow.workflow_id).where(
                SharedWorkflow.user_id != from_user.id, SharedWorkflow.role_id == workflow_role.id
            )
            owned = await session.execute(
                select(WorkflowEntity.id, WorkflowEntity.active)
                .join(SharedWorkflow, SharedWorkflow.workflow_id == WorkflowEntity.id)
                .where(
                    SharedWorkflow.user_id == from_user.id,
                    SharedWorkflow.role_id == workflow_role.id,
                    WorkflowEntity.id.not_in(co_owned),
                )
            )
            owned_workflows = list(owned.all())

        workflow_ids = [workflow_id for workflow_id, _ in owned_workflows]
        for workflow_id, active in owned_workflows:
            if active:
                await deactivate(workflow_id)

        async with self.db.transaction() as session:
            still_active = (
                await session.execute(
                    select(WorkflowEntity.id).where(
                        WorkflowEntity.id.in_(workflow_ids), WorkflowEntity.active.is_(True)
                    )
                )
            ).scalars().all()
            if still_active:
                raise ConflictError(
                    "Workflows were activated while their owner was being deleted",
                    details={"workflow_ids": list(still_active)},
                )

            await self._remove_workflows(session, workflow_ids)
            await session.execute(
                delete(SharedWorkflow)
                .where(SharedWorkflow.user_id == from_user.id)
                .execution_options(synchronize_session=False)
            )

            co_owned_credentials = select(SharedCredentials.credentials_id).where(
                SharedCredentials.user_id != from_user.id,
                SharedCredentials.role_id == credential_role.id,
            )
            credentials_ids = list(
                (
                    await session.execute(
                        select(SharedCredentials.credentials_id).where(
                            SharedCredentials.user_id == from_user.id,
                            SharedCredentials.role_id == credential_role.id,
                            SharedCredentials.credentials_id.not_in(co_owned_credentials),
                        )
                    )
                ).scalars()
            )
            await self._remove_credentials(session, credentials_ids)
            await session.execute(
                delete(SharedCredentials)
                .where(SharedCredentials.user_id == from_user.id)
                .execution_options(synchronize_session=False)
            )

            await session.execute(
                delete(User).where(User.id == from_user.id).execution_options(synchronize_session=False)
            )

        logger.info(
            f"User {from_user.id} deleted with {len(workflow_ids)} workflows "
            f"and {len(credentials_ids)} credentials"
        )
        return {"workflows": len(workflow_ids), "credentials": len(credentials_ids)}
