import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import selectinload

from shared.models.db_models import User, WorkflowEntity
from shared.models.trigger import ActivationReason
from shared.models.workflow import WorkflowCreate, WorkflowUpdate, WorkflowView
from workflow_lifecycle.core.database import DatabaseManager
from workflow_lifecycle.core.exceptions import (
    ActivationError,
    NotFoundOrUnauthorized,
    TransactionError,
    WorkflowLockedError,
)
from workflow_lifecycle.services.lock_manager import LockManager
from workflow_lifecycle.services.ownership_ledger import OwnershipLedger, is_instance_owner
from workflow_lifecycle.services.trigger_manager import Activator
from workflow_lifecycle.services.workflow_helpers import ensure_start_node, replace_invalid_credentials

logger = logging.getLogger(__name__)


class WorkflowService:
    """
    Lifecycle coordinator for workflows.

    Keeps the persisted ``active`` flag equal to "registered with the
    activator": register before persisting ``active=True``, deregister before
    persisting ``active=False``. When a write after a deregistration fails, the
    previous triggers are registered again, or the workflow is persisted
    inactive if that fails too. Transitions of one workflow are serialized by
    the lock manager.
    """

    def __init__(
        self,
        db: DatabaseManager,
        ledger: OwnershipLedger,
        activator: Activator,
        lock_manager: LockManager,
        tags_disabled: bool = False,
    ):
        self.db = db
        self.ledger = ledger
        self.activator = activator
        self.lock_manager = lock_manager
        self.tags_disabled = tags_disabled

    @asynccontextmanager
    async def _locked(self, workflow_id: str) -> AsyncIterator[None]:
        async with self.lock_manager.acquire(workflow_id) as acquired:
            if not acquired:
                raise WorkflowLockedError(workflow_id)
            yield

    async def _require_share(self, user: User, workflow_id: str):
        share = await self.ledger.find_shared_workflow(user, workflow_id)
        if share is None:
            raise NotFoundOrUnauthorized("Workflow", details={"workflow_id": workflow_id})
        return share

    async def _prepare_nodes(self, data) -> List[Dict[str, Any]]:
        nodes = [node.model_dump() for node in data.nodes]
        nodes = ensure_start_node(nodes)
        return await replace_invalid_credentials(self.db, nodes)

    async def _load(self, workflow_id: str) -> WorkflowView:
        async with self.db.session() as session:
            workflow = await session.get(WorkflowEntity, workflow_id)
            if workflow is None:
                raise NotFoundOrUnauthorized("Workflow", details={"workflow_id": workflow_id})
            return WorkflowView.model_validate(workflow)

    async def _set_active(self, workflow_id: str, active: bool) -> None:
        async with self.db.transaction() as session:
            await session.execute(
                update(WorkflowEntity)
                .where(WorkflowEntity.id == workflow_id)
                .values(active=active)
                .execution_options(synchronize_session=False)
            )

    async def _reinstate(self, workflow_id: str, nodes: List[Dict[str, Any]]) -> None:
        """
        Bring the activator back in line with storage after a write that
        followed a deregistration failed and left the row active
        """
        try:
            await self.activator.register(workflow_id, nodes, ActivationReason.ACTIVATE)
            logger.warning(f"Workflow {workflow_id} registered again after a failed write")
            return
        except ActivationError as e:
            logger.error(f"Could not register workflow {workflow_id} again, deactivating it: {e.message}")

        try:
            await self._set_active(workflow_id, False)
        except TransactionError:
            logger.error(f"Workflow {workflow_id} is stored active but not registered", exc_info=True)

    async def create_workflow(self, user: User, data: WorkflowCreate) -> WorkflowView:
        """
        Persist a new workflow owned by ``user``

        New workflows are always inactive; a missing start node is added and
        legacy credential references are repaired before saving.
        """
        nodes = await self._prepare_nodes(data)
        role = await self.ledger.get_workflow_owner_role()

        async with self.db.transaction() as session:
            workflow = WorkflowEntity(
                name=data.name,
                active=False,
                nodes=nodes,
                connections=data.connections,
                settings=data.settings,
                static_data=data.static_data,
            )
            session.add(workflow)
            await session.flush()
            await self.ledger.share_workflow(workflow.id, user.id, role, session)

        logger.info(f"Workflow {workflow.id} created by user {user.id}")
        return WorkflowView.model_validate(workflow)

    async def get_workflow(self, user: User, workflow_id: str) -> WorkflowView:
        share = await self._require_share(user, workflow_id)
        return WorkflowView.model_validate(share.workflow)

    async def list_workflows(
        self, user: User, offset: int = 0, limit: int = 100, active: Optional[bool] = None
    ) -> Tuple[List[WorkflowView], int]:
        """
        Page through the workflows visible to ``user``

        The instance owner sees every workflow, members only the ones shared
        with them. A member without any share gets NotFoundOrUnauthorized.

        Returns:
            (page of workflows, total number of matching workflows)
        """
        conditions = []
        if active is not None:
            conditions.append(WorkflowEntity.active.is_(active))

        if not is_instance_owner(user):
            workflow_ids = await self.ledger.get_shared_workflow_ids(user)
            if not workflow_ids:
                raise NotFoundOrUnauthorized("Workflow")
            conditions.append(WorkflowEntity.id.in_(workflow_ids))

        stmt = (
            select(WorkflowEntity)
            .where(*conditions)
            .order_by(WorkflowEntity.created_at, WorkflowEntity.id)
            .offset(offset)
            .limit(limit)
        )
        if not self.tags_disabled:
            stmt = stmt.options(selectinload(WorkflowEntity.tags))

        async with self.db.session() as session:
            workflows = (await session.execute(stmt)).scalars().all()
            total = (
                await session.execute(select(func.count(WorkflowEntity.id)).where(*conditions))
            ).scalar_one()

            return [WorkflowView.model_validate(workflow) for workflow in workflows], total

    async def update_workflow(self, user: User, workflow_id: str, data: WorkflowUpdate) -> WorkflowView:
        """
        Replace the definition of a workflow

        An active workflow is deregistered before the edit and registered again
        afterwards. If re-registration fails the edit stays saved, the workflow
        is left inactive and ActivationError carries the saved workflow under
        ``details["workflow"]``.
        """
        async with self._locked(workflow_id):
            share = await self._require_share(user, workflow_id)
            nodes = await self._prepare_nodes(data)
            was_active = share.workflow.active
            previous_nodes = share.workflow.nodes

            if was_active:
                # Triggers may have changed, never leave the old ones running
                await self.activator.deregister(workflow_id)

            try:
                async with self.db.transaction() as session:
                    workflow = await session.get(WorkflowEntity, workflow_id)
                    if workflow is None:
                        raise NotFoundOrUnauthorized("Workflow", details={"workflow_id": workflow_id})
                    workflow.name = data.name
                    workflow.nodes = nodes
                    workflow.connections = data.connections
                    workflow.settings = data.settings
                    workflow.static_data = data.static_data
                    workflow.active = False
            except TransactionError:
                if was_active:
                    await self._reinstate(workflow_id, previous_nodes)
                raise

            logger.info(f"Workflow {workflow_id} updated by user {user.id}")

            if was_active:
                try:
                    await self.activator.register(workflow_id, nodes, ActivationReason.UPDATE)
                except ActivationError as e:
                    logger.warning(f"Workflow {workflow_id} left inactive after update: {e.message}")
                    saved = await self._load(workflow_id)
                    raise ActivationError(
                        e.message, details={**e.details, "workflow": saved.model_dump(mode="json")}
                    ) from e

                await self._persist_active_or_deregister(workflow_id)

            return await self._load(workflow_id)

    async def _persist_active_or_deregister(self, workflow_id: str) -> None:
        try:
            await self._set_active(workflow_id, True)
        except Exception:
            await self.activator.deregister(workflow_id)
            raise

    async def activate_workflow(self, user: User, workflow_id: str) -> WorkflowView:
        async with self._locked(workflow_id):
            share = await self._require_share(user, workflow_id)
            workflow = share.workflow

            if workflow.active:
                return WorkflowView.model_validate(workflow)

            await self.activator.register(workflow_id, workflow.nodes, ActivationReason.ACTIVATE)
            await self._persist_active_or_deregister(workflow_id)

            logger.info(
                f"Workflow {workflow_id} activated by user {user.id}", extra={"workflow_id": workflow_id}
            )
            return await self._load(workflow_id)

    async def deactivate_workflow(self, user: User, workflow_id: str) -> WorkflowView:
        async with self._locked(workflow_id):
            share = await self._require_share(user, workflow_id)
            workflow = share.workflow

            if not workflow.active:
                return WorkflowView.model_validate(workflow)

            await self.activator.deregister(workflow_id)
            try:
                await self._set_active(workflow_id, False)
            except TransactionError:
                await self._reinstate(workflow_id, workflow.nodes)
                raise

            logger.info(
                f"Workflow {workflow_id} deactivated by user {user.id}", extra={"workflow_id": workflow_id}
            )
            return await self._load(workflow_id)

    async def delete_workflow(self, user: User, workflow_id: str) -> WorkflowView:
        """Delete a workflow and its shares; returns the workflow as it was"""
        async with self._locked(workflow_id):
            share = await self._require_share(user, workflow_id)
            deleted = WorkflowView.model_validate(share.workflow)

            if deleted.active:
                await self.activator.deregister(workflow_id)

            try:
                async with self.db.transaction() as session:
                    await self.ledger.remove_workflow(session, workflow_id)
            except TransactionError:
                if deleted.active:
                    await self._reinstate(workflow_id, deleted.nodes)
                raise

            logger.info(f"Workflow {workflow_id} deleted by user {user.id}")
            return deleted

    async def deactivate_for_deletion(self, workflow_id: str) -> None:
        """Deactivate a workflow whose owner is being deleted"""
        async with self._locked(workflow_id):
            async with self.db.session() as session:
                workflow = await session.get(WorkflowEntity, workflow_id)
                active = workflow is not None and workflow.active
                nodes = workflow.nodes if active else []

            if active:
                await self.activator.deregister(workflow_id)
                try:
                    await self._set_active(workflow_id, False)
                except TransactionError:
                    await self._reinstate(workflow_id, nodes)
                    raise
                logger.info(f"Workflow {workflow_id} deactivated before owner deletion")

    async def restore_active_workflows(self) -> Dict[str, int]:
        """
        Register every workflow persisted as active, used at start-up

        Workflows that fail to register are persisted inactive so storage and
        the activator agree after a restart.
        """
        async with self.db.session() as session:
            rows = (
                await session.execute(
                    select(WorkflowEntity.id, WorkflowEntity.nodes).where(WorkflowEntity.active.is_(True))
                )
            ).all()

        restored, failed = 0, 0
        for workflow_id, nodes in rows:
            async with self._locked(workflow_id):
                try:
                    await self.activator.register(workflow_id, nodes, ActivationReason.INIT)
                    restored += 1
                except ActivationError as e:
                    failed += 1
                    logger.error(f"Could not restore workflow {workflow_id}, deactivating it: {e.message}")
                    await self._set_active(workflow_id, False)

        logger.info(f"Restored {restored} active workflows ({failed} deactivated)")
        return {"restored": restored, "failed": failed}
