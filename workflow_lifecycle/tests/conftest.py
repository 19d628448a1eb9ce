"""
Pytest configuration and shared fixtures for workflow_lifecycle tests.

Storage runs on an in-memory SQLite database per test; the trigger runtime is
replaced by FakeActivator unless a test needs the real TriggerManager.
"""

import os

os.environ.setdefault("LOG_LEVEL", "ERROR")  # Reduce log noise during tests
os.environ.setdefault("LOCK_BACKEND", "local")

from typing import Any, Dict, List, Optional, Set, Tuple
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from shared.models.db_models import SharedWorkflow, User, WorkflowEntity
from shared.models.node_enums import RoleName, RoleScope
from shared.models.trigger import ActivationReason
from workflow_lifecycle.core.database import DatabaseManager
from workflow_lifecycle.core.exceptions import ActivationError
from workflow_lifecycle.services.lock_manager import LocalLockManager
from workflow_lifecycle.services.mailer import SendResult
from workflow_lifecycle.services.notification_service import NotificationService
from workflow_lifecycle.services.ownership_ledger import OwnershipLedger
from workflow_lifecycle.services.trigger_manager import Activator
from workflow_lifecycle.services.user_service import UserService
from workflow_lifecycle.services.workflow_service import WorkflowService

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeActivator(Activator):
    """In-memory activator recording every call"""

    def __init__(self):
        self.registered: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.fail_ids: Set[str] = set()
        self.fail_message = "Cron node 'Every minute' has an invalid expression"

    async def register(self, workflow_id, nodes, reason):
        self.calls.append(("register", workflow_id, reason.value))
        if workflow_id in self.registered:
            if reason in (ActivationReason.INIT, ActivationReason.CREATE):
                raise ActivationError(f"Workflow {workflow_id} is already active")
            await self.deregister(workflow_id)
        if workflow_id in self.fail_ids:
            raise ActivationError(self.fail_message)
        self.registered[workflow_id] = nodes

    async def deregister(self, workflow_id):
        self.calls.append(("deregister", workflow_id, None))
        self.registered.pop(workflow_id, None)

    def is_registered(self, workflow_id):
        return workflow_id in self.registered

    def registered_ids(self):
        return list(self.registered)


def manual_node(name: str = "Manual") -> Dict[str, Any]:
    return {"name": name, "type": "TRIGGER", "subtype": "MANUAL", "parameters": {}}


def cron_node(expression: str, name: str = "Every minute") -> Dict[str, Any]:
    return {
        "name": name,
        "type": "TRIGGER",
        "subtype": "CRON",
        "parameters": {"cron_expression": expression, "timezone": "UTC"},
    }


def action_node(name: str = "Send message") -> Dict[str, Any]:
    return {"name": name, "type": "ACTION", "subtype": "HTTP_REQUEST", "parameters": {"url": "https://example.com"}}


@pytest.fixture
async def db():
    """Fresh in-memory database with reference roles seeded"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    database = DatabaseManager(TEST_DATABASE_URL, engine=engine)
    await database.initialize()
    yield database
    await database.cleanup()


@pytest.fixture
def ledger(db):
    return OwnershipLedger(db)


@pytest.fixture
def activator():
    return FakeActivator()


@pytest.fixture
def lock_manager():
    return LocalLockManager(lock_timeout=5)


@pytest.fixture
def workflow_service(db, ledger, activator, lock_manager):
    return WorkflowService(db, ledger, activator, lock_manager)


@pytest.fixture
def notifier():
    return Mock(spec=NotificationService)


@pytest.fixture
def mailer():
    mailer = Mock()
    mailer.invite = AsyncMock(return_value=SendResult(success=True))
    return mailer


@pytest.fixture
def user_service(db, ledger, workflow_service, mailer, notifier):
    return UserService(db, ledger, workflow_service, mailer, notifier, "https://n8n.example.com")


@pytest.fixture
def create_user(db, ledger):
    """Factory persisting a user with a global role"""

    async def _create_user(
        email: str,
        role: str = RoleName.MEMBER.value,
        password: Optional[str] = "hashed-password",
        api_key: Optional[str] = None,
    ) -> User:
        global_role = await ledger.get_role(role, RoleScope.GLOBAL.value)
        async with db.transaction() as session:
            user = User(email=email, password=password, api_key=api_key, global_role=global_role)
            session.add(user)
        return user

    return _create_user


@pytest.fixture
async def owner(create_user):
    return await create_user("owner@example.com", role=RoleName.OWNER.value, api_key="owner-key")


@pytest.fixture
async def member(create_user):
    return await create_user("member@example.com", api_key="member-key")


@pytest.fixture
def assert_consistent(db, activator):
    """Check that every workflow is active exactly when it is registered"""

    async def _assert_consistent():
        async with db.session() as session:
            rows = (await session.execute(select(WorkflowEntity.id, WorkflowEntity.active))).all()
        for workflow_id, active in rows:
            assert active == activator.is_registered(workflow_id), workflow_id
        stored = {workflow_id for workflow_id, _ in rows}
        assert set(activator.registered_ids()) <= stored

    return _assert_consistent


@pytest.fixture
def shares_of(db):
    async def _shares_of(user: User) -> List[str]:
        async with db.session() as session:
            result = await session.execute(
                select(SharedWorkflow.workflow_id).where(SharedWorkflow.user_id == user.id)
            )
            return sorted(result.scalars())

    return _shares_of
