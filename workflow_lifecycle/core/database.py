"""
Database configuration and session management
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shared.models.db_models import Base, Role
from shared.models.node_enums import RoleName, RoleScope

from .exceptions import TransactionError

logger = logging.getLogger(__name__)

REFERENCE_ROLES = [
    (RoleName.OWNER.value, RoleScope.GLOBAL.value),
    (RoleName.MEMBER.value, RoleScope.GLOBAL.value),
    (RoleName.OWNER.value, RoleScope.WORKFLOW.value),
    (RoleName.OWNER.value, RoleScope.CREDENTIAL.value),
]


class DatabaseManager:
    """Owns the async engine and hands out sessions and transactions"""

    def __init__(self, database_url: str, echo: bool = False, engine: Optional[AsyncEngine] = None):
        if engine is None:
            kwargs = {"echo": echo, "pool_pre_ping": True}
            if database_url.startswith("postgresql"):
                kwargs.update(pool_size=10, max_overflow=20, pool_recycle=300)
            engine = create_async_engine(database_url, **kwargs)

        self.engine = engine
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def initialize(self) -> None:
        """Create tables and seed reference roles"""
        try:
            await self.create_tables()
            await self.seed_roles()
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            raise

    async def create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    async def drop_tables(self) -> None:
        """Drop database tables (for testing)"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.warning("Database tables dropped")

    async def seed_roles(self) -> None:
        """Insert missing reference roles; existing ones are left alone"""
        async with self.transaction() as session:
            existing = {
                (role.name, role.scope) for role in (await session.execute(select(Role))).scalars()
            }
            for name, scope in REFERENCE_ROLES:
                if (name, scope) not in existing:
                    session.add(Role(name=name, scope=scope))
                    logger.info(f"Seeded role {scope}/{name}")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Read session with automatic cleanup"""
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """All-or-nothing unit of work.

        Commits when the block exits normally. Any exception rolls back every
        statement issued inside the block; storage errors are re-raised as
        TransactionError, everything else propagates unchanged.
        """
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except SQLAlchemyError as e:
                logger.error(f"Transaction rolled back: {e}", exc_info=True)
                raise TransactionError(details={"cause": str(e.__class__.__name__)}) from e

    async def health_check(self) -> dict:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "healthy", "dialect": self.engine.dialect.name}
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "error": str(e), "dialect": self.engine.dialect.name}

    async def cleanup(self) -> None:
        await self.engine.dispose()
        logger.info("Database connections disposed")
