import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.logging_config import setup_logging
from shared.models.node_enums import TriggerSubtype
from workflow_lifecycle import __version__
from workflow_lifecycle.api import users_router, webhooks_router, workflows_router
from workflow_lifecycle.api.dependencies import (
    get_database,
    get_lock_manager,
    get_trigger_manager,
    set_global_services,
)
from workflow_lifecycle.core.config import Settings, settings
from workflow_lifecycle.core.database import DatabaseManager
from workflow_lifecycle.core.exceptions import register_exception_handlers
from workflow_lifecycle.services.lock_manager import DistributedLockManager, LocalLockManager, LockManager
from workflow_lifecycle.services.mailer import create_mailer
from workflow_lifecycle.services.notification_service import NotificationService
from workflow_lifecycle.services.ownership_ledger import OwnershipLedger
from workflow_lifecycle.services.trigger_manager import TriggerManager
from workflow_lifecycle.services.user_service import UserService
from workflow_lifecycle.services.workflow_service import WorkflowService
from workflow_lifecycle.triggers.cron_trigger import CronTrigger
from workflow_lifecycle.triggers.manual_trigger import ManualTrigger
from workflow_lifecycle.triggers.webhook_trigger import WebhookTrigger

setup_logging(service_name=settings.service_name, log_level=settings.log_level, log_format=settings.log_format)
logger = logging.getLogger(__name__)


def create_lock_manager(config: Settings) -> LockManager:
    if config.lock_backend == "redis":
        return DistributedLockManager(
            redis_url=config.redis_url,
            lock_timeout=config.lock_timeout,
            retry_delay=config.lock_retry_delay,
        )
    return LocalLockManager(lock_timeout=config.lock_timeout)


def create_trigger_manager(config: Settings) -> TriggerManager:
    trigger_manager = TriggerManager(
        engine_url=config.workflow_engine_url,
        instance_base_url=config.instance_base_url,
        engine_timeout=config.engine_timeout,
    )
    trigger_manager.register_trigger_class(TriggerSubtype.MANUAL, ManualTrigger)
    trigger_manager.register_trigger_class(TriggerSubtype.WEBHOOK, WebhookTrigger)
    trigger_manager.register_trigger_class(TriggerSubtype.CRON, CronTrigger)
    return trigger_manager


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager"""
    database = None
    lock_manager = None
    trigger_manager = None
    notifier = None

    logger.info(f"Starting {settings.service_name} service")

    try:
        database = DatabaseManager(settings.async_database_url, echo=settings.database_echo)
        await database.initialize()

        lock_manager = create_lock_manager(settings)
        await lock_manager.initialize()

        trigger_manager = create_trigger_manager(settings)

        notifier = NotificationService(
            webhook_url=settings.event_webhook_url, queue_size=settings.event_queue_size
        )
        await notifier.start()

        ledger = OwnershipLedger(database)
        workflow_service = WorkflowService(
            database,
            ledger,
            trigger_manager,
            lock_manager,
            tags_disabled=settings.workflow_tags_disabled,
        )
        user_service = UserService(
            database,
            ledger,
            workflow_service,
            create_mailer(settings),
            notifier,
            settings.instance_base_url,
        )

        set_global_services(database, workflow_service, user_service, trigger_manager, lock_manager)

        await workflow_service.restore_active_workflows()

        logger.info(f"{settings.service_name} service started successfully")

        yield

    except Exception as e:
        logger.error(f"Failed to start {settings.service_name} service: {e}", exc_info=True)
        raise

    finally:
        logger.info(f"Shutting down {settings.service_name} service")

        set_global_services(None, None, None, None, None)

        if trigger_manager:
            await trigger_manager.cleanup()

        if notifier:
            await notifier.stop()

        if lock_manager:
            await lock_manager.cleanup()

        if database:
            await database.cleanup()

        logger.info(f"{settings.service_name} service shutdown complete")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Workflow Lifecycle Service",
        description="Public API for workflows and users, with trigger activation",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(workflows_router, prefix=settings.api_prefix)
    app.include_router(users_router, prefix=settings.api_prefix)
    app.include_router(webhooks_router)

    @app.get("/")
    async def root():
        return {"service": settings.service_name, "version": __version__, "status": "running"}

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        health_status = {
            "service": settings.service_name,
            "status": "healthy",
            "version": __version__,
            "components": {},
        }

        try:
            database_health = await get_database().health_check()
        except Exception as e:
            database_health = {"status": f"not_available: {e}"}
        health_status["components"]["database"] = database_health
        if database_health.get("status") != "healthy":
            health_status["status"] = "unhealthy"

        lock_manager = get_lock_manager()
        if lock_manager:
            lock_health = await lock_manager.health_check()
            health_status["components"]["lock_manager"] = lock_health
            if lock_health != "healthy":
                health_status["status"] = "degraded"
        else:
            health_status["components"]["lock_manager"] = "not_initialized"
            health_status["status"] = "unhealthy"

        trigger_manager = get_trigger_manager()
        if trigger_manager:
            health_status["components"]["trigger_manager"] = await trigger_manager.health_check()
        else:
            health_status["components"]["trigger_manager"] = "not_initialized"

        return health_status

    return app


app = create_app()


def main():
    """Main entry point"""
    uvicorn.run(
        "workflow_lifecycle.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
