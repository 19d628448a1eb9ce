from .users import router as users_router
from .webhooks import router as webhooks_router
from .workflows import router as workflows_router

__all__ = ["users_router", "webhooks_router", "workflows_router"]
