from .lock_manager import DistributedLockManager, LocalLockManager, LockManager
from .mailer import DisabledMailer, Mailer, SendResult, SMTPMailer, create_mailer
from .notification_service import NotificationService
from .ownership_ledger import OwnershipLedger, is_instance_owner
from .trigger_manager import Activator, TriggerManager
from .user_service import UserService
from .workflow_service import WorkflowService

__all__ = [
    "Activator",
    "DisabledMailer",
    "DistributedLockManager",
    "LocalLockManager",
    "LockManager",
    "Mailer",
    "NotificationService",
    "OwnershipLedger",
    "SMTPMailer",
    "SendResult",
    "TriggerManager",
    "UserService",
    "WorkflowService",
    "create_mailer",
    "is_instance_owner",
]
