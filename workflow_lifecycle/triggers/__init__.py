from .base import BaseTrigger
from .cron_trigger import CronTrigger
from .manual_trigger import ManualTrigger
from .webhook_trigger import WebhookTrigger

__all__ = [
    "BaseTrigger",
    "CronTrigger",
    "ManualTrigger",
    "WebhookTrigger",
]
