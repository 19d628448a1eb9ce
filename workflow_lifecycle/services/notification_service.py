"""
Best-effort dispatch of user lifecycle events

Events are queued and sent by a background worker. A full queue drops the
event, a failed delivery is logged; neither is retried or reported back to the
operation that emitted the event.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

USER_INVITED = "user_invited"
USER_DELETED = "user_deleted"
EMAIL_FAILED = "email_failed"
USER_TRANSACTIONAL_EMAIL = "user_transactional_email"


class NotificationService:
    """Fire-and-forget event side channel"""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        queue_size: int = 1000,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.webhook_url = webhook_url
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout
        self._worker: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._worker is not None:
            return
        if self.webhook_url and self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")
        logger.info(
            f"Notification dispatcher started ({'webhook ' + self.webhook_url if self.webhook_url else 'log only'})"
        )

    async def stop(self) -> None:
        """Deliver what is queued, then stop the worker"""
        if self._worker is not None:
            await self._queue.join()
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Notification dispatcher stopped")

    def emit(self, event: str, payload: Dict[str, Any]) -> bool:
        """Queue an event without waiting; False when it had to be dropped"""
        envelope = {
            "event": event,
            "payload": payload,
            "emitted_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._queue.put_nowait(envelope)
        except asyncio.QueueFull:
            logger.warning(f"Notification queue full, dropping {event} event")
            return False
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    async def _run(self) -> None:
        while True:
            envelope = await self._queue.get()
            try:
                await self._dispatch(envelope)
            except Exception as e:
                logger.error(f"Failed to dispatch {envelope['event']} event: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def _dispatch(self, envelope: Dict[str, Any]) -> None:
        logger.info(f"Event {envelope['event']}: {envelope['payload']}")

        if not self.webhook_url or self._client is None:
            return

        response = await self._client.post(self.webhook_url, json=envelope)
        if response.status_code >= 400:
            logger.warning(
                f"Event webhook rejected {envelope['event']}: HTTP {response.status_code}"
            )
