"""
Tests for the event notification service
"""

import json

import httpx
import pytest

from workflow_lifecycle.services.notification_service import USER_DELETED, USER_INVITED, NotificationService


class TestNotificationService:
    """Test queued best-effort event dispatch"""

    @pytest.mark.asyncio
    async def test_events_are_posted_to_webhook(self):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        service = NotificationService(webhook_url="http://events.test/hook", http_client=client)
        await service.start()

        assert service.emit(USER_INVITED, {"user_id": "u-1", "target_user_id": ["u-2"]}) is True
        assert service.emit(USER_DELETED, {"user_id": "u-1", "target_user_id": "u-3"}) is True
        await service.stop()
        await client.aclose()

        assert [envelope["event"] for envelope in received] == [USER_INVITED, USER_DELETED]
        assert received[0]["payload"] == {"user_id": "u-1", "target_user_id": ["u-2"]}
        assert "emitted_at" in received[0]

    @pytest.mark.asyncio
    async def test_full_queue_drops_events(self):
        service = NotificationService(queue_size=1)

        assert service.emit(USER_INVITED, {"n": 1}) is True
        assert service.emit(USER_INVITED, {"n": 2}) is False
        assert service.pending() == 1

    @pytest.mark.asyncio
    async def test_failed_delivery_does_not_stop_the_worker(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(500)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        service = NotificationService(webhook_url="http://events.test/hook", http_client=client)
        await service.start()

        service.emit(USER_INVITED, {"n": 1})
        service.emit(USER_INVITED, {"n": 2})
        await service.stop()
        await client.aclose()

        assert len(calls) == 2
        assert service.pending() == 0

    @pytest.mark.asyncio
    async def test_log_only_mode(self):
        service = NotificationService()
        await service.start()

        service.emit(USER_DELETED, {"user_id": "u-1"})
        await service.stop()

        assert service.pending() == 0
