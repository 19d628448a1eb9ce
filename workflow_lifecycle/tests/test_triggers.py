"""
Tests for the individual trigger types
"""

import httpx
import pytest

from shared.models.trigger import TriggerStatus
from workflow_lifecycle.triggers.cron_trigger import CronTrigger
from workflow_lifecycle.triggers.manual_trigger import ManualTrigger
from workflow_lifecycle.triggers.webhook_trigger import WebhookTrigger


class EngineStub:
    """Records calls to the execution engine and answers with a fixed status"""

    def __init__(self, status_code=202, body=None):
        self.status_code = status_code
        self.body = body if body is not None else {"execution_id": "exec-engine-1"}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)


@pytest.fixture
def engine():
    return EngineStub()


@pytest.fixture
async def engine_client(engine):
    client = httpx.AsyncClient(transport=httpx.MockTransport(engine))
    yield client
    await client.aclose()


def make_trigger(trigger_class, config, engine_client, node_name="Trigger"):
    return trigger_class(
        "workflow-1",
        node_name,
        config,
        engine_client=engine_client,
        engine_url="http://engine.test/",
        instance_base_url="https://n8n.example.com/",
    )


class TestManualTrigger:
    """Test manual trigger implementation"""

    @pytest.mark.asyncio
    async def test_manual_trigger_start_stop(self, engine_client):
        trigger = make_trigger(ManualTrigger, {}, engine_client)
        assert trigger.trigger_type == "MANUAL"
        assert trigger.status == TriggerStatus.PENDING

        assert await trigger.start() is True
        assert trigger.status == TriggerStatus.ACTIVE

        assert await trigger.stop() is True
        assert trigger.status == TriggerStatus.STOPPED

    @pytest.mark.asyncio
    async def test_trigger_manual_calls_engine(self, engine, engine_client):
        trigger = make_trigger(ManualTrigger, {}, engine_client)
        await trigger.start()

        result = await trigger.trigger_manual("user-1")

        assert result.status == "running"
        assert result.execution_id == "exec-engine-1"
        (request,) = engine.requests
        assert str(request.url) == "http://engine.test/v1/workflows/workflow-1/execute"

    @pytest.mark.asyncio
    async def test_stopped_trigger_does_not_fire(self, engine, engine_client):
        trigger = make_trigger(ManualTrigger, {}, engine_client)

        result = await trigger.trigger_manual("user-1")

        assert result.status == "skipped"
        assert engine.requests == []

    @pytest.mark.asyncio
    async def test_disabled_trigger_is_paused(self, engine_client):
        trigger = make_trigger(ManualTrigger, {"enabled": False}, engine_client)

        assert await trigger.start() is True
        assert trigger.status == TriggerStatus.PAUSED

    @pytest.mark.asyncio
    async def test_engine_error_is_reported(self):
        failing = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        )
        trigger = make_trigger(ManualTrigger, {}, failing)
        await trigger.start()

        result = await trigger.trigger_manual("user-1")
        await failing.aclose()

        assert result.status == "error"
        assert "HTTP 500" in result.message

    @pytest.mark.asyncio
    async def test_unreachable_engine_is_reported(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        trigger = make_trigger(ManualTrigger, {}, client)
        await trigger.start()

        result = await trigger.trigger_manual("user-1")
        await client.aclose()

        assert result.status == "error"
        assert "unreachable" in result.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code,content",
        [(202, {"text": "accepted"}), (200, {"json": ["exec-1"]})],
    )
    async def test_engine_answer_without_json_object_keeps_generated_id(self, status_code, content):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(status_code, **content))
        )
        trigger = make_trigger(ManualTrigger, {}, client)
        await trigger.start()

        result = await trigger.trigger_manual("user-1")
        await client.aclose()

        assert result.status == "running"
        assert result.execution_id.startswith("exec_")


class TestWebhookTrigger:
    """Test webhook trigger implementation"""

    def test_default_path_and_method(self, engine_client):
        trigger = make_trigger(WebhookTrigger, {}, engine_client, node_name="Hook")

        assert trigger.webhook_path == "workflow-1/Hook"
        assert trigger.routes() == [("POST", "workflow-1/Hook")]
        assert trigger.get_webhook_url() == "https://n8n.example.com/webhook/workflow-1/Hook"

    def test_custom_path_and_methods(self, engine_client):
        trigger = make_trigger(
            WebhookTrigger, {"path": "/orders/new/", "methods": ["get", "post"]}, engine_client
        )

        assert trigger.webhook_path == "orders/new"
        assert trigger.routes() == [("GET", "orders/new"), ("POST", "orders/new")]

    def test_single_method_string(self, engine_client):
        trigger = make_trigger(WebhookTrigger, {"path": "orders", "methods": "put"}, engine_client)

        assert trigger.routes() == [("PUT", "orders")]

    def test_unsupported_method_is_rejected(self, engine_client):
        with pytest.raises(ValueError):
            make_trigger(WebhookTrigger, {"methods": ["CONNECT"]}, engine_client)

    @pytest.mark.asyncio
    async def test_process_webhook(self, engine, engine_client):
        trigger = make_trigger(WebhookTrigger, {"path": "orders"}, engine_client)
        await trigger.start()

        result = await trigger.process_webhook({"method": "POST", "body": {"order": 1}})

        assert result.status == "running"
        assert len(engine.requests) == 1

    @pytest.mark.asyncio
    async def test_wrong_method_is_rejected(self, engine, engine_client):
        trigger = make_trigger(WebhookTrigger, {"path": "orders"}, engine_client)
        await trigger.start()

        result = await trigger.process_webhook({"method": "GET"})

        assert result.status == "rejected"
        assert engine.requests == []


class TestCronTrigger:
    """Test cron trigger implementation"""

    def test_missing_expression_is_rejected(self, engine_client):
        with pytest.raises(ValueError):
            make_trigger(CronTrigger, {}, engine_client)

    @pytest.mark.parametrize("expression", ["61 * * * *", "* * *", "every day"])
    def test_invalid_expression_is_rejected(self, engine_client, expression):
        with pytest.raises(ValueError, match="Invalid cron expression"):
            make_trigger(CronTrigger, {"cron_expression": expression}, engine_client)

    def test_unknown_timezone_falls_back_to_utc(self, engine_client):
        trigger = make_trigger(
            CronTrigger, {"cron_expression": "0 9 * * *", "timezone": "Mars/Olympus"}, engine_client
        )

        assert trigger.timezone == "UTC"

    @pytest.mark.asyncio
    async def test_cron_trigger_schedules_and_stops(self, engine_client):
        trigger = make_trigger(
            CronTrigger, {"cron_expression": "0 9 * * MON-FRI", "timezone": "America/New_York"}, engine_client
        )

        assert await trigger.start() is True
        assert trigger.status == TriggerStatus.ACTIVE
        assert trigger.next_run_time() is not None

        health = await trigger.health_check()
        assert health["cron_expression"] == "0 9 * * MON-FRI"
        assert health["next_run_time"] is not None

        assert await trigger.stop() is True
        assert trigger.next_run_time() is None

    @pytest.mark.asyncio
    async def test_scheduled_run_fires(self, engine, engine_client):
        trigger = make_trigger(CronTrigger, {"cron_expression": "*/5 * * * * *"}, engine_client)
        trigger.status = TriggerStatus.ACTIVE

        await trigger._run()

        (request,) = engine.requests
        assert b"cron_expression" in request.content
