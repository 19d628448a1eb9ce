"""
Tests for the public HTTP API

Requests go through the real FastAPI app with the services wired by
set_global_services; lifespan start-up is not run.
"""

import httpx
import pytest

from conftest import manual_node
from shared.models.node_enums import TriggerSubtype
from shared.models.trigger import ActivationReason
from workflow_lifecycle.api.dependencies import set_global_services
from workflow_lifecycle.main import create_app
from workflow_lifecycle.services.trigger_manager import TriggerManager
from workflow_lifecycle.services.workflow_service import WorkflowService
from workflow_lifecycle.triggers.manual_trigger import ManualTrigger
from workflow_lifecycle.triggers.webhook_trigger import WebhookTrigger

OWNER = {"X-API-KEY": "owner-key"}
MEMBER = {"X-API-KEY": "member-key"}


@pytest.fixture
async def client(db, workflow_service, user_service, lock_manager):
    set_global_services(db, workflow_service, user_service, None, lock_manager)
    transport = httpx.ASGITransport(app=create_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    set_global_services(None, None, None, None, None)


@pytest.fixture
def engine_calls():
    return []


@pytest.fixture
async def live_client(db, ledger, user_service, lock_manager, engine_calls):
    """Client whose workflows register with a real TriggerManager"""

    def engine(request):
        engine_calls.append(request)
        return httpx.Response(202, json={"execution_id": "exec-7"})

    trigger_manager = TriggerManager(
        engine_url="http://engine.test",
        engine_client=httpx.AsyncClient(transport=httpx.MockTransport(engine)),
    )
    trigger_manager.register_trigger_class(TriggerSubtype.MANUAL, ManualTrigger)
    workflow_service = WorkflowService(db, ledger, trigger_manager, lock_manager)
    set_global_services(db, workflow_service, user_service, trigger_manager, lock_manager)

    transport = httpx.ASGITransport(app=create_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    set_global_services(None, None, None, None, None)
    await trigger_manager.cleanup()


def workflow_body(name="Daily report", nodes=None):
    return {"name": name, "nodes": nodes if nodes is not None else [manual_node()], "connections": {}}


class TestAuthentication:
    """Test API key and role checks"""

    @pytest.mark.asyncio
    async def test_missing_api_key(self, client, owner):
        response = await client.get("/api/v1/workflows")

        assert response.status_code == 401
        assert response.json()["error_code"] == "AUTHENTICATION_FAILED"

    @pytest.mark.asyncio
    async def test_unknown_api_key(self, client, owner):
        response = await client.get("/api/v1/workflows", headers={"X-API-KEY": "nope"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_instance_not_set_up(self, client, create_user):
        await create_user("first@example.com", api_key="first-key")

        response = await client.get("/api/v1/workflows", headers={"X-API-KEY": "first-key"})

        assert response.status_code == 400
        assert response.json()["error_code"] == "INSTANCE_NOT_SET_UP"

    @pytest.mark.asyncio
    async def test_member_cannot_manage_users(self, client, owner, member):
        response = await client.get("/api/v1/users", headers=MEMBER)

        assert response.status_code == 403
        assert response.json()["error_code"] == "AUTHORIZATION_FAILED"


class TestWorkflowEndpoints:
    """Test the workflow endpoints"""

    @pytest.mark.asyncio
    async def test_workflow_lifecycle(self, client, owner, activator):
        created = await client.post("/api/v1/workflows", json=workflow_body(), headers=OWNER)
        assert created.status_code == 200
        workflow = created.json()
        assert workflow["active"] is False
        assert any(node["subtype"] == "START" for node in workflow["nodes"])

        activated = await client.post(f"/api/v1/workflows/{workflow['id']}/activate", headers=OWNER)
        assert activated.status_code == 200
        assert activated.json()["active"] is True
        assert activator.is_registered(workflow["id"])

        updated = await client.put(
            f"/api/v1/workflows/{workflow['id']}", json=workflow_body(name="Renamed"), headers=OWNER
        )
        assert updated.status_code == 200
        assert updated.json()["name"] == "Renamed"
        assert updated.json()["active"] is True

        deactivated = await client.post(f"/api/v1/workflows/{workflow['id']}/deactivate", headers=OWNER)
        assert deactivated.json()["active"] is False

        deleted = await client.delete(f"/api/v1/workflows/{workflow['id']}", headers=OWNER)
        assert deleted.status_code == 200
        assert deleted.json()["id"] == workflow["id"]

        missing = await client.get(f"/api/v1/workflows/{workflow['id']}", headers=OWNER)
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_activation_failure(self, client, owner, activator):
        workflow = (await client.post("/api/v1/workflows", json=workflow_body(), headers=OWNER)).json()
        activator.fail_ids.add(workflow["id"])

        response = await client.post(f"/api/v1/workflows/{workflow['id']}/activate", headers=OWNER)

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "ACTIVATION_FAILED"
        assert body["message"] == activator.fail_message

        stored = await client.get(f"/api/v1/workflows/{workflow['id']}", headers=OWNER)
        assert stored.json()["active"] is False

    @pytest.mark.asyncio
    async def test_other_users_workflow_is_not_found(self, client, owner, member):
        workflow = (await client.post("/api/v1/workflows", json=workflow_body(), headers=OWNER)).json()

        for method, url in [
            ("GET", f"/api/v1/workflows/{workflow['id']}"),
            ("DELETE", f"/api/v1/workflows/{workflow['id']}"),
            ("POST", f"/api/v1/workflows/{workflow['id']}/activate"),
        ]:
            response = await client.request(method, url, headers=MEMBER)
            assert response.status_code == 404, url

    @pytest.mark.asyncio
    async def test_list_with_cursor(self, client, owner):
        for i in range(3):
            await client.post("/api/v1/workflows", json=workflow_body(name=f"Workflow {i}"), headers=OWNER)

        first = (await client.get("/api/v1/workflows", params={"limit": 2}, headers=OWNER)).json()
        assert len(first["data"]) == 2
        assert first["next_cursor"]

        second = (
            await client.get("/api/v1/workflows", params={"cursor": first["next_cursor"]}, headers=OWNER)
        ).json()
        assert len(second["data"]) == 1
        assert second["next_cursor"] is None

        names = {workflow["name"] for workflow in first["data"] + second["data"]}
        assert names == {"Workflow 0", "Workflow 1", "Workflow 2"}

    @pytest.mark.asyncio
    async def test_invalid_cursor(self, client, owner):
        response = await client.get("/api/v1/workflows", params={"cursor": "garbage"}, headers=OWNER)

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_CURSOR"

    @pytest.mark.asyncio
    async def test_run_through_manual_trigger(self, live_client, engine_calls, owner):
        created = await live_client.post("/api/v1/workflows", json=workflow_body(), headers=OWNER)
        url = f"/api/v1/workflows/{created.json()['id']}"

        inactive = await live_client.post(f"{url}/run", headers=OWNER)
        assert inactive.status_code == 409
        assert engine_calls == []

        await live_client.post(f"{url}/activate", headers=OWNER)
        triggers = await live_client.get(f"{url}/triggers", headers=OWNER)
        assert triggers.json() == {"Manual": "active"}

        response = await live_client.post(f"{url}/run", headers=OWNER)

        assert response.status_code == 200
        assert response.json()["status"] == "running"
        assert response.json()["execution_id"] == "exec-7"
        assert response.json()["trigger_data"]["user_id"] == owner.id
        assert len(engine_calls) == 1

    @pytest.mark.asyncio
    async def test_run_requires_a_share(self, live_client, engine_calls, owner, member):
        created = await live_client.post("/api/v1/workflows", json=workflow_body(), headers=OWNER)
        url = f"/api/v1/workflows/{created.json()['id']}"
        await live_client.post(f"{url}/activate", headers=OWNER)

        response = await live_client.post(f"{url}/run", headers=MEMBER)

        assert response.status_code == 404
        assert engine_calls == []

    @pytest.mark.asyncio
    async def test_invalid_body_is_rejected(self, client, owner):
        response = await client.post("/api/v1/workflows", json={"nodes": []}, headers=OWNER)

        assert response.status_code == 422


class TestUserEndpoints:
    """Test the user endpoints"""

    @pytest.mark.asyncio
    async def test_list_users_with_role(self, client, owner, member):
        response = await client.get("/api/v1/users", params={"includeRole": "true"}, headers=OWNER)

        assert response.status_code == 200
        users = response.json()["data"]
        assert {user["email"] for user in users} == {"owner@example.com", "member@example.com"}
        assert all("global_role" in user for user in users)
        assert all("password" not in user and "api_key" not in user for user in users)

    @pytest.mark.asyncio
    async def test_get_user_by_email(self, client, owner, member):
        response = await client.get("/api/v1/users/member@example.com", headers=OWNER)

        assert response.status_code == 200
        assert response.json()["id"] == member.id
        assert "global_role" not in response.json()

        missing = await client.get("/api/v1/users/ghost@example.com", headers=OWNER)
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_invite_users(self, client, owner, member, mailer):
        response = await client.post(
            "/api/v1/users", json=[{"email": "new@x.com"}, {"email": "member@example.com"}], headers=OWNER
        )

        assert response.status_code == 200
        assert [result["email"] for result in response.json()] == ["new@x.com"]
        assert response.json()[0]["email_sent"] is True

    @pytest.mark.asyncio
    async def test_delete_user_with_transfer(self, client, owner, member, workflow_service):
        response = await client.post("/api/v1/workflows", json=workflow_body(), headers=MEMBER)
        workflow_id = response.json()["id"]

        deleted = await client.delete(
            f"/api/v1/users/{member.id}", params={"transferId": owner.id}, headers=OWNER
        )

        assert deleted.status_code == 200
        assert deleted.json()["email"] == "member@example.com"
        transferred = await client.get(f"/api/v1/workflows/{workflow_id}", headers=OWNER)
        assert transferred.status_code == 200

    @pytest.mark.asyncio
    async def test_cannot_delete_api_key_owner(self, client, owner):
        response = await client.delete(f"/api/v1/users/{owner.id}", headers=OWNER)

        assert response.status_code == 409


class TestServiceEndpoints:
    """Test health and webhook endpoints"""

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        body = response.json()
        assert body["components"]["database"]["status"] == "healthy"
        assert body["components"]["lock_manager"] == "healthy"
        assert body["components"]["trigger_manager"] == "not_initialized"

    @pytest.mark.asyncio
    async def test_unknown_webhook(self, client):
        response = await client.post("/webhook/orders", json={"id": 1})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_webhook_starts_workflow(self, db, workflow_service, user_service, lock_manager):
        engine_calls = []

        def engine(request):
            engine_calls.append(request)
            return httpx.Response(202, json={"execution_id": "exec-42"})

        trigger_manager = TriggerManager(
            engine_url="http://engine.test",
            engine_client=httpx.AsyncClient(transport=httpx.MockTransport(engine)),
        )
        trigger_manager.register_trigger_class(TriggerSubtype.WEBHOOK, WebhookTrigger)
        await trigger_manager.register(
            "wf-1",
            [{"name": "Hook", "type": "TRIGGER", "subtype": "WEBHOOK", "parameters": {"path": "orders"}}],
            ActivationReason.ACTIVATE,
        )
        set_global_services(db, workflow_service, user_service, trigger_manager, lock_manager)

        transport = httpx.ASGITransport(app=create_app())
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.post("/webhook/orders?source=shop", json={"id": 1})

        set_global_services(None, None, None, None, None)
        await trigger_manager.cleanup()

        assert response.status_code == 200
        assert response.json()["execution_id"] == "exec-42"
        assert response.json()["trigger_data"]["body"] == {"id": 1}
        assert response.json()["trigger_data"]["query_params"] == {"source": "shop"}
        assert len(engine_calls) == 1
