"""
HTTP tests for conversation, task and ingestion routes. Services are built from
fakes and injected through create_app.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import FakeLLM, FakeMailbox, make_event, make_services
from inboxpilot.core.models import Completion
from inboxpilot.main import create_app

HEADERS = {"X-Owner-Id": "owner-1"}
OTHER = {"X-Owner-Id": "owner-2"}


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM([Completion(text="Hello! How can I help?")], generated="Greeting")


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def services(store, owner, llm, mailbox):
    return make_services(store, llm=llm, mailbox=mailbox)


@pytest.fixture
def client(services) -> TestClient:
    return TestClient(create_app(services))


def test_root_and_health(client: TestClient) -> None:
    assert client.get("/").status_code == 200
    assert client.get("/health").json() == {"ok": True}


def test_owner_header_required(client: TestClient) -> None:
    response = client.get("/chats")
    assert response.status_code == 401


def test_create_list_rename_delete_chat(client: TestClient) -> None:
    created = client.post("/chats", json={}, headers=HEADERS)
    assert created.status_code == 201
    chat_id = created.json()["id"]
    assert created.json()["name"] == "New Chat"

    listed = client.get("/chats", headers=HEADERS).json()
    assert [c["id"] for c in listed] == [chat_id]
    assert listed[0]["active_tasks"] == 0
    assert client.get("/chats", headers=OTHER).json() == []

    renamed = client.put(f"/chats/{chat_id}/name", json={"name": "Planning"}, headers=HEADERS)
    assert renamed.json()["name"] == "Planning"

    assert client.get(f"/chats/{chat_id}", headers=OTHER).status_code == 404
    assert client.delete(f"/chats/{chat_id}", headers=OTHER).status_code == 404
    assert client.delete(f"/chats/{chat_id}", headers=HEADERS).json() == {"deleted": True}
    assert client.get(f"/chats/{chat_id}", headers=HEADERS).status_code == 404


def test_post_message_runs_a_turn(client: TestClient) -> None:
    chat_id = client.post("/chats", json={}, headers=HEADERS).json()["id"]
    response = client.post(f"/chats/{chat_id}/messages", json={"message": "hi"}, headers=HEADERS)
    assert response.status_code == 200
    data = response.json()
    assert data["answer"] == "Hello! How can I help?"
    assert data["failed"] is False
    assert data["conversation_id"] == chat_id

    messages = client.get(f"/chats/{chat_id}/messages", headers=HEADERS).json()
    assert [m["role"] for m in messages] == ["user", "assistant"]
    assert client.get(f"/chats/{chat_id}", headers=HEADERS).json()["chat"]["name"] == "Greeting"


def test_post_message_validation_and_ownership(client: TestClient) -> None:
    chat_id = client.post("/chats", json={}, headers=HEADERS).json()["id"]
    assert client.post(f"/chats/{chat_id}/messages", json={"message": ""}, headers=HEADERS).status_code == 422
    assert client.post(f"/chats/{chat_id}/messages", json={"message": "hi"}, headers=OTHER).status_code == 404


def test_failed_turn_is_200_with_failed_flag(client: TestClient, llm: FakeLLM) -> None:
    llm.fail_complete = True
    chat_id = client.post("/chats", json={}, headers=HEADERS).json()["id"]
    data = client.post(f"/chats/{chat_id}/messages", json={"message": "hi"}, headers=HEADERS).json()
    assert data["failed"] is True
    assert data["tools_used"] == []


def test_task_routes(client: TestClient, services) -> None:
    chat_id = client.post("/chats", json={}, headers=HEADERS).json()["id"]
    task = services.tasks.register("Wait for Jane", "jane@acme.com", chat_id, "owner-1")

    active = client.get("/tasks/active", headers=HEADERS).json()
    assert [t["id"] for t in active] == [task.id]
    assert client.get(f"/chats/{chat_id}/tasks", headers=HEADERS).json()[0]["status"] == "waiting"
    assert client.get("/tasks/active", headers=OTHER).json() == []

    assert client.post(f"/tasks/{task.id}/cancel", headers=OTHER).status_code == 404
    cancelled = client.post(f"/tasks/{task.id}/cancel", headers=HEADERS)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert client.post(f"/tasks/{task.id}/cancel", headers=HEADERS).status_code == 404

    stats = client.get("/tasks/stats", headers=HEADERS).json()
    assert stats == {"waiting": 0, "completed": 0, "cancelled": 1, "total": 1}


def test_ingestion_run(client: TestClient, services, mailbox: FakeMailbox) -> None:
    chat_id = client.post("/chats", json={}, headers=HEADERS).json()["id"]
    services.tasks.register("Wait for Jane", "jane@acme.com", chat_id, "owner-1")
    mailbox.events["owner-1"] = [make_event("jane@acme.com")]

    data = client.post("/ingestion/run", headers=HEADERS).json()
    assert data["started"] is True
    assert data["report"]["tasks_completed"] == 1

    services.ingestion._lock.acquire()
    try:
        assert client.post("/ingestion/run", headers=HEADERS).json() == {"started": False, "report": None}
    finally:
        services.ingestion._lock.release()


def test_generate_embeddings_without_vector_store_is_503(client: TestClient) -> None:
    assert client.post("/embeddings/generate", headers=HEADERS).status_code == 503


def test_sync_routes(client: TestClient, services, mailbox: FakeMailbox) -> None:
    mailbox.recent["owner-1"] = [make_event("bob@x.io", external_id="m1")]

    gmail = client.post("/sync/gmail", headers=HEADERS)
    assert gmail.status_code == 200
    assert gmail.json()["results"]["gmail"] == {"count": 1, "created": 1}

    everything = client.post("/sync/all", headers=HEADERS).json()
    assert everything["success"] is True
    assert everything["results"]["hubspot"] == {"contact_count": 0, "note_count": 0}

    statuses = client.get("/sync/status", headers=HEADERS).json()["statuses"]
    assert statuses["gmail"]["status"] == "success"
    assert statuses["hubspot"]["status"] == "success"


def test_sync_route_errors(client: TestClient, mailbox: FakeMailbox) -> None:
    assert client.post("/sync/hubspot", headers=OTHER).status_code == 400
    assert client.post("/sync/dropbox", headers=HEADERS).status_code == 422
    assert client.post("/sync/gmail").status_code == 401
    mailbox.failing_owners.add("owner-1")
    assert client.post("/sync/gmail", headers=HEADERS).status_code == 503
