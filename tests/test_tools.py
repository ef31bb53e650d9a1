"""
Tests for the tool registry: uniform {success: ...} contract, argument validation,
owner scoping and the individual tools against fakes.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from conftest import FakeCRM, FakeEmbedder, FakeLLM, FakeMailbox, FakeVectorSearch
from inboxpilot.agent.tools import ToolContext, ToolName, build_registry, validate_arguments
from inboxpilot.core.errors import ToolValidationError
from inboxpilot.core.models import Owner, TaskStatus
from inboxpilot.services.retrieval_service import RetrievalEngine
from inboxpilot.services.task_service import TaskCorrelationEngine


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def crm() -> FakeCRM:
    return FakeCRM()


@pytest.fixture
def vector_search() -> FakeVectorSearch:
    return FakeVectorSearch()


@pytest.fixture
def registry(store, mailbox, crm, vector_search):
    retrieval = RetrievalEngine(FakeEmbedder(), vector_search)
    tasks = TaskCorrelationEngine(store, FakeLLM())
    return build_registry(store, retrieval, tasks, mailbox, crm)


@pytest.fixture
def ctx(owner, conversation) -> ToolContext:
    return ToolContext(owner=owner, conversation_id=conversation.id)


def test_catalog_is_closed_and_complete(registry) -> None:
    names = [s["function"]["name"] for s in registry.schemas()]
    assert sorted(names) == sorted(n.value for n in ToolName)
    for s in registry.schemas():
        assert s["type"] == "function"
        assert s["function"]["parameters"]["type"] == "object"


def test_unknown_tool_is_failure_payload(registry, ctx) -> None:
    result = registry.execute("delete_everything", {}, ctx)
    assert result == {"success": False, "error": "Unknown tool: delete_everything"}


def test_missing_required_argument_rejected_before_run(registry, ctx, mailbox) -> None:
    result = registry.execute("send_email", {"to_email": "jane@acme.com", "subject": "Hi"}, ctx)
    assert result["success"] is False
    assert "body is required" in result["error"]
    assert mailbox.sent == []


def test_wrong_type_rejected(registry, ctx) -> None:
    result = registry.execute("read_email", {"email_id": "not-a-number"}, ctx)
    assert result["success"] is False
    assert "email_id must be of type integer" in result["error"]


@pytest.mark.parametrize("raw", ["--5", "-+3", "²", "٣", "1.5", ""])
def test_malformed_integer_strings_are_failure_payloads(registry, ctx, raw) -> None:
    result = registry.execute("read_email", {"email_id": raw}, ctx)
    assert result["success"] is False
    assert result["error"].startswith("Invalid arguments:")


def test_crash_during_validation_is_failure_payload(registry, ctx) -> None:
    with patch("inboxpilot.agent.tools.validate_arguments", side_effect=RuntimeError("boom")):
        result = registry.execute("read_email", {"email_id": 1}, ctx)
    assert result == {"success": False, "error": "Invalid arguments: boom"}


def test_validate_arguments_coerces_and_fills_defaults() -> None:
    params = {
        "type": "object",
        "properties": {
            "task_id": {"type": "integer"},
            "scope": {"type": "string", "enum": ["chat", "all"], "default": "chat"},
        },
        "required": ["task_id"],
    }
    assert validate_arguments(params, {"task_id": "12", "extra": 1}) == {"task_id": 12, "scope": "chat"}
    with pytest.raises(ToolValidationError):
        validate_arguments(params, {"task_id": 1, "scope": "everything"})
    with pytest.raises(ToolValidationError):
        validate_arguments(params, {"task_id": True})


def test_exception_inside_tool_becomes_failure(registry, store, conversation) -> None:
    no_token = store.upsert_owner(Owner(id="owner-1"))
    ctx = ToolContext(owner=no_token, conversation_id=conversation.id)
    result = registry.execute("send_email", {"to_email": "jane@acme.com", "subject": "Hi", "body": "Hello"}, ctx)
    assert result == {"success": False, "error": "No Gmail access token available"}


def test_search_and_read_email_are_owner_scoped(registry, store, owner, other_owner, ctx) -> None:
    received = datetime(2026, 5, 1, tzinfo=timezone.utc)
    mine, _ = store.add_email(owner.id, "m1", "Jane@Acme.com", "Pilot timeline", "Kickoff in July", received, "Jane")
    theirs, _ = store.add_email(other_owner.id, "m2", "jane@acme.com", "Pilot secret", "Other owner's", received)

    found = registry.execute("search_emails", {"query": "pilot"}, ctx)
    assert found["success"] is True
    assert [r["id"] for r in found["results"]] == [mine]
    assert found["results"][0]["from"] == "Jane <jane@acme.com>"

    assert registry.execute("read_email", {"email_id": mine}, ctx)["email"]["body"] == "Kickoff in July"
    assert registry.execute("read_email", {"email_id": theirs}, ctx) == {"success": False, "error": "Email not found"}


def test_send_email(registry, ctx, mailbox) -> None:
    result = registry.execute(
        "send_email", {"to_email": "jane@acme.com", "to_name": "Jane", "subject": "Hi", "body": "Hello"}, ctx
    )
    assert result["success"] is True
    assert result["message_id"] == "sent-1"
    assert mailbox.sent[0]["to"] == "jane@acme.com"


def test_send_email_rejects_bad_address(registry, ctx, mailbox) -> None:
    result = registry.execute("send_email", {"to_email": "jane", "subject": "Hi", "body": "Hello"}, ctx)
    assert result["success"] is False
    assert mailbox.sent == []


def test_create_contact_writes_crm_and_local(registry, store, owner, ctx, crm) -> None:
    result = registry.execute("create_contact", {"email": "bob@x.io", "firstname": "Bob", "company": "X"}, ctx)
    assert result["success"] is True
    assert result["contact"]["external_id"] == "hs-1"
    assert crm.created[0]["email"] == "bob@x.io"
    local = store.find_contact_by_email(owner.id, "bob@x.io")
    assert local["name"] == "Bob"
    assert local["properties"]["company"] == "X"

    found = registry.execute("search_contacts", {"query": "bob"}, ctx)
    assert found["count"] == 1
    assert found["source"] == "local"


def test_create_contact_requires_email_or_name(registry, ctx, crm) -> None:
    result = registry.execute("create_contact", {"company": "X"}, ctx)
    assert result["success"] is False
    assert crm.created == []


def test_semantic_search_delegates_to_retrieval(registry, ctx, vector_search, owner) -> None:
    vector_search.hits[(owner.id, "contact")] = [
        {"record_id": 4, "similarity": 0.88, "name": "Jane Doe", "email": "jane@acme.com", "properties": {}}
    ]
    result = registry.execute("semantic_search", {"query": "who runs partnerships"}, ctx)
    assert result["success"] is True
    assert result["results"][0]["type"] == "contact"
    assert result["results"][0]["id"] == 4


def test_create_ongoing_task_requires_conversation(registry, owner) -> None:
    ctx = ToolContext(owner=owner, conversation_id=None)
    result = registry.execute(
        "create_ongoing_task", {"description": "wait", "expected_sender_email": "jane@acme.com"}, ctx
    )
    assert result["success"] is False


def test_task_tools_round_trip(registry, store, ctx, owner) -> None:
    created = registry.execute(
        "create_ongoing_task",
        {"description": "Wait for Jane", "expected_sender_email": "Jane@Acme.com", "expected_sender_name": "Jane"},
        ctx,
    )
    assert created["success"] is True
    task_id = created["task"]["id"]
    assert created["task"]["expected_sender"] == "jane@acme.com"

    listed = registry.execute("list_ongoing_tasks", {}, ctx)
    assert listed["summary"] == {"total": 1, "active": 1, "completed": 0}

    cancelled = registry.execute("cancel_task", {"task_id": task_id}, ctx)
    assert cancelled["success"] is True
    assert store.get_task(task_id).status is TaskStatus.CANCELLED

    again = registry.execute("cancel_task", {"task_id": task_id}, ctx)
    assert again["success"] is False


def test_cancel_task_of_other_owner_fails(registry, store, ctx, other_owner) -> None:
    theirs = store.create_conversation(other_owner.id, "Theirs")
    task = store.insert_task(theirs.id, other_owner.id, "their task", "x@y.com")
    result = registry.execute("cancel_task", {"task_id": task.id}, ctx)
    assert result == {"success": False, "error": "Task not found or not authorized"}
    assert store.get_task(task.id).status is TaskStatus.WAITING
