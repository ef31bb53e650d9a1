"""
Tests for the task lifecycle: register (no dedupe), match, idempotent complete,
cancel rules, completion notice and statistics.
"""

import pytest

from conftest import FakeLLM, make_event
from inboxpilot.core.errors import InvalidStateError, NotFoundError
from inboxpilot.core.models import TaskStatus
from inboxpilot.services.task_service import TaskCorrelationEngine, fallback_summary


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM(generated="Jane confirmed the July kickoff.")


@pytest.fixture
def engine(store, llm) -> TaskCorrelationEngine:
    return TaskCorrelationEngine(store, llm)


def test_register_normalises_counterparty_and_never_dedupes(engine, owner, conversation) -> None:
    a = engine.register("Wait for Jane", "Jane@Acme.com", conversation.id, owner.id)
    b = engine.register("Wait for Jane", "jane@acme.com", conversation.id, owner.id)
    assert a.id != b.id
    assert a.status is TaskStatus.WAITING
    assert a.expected_counterparty == "jane@acme.com"
    assert len(engine.list_tasks(owner_id=owner.id, status=TaskStatus.WAITING)) == 2


def test_register_requires_counterparty(engine, owner, conversation) -> None:
    with pytest.raises(ValueError):
        engine.register("Wait", "  ", conversation.id, owner.id)


def test_match_is_case_insensitive_and_owner_scoped(engine, store, owner, other_owner, conversation) -> None:
    mine = engine.register("Wait", "jane@acme.com", conversation.id, owner.id)
    theirs_conv = store.create_conversation(other_owner.id, "Theirs")
    engine.register("Wait", "jane@acme.com", theirs_conv.id, other_owner.id)

    matched = engine.match(make_event("JANE@ACME.COM"), owner.id)
    assert [t.id for t in matched] == [mine.id]
    assert engine.match(make_event("bob@acme.com"), owner.id) == []
    assert engine.match(make_event(""), owner.id) == []


def test_complete_posts_notice_once(engine, store, owner, conversation) -> None:
    task = engine.register("Wait", "jane@acme.com", conversation.id, owner.id, expected_counterparty_name="Jane")
    event = make_event("jane@acme.com", subject="Re: Pilot", external_id="gm-42", sender_name="Jane Doe")

    done = engine.complete(task.id, event)
    assert done.status is TaskStatus.COMPLETED
    assert done.event_id == "gm-42"
    assert done.completed_at is not None

    assert engine.complete(task.id, event) is None
    messages = store.list_messages(conversation.id)
    assert len(messages) == 1
    notice = messages[0]
    assert notice.role == "assistant"
    assert "Jane has responded" in notice.content
    assert "Jane confirmed the July kickoff." in notice.content
    assert notice.context == {"type": "task_completion", "task_id": task.id, "event_id": "gm-42", "automated": True}


def test_complete_unknown_task(engine) -> None:
    with pytest.raises(NotFoundError):
        engine.complete(999, make_event("jane@acme.com"))


def test_complete_cancelled_task_is_noop(engine, store, owner, conversation) -> None:
    task = engine.register("Wait", "jane@acme.com", conversation.id, owner.id)
    engine.cancel(task.id, owner.id)
    assert engine.complete(task.id, make_event("jane@acme.com")) is None
    assert store.get_task(task.id).status is TaskStatus.CANCELLED
    assert store.list_messages(conversation.id) == []


def test_summary_falls_back_when_llm_fails(store, owner, conversation) -> None:
    engine = TaskCorrelationEngine(store, FakeLLM(generated=RuntimeError("quota exceeded")))
    task = engine.register("Wait", "jane@acme.com", conversation.id, owner.id)
    event = make_event("jane@acme.com", subject="Re: Pilot", sender_name="Jane Doe")
    engine.complete(task.id, event)
    assert fallback_summary(event) == "Jane Doe responded: Re: Pilot"
    assert "Jane Doe responded: Re: Pilot" in store.list_messages(conversation.id)[0].content


def test_cancel_rules(engine, store, owner, other_owner, conversation) -> None:
    task = engine.register("Wait", "jane@acme.com", conversation.id, owner.id)

    with pytest.raises(NotFoundError):
        engine.cancel(task.id, other_owner.id)
    assert store.get_task(task.id).status is TaskStatus.WAITING

    cancelled = engine.cancel(task.id, owner.id)
    assert cancelled.status is TaskStatus.CANCELLED
    assert cancelled.completed_at is not None

    with pytest.raises(InvalidStateError):
        engine.cancel(task.id, owner.id)
    with pytest.raises(NotFoundError):
        engine.cancel(12345, owner.id)


def test_list_tasks_requires_a_scope(engine) -> None:
    with pytest.raises(ValueError):
        engine.list_tasks()


def test_statistics(engine, owner, conversation) -> None:
    a = engine.register("A", "a@x.com", conversation.id, owner.id)
    b = engine.register("B", "b@x.com", conversation.id, owner.id)
    engine.register("C", "c@x.com", conversation.id, owner.id)
    engine.complete(a.id, make_event("a@x.com"))
    engine.cancel(b.id, owner.id)
    assert engine.statistics(owner.id) == {"waiting": 1, "completed": 1, "cancelled": 1, "total": 3}


def test_deleting_conversation_removes_its_tasks(engine, store, owner, conversation) -> None:
    task = engine.register("Wait", "jane@acme.com", conversation.id, owner.id)
    assert store.delete_conversation(conversation.id, owner.id) is True
    assert store.get_task(task.id) is None
