"""Tests for conversation handling around the agent turn."""

import pytest

from conftest import FakeLLM, make_services
from inboxpilot.core.errors import NotFoundError
from inboxpilot.core.models import Completion
from inboxpilot.services.chat_service import FAILED_TURN_ANSWER


def test_handle_turn_persists_both_messages_and_names_chat(store, owner, conversation) -> None:
    llm = FakeLLM([Completion(text="Here is your summary.")], generated="📧 Inbox Summary")
    chat = make_services(store, llm=llm).chat

    result = chat.handle_turn(owner.id, conversation.id, "summarise my inbox")

    assert result.failed is False
    messages = store.list_messages(conversation.id)
    assert [(m.role, m.content) for m in messages] == [
        ("user", "summarise my inbox"),
        ("assistant", "Here is your summary."),
    ]
    assert messages[1].context == {"sources": [], "tools_used": []}
    assert chat.get_conversation(conversation.id, owner.id).name == "📧 Inbox Summary"


def test_history_excludes_current_message_and_is_bounded(store, owner, conversation) -> None:
    for i in range(12):
        store.add_message(conversation.id, owner.id, "user" if i % 2 == 0 else "assistant", f"m{i}")
    llm = FakeLLM([Completion(text="ok")])
    make_services(store, llm=llm).chat.handle_turn(owner.id, conversation.id, "latest")

    sent = llm.complete_calls[0]
    history = [m["content"] for m in sent[1:-1]]
    assert history == [f"m{i}" for i in range(2, 12)]
    assert sent[-1]["content"].startswith("latest")


def test_failed_turn_stores_no_assistant_message(store, owner, conversation) -> None:
    chat = make_services(store, llm=FakeLLM(fail_complete=True)).chat
    result = chat.handle_turn(owner.id, conversation.id, "hello")
    assert result.failed is True
    assert result.answer == FAILED_TURN_ANSWER
    assert [m.role for m in store.list_messages(conversation.id)] == ["user"]


def test_auto_name_keeps_custom_and_failed_names(store, owner) -> None:
    chat = make_services(store, llm=FakeLLM(generated=RuntimeError("down"))).chat
    custom = chat.create_conversation(owner.id, "Jane follow-up")
    chat.handle_turn(owner.id, custom.id, "hi")
    assert chat.get_conversation(custom.id, owner.id).name == "Jane follow-up"

    default = chat.create_conversation(owner.id)
    chat.handle_turn(owner.id, default.id, "hi")
    assert chat.get_conversation(default.id, owner.id).name == "New Chat"


def test_conversations_are_owner_scoped(store, owner, other_owner, conversation) -> None:
    chat = make_services(store).chat
    with pytest.raises(NotFoundError):
        chat.get_conversation(conversation.id, other_owner.id)
    with pytest.raises(NotFoundError):
        chat.handle_turn(other_owner.id, conversation.id, "hi")
    with pytest.raises(NotFoundError):
        chat.delete_conversation(conversation.id, other_owner.id)
    assert store.list_messages(conversation.id) == []


def test_list_conversations_counts_active_tasks(store, owner, conversation) -> None:
    services = make_services(store)
    services.tasks.register("Wait", "jane@acme.com", conversation.id, owner.id)
    listed = services.chat.list_conversations(owner.id)
    assert listed[0]["id"] == conversation.id
    assert listed[0]["active_tasks"] == 1


def test_rename_and_default_conversation(store, owner) -> None:
    chat = make_services(store).chat
    first = chat.get_or_create_default_conversation(owner.id)
    assert chat.get_or_create_default_conversation(owner.id).id == first.id
    assert chat.rename_conversation(first.id, owner.id, "  Renamed ").name == "Renamed"
    with pytest.raises(ValueError):
        chat.rename_conversation(first.id, owner.id, " ")
