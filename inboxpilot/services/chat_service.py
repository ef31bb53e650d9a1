"""
Conversations: CRUD, message history and the per-turn flow around the agent.

Called by the API; no HTTP here.
"""

import logging
from dataclasses import asdict
from typing import Any

from inboxpilot.agent.graph import AgentOrchestrator
from inboxpilot.core.config import DEFAULT_CHAT_NAME, HISTORY_MAX_MESSAGES
from inboxpilot.core.errors import NotFoundError, ServiceUnavailableError, TurnFailedError
from inboxpilot.core.interfaces import LanguageModel
from inboxpilot.core.models import Conversation, Message, Owner, TaskStatus, TurnResult
from inboxpilot.core.store import Store

logger = logging.getLogger(__name__)

FAILED_TURN_ANSWER = "I'm sorry, I encountered an error processing your request. Please try again."
NAME_MAX_CHARS = 60


def conversation_to_dict(conversation: Conversation) -> dict[str, Any]:
    data = asdict(conversation)
    data["last_activity"] = conversation.last_activity.isoformat()
    data["created_at"] = conversation.created_at.isoformat()
    return data


def message_to_dict(message: Message) -> dict[str, Any]:
    data = asdict(message)
    data["created_at"] = message.created_at.isoformat()
    return data


class ChatService:
    def __init__(
        self,
        store: Store,
        orchestrator: AgentOrchestrator,
        llm: LanguageModel,
        history_max_messages: int = HISTORY_MAX_MESSAGES,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._llm = llm
        self._history_max_messages = history_max_messages

    def create_conversation(self, owner_id: str, name: str | None = None) -> Conversation:
        conversation = self._store.create_conversation(owner_id, (name or "").strip() or DEFAULT_CHAT_NAME)
        logger.info("[chat:create] owner=%s conversation=%s", owner_id, conversation.id)
        return conversation

    def get_conversation(self, conversation_id: int, owner_id: str) -> Conversation:
        conversation = self._store.get_conversation(conversation_id, owner_id)
        if conversation is None:
            raise NotFoundError("Chat not found or not authorized")
        return conversation

    def list_conversations(self, owner_id: str, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
        """Most recently active first, each with its number of waiting tasks."""
        out = []
        for c in self._store.list_conversations(owner_id, limit=limit, offset=offset):
            data = conversation_to_dict(c)
            data["active_tasks"] = len(self._store.list_tasks(conversation_id=c.id, status=TaskStatus.WAITING))
            out.append(data)
        return out

    def rename_conversation(self, conversation_id: int, owner_id: str, name: str) -> Conversation:
        name = (name or "").strip()
        if not name:
            raise ValueError("name is required")
        if not self._store.rename_conversation(conversation_id, owner_id, name[:NAME_MAX_CHARS]):
            raise NotFoundError("Chat not found or not authorized")
        return self.get_conversation(conversation_id, owner_id)

    def delete_conversation(self, conversation_id: int, owner_id: str) -> None:
        """Deletes the conversation together with its messages and tasks."""
        if not self._store.delete_conversation(conversation_id, owner_id):
            raise NotFoundError("Chat not found or not authorized")
        logger.info("[chat:delete] owner=%s conversation=%s", owner_id, conversation_id)

    def get_or_create_default_conversation(self, owner_id: str) -> Conversation:
        return self._store.latest_conversation(owner_id) or self.create_conversation(owner_id)

    def list_messages(self, conversation_id: int, owner_id: str, limit: int = 100, offset: int = 0) -> list[Message]:
        self.get_conversation(conversation_id, owner_id)
        return self._store.list_messages(conversation_id, limit=limit, offset=offset)

    def handle_turn(self, owner_id: str, conversation_id: int | None, user_text: str) -> TurnResult:
        """
        One user turn: persist the message, run the agent over recent history and
        persist its answer. A failed turn stores no assistant message and returns
        an apologetic answer with failed=True.
        """
        text = (user_text or "").strip()
        if not text:
            raise ValueError("message is required")
        if conversation_id is None:
            conversation = self.get_or_create_default_conversation(owner_id)
        else:
            conversation = self.get_conversation(conversation_id, owner_id)
        owner = self._store.get_owner(owner_id) or Owner(id=owner_id)

        user_message = self._store.add_message(conversation.id, owner_id, "user", text)
        self._store.touch_conversation(conversation.id)
        prior = [
            {"role": m.role, "content": m.content}
            for m in self._store.recent_messages(conversation.id, self._history_max_messages + 1)
            if m.id != user_message.id
        ][-self._history_max_messages:]
        logger.info(
            "[chat:handle_turn] IN  owner=%s conversation=%s history_len=%d", owner_id, conversation.id, len(prior)
        )

        try:
            result = self._orchestrator.run_turn(owner, conversation.id, text, prior)
        except (TurnFailedError, ServiceUnavailableError) as e:
            logger.warning("[chat:handle_turn] turn failed conversation=%s: %s", conversation.id, e)
            return TurnResult(answer=FAILED_TURN_ANSWER, failed=True)

        self._store.add_message(
            conversation.id,
            owner_id,
            "assistant",
            result.answer,
            context={"sources": result.sources, "tools_used": result.tools_invoked},
        )
        self._store.touch_conversation(conversation.id)
        self.auto_name(conversation)
        logger.info(
            "[chat:handle_turn] OUT conversation=%s rounds=%d sources=%d", conversation.id, result.rounds, len(result.sources)
        )
        return result

    def auto_name(self, conversation: Conversation) -> str:
        """Give a conversation still called "New Chat" a short generated name. Failure keeps the old one."""
        if conversation.name != DEFAULT_CHAT_NAME:
            return conversation.name
        if self._store.count_messages(conversation.id) < 2:
            return conversation.name

        recent = self._store.recent_messages(conversation.id, 10)
        summary = "\n".join(f"{m.role}: {m.content[:200]}" for m in recent)
        prompt = (
            "Generate a short, descriptive chat name (2-5 words max) for the conversation below. "
            "The name should capture the main topic or action discussed. "
            "Reply with the name only.\n\n"
            f"{summary}"
        )
        try:
            name = self._llm.generate(prompt, temperature=0.7, max_tokens=20)
        except Exception as e:
            logger.warning("[chat:auto_name] naming failed conversation=%s: %s", conversation.id, e)
            return conversation.name
        name = name.strip().strip('"').strip()[:NAME_MAX_CHARS]
        if not name:
            return conversation.name
        self._store.rename_conversation(conversation.id, conversation.owner_id, name)
        logger.info("[chat:auto_name] conversation=%s name=%r", conversation.id, name)
        return name
