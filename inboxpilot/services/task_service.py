"""
Task correlation: "waiting" tasks that resolve when a given counterparty writes back.

Lifecycle per task: waiting → completed | cancelled. Terminal states are final.
Tasks are created by the register-task tool, resolved by the ingestion loop and
cancelled by the owner; matching never crosses owners.
"""

import logging
from typing import Any

from inboxpilot.core.errors import InvalidStateError, NotFoundError
from inboxpilot.core.interfaces import LanguageModel
from inboxpilot.core.models import InboundEvent, Task, TaskStatus
from inboxpilot.core.store import Store, utcnow

logger = logging.getLogger(__name__)

SUMMARY_BODY_CHARS = 1000


def fallback_summary(event: InboundEvent) -> str:
    return f"{event.display_sender} responded: {event.subject}"


class TaskCorrelationEngine:
    def __init__(self, store: Store, llm: LanguageModel) -> None:
        self._store = store
        self._llm = llm

    def register(
        self,
        description: str,
        expected_counterparty: str,
        conversation_id: int,
        owner_id: str,
        context: dict[str, Any] | None = None,
        expected_counterparty_name: str | None = None,
        task_type: str = "email_response",
    ) -> Task:
        """
        Create a new waiting task. Existing waiting tasks for the same counterparty
        are left alone; registering twice yields two tasks.
        """
        counterparty = (expected_counterparty or "").strip().lower()
        if not counterparty:
            raise ValueError("expected counterparty is required")
        if not (description or "").strip():
            raise ValueError("description is required")
        task = self._store.insert_task(
            conversation_id=conversation_id,
            owner_id=owner_id,
            description=description.strip(),
            expected_counterparty=counterparty,
            task_type=task_type or "email_response",
            expected_counterparty_name=expected_counterparty_name,
            context=context,
        )
        logger.info(
            "[tasks:register] task=%s owner=%s conversation=%s waiting_for=%s",
            task.id, owner_id, conversation_id, counterparty,
        )
        return task

    def match(self, event: InboundEvent, owner_id: str) -> list[Task]:
        """Waiting tasks of `owner_id` whose counterparty is the event sender (exact, case-insensitive)."""
        sender = (event.sender or "").strip().lower()
        if not sender:
            return []
        tasks = self._store.find_waiting_tasks(owner_id, sender)
        if tasks:
            logger.info("[tasks:match] owner=%s sender=%s matched=%s", owner_id, sender, [t.id for t in tasks])
        return tasks

    def complete(self, task_id: int, event: InboundEvent) -> Task | None:
        """
        Mark a waiting task completed, link the resolving event and post a notification
        into the task's conversation. Returns None when the task was already terminal.
        """
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        if task.status.is_terminal:
            logger.info("[tasks:complete] task=%s already %s; no-op", task_id, task.status.value)
            return None
        if not self._store.transition_task(
            task_id, TaskStatus.COMPLETED, event_id=event.external_id, completed_at=utcnow()
        ):
            logger.info("[tasks:complete] task=%s changed state concurrently; no-op", task_id)
            return None

        completed = self._store.get_task(task_id)
        self.post_completion_notice(completed, event)
        logger.info("[tasks:complete] task=%s completed by event=%s", task_id, event.external_id)
        return completed

    def cancel(self, task_id: int, owner_id: str) -> Task:
        task = self._store.get_task(task_id)
        if task is None or task.owner_id != owner_id:
            raise NotFoundError("Task not found or not authorized")
        if task.status.is_terminal:
            raise InvalidStateError(f"Task {task_id} is already {task.status.value}")
        if not self._store.transition_task(task_id, TaskStatus.CANCELLED, owner_id=owner_id, completed_at=utcnow()):
            raise InvalidStateError(f"Task {task_id} is no longer waiting")
        logger.info("[tasks:cancel] task=%s owner=%s", task_id, owner_id)
        return self._store.get_task(task_id)

    def list_tasks(
        self,
        conversation_id: int | None = None,
        owner_id: str | None = None,
        status: TaskStatus | None = None,
    ) -> list[Task]:
        if conversation_id is None and owner_id is None:
            raise ValueError("conversation_id or owner_id is required")
        return self._store.list_tasks(conversation_id=conversation_id, owner_id=owner_id, status=status)

    def statistics(self, owner_id: str) -> dict[str, int]:
        counts = self._store.count_tasks_by_status(owner_id)
        counts["total"] = sum(counts.values())
        return counts

    def summarize_event(self, event: InboundEvent) -> str:
        """Two or three sentence summary of the reply. Best-effort: any failure yields a one-line template."""
        prompt = (
            "Summarize this email response in 2-3 sentences. Focus on key points and action items.\n\n"
            f"From: {event.display_sender}\n"
            f"Subject: {event.subject}\n"
            f"Date: {event.timestamp.isoformat()}\n\n"
            f"Body:\n{(event.body or 'No content')[:SUMMARY_BODY_CHARS]}\n\n"
            "Summary:"
        )
        try:
            summary = self._llm.generate(prompt, temperature=0.5)
        except Exception as e:
            logger.warning("[tasks:summarize_event] summary failed, using template: %s", e)
            return fallback_summary(event)
        return summary.strip() or fallback_summary(event)

    def post_completion_notice(self, task: Task, event: InboundEvent) -> None:
        summary = self.summarize_event(event)
        who = task.expected_counterparty_name or task.expected_counterparty
        content = (
            "📬 **Task Update: Response Received**\n\n"
            f"{who} has responded to your email!\n\n"
            f"**Subject:** {event.subject}\n\n"
            f"**Summary:**\n{summary}\n\n"
            f"**From:** {event.display_sender}\n"
            f"**Date:** {event.timestamp.strftime('%Y-%m-%d %H:%M UTC')}\n\n"
            "You can ask me to read the full email or take further actions."
        )
        self._store.add_message(
            task.conversation_id,
            task.owner_id,
            "assistant",
            content,
            context={
                "type": "task_completion",
                "task_id": task.id,
                "event_id": event.external_id,
                "automated": True,
            },
        )
        self._store.touch_conversation(task.conversation_id)
        logger.info("[tasks:notify] posted completion for task=%s to conversation=%s", task.id, task.conversation_id)
