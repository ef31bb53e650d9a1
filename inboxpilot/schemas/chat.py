"""Schemas for the conversation endpoints."""

from typing import Any

from pydantic import BaseModel, Field


class CreateChatRequest(BaseModel):
    """Request body for POST /chats. Name defaults to "New Chat" and is replaced after the first exchange."""

    name: str | None = Field(None, max_length=255, description="Optional initial name.")


class RenameChatRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="New conversation name.")


class ConversationOut(BaseModel):
    id: int
    owner_id: str
    name: str
    last_activity: str
    created_at: str
    active_tasks: int | None = Field(None, description="Waiting tasks in this conversation (list view only).")


class MessageOut(BaseModel):
    id: int
    conversation_id: int
    role: str
    content: str
    created_at: str
    context: dict[str, Any] | None = None


class MessageRequest(BaseModel):
    """Request body for POST /chats/{id}/messages."""

    message: str = Field(..., min_length=1, description="User message for the assistant.")


class TurnResponse(BaseModel):
    """Response for POST /chats/{id}/messages."""

    conversation_id: int
    answer: str = Field(..., description="Final answer from the assistant.")
    sources: list[dict[str, Any]] = Field(default_factory=list, description="Retrieved items used as context.")
    tools_used: list[dict[str, Any]] = Field(
        default_factory=list, description="Tools invoked this turn, e.g. [{tool: send_email, success: true}]."
    )
    rounds: int = Field(0, description="Tool-execution rounds used (at most 5).")
    failed: bool = Field(False, description="True when the turn failed and the answer is an apology.")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "conversation_id": 1,
                    "answer": "I've sent the email to Jane and will let you know when she replies.",
                    "sources": [{"type": "contact", "id": 3, "similarity": 0.82, "snippet": "Jane Doe"}],
                    "tools_used": [
                        {"tool": "send_email", "success": True},
                        {"tool": "create_ongoing_task", "success": True},
                    ],
                    "rounds": 1,
                    "failed": False,
                }
            ]
        }
    }
