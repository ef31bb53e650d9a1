"""
Domain types shared by the services, the agent and the API layer.

Persisted rows (Owner, Conversation, Message, Task) are loaded from the SQLite
store; the rest are transient values produced per turn or per ingestion cycle.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    WAITING = "waiting"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.WAITING


class EntityType(str, Enum):
    EMAIL = "email"
    CONTACT = "contact"
    NOTE = "note"


ALL_ENTITY_TYPES: tuple[EntityType, ...] = (EntityType.EMAIL, EntityType.CONTACT, EntityType.NOTE)


@dataclass
class Owner:
    """The end user. Also the credentials handle handed to tools and capabilities."""

    id: str
    email: str = ""
    google_access_token: str | None = None
    hubspot_access_token: str | None = None

    @property
    def has_crm(self) -> bool:
        return bool(self.hubspot_access_token)


@dataclass
class Conversation:
    id: int
    owner_id: str
    name: str
    last_activity: datetime
    created_at: datetime


@dataclass
class Message:
    id: int
    conversation_id: int
    owner_id: str
    role: str  # "user" | "assistant"
    content: str
    created_at: datetime
    context: dict[str, Any] | None = None


@dataclass
class Task:
    id: int
    conversation_id: int
    owner_id: str
    status: TaskStatus
    description: str
    expected_counterparty: str
    created_at: datetime
    task_type: str = "email_response"
    expected_counterparty_name: str | None = None
    event_id: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        return data


@dataclass
class InboundEvent:
    """One inbound email as seen by the ingestion loop."""

    sender: str
    subject: str
    body: str
    timestamp: datetime
    external_id: str
    sender_name: str = ""

    @property
    def display_sender(self) -> str:
        return self.sender_name or self.sender


@dataclass
class RetrievedItem:
    entity_type: EntityType
    source_id: int
    similarity: float
    snippet: str
    fields: dict[str, Any] = field(default_factory=dict)

    def to_source(self) -> dict[str, Any]:
        return {
            "type": self.entity_type.value,
            "id": self.source_id,
            "similarity": self.similarity,
            "snippet": self.snippet,
        }


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class Completion:
    """One language-model response: free text and/or requested tool calls."""

    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class TurnResult:
    answer: str
    sources: list[dict[str, Any]] = field(default_factory=list)
    tools_invoked: list[dict[str, Any]] = field(default_factory=list)
    rounds: int = 0
    failed: bool = False
