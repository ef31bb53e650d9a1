"""Schemas for task, ingestion, data-sync and tool-server endpoints."""

from typing import Any

from pydantic import BaseModel, Field


class TaskOut(BaseModel):
    id: int
    conversation_id: int
    owner_id: str
    status: str
    description: str
    expected_counterparty: str
    expected_counterparty_name: str | None = None
    task_type: str
    event_id: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    created_at: str
    completed_at: str | None = None


class TaskStatsOut(BaseModel):
    waiting: int = 0
    completed: int = 0
    cancelled: int = 0
    total: int = 0


class IngestionRunResponse(BaseModel):
    """Response for POST /ingestion/run. started is False when a cycle was already in flight."""

    started: bool
    report: dict[str, Any] | None = None


class SyncResponse(BaseModel):
    """Response for POST /sync/{source}. success is False when any source or the embedding step failed."""

    success: bool
    results: dict[str, Any]


class SyncStatusResponse(BaseModel):
    statuses: dict[str, dict[str, Any]] = Field(default_factory=dict)


class ToolCallRequest(BaseModel):
    """Request body for POST /mcp/tools/{name}."""

    arguments: dict[str, Any] = Field(default_factory=dict, description="Tool arguments, per the tool's schema.")
    conversation_id: int | None = Field(None, description="Conversation to attach created tasks to.")
