"""
API route aggregator: register endpoints and delegate to services/handlers. No business logic here.
"""

import logging

from fastapi import APIRouter, Depends

from inboxpilot.api.dependencies import get_owner_id, get_services
from inboxpilot.api.handlers import (
    handle_generate_embeddings,
    handle_ingestion_run,
    handle_sync,
    handle_turn,
    service_errors,
)
from inboxpilot.bootstrap import Services
from inboxpilot.core.models import TaskStatus
from inboxpilot.schemas.chat import (
    ConversationOut,
    CreateChatRequest,
    MessageOut,
    MessageRequest,
    RenameChatRequest,
    TurnResponse,
)
from inboxpilot.schemas.task import IngestionRunResponse, SyncResponse, SyncStatusResponse, TaskOut, TaskStatsOut
from inboxpilot.services.chat_service import conversation_to_dict, message_to_dict
from inboxpilot.services.sync_service import SyncSource

logger = logging.getLogger(__name__)
router = APIRouter()


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "InboxPilot backend running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


# --- Conversations ---

@router.get("/chats", response_model=list[ConversationOut], tags=["chats"], summary="List conversations")
def list_chats(
    limit: int = 50,
    offset: int = 0,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> list[dict]:
    return services.chat.list_conversations(owner_id, limit=limit, offset=offset)


@router.post("/chats", response_model=ConversationOut, status_code=201, tags=["chats"], summary="Create a conversation")
def create_chat(
    body: CreateChatRequest,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> dict:
    return conversation_to_dict(services.chat.create_conversation(owner_id, body.name))


@router.get("/chats/{chat_id}", tags=["chats"], summary="Conversation with its tasks")
def get_chat(
    chat_id: int,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> dict:
    with service_errors():
        conversation = services.chat.get_conversation(chat_id, owner_id)
    tasks = services.tasks.list_tasks(conversation_id=chat_id, owner_id=owner_id)
    return {"chat": conversation_to_dict(conversation), "tasks": [t.to_dict() for t in tasks]}


@router.put("/chats/{chat_id}/name", response_model=ConversationOut, tags=["chats"], summary="Rename a conversation")
def rename_chat(
    chat_id: int,
    body: RenameChatRequest,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> dict:
    with service_errors():
        conversation = services.chat.rename_conversation(chat_id, owner_id, body.name)
    return conversation_to_dict(conversation)


@router.delete(
    "/chats/{chat_id}",
    tags=["chats"],
    summary="Delete a conversation",
    description="Deletes the conversation together with its messages and tasks.",
)
def delete_chat(
    chat_id: int,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> dict:
    with service_errors():
        services.chat.delete_conversation(chat_id, owner_id)
    return {"deleted": True}


@router.post(
    "/chats/{chat_id}/messages",
    response_model=TurnResponse,
    tags=["chats"],
    summary="Send a message to the assistant",
    description="Runs one agent turn. 404 for an unknown conversation; a failed turn returns 200 with failed=true.",
)
def post_message(
    chat_id: int,
    body: MessageRequest,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> TurnResponse:
    logger.info("[api:post_message] IN  owner=%s chat=%s message_len=%d", owner_id, chat_id, len(body.message))
    response = handle_turn(services, owner_id, chat_id, body.message)
    logger.info("[api:post_message] OUT failed=%s tools_used=%s", response.failed, response.tools_used)
    return response


@router.get("/chats/{chat_id}/messages", response_model=list[MessageOut], tags=["chats"], summary="List messages")
def list_chat_messages(
    chat_id: int,
    limit: int = 100,
    offset: int = 0,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> list[dict]:
    with service_errors():
        messages = services.chat.list_messages(chat_id, owner_id, limit=limit, offset=offset)
    return [message_to_dict(m) for m in messages]


@router.get("/chats/{chat_id}/tasks", response_model=list[TaskOut], tags=["tasks"], summary="Tasks of a conversation")
def list_chat_tasks(
    chat_id: int,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> list[dict]:
    with service_errors():
        services.chat.get_conversation(chat_id, owner_id)
    return [t.to_dict() for t in services.tasks.list_tasks(conversation_id=chat_id, owner_id=owner_id)]


# --- Tasks ---

@router.get("/tasks/active", response_model=list[TaskOut], tags=["tasks"], summary="Owner's waiting tasks")
def list_active_tasks(
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> list[dict]:
    return [t.to_dict() for t in services.tasks.list_tasks(owner_id=owner_id, status=TaskStatus.WAITING)]


@router.get("/tasks/stats", response_model=TaskStatsOut, tags=["tasks"], summary="Task counts per status")
def task_stats(
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> dict:
    return services.tasks.statistics(owner_id)


@router.post("/tasks/{task_id}/cancel", response_model=TaskOut, tags=["tasks"], summary="Cancel a waiting task")
def cancel_task(
    task_id: int,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> dict:
    with service_errors():
        task = services.tasks.cancel(task_id, owner_id)
    return task.to_dict()


# --- Ingestion & embeddings ---

@router.post(
    "/ingestion/run",
    response_model=IngestionRunResponse,
    tags=["ingestion"],
    summary="Run one ingestion cycle now",
    description="Polls every connected mailbox once. Returns started=false when a cycle is already running.",
)
def run_ingestion(
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> IngestionRunResponse:
    logger.info("[api:run_ingestion] triggered by owner=%s", owner_id)
    return handle_ingestion_run(services)


@router.post(
    "/embeddings/generate",
    tags=["ingestion"],
    summary="Embed the owner's records that have no vector yet",
)
def generate_embeddings(
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> dict:
    return handle_generate_embeddings(services, owner_id)


# --- Data sync ---

@router.post(
    "/sync/{source}",
    response_model=SyncResponse,
    tags=["sync"],
    summary="Sync Gmail, HubSpot or both into the local store",
    description="gmail: last days of mail; hubspot: all contacts and notes; all: every connected source.",
)
def run_sync(
    source: SyncSource,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> SyncResponse:
    return handle_sync(services, owner_id, source)


@router.get("/sync/status", response_model=SyncStatusResponse, tags=["sync"], summary="Last sync outcome per source")
def sync_status(
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> SyncStatusResponse:
    return SyncStatusResponse(statuses=services.sync.statuses(owner_id))
