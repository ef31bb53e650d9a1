"""
API handlers: call services, map results/errors to HTTP.

Responsibility: Bridge HTTP types and services. Marshalling and exception-to-HTTP mapping.
Lives in the API layer so services stay free of FastAPI/HTTP types.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException

from inboxpilot.agent.tools import ToolContext
from inboxpilot.bootstrap import Services
from inboxpilot.core.errors import NotFoundError, ServiceUnavailableError
from inboxpilot.core.models import Owner
from inboxpilot.schemas.chat import TurnResponse
from inboxpilot.schemas.task import IngestionRunResponse, SyncResponse
from inboxpilot.services.sync_service import SyncSource

logger = logging.getLogger(__name__)


@contextmanager
def service_errors() -> Iterator[None]:
    """NotFoundError → 404, ServiceUnavailableError → 503, ValueError → 400."""
    try:
        yield
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message) from e
    except ServiceUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def handle_turn(services: Services, owner_id: str, conversation_id: int, message: str) -> TurnResponse:
    """Run one turn. A failed turn is still a 200 carrying the apology and failed=True."""
    with service_errors():
        result = services.chat.handle_turn(owner_id, conversation_id, message)
    return TurnResponse(
        conversation_id=conversation_id,
        answer=result.answer,
        sources=result.sources,
        tools_used=result.tools_invoked,
        rounds=result.rounds,
        failed=result.failed,
    )


def handle_ingestion_run(services: Services) -> IngestionRunResponse:
    report = services.ingestion.run_ingestion_cycle()
    if report is None:
        return IngestionRunResponse(started=False)
    return IngestionRunResponse(started=True, report=report.to_dict())


def handle_generate_embeddings(services: Services, owner_id: str) -> dict:
    if services.vector_store is None:
        raise HTTPException(status_code=503, detail="Vector store is not configured")
    with service_errors():
        counts = services.vector_store.embed_pending(owner_id=owner_id)
    return {"embedded": counts, "total": sum(counts.values())}


def handle_tool_call(
    services: Services, owner_id: str, name: str, arguments: dict, conversation_id: int | None
) -> dict:
    """Execute one tool for the owner. Unknown tool → 404; everything else is the tool's own payload."""
    if services.registry.get(name) is None:
        raise HTTPException(status_code=404, detail=f"Unknown tool: {name}")
    if conversation_id is not None:
        with service_errors():
            services.chat.get_conversation(conversation_id, owner_id)
    owner = services.store.get_owner(owner_id) or Owner(id=owner_id)
    context = ToolContext(owner=owner, conversation_id=conversation_id)
    logger.info("MCP tool called: %s owner=%s", name, owner_id)
    return services.registry.execute(name, arguments, context)


def handle_sync(services: Services, owner_id: str, source: SyncSource) -> SyncResponse:
    """Sync one source (or all). Not connected → 400, upstream failure → 503; "all" reports errors inline."""
    owner = services.store.get_owner(owner_id) or Owner(id=owner_id)
    logger.info("[api:sync] owner=%s source=%s", owner_id, source.value)
    with service_errors():
        result = services.sync.sync_source(owner, source)
    return SyncResponse(success=result.success, results=result.to_dict())
