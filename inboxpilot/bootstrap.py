"""
Service wiring: build every capability once and hand the container to the API
and the scripts. Missing credentials leave the matching client unconfigured;
calls through it raise ServiceUnavailableError instead of failing at start-up.
"""

import logging
from dataclasses import dataclass

from inboxpilot.agent.graph import AgentOrchestrator
from inboxpilot.agent.llm import OpenAIChatModel, build_openai_client
from inboxpilot.agent.tools import ToolRegistry, build_registry
from inboxpilot.core.config import DATABASE_PATH, HF_API_KEY, MILVUS_TOKEN, MILVUS_URI, OPENAI_API_KEY
from inboxpilot.core.errors import ServiceUnavailableError
from inboxpilot.core.store import Store
from inboxpilot.services.chat_service import ChatService
from inboxpilot.services.crm import HubSpotCRM
from inboxpilot.services.embeddings import HuggingFaceEmbedder
from inboxpilot.services.ingestion_service import IngestionService
from inboxpilot.services.mailbox import GmailMailbox
from inboxpilot.services.retrieval_service import RetrievalEngine
from inboxpilot.services.sync_service import SyncService
from inboxpilot.services.task_service import TaskCorrelationEngine
from inboxpilot.services.vector_store import MilvusVectorStore, connect_milvus

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: Store
    tasks: TaskCorrelationEngine
    registry: ToolRegistry
    orchestrator: AgentOrchestrator
    chat: ChatService
    ingestion: IngestionService
    sync: SyncService
    vector_store: MilvusVectorStore | None = None


def build_services(db_path: str = DATABASE_PATH) -> Services:
    store = Store(db_path)
    llm = OpenAIChatModel(build_openai_client(OPENAI_API_KEY))
    embedder = HuggingFaceEmbedder(HF_API_KEY)

    milvus = None
    if MILVUS_URI and MILVUS_TOKEN:
        try:
            milvus = connect_milvus(MILVUS_URI, MILVUS_TOKEN)
        except ServiceUnavailableError as e:
            logger.warning("Vector store unavailable: %s", e.message)
    else:
        logger.warning("MILVUS_URI / MILVUS_TOKEN not set; semantic retrieval will fail")
    vector_store = MilvusVectorStore(milvus, store, embedder)

    mailbox = GmailMailbox()
    crm = HubSpotCRM()
    retrieval = RetrievalEngine(embedder, vector_store)
    tasks = TaskCorrelationEngine(store, llm)
    registry = build_registry(store, retrieval, tasks, mailbox, crm)
    orchestrator = AgentOrchestrator(llm, retrieval, registry)
    logger.info("Services ready db=%s tools=%s", db_path, registry.names)
    return Services(
        store=store,
        tasks=tasks,
        registry=registry,
        orchestrator=orchestrator,
        chat=ChatService(store, orchestrator, llm),
        ingestion=IngestionService(store, mailbox, tasks, llm, crm, vector_store=vector_store),
        sync=SyncService(store, mailbox, crm, vector_store=vector_store),
        vector_store=vector_store,
    )
