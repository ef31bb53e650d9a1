"""
Shared fixtures: a temporary SQLite store and small fakes for every external
capability (embeddings, vector search, language model, mailbox, CRM).
"""

import os
import tempfile
from datetime import datetime, timezone

# Importing inboxpilot.main builds the default app; keep its database out of the repo.
os.environ.setdefault("DATABASE_PATH", os.path.join(tempfile.mkdtemp(prefix="inboxpilot-"), "app.db"))

import pytest

from inboxpilot.agent.graph import AgentOrchestrator
from inboxpilot.agent.tools import build_registry
from inboxpilot.bootstrap import Services
from inboxpilot.core.errors import ServiceUnavailableError
from inboxpilot.core.models import Completion, EntityType, InboundEvent, Owner, ToolCall
from inboxpilot.core.store import Store
from inboxpilot.services.chat_service import ChatService
from inboxpilot.services.ingestion_service import IngestionService
from inboxpilot.services.retrieval_service import RetrievalEngine
from inboxpilot.services.sync_service import SyncService
from inboxpilot.services.task_service import TaskCorrelationEngine


class FakeEmbedder:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[str] = []

    def embed(self, text):
        self.calls.append(text)
        if self.fail:
            raise ServiceUnavailableError("embedding service down")
        if not text or not text.strip():
            return None
        return [1.0, 0.0, 0.0]

    def embed_texts(self, texts):
        return [self.embed(t) for t in texts]


class FakeVectorSearch:
    """Hits keyed by (owner_id, entity_type); each hit is {record_id, similarity, **fields}."""

    def __init__(self, hits: dict | None = None, fail: bool = False) -> None:
        self.hits = hits or {}
        self.fail = fail
        self.calls: list[tuple] = []

    def nearest_neighbors(self, owner_id, entity_type, query_vector, limit):
        self.calls.append((owner_id, entity_type, limit))
        if self.fail:
            raise ServiceUnavailableError("vector store down")
        return list(self.hits.get((owner_id, entity_type), []))[:limit]


class FakeLLM:
    """
    complete() pops scripted Completions (the last one repeats); generate() returns
    `generated` or raises when it is an exception instance.
    """

    def __init__(self, completions=None, generated="Summary text.", fail_complete: bool = False) -> None:
        self.completions = list(completions or [Completion(text="Done.")])
        self.generated = generated
        self.fail_complete = fail_complete
        self.complete_calls: list[list[dict]] = []
        self.generate_calls: list[str] = []

    def complete(self, messages, tools=None):
        self.complete_calls.append([dict(m) for m in messages])
        if self.fail_complete:
            raise ServiceUnavailableError("Language model request failed: boom")
        if len(self.completions) > 1:
            return self.completions.pop(0)
        return self.completions[0]

    def generate(self, prompt, temperature=0.7, max_tokens=256):
        self.generate_calls.append(prompt)
        if isinstance(self.generated, Exception):
            raise self.generated
        return self.generated


class FakeMailbox:
    def __init__(self, events: dict | None = None, failing_owners: set | None = None) -> None:
        self.events = events or {}
        self.failing_owners = failing_owners or set()
        self.sent: list[dict] = []
        self.fetch_calls: list[tuple] = []
        self.recent: dict = {}
        self.recent_calls: list[tuple] = []

    def fetch_events_since(self, owner, since, max_results=50):
        self.fetch_calls.append((owner.id, since))
        if owner.id in self.failing_owners:
            raise ServiceUnavailableError(f"Gmail list error 401 for {owner.id}")
        return list(self.events.get(owner.id, []))

    def fetch_recent(self, owner, days_back=2, max_results=500):
        self.recent_calls.append((owner.id, days_back))
        if owner.id in self.failing_owners:
            raise ServiceUnavailableError(f"Gmail list error 401 for {owner.id}")
        return list(self.recent.get(owner.id, []))

    def send(self, owner, to, subject, body, to_name=None):
        if not owner.google_access_token:
            raise ServiceUnavailableError("No Gmail access token available")
        self.sent.append({"owner": owner.id, "to": to, "subject": subject, "body": body, "to_name": to_name})
        return {"external_id": f"sent-{len(self.sent)}"}


class FakeCRM:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.created: list[dict] = []
        self.notes: list[dict] = []
        self.contacts: list[dict] = []
        self.remote_notes: list[dict] = []

    def search(self, owner, query, limit=5):
        return []

    def create(self, owner, fields):
        if self.fail:
            raise ServiceUnavailableError("HubSpot error 500")
        self.created.append(dict(fields))
        return {"external_id": f"hs-{len(self.created)}"}

    def create_note(self, owner, contact_external_id, body, timestamp):
        self.notes.append({"contact": contact_external_id, "body": body})
        return {"external_id": f"note-{len(self.notes)}"}

    def fetch_all_contacts(self, owner):
        if self.fail:
            raise ServiceUnavailableError("HubSpot error 500")
        return [dict(c) for c in self.contacts]

    def fetch_all_notes(self, owner):
        if self.fail:
            raise ServiceUnavailableError("HubSpot error 500")
        return [dict(n) for n in self.remote_notes]


class FakeVectorStore:
    """Stands in for MilvusVectorStore.embed_pending: marks pending records embedded."""

    def __init__(self, store, fail: bool = False) -> None:
        self.store = store
        self.fail = fail
        self.calls: list = []

    def embed_pending(self, owner_id=None):
        self.calls.append(owner_id)
        if self.fail:
            raise ServiceUnavailableError("vector store down")
        counts = {}
        for entity_type in EntityType:
            pending = self.store.pending_embeddings(entity_type, owner_id=owner_id)
            self.store.mark_embedded(entity_type, [r["id"] for r in pending])
            counts[entity_type.value] = len(pending)
        return counts


def tool_call(name: str, call_id: str = "call_1", **arguments) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments)


def make_event(sender: str, subject: str = "Re: hello", body: str = "Sounds good.", external_id: str = "evt-1",
               sender_name: str = "") -> InboundEvent:
    return InboundEvent(
        sender=sender,
        subject=subject,
        body=body,
        timestamp=datetime(2026, 5, 4, 12, 30, tzinfo=timezone.utc),
        external_id=external_id,
        sender_name=sender_name,
    )


def make_services(
    store, llm=None, embedder=None, vector_search=None, mailbox=None, crm=None, vector_store=None
) -> Services:
    llm = llm or FakeLLM()
    mailbox = mailbox or FakeMailbox()
    crm = crm or FakeCRM()
    retrieval = RetrievalEngine(embedder or FakeEmbedder(), vector_search or FakeVectorSearch())
    tasks = TaskCorrelationEngine(store, llm)
    registry = build_registry(store, retrieval, tasks, mailbox, crm)
    orchestrator = AgentOrchestrator(llm, retrieval, registry)
    return Services(
        store=store,
        tasks=tasks,
        registry=registry,
        orchestrator=orchestrator,
        chat=ChatService(store, orchestrator, llm),
        ingestion=IngestionService(store, mailbox, tasks, llm, crm),
        sync=SyncService(store, mailbox, crm, vector_store=vector_store),
        vector_store=vector_store,
    )


@pytest.fixture
def store(tmp_path) -> Store:
    return Store(tmp_path / "test.db")


@pytest.fixture
def owner(store) -> Owner:
    return store.upsert_owner(
        Owner(id="owner-1", email="me@example.com", google_access_token="g-token", hubspot_access_token="h-token")
    )


@pytest.fixture
def other_owner(store) -> Owner:
    return store.upsert_owner(Owner(id="owner-2", email="other@example.com", google_access_token="g-token-2"))


@pytest.fixture
def conversation(store, owner):
    return store.create_conversation(owner.id, "New Chat")
