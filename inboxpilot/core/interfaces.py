"""
Capability interfaces consumed by the core.

Concrete clients (Hugging Face embeddings, Milvus, OpenAI, Gmail, HubSpot) are
built once in bootstrap.build_services() and injected; tests pass small fakes that
satisfy the same shapes.
"""

from datetime import datetime
from typing import Any, Protocol

from inboxpilot.core.models import Completion, InboundEvent, Owner


class Embedder(Protocol):
    def embed(self, text: str) -> list[float] | None: ...

    def embed_texts(self, texts: list[str]) -> list[list[float]]: ...


class VectorSearch(Protocol):
    def nearest_neighbors(
        self, owner_id: str, entity_type: str, query_vector: list[float], limit: int
    ) -> list[dict[str, Any]]:
        """Return [{record_id, similarity, ...fields}] ordered by similarity, best first."""
        ...


class LanguageModel(Protocol):
    def complete(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None
    ) -> Completion: ...

    def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 256) -> str: ...


class Mailbox(Protocol):
    def fetch_events_since(self, owner: Owner, since: datetime, max_results: int = 50) -> list[InboundEvent]: ...

    def fetch_recent(self, owner: Owner, days_back: int = 2, max_results: int = 500) -> list[InboundEvent]: ...

    def send(self, owner: Owner, to: str, subject: str, body: str, to_name: str | None = None) -> dict[str, Any]: ...


class CRM(Protocol):
    def search(self, owner: Owner, query: str, limit: int = 5) -> list[dict[str, Any]]: ...

    def create(self, owner: Owner, fields: dict[str, Any]) -> dict[str, Any]: ...

    def create_note(self, owner: Owner, contact_external_id: str, body: str, timestamp: datetime) -> dict[str, Any]: ...

    def fetch_all_contacts(self, owner: Owner) -> list[dict[str, Any]]: ...

    def fetch_all_notes(self, owner: Owner) -> list[dict[str, Any]]: ...
