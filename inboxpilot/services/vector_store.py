"""
Vector store adapter: Milvus Cloud collection holding one vector per synced record
(email, contact, note), tagged with owner_id / entity_type / record_id.

Responsibility: nearest-neighbour search per (owner, entity type), hydrating hits
from the SQLite store; and embedding records whose vector is still missing.
"""

import json
import logging
from typing import Any

from inboxpilot.core.config import COLLECTION_NAME, EMBED_PENDING_BATCH, VECTOR_API_TIMEOUT, VECTOR_DIM
from inboxpilot.core.errors import ServiceUnavailableError
from inboxpilot.core.interfaces import Embedder
from inboxpilot.core.models import ALL_ENTITY_TYPES, EntityType
from inboxpilot.core.store import Store

logger = logging.getLogger(__name__)


def connect_milvus(uri: str, token: str) -> Any:
    """
    Connect to Milvus Cloud and return a client. Creates the records collection
    if it does not exist (COSINE metric, dynamic fields for the record tags).
    """
    if not uri or not token:
        raise ServiceUnavailableError("MILVUS_URI and MILVUS_TOKEN must be set in .env")

    from pymilvus import MilvusClient

    client = MilvusClient(uri=uri, token=token, timeout=VECTOR_API_TIMEOUT)
    logger.info("Milvus connection established")

    if not client.has_collection(COLLECTION_NAME):
        client.create_collection(
            collection_name=COLLECTION_NAME,
            dimension=VECTOR_DIM,
            primary_field_name="id",
            vector_field_name="vector",
            metric_type="COSINE",
            auto_id=True,
        )
        logger.info("Collection %s created (dim=%s)", COLLECTION_NAME, VECTOR_DIM)
    return client


def record_text(entity_type: EntityType, record: dict[str, Any]) -> str:
    """Text that represents a record in vector space."""
    if entity_type is EntityType.EMAIL:
        return f"{record.get('subject') or ''}\n\n{record.get('body') or ''}"
    if entity_type is EntityType.CONTACT:
        props = record.get("properties") or {}
        parts = [record.get("name") or "", record.get("email") or ""]
        parts += [str(props.get(k)) for k in ("company", "jobtitle", "note") if props.get(k)]
        return "\n".join(p for p in parts if p)
    return record.get("body") or ""


class MilvusVectorStore:
    """Implements the nearest_neighbors capability over Milvus plus the SQLite record store."""

    def __init__(self, client: Any, store: Store, embedder: Embedder | None = None) -> None:
        self._client = client
        self._store = store
        self._embedder = embedder

    def _require_client(self) -> Any:
        if self._client is None:
            raise ServiceUnavailableError("Vector store is not configured (MILVUS_URI / MILVUS_TOKEN)")
        return self._client

    def nearest_neighbors(
        self, owner_id: str, entity_type: str, query_vector: list[float], limit: int
    ) -> list[dict[str, Any]]:
        """
        Top-`limit` records of one type for one owner, best first.
        Each hit is {record_id, similarity, **record fields}; similarity is Milvus COSINE score.
        """
        etype = EntityType(entity_type)
        client = self._require_client()
        results = client.search(
            collection_name=COLLECTION_NAME,
            data=[query_vector],
            limit=limit,
            filter=f"owner_id == {json.dumps(owner_id)} and entity_type == {json.dumps(etype.value)}",
            output_fields=["record_id"],
        )
        hits = results[0] if results else []
        scored: list[tuple[int, float]] = []
        for h in hits:
            entity = h.get("entity") or h
            record_id = entity.get("record_id")
            if record_id is None:
                continue
            scored.append((int(record_id), float(h.get("distance", h.get("score", 0.0)))))

        records = self._store.get_records(etype, [rid for rid, _ in scored])
        out = []
        for rid, similarity in scored:
            record = records.get(rid)
            if record is None:
                logger.info("[vector_store:nearest_neighbors] skip orphan vector type=%s record_id=%s", etype.value, rid)
                continue
            out.append({**record, "record_id": rid, "similarity": similarity})
        logger.info(
            "[vector_store:nearest_neighbors] OUT owner=%s type=%s hits=%d scores=%s",
            owner_id, etype.value, len(out), [round(o["similarity"], 4) for o in out[:5]],
        )
        return out

    def embed_pending(self, owner_id: str | None = None, batch: int = EMBED_PENDING_BATCH) -> dict[str, int]:
        """
        Compute vectors for records that have none yet and insert them into Milvus.
        Records that already have a vector are never re-embedded, even if edited.
        """
        if self._embedder is None:
            raise ServiceUnavailableError("No embedder configured")
        client = self._require_client()
        counts: dict[str, int] = {}
        for etype in ALL_ENTITY_TYPES:
            pending = self._store.pending_embeddings(etype, owner_id=owner_id, limit=batch)
            pending = [r for r in pending if record_text(etype, r).strip()]
            if not pending:
                counts[etype.value] = 0
                continue
            vectors = self._embedder.embed_texts([record_text(etype, r) for r in pending])
            rows = [
                {
                    "vector": vec,
                    "owner_id": r["owner_id"],
                    "entity_type": etype.value,
                    "record_id": r["id"],
                }
                for r, vec in zip(pending, vectors)
            ]
            client.insert(collection_name=COLLECTION_NAME, data=rows)
            self._store.mark_embedded(etype, [r["id"] for r in pending[: len(rows)]])
            counts[etype.value] = len(rows)
            logger.info("[vector_store:embed_pending] type=%s embedded=%d", etype.value, len(rows))
        return counts
