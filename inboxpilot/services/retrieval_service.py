"""
Retrieval: semantic search across emails, contacts and notes, merged into one ranked list.

Responsibility: embed the query once, fan out one nearest-neighbour query per entity
type, filter by minimum similarity, sort, truncate; and format results as grounding
context for the agent.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Iterable

from inboxpilot.core.config import CONTEXT_SNIPPET_CHARS, RETRIEVAL_MIN_SIMILARITY, RETRIEVAL_TOP_K
from inboxpilot.core.errors import ServiceUnavailableError
from inboxpilot.core.interfaces import Embedder, VectorSearch
from inboxpilot.core.models import ALL_ENTITY_TYPES, EntityType, RetrievedItem

logger = logging.getLogger(__name__)

NO_CONTEXT = "No relevant information found."


def _snippet(entity_type: EntityType, hit: dict[str, Any]) -> str:
    if entity_type is EntityType.EMAIL:
        return hit.get("subject") or ""
    if entity_type is EntityType.CONTACT:
        return hit.get("name") or hit.get("email") or ""
    return (hit.get("body") or "")[:100]


def _format_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value).date().isoformat()
        except ValueError:
            return value
    return "unknown date"


def _truncate(text: str, limit: int) -> str:
    text = text or ""
    return text if len(text) <= limit else text[:limit] + "..."


class RetrievalEngine:
    """Heterogeneous semantic retrieval over the owner's private data."""

    def __init__(self, embedder: Embedder, vector_search: VectorSearch, max_workers: int = 3) -> None:
        self._embedder = embedder
        self._vector_search = vector_search
        self._max_workers = max_workers

    def search(
        self,
        owner_id: str,
        query_text: str,
        top_k: int = RETRIEVAL_TOP_K,
        min_similarity: float = RETRIEVAL_MIN_SIMILARITY,
        entity_types: Iterable[EntityType | str] = ALL_ENTITY_TYPES,
    ) -> list[RetrievedItem]:
        """
        Pipeline: embed query → one nearest-neighbour query per type (parallel)
        → drop below min_similarity → stable sort by similarity desc → top_k.

        Embedding failure propagates; without a query vector nothing can be retrieved.
        Scores are passed through unclamped.
        """
        types = [EntityType(t) for t in entity_types]
        logger.info(
            "[retrieval:search] IN  owner=%s query=%r top_k=%d min_similarity=%.2f types=%s",
            owner_id, query_text, top_k, min_similarity, [t.value for t in types],
        )
        query_vector = self._embedder.embed(query_text)
        if not query_vector:
            raise ServiceUnavailableError("Failed to generate query embedding")
        if not types or top_k <= 0:
            return []

        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(types))) as pool:
            futures = [
                pool.submit(self._vector_search.nearest_neighbors, owner_id, t.value, query_vector, top_k)
                for t in types
            ]
            # Results are collected in request order so the stable sort keeps per-type order on ties.
            per_type = [(t, f.result()) for t, f in zip(types, futures)]

        candidates: list[RetrievedItem] = []
        for etype, hits in per_type:
            for hit in hits:
                fields = {k: v for k, v in hit.items() if k not in ("record_id", "similarity")}
                candidates.append(
                    RetrievedItem(
                        entity_type=etype,
                        source_id=hit["record_id"],
                        similarity=float(hit["similarity"]),
                        snippet=_snippet(etype, hit),
                        fields=fields,
                    )
                )

        kept = [c for c in candidates if c.similarity >= min_similarity]
        kept.sort(key=lambda c: c.similarity, reverse=True)
        results = kept[:top_k]
        logger.info(
            "[retrieval:search] OUT candidates=%d kept=%d returned=%d scores=%s",
            len(candidates), len(kept), len(results), [round(r.similarity, 4) for r in results],
        )
        return results


def deduplicate(items: list[RetrievedItem]) -> list[RetrievedItem]:
    """Drop repeated (entity type, source id) pairs, keeping the first occurrence."""
    seen: set[tuple[str, Any]] = set()
    out = []
    for item in items:
        key = (item.entity_type.value, item.source_id)
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def format_context(items: list[RetrievedItem], snippet_chars: int = CONTEXT_SNIPPET_CHARS) -> str:
    """Render retrieved items as one grounding block for the language model."""
    if not items:
        return NO_CONTEXT

    lines = ["Here is relevant information from your data:", ""]
    for index, item in enumerate(items, 1):
        f = item.fields
        if item.entity_type is EntityType.EMAIL:
            sender = f.get("sender_name") or f.get("sender") or "unknown sender"
            lines.append(f"[{index}] Email from {sender} ({_format_date(f.get('received_at'))}):")
            lines.append(f"Subject: {f.get('subject') or ''}")
            lines.append(f"Content: {_truncate(f.get('body') or '', snippet_chars)}")
        elif item.entity_type is EntityType.CONTACT:
            props = f.get("properties") or {}
            lines.append(f"[{index}] Contact: {f.get('name') or ''}")
            lines.append(f"Email: {f.get('email') or 'N/A'}")
            if props.get("company"):
                lines.append(f"Company: {props['company']}")
            if props.get("jobtitle"):
                lines.append(f"Job Title: {props['jobtitle']}")
        else:
            lines.append(f"[{index}] Note about {f.get('contact_name') or 'contact'}:")
            lines.append(_truncate(f.get("body") or "", snippet_chars))
        lines.append(f"(Relevance: {item.similarity * 100:.1f}%)")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"
