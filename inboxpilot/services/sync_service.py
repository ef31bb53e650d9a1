"""
Data sync: copy an owner's recent Gmail messages and all HubSpot contacts and
notes into the local store, then embed whatever has no vector yet.

Records are upserted on their external id, so repeated syncs do not duplicate
them. Each source is isolated: a HubSpot failure does not discard the Gmail
result of the same owner. The latest outcome per (owner, source) is kept in
the sync_status table.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from inboxpilot.core.config import SYNC_GMAIL_DAYS_BACK, SYNC_GMAIL_MAX_RESULTS
from inboxpilot.core.errors import ServiceUnavailableError
from inboxpilot.core.interfaces import CRM, Mailbox
from inboxpilot.core.models import Owner
from inboxpilot.core.store import Store
from inboxpilot.services.vector_store import MilvusVectorStore

logger = logging.getLogger(__name__)


class SyncSource(str, Enum):
    GMAIL = "gmail"
    HUBSPOT = "hubspot"
    ALL = "all"


@dataclass
class SyncResult:
    owner_id: str
    gmail: dict[str, int] | None = None
    hubspot: dict[str, int] | None = None
    embeddings: dict[str, int] | None = None
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "gmail": self.gmail,
            "hubspot": self.hubspot,
            "embeddings": self.embeddings,
            "errors": list(self.errors),
        }


class SyncService:
    def __init__(
        self,
        store: Store,
        mailbox: Mailbox,
        crm: CRM,
        vector_store: MilvusVectorStore | None = None,
        gmail_days_back: int = SYNC_GMAIL_DAYS_BACK,
        gmail_max_results: int = SYNC_GMAIL_MAX_RESULTS,
    ) -> None:
        self._store = store
        self._mailbox = mailbox
        self._crm = crm
        self._vector_store = vector_store
        self._gmail_days_back = gmail_days_back
        self._gmail_max_results = gmail_max_results
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def sync_gmail(self, owner: Owner) -> dict[str, int]:
        """Store the last few days of mail. Raises on upstream failure after recording it."""
        self._store.set_sync_status(owner.id, SyncSource.GMAIL.value, "in_progress")
        try:
            events = self._mailbox.fetch_recent(
                owner, days_back=self._gmail_days_back, max_results=self._gmail_max_results
            )
            created = 0
            for event in events:
                _, is_new = self._store.add_email(
                    owner.id,
                    event.external_id,
                    event.sender,
                    event.subject,
                    event.body,
                    event.timestamp,
                    sender_name=event.sender_name,
                )
                created += int(is_new)
        except Exception as e:
            self._store.set_sync_status(owner.id, SyncSource.GMAIL.value, "error", str(e))
            raise
        self._store.set_sync_status(owner.id, SyncSource.GMAIL.value, "success")
        logger.info("[sync:gmail] owner=%s fetched=%d new=%d", owner.id, len(events), created)
        return {"count": len(events), "created": created}

    def sync_hubspot(self, owner: Owner) -> dict[str, int]:
        """Upsert every CRM contact, then every note linked to its first known contact."""
        self._store.set_sync_status(owner.id, SyncSource.HUBSPOT.value, "in_progress")
        try:
            contacts = self._crm.fetch_all_contacts(owner)
            contact_count = 0
            for contact in contacts:
                try:
                    self._store.upsert_contact(
                        owner.id,
                        contact["external_id"],
                        contact.get("email"),
                        contact.get("name") or "Unknown",
                        contact.get("properties") or {},
                    )
                    contact_count += 1
                except Exception as e:
                    logger.warning("[sync:hubspot] skip contact=%s: %s", contact.get("external_id"), e)

            notes = self._crm.fetch_all_notes(owner)
            note_count = 0
            for note in notes:
                try:
                    self._store.upsert_note(
                        owner.id, note["external_id"], note.get("body") or "", contact_id=self._linked_contact(owner, note)
                    )
                    note_count += 1
                except Exception as e:
                    logger.warning("[sync:hubspot] skip note=%s: %s", note.get("external_id"), e)
        except Exception as e:
            self._store.set_sync_status(owner.id, SyncSource.HUBSPOT.value, "error", str(e))
            raise
        self._store.set_sync_status(owner.id, SyncSource.HUBSPOT.value, "success")
        logger.info("[sync:hubspot] owner=%s contacts=%d notes=%d", owner.id, contact_count, note_count)
        return {"contact_count": contact_count, "note_count": note_count}

    def _linked_contact(self, owner: Owner, note: dict[str, Any]) -> int | None:
        for external_id in note.get("contact_external_ids") or []:
            contact = self._store.find_contact_by_external_id(owner.id, external_id)
            if contact is not None:
                return contact["id"]
        return None

    def sync_source(self, owner: Owner, source: SyncSource) -> SyncResult:
        """
        Sync one source for an explicit request. A missing connection is a
        ValueError; an upstream failure is a ServiceUnavailableError.
        """
        if source is SyncSource.ALL:
            return self.sync_owner(owner)
        result = SyncResult(owner_id=owner.id)
        try:
            if source is SyncSource.GMAIL:
                if not owner.google_access_token:
                    raise ValueError("Google account not connected")
                result.gmail = self.sync_gmail(owner)
            else:
                if not owner.has_crm:
                    raise ValueError("HubSpot account not connected")
                result.hubspot = self.sync_hubspot(owner)
        except (ValueError, ServiceUnavailableError):
            raise
        except Exception as e:
            raise ServiceUnavailableError(f"Failed to sync {source.value}: {e}") from e
        self._embed(owner, result)
        return result

    def sync_owner(self, owner: Owner) -> SyncResult:
        """Every connected source, each isolated; embedding failures are reported, not raised."""
        logger.info("[sync:owner] IN  owner=%s", owner.id)
        result = SyncResult(owner_id=owner.id)
        if owner.google_access_token:
            try:
                result.gmail = self.sync_gmail(owner)
            except Exception as e:
                logger.warning("[sync:owner] gmail failed owner=%s: %s", owner.id, e)
                result.errors.append({"source": SyncSource.GMAIL.value, "message": str(e)})
        if owner.has_crm:
            try:
                result.hubspot = self.sync_hubspot(owner)
            except Exception as e:
                logger.warning("[sync:owner] hubspot failed owner=%s: %s", owner.id, e)
                result.errors.append({"source": SyncSource.HUBSPOT.value, "message": str(e)})
        self._embed(owner, result)
        logger.info("[sync:owner] OUT owner=%s errors=%d", owner.id, len(result.errors))
        return result

    def _embed(self, owner: Owner, result: SyncResult) -> None:
        if self._vector_store is None:
            return
        try:
            result.embeddings = self._vector_store.embed_pending(owner_id=owner.id)
        except Exception as e:
            logger.warning("[sync:embed] owner=%s failed: %s", owner.id, e)
            result.errors.append({"source": "embeddings", "message": str(e)})

    def sync_all_owners(self) -> list[SyncResult] | None:
        """Sync every connected owner. Returns None without doing anything when a run is in flight."""
        if not self._lock.acquire(blocking=False):
            logger.info("[sync:all] previous sync still running; skipping")
            return None
        try:
            owners = self._store.list_connected_owners()
            logger.info("[sync:all] START owners=%d", len(owners))
            results = []
            for owner in owners:
                try:
                    results.append(self.sync_owner(owner))
                except Exception as e:
                    logger.exception("[sync:all] owner=%s failed", owner.id)
                    results.append(SyncResult(owner_id=owner.id, errors=[{"source": "owner", "message": str(e)}]))
            logger.info("[sync:all] END owners=%d", len(results))
            return results
        finally:
            self._lock.release()

    def statuses(self, owner_id: str) -> dict[str, dict[str, Any]]:
        return self._store.get_sync_statuses(owner_id)
