"""
Event ingestion: poll each owner's mailbox, store new emails, auto-create contacts
for unknown senders and resolve waiting tasks.

run_ingestion_cycle() is invoked by an external scheduler (scripts/run_ingestion.py)
or the API. Only one cycle runs at a time; a call that finds a cycle in flight
is dropped. Failures are isolated per event and per owner; a cycle never raises.
"""

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from inboxpilot.core.config import AUTO_CREATE_CONTACTS, INGESTION_LOOKBACK_MINUTES, INGESTION_MAX_RESULTS
from inboxpilot.core.interfaces import CRM, LanguageModel, Mailbox
from inboxpilot.core.models import InboundEvent, Owner
from inboxpilot.core.store import Store, utcnow
from inboxpilot.services.task_service import TaskCorrelationEngine
from inboxpilot.services.vector_store import MilvusVectorStore

logger = logging.getLogger(__name__)

EXTRACTION_BODY_CHARS = 1000
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_CONTACT_FIELDS = ("firstname", "lastname", "company", "jobtitle", "phone", "note")


@dataclass
class IngestionReport:
    started_at: datetime
    owners_visited: int = 0
    owners_failed: int = 0
    events_seen: int = 0
    tasks_completed: int = 0
    contacts_created: int = 0
    failed_owner_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "owners_visited": self.owners_visited,
            "owners_failed": self.owners_failed,
            "events_seen": self.events_seen,
            "tasks_completed": self.tasks_completed,
            "contacts_created": self.contacts_created,
            "failed_owner_ids": list(self.failed_owner_ids),
        }


def fallback_contact_info(event: InboundEvent) -> dict[str, str]:
    """Split the display name into first/last; used when extraction is unavailable."""
    parts = (event.sender_name or "").split()
    return {
        "firstname": parts[0] if parts else "",
        "lastname": " ".join(parts[1:]),
        "company": "",
        "jobtitle": "",
        "phone": "",
        "note": f"{event.display_sender} reached out regarding: {event.subject}",
    }


def parse_contact_info(raw: str) -> dict[str, str] | None:
    match = _JSON_OBJECT.search(raw or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    return {k: str(data.get(k) or "").strip() for k in _CONTACT_FIELDS}


class IngestionService:
    def __init__(
        self,
        store: Store,
        mailbox: Mailbox,
        tasks: TaskCorrelationEngine,
        llm: LanguageModel,
        crm: CRM,
        vector_store: MilvusVectorStore | None = None,
        auto_create_contacts: bool = AUTO_CREATE_CONTACTS,
        lookback_minutes: int = INGESTION_LOOKBACK_MINUTES,
        max_results: int = INGESTION_MAX_RESULTS,
    ) -> None:
        self._store = store
        self._mailbox = mailbox
        self._tasks = tasks
        self._llm = llm
        self._crm = crm
        self._vector_store = vector_store
        self._auto_create_contacts = auto_create_contacts
        self._lookback = timedelta(minutes=lookback_minutes)
        self._max_results = max_results
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def run_ingestion_cycle(self) -> IngestionReport | None:
        """
        One pass over every owner with a mailbox. Returns None without doing
        anything when another cycle holds the lock.
        """
        if not self._lock.acquire(blocking=False):
            logger.info("[ingestion:cycle] previous cycle still running; skipping")
            return None
        try:
            report = IngestionReport(started_at=utcnow())
            owners = self._store.list_mailbox_owners()
            logger.info("[ingestion:cycle] START owners=%d", len(owners))
            for owner in owners:
                report.owners_visited += 1
                try:
                    self._ingest_owner(owner, report)
                except Exception:
                    logger.exception("[ingestion:cycle] owner=%s failed", owner.id)
                    report.owners_failed += 1
                    report.failed_owner_ids.append(owner.id)
            logger.info(
                "[ingestion:cycle] END owners=%d failed=%d events=%d tasks_completed=%d",
                report.owners_visited, report.owners_failed, report.events_seen, report.tasks_completed,
            )
            return report
        finally:
            self._lock.release()

    def _ingest_owner(self, owner: Owner, report: IngestionReport) -> None:
        cycle_start = utcnow()
        since = self._store.get_checkpoint(owner.id) or (cycle_start - self._lookback)
        events = self._mailbox.fetch_events_since(owner, since, max_results=self._max_results)
        logger.info("[ingestion:owner] owner=%s since=%s events=%d", owner.id, since.isoformat(), len(events))
        for event in events:
            report.events_seen += 1
            try:
                completed, contact_created = self.process_event(owner, event)
            except Exception:
                logger.exception("[ingestion:owner] owner=%s event=%s failed", owner.id, event.external_id)
                continue
            report.tasks_completed += completed
            report.contacts_created += int(contact_created)
        self._store.set_checkpoint(owner.id, cycle_start)

        if self._vector_store is not None:
            try:
                self._vector_store.embed_pending(owner_id=owner.id)
            except Exception as e:
                logger.warning("[ingestion:owner] embedding pending records failed owner=%s: %s", owner.id, e)

    def process_event(self, owner: Owner, event: InboundEvent) -> tuple[int, bool]:
        """Store one inbound email, maybe create its sender as a contact, resolve matching tasks."""
        self._store.add_email(
            owner.id,
            event.external_id,
            event.sender,
            event.subject,
            event.body,
            event.timestamp,
            sender_name=event.sender_name,
        )

        contact_created = False
        if self._auto_create_contacts and event.sender and not self._store.find_contact_by_email(owner.id, event.sender):
            self.create_contact_from_event(owner, event)
            contact_created = True

        completed = 0
        for task in self._tasks.match(event, owner.id):
            if self._tasks.complete(task.id, event) is not None:
                completed += 1
        return completed, contact_created

    def extract_contact_info(self, event: InboundEvent) -> dict[str, str]:
        prompt = (
            "Extract contact information and generate a brief professional note from this email.\n\n"
            f"From: {event.display_sender}\n"
            f"Email: {event.sender}\n"
            f"Subject: {event.subject}\n"
            f"Date: {event.timestamp.isoformat()}\n\n"
            f"Body:\n{(event.body or 'No content')[:EXTRACTION_BODY_CHARS]}\n\n"
            "Return a JSON object with keys firstname, lastname, company, jobtitle, phone and note "
            "(a 2-3 sentence professional summary about this person and why they reached out). "
            "Use an empty string for anything not found.\n\nJSON:"
        )
        try:
            raw = self._llm.generate(prompt, temperature=0.3, max_tokens=300)
        except Exception as e:
            logger.warning("[ingestion:extract] extraction failed sender=%s: %s", event.sender, e)
            return fallback_contact_info(event)
        return parse_contact_info(raw) or fallback_contact_info(event)

    def create_contact_from_event(self, owner: Owner, event: InboundEvent) -> int:
        """
        Create the sender as a contact: in the CRM when the owner has one (a CRM
        failure does not stop the local copy), always in the local store.
        """
        info = self.extract_contact_info(event)
        external_id = ""
        if owner.has_crm:
            try:
                created = self._crm.create(owner, {"email": event.sender, **info})
                external_id = created.get("external_id", "")
                if external_id and info.get("note"):
                    self._crm.create_note(owner, external_id, info["note"], event.timestamp)
            except Exception as e:
                logger.warning("[ingestion:contact] CRM create failed sender=%s: %s", event.sender, e)
        if not external_id:
            external_id = f"local-{event.external_id or int(utcnow().timestamp())}"

        properties = {k: v for k, v in info.items() if k != "note" and v}
        properties["source"] = "auto_created_from_email"
        properties["created_from_event_id"] = event.external_id
        contact_id = self._store.add_contact(
            owner.id, external_id, event.sender, event.sender_name or event.sender, properties
        )
        if info.get("note"):
            self._store.add_note(owner.id, f"{external_id}-note", info["note"], contact_id=contact_id)
        logger.info("[ingestion:contact] owner=%s created contact=%s for %s", owner.id, contact_id, event.sender)
        return contact_id
