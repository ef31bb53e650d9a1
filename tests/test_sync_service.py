"""
Tests for the data sync: Gmail history and HubSpot contacts/notes upserted into
the store, per-source isolation, sync status bookkeeping and embedding.
"""

import pytest

from conftest import FakeCRM, FakeMailbox, FakeVectorStore, make_event
from inboxpilot.core.errors import ServiceUnavailableError
from inboxpilot.core.models import EntityType, Owner
from inboxpilot.services.sync_service import SyncService, SyncSource


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def crm() -> FakeCRM:
    crm = FakeCRM()
    crm.contacts = [
        {"external_id": "101", "email": "Jane@Acme.com", "name": "Jane Doe", "properties": {"company": "Acme"}},
        {"external_id": "102", "email": None, "name": "Unknown", "properties": {}},
    ]
    crm.remote_notes = [
        {"external_id": "n-1", "body": "Met Jane at the expo.", "contact_external_ids": ["101"]},
        {"external_id": "n-2", "body": "Orphan note.", "contact_external_ids": ["999"]},
    ]
    return crm


def test_sync_owner_stores_mail_contacts_and_notes(store, owner, mailbox, crm) -> None:
    mailbox.recent[owner.id] = [make_event("bob@x.io", external_id="m1"), make_event("amy@y.io", external_id="m2")]
    vector_store = FakeVectorStore(store)

    result = SyncService(store, mailbox, crm, vector_store=vector_store).sync_owner(owner)

    assert result.success is True
    assert result.gmail == {"count": 2, "created": 2}
    assert result.hubspot == {"contact_count": 2, "note_count": 2}
    assert result.embeddings == {"email": 2, "contact": 2, "note": 2}
    assert vector_store.calls == [owner.id]

    jane = store.find_contact_by_email(owner.id, "jane@acme.com")
    assert jane["properties"] == {"company": "Acme"}
    notes = store.get_records(EntityType.NOTE, [1, 2])
    assert notes[1]["contact_name"] == "Jane Doe"
    assert notes[2]["contact_id"] is None
    assert store.search_emails(owner.id, "amy")[0]["external_id"] == "m2"


def test_repeated_sync_updates_instead_of_duplicating(store, owner, mailbox, crm) -> None:
    mailbox.recent[owner.id] = [make_event("bob@x.io", external_id="m1")]
    service = SyncService(store, mailbox, crm)
    service.sync_owner(owner)

    crm.contacts[0]["name"] = "Jane Smith"
    second = service.sync_owner(owner)

    assert second.gmail == {"count": 1, "created": 0}
    assert len(store.search_contacts(owner.id, "jane")) == 1
    assert store.find_contact_by_external_id(owner.id, "101")["name"] == "Jane Smith"
    assert len(store.pending_embeddings(EntityType.NOTE, owner_id=owner.id)) == 2


def test_hubspot_failure_keeps_gmail_result(store, owner, mailbox) -> None:
    mailbox.recent[owner.id] = [make_event("bob@x.io", external_id="m1")]
    result = SyncService(store, mailbox, FakeCRM(fail=True)).sync_owner(owner)

    assert result.success is False
    assert result.gmail == {"count": 1, "created": 1}
    assert result.hubspot is None
    assert result.errors == [{"source": "hubspot", "message": "HubSpot error 500"}]
    statuses = store.get_sync_statuses(owner.id)
    assert statuses["gmail"]["status"] == "success"
    assert statuses["hubspot"] == {
        "status": "error",
        "last_sync_at": statuses["hubspot"]["last_sync_at"],
        "error_message": "HubSpot error 500",
    }


def test_embedding_failure_is_reported_not_raised(store, owner, mailbox, crm) -> None:
    result = SyncService(store, mailbox, crm, vector_store=FakeVectorStore(store, fail=True)).sync_owner(owner)
    assert result.hubspot is not None
    assert result.errors == [{"source": "embeddings", "message": "vector store down"}]


def test_only_connected_sources_are_synced(store, other_owner, mailbox, crm) -> None:
    result = SyncService(store, mailbox, crm).sync_owner(other_owner)
    assert result.gmail == {"count": 0, "created": 0}
    assert result.hubspot is None
    assert store.find_contact_by_external_id(other_owner.id, "101") is None


def test_sync_source_requires_connection(store, other_owner, mailbox, crm) -> None:
    service = SyncService(store, mailbox, crm)
    with pytest.raises(ValueError, match="HubSpot account not connected"):
        service.sync_source(other_owner, SyncSource.HUBSPOT)
    with pytest.raises(ValueError, match="Google account not connected"):
        service.sync_source(Owner(id="nobody"), SyncSource.GMAIL)


def test_sync_source_upstream_failure_raises(store, owner, crm) -> None:
    mailbox = FakeMailbox(failing_owners={owner.id})
    with pytest.raises(ServiceUnavailableError):
        SyncService(store, mailbox, crm).sync_source(owner, SyncSource.GMAIL)
    assert store.get_sync_statuses(owner.id)["gmail"]["status"] == "error"


def test_sync_source_wraps_unexpected_errors(store, owner, mailbox, crm) -> None:
    crm.contacts = None  # fetch_all_contacts now raises TypeError
    with pytest.raises(ServiceUnavailableError, match="Failed to sync hubspot"):
        SyncService(store, mailbox, crm).sync_source(owner, SyncSource.HUBSPOT)


def test_sync_all_owners_isolates_owners_and_drops_overlap(store, owner, other_owner, crm) -> None:
    mailbox = FakeMailbox(failing_owners={other_owner.id})
    mailbox.recent[owner.id] = [make_event("bob@x.io", external_id="m1")]
    store.upsert_owner(Owner(id="owner-3"))  # no tokens: not visited
    service = SyncService(store, mailbox, crm)

    results = service.sync_all_owners()

    assert [r.owner_id for r in results] == [owner.id, other_owner.id]
    assert results[0].success is True
    assert results[1].errors[0]["source"] == "gmail"

    service._lock.acquire()
    try:
        assert service.is_running is True
        assert service.sync_all_owners() is None
    finally:
        service._lock.release()
