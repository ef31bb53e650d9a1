#!/usr/bin/env python3
"""
Seed the SQLite store with a demo owner, contacts, notes and emails.

Creates the database (if missing) and inserts the records below for the owner
"demo". Use --embed to also compute vectors (needs HF_API_KEY and Milvus).

Run from project root:

    python scripts/seed_demo_data.py
    python scripts/seed_demo_data.py --owner alice --embed

Edit SEED_CONTACTS / SEED_EMAILS below to change the demo data.
"""

import argparse
from datetime import timedelta

from inboxpilot.bootstrap import build_services
from inboxpilot.core.models import Owner
from inboxpilot.core.store import utcnow

SEED_CONTACTS = [
    {
        "email": "jane.doe@acme.com",
        "name": "Jane Doe",
        "properties": {"company": "Acme Corp", "jobtitle": "Head of Partnerships"},
        "note": "Met Jane at the spring conference; interested in a pilot for Q3.",
    },
    {
        "email": "raj@globex.io",
        "name": "Raj Patel",
        "properties": {"company": "Globex", "jobtitle": "CTO"},
        "note": "Raj asked for security documentation before the procurement review.",
    },
]

SEED_EMAILS = [
    {
        "sender": "jane.doe@acme.com",
        "sender_name": "Jane Doe",
        "subject": "Pilot timeline",
        "body": "Hi! Could we move the pilot kickoff to the first week of July? Budget is approved.",
        "days_ago": 2,
    },
    {
        "sender": "raj@globex.io",
        "sender_name": "Raj Patel",
        "subject": "Security questionnaire",
        "body": "Attached is our vendor security questionnaire. We need it back before Friday.",
        "days_ago": 1,
    },
]


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo data for InboxPilot.")
    parser.add_argument("--owner", default="demo", help="Owner id to seed (default: demo).")
    parser.add_argument("--embed", action="store_true", help="Embed the seeded records into Milvus.")
    args = parser.parse_args()

    services = build_services()
    store = services.store
    store.upsert_owner(Owner(id=args.owner, email=f"{args.owner}@example.com"))

    for c in SEED_CONTACTS:
        contact_id = store.add_contact(args.owner, f"seed-{c['email']}", c["email"], c["name"], c["properties"])
        store.add_note(args.owner, f"seed-note-{c['email']}", c["note"], contact_id=contact_id)
        print(f"  contact: {c['name']} <{c['email']}>")

    now = utcnow()
    for i, e in enumerate(SEED_EMAILS):
        _, created = store.add_email(
            args.owner,
            f"seed-email-{i}",
            e["sender"],
            e["subject"],
            e["body"],
            now - timedelta(days=e["days_ago"]),
            sender_name=e["sender_name"],
        )
        print(f"  email: {e['subject']!r} ({'added' if created else 'exists'})")

    if args.embed:
        counts = services.vector_store.embed_pending(owner_id=args.owner)
        print(f"  embedded: {counts}")

    print(f"Done. Seeded {len(SEED_CONTACTS)} contacts and {len(SEED_EMAILS)} emails for {args.owner!r}.")


if __name__ == "__main__":
    main()
