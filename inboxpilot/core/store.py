"""
SQLite persistence for owners, conversations, messages, tasks, synced records
(emails, contacts, notes), ingestion checkpoints and data-sync status.

One short-lived connection per call; each write commits on its own, so every
single-row write is transactional. Timestamps are stored as UTC ISO strings.
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from inboxpilot.core.models import Conversation, EntityType, Message, Owner, Task, TaskStatus

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS owners (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL DEFAULT '',
    google_access_token TEXT,
    hubspot_access_token TEXT
);

CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    name TEXT NOT NULL,
    last_activity TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    owner_id TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    context TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    owner_id TEXT NOT NULL,
    task_type TEXT NOT NULL DEFAULT 'email_response',
    status TEXT NOT NULL DEFAULT 'waiting',
    description TEXT NOT NULL DEFAULT '',
    expected_counterparty TEXT NOT NULL,
    expected_counterparty_name TEXT,
    event_id TEXT,
    context TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    completed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_tasks_waiting ON tasks (owner_id, status, expected_counterparty);

CREATE TABLE IF NOT EXISTS emails (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    external_id TEXT NOT NULL,
    sender TEXT NOT NULL DEFAULT '',
    sender_name TEXT NOT NULL DEFAULT '',
    subject TEXT NOT NULL DEFAULT '',
    body TEXT NOT NULL DEFAULT '',
    received_at TEXT NOT NULL,
    embedded_at TEXT,
    UNIQUE (owner_id, external_id)
);

CREATE TABLE IF NOT EXISTS contacts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    external_id TEXT NOT NULL,
    email TEXT,
    name TEXT NOT NULL DEFAULT '',
    properties TEXT NOT NULL DEFAULT '{}',
    embedded_at TEXT
);

CREATE TABLE IF NOT EXISTS notes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    external_id TEXT NOT NULL,
    contact_id INTEGER REFERENCES contacts(id) ON DELETE SET NULL,
    body TEXT NOT NULL DEFAULT '',
    embedded_at TEXT
);

CREATE TABLE IF NOT EXISTS ingestion_checkpoints (
    owner_id TEXT PRIMARY KEY,
    last_checked_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_status (
    owner_id TEXT NOT NULL,
    source TEXT NOT NULL,
    status TEXT NOT NULL,
    last_sync_at TEXT NOT NULL,
    error_message TEXT,
    PRIMARY KEY (owner_id, source)
);
"""

_RECORD_TABLES = {
    EntityType.EMAIL: "emails",
    EntityType.CONTACT: "contacts",
    EntityType.NOTE: "notes",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        last_activity=_parse_ts(row["last_activity"]),
        created_at=_parse_ts(row["created_at"]),
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        owner_id=row["owner_id"],
        role=row["role"],
        content=row["content"],
        created_at=_parse_ts(row["created_at"]),
        context=json.loads(row["context"]) if row["context"] else None,
    )


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        conversation_id=row["conversation_id"],
        owner_id=row["owner_id"],
        status=TaskStatus(row["status"]),
        description=row["description"],
        expected_counterparty=row["expected_counterparty"],
        created_at=_parse_ts(row["created_at"]),
        task_type=row["task_type"],
        expected_counterparty_name=row["expected_counterparty_name"],
        event_id=row["event_id"],
        context=json.loads(row["context"] or "{}"),
        completed_at=_parse_ts(row["completed_at"]),
    )


def _row_to_record(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    if "properties" in data:
        data["properties"] = json.loads(data["properties"] or "{}")
    return data


class Store:
    """SQLite-backed persistence. Safe to share across threads (no shared connection)."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_db()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        conn = self._get_conn()
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            return cur
        finally:
            conn.close()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        conn = self._get_conn()
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    def _fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        conn = self._get_conn()
        try:
            return conn.execute(sql, params).fetchone()
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create all tables if they do not exist."""
        conn = self._get_conn()
        try:
            conn.executescript(_SCHEMA)
            conn.commit()
        finally:
            conn.close()
        logger.info("[store] initialised db=%s", self._db_path)

    # --- Owners ---

    def upsert_owner(self, owner: Owner) -> Owner:
        self._execute(
            """
            INSERT INTO owners (id, email, google_access_token, hubspot_access_token)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                email = excluded.email,
                google_access_token = excluded.google_access_token,
                hubspot_access_token = excluded.hubspot_access_token
            """,
            (owner.id, owner.email, owner.google_access_token, owner.hubspot_access_token),
        )
        return owner

    def get_owner(self, owner_id: str) -> Owner | None:
        row = self._fetchone("SELECT * FROM owners WHERE id = ?", (owner_id,))
        if row is None:
            return None
        return Owner(**dict(row))

    def list_mailbox_owners(self) -> list[Owner]:
        """Owners with a mailbox token, i.e. the ones the ingestion loop visits."""
        rows = self._fetchall(
            "SELECT * FROM owners WHERE google_access_token IS NOT NULL AND google_access_token != '' ORDER BY id"
        )
        return [Owner(**dict(r)) for r in rows]

    def list_connected_owners(self) -> list[Owner]:
        """Owners with a mailbox or a CRM token, i.e. the ones the data sync visits."""
        rows = self._fetchall(
            """
            SELECT * FROM owners
            WHERE (google_access_token IS NOT NULL AND google_access_token != '')
               OR (hubspot_access_token IS NOT NULL AND hubspot_access_token != '')
            ORDER BY id
            """
        )
        return [Owner(**dict(r)) for r in rows]

    # --- Conversations ---

    def create_conversation(self, owner_id: str, name: str) -> Conversation:
        now = _ts(utcnow())
        cur = self._execute(
            "INSERT INTO conversations (owner_id, name, last_activity, created_at) VALUES (?, ?, ?, ?)",
            (owner_id, name, now, now),
        )
        return self.get_conversation(cur.lastrowid, owner_id)

    def get_conversation(self, conversation_id: int, owner_id: str) -> Conversation | None:
        row = self._fetchone(
            "SELECT * FROM conversations WHERE id = ? AND owner_id = ?",
            (conversation_id, owner_id),
        )
        return _row_to_conversation(row) if row else None

    def list_conversations(self, owner_id: str, limit: int = 50, offset: int = 0) -> list[Conversation]:
        rows = self._fetchall(
            "SELECT * FROM conversations WHERE owner_id = ? ORDER BY last_activity DESC, id DESC LIMIT ? OFFSET ?",
            (owner_id, limit, offset),
        )
        return [_row_to_conversation(r) for r in rows]

    def latest_conversation(self, owner_id: str) -> Conversation | None:
        rows = self.list_conversations(owner_id, limit=1)
        return rows[0] if rows else None

    def touch_conversation(self, conversation_id: int) -> None:
        self._execute(
            "UPDATE conversations SET last_activity = ? WHERE id = ?",
            (_ts(utcnow()), conversation_id),
        )

    def rename_conversation(self, conversation_id: int, owner_id: str, name: str) -> bool:
        cur = self._execute(
            "UPDATE conversations SET name = ? WHERE id = ? AND owner_id = ?",
            (name, conversation_id, owner_id),
        )
        return cur.rowcount > 0

    def delete_conversation(self, conversation_id: int, owner_id: str) -> bool:
        """Delete a conversation; messages and tasks go with it (ON DELETE CASCADE)."""
        cur = self._execute(
            "DELETE FROM conversations WHERE id = ? AND owner_id = ?",
            (conversation_id, owner_id),
        )
        return cur.rowcount > 0

    # --- Messages ---

    def add_message(
        self,
        conversation_id: int,
        owner_id: str,
        role: str,
        content: str,
        context: dict[str, Any] | None = None,
    ) -> Message:
        created = utcnow()
        cur = self._execute(
            """
            INSERT INTO messages (conversation_id, owner_id, role, content, context, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                conversation_id,
                owner_id,
                role,
                content or "",
                json.dumps(context, default=str) if context is not None else None,
                _ts(created),
            ),
        )
        return Message(
            id=cur.lastrowid,
            conversation_id=conversation_id,
            owner_id=owner_id,
            role=role,
            content=content or "",
            created_at=created,
            context=context,
        )

    def list_messages(self, conversation_id: int, limit: int = 100, offset: int = 0) -> list[Message]:
        rows = self._fetchall(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY id ASC LIMIT ? OFFSET ?",
            (conversation_id, limit, offset),
        )
        return [_row_to_message(r) for r in rows]

    def recent_messages(self, conversation_id: int, limit: int) -> list[Message]:
        """Last `limit` messages in chronological order."""
        rows = self._fetchall(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY id DESC LIMIT ?",
            (conversation_id, limit),
        )
        return [_row_to_message(r) for r in reversed(rows)]

    def count_messages(self, conversation_id: int) -> int:
        row = self._fetchone("SELECT COUNT(*) AS n FROM messages WHERE conversation_id = ?", (conversation_id,))
        return int(row["n"]) if row else 0

    # --- Tasks ---

    def insert_task(
        self,
        conversation_id: int,
        owner_id: str,
        description: str,
        expected_counterparty: str,
        task_type: str = "email_response",
        expected_counterparty_name: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> Task:
        cur = self._execute(
            """
            INSERT INTO tasks (
                conversation_id, owner_id, task_type, status, description,
                expected_counterparty, expected_counterparty_name, context, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                conversation_id,
                owner_id,
                task_type,
                TaskStatus.WAITING.value,
                description,
                expected_counterparty,
                expected_counterparty_name,
                json.dumps(context or {}, default=str),
                _ts(utcnow()),
            ),
        )
        return self.get_task(cur.lastrowid)

    def get_task(self, task_id: int) -> Task | None:
        row = self._fetchone("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return _row_to_task(row) if row else None

    def list_tasks(
        self,
        conversation_id: int | None = None,
        owner_id: str | None = None,
        status: TaskStatus | None = None,
    ) -> list[Task]:
        clauses, params = [], []
        if conversation_id is not None:
            clauses.append("conversation_id = ?")
            params.append(conversation_id)
        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(f"SELECT * FROM tasks {where} ORDER BY created_at DESC, id DESC", tuple(params))
        return [_row_to_task(r) for r in rows]

    def find_waiting_tasks(self, owner_id: str, counterparty: str) -> list[Task]:
        """Waiting tasks of one owner whose counterparty equals `counterparty`, ignoring case."""
        rows = self._fetchall(
            """
            SELECT * FROM tasks
            WHERE owner_id = ? AND status = ? AND lower(expected_counterparty) = ?
            ORDER BY id ASC
            """,
            (owner_id, TaskStatus.WAITING.value, counterparty.strip().lower()),
        )
        return [_row_to_task(r) for r in rows]

    def transition_task(
        self,
        task_id: int,
        to_status: TaskStatus,
        owner_id: str | None = None,
        event_id: str | None = None,
        completed_at: datetime | None = None,
    ) -> bool:
        """
        Move a waiting task to a terminal status. The update is conditional on the
        task still being waiting, so two racing callers cannot both win.
        """
        sql = "UPDATE tasks SET status = ?, completed_at = ?, event_id = COALESCE(?, event_id) WHERE id = ? AND status = ?"
        params: list[Any] = [to_status.value, _ts(completed_at), event_id, task_id, TaskStatus.WAITING.value]
        if owner_id is not None:
            sql += " AND owner_id = ?"
            params.append(owner_id)
        cur = self._execute(sql, tuple(params))
        return cur.rowcount > 0

    def count_tasks_by_status(self, owner_id: str) -> dict[str, int]:
        rows = self._fetchall(
            "SELECT status, COUNT(*) AS n FROM tasks WHERE owner_id = ? GROUP BY status",
            (owner_id,),
        )
        counts = {s.value: 0 for s in TaskStatus}
        for r in rows:
            counts[r["status"]] = int(r["n"])
        return counts

    # --- Records (emails, contacts, notes) ---

    def add_email(
        self,
        owner_id: str,
        external_id: str,
        sender: str,
        subject: str,
        body: str,
        received_at: datetime,
        sender_name: str = "",
    ) -> tuple[int, bool]:
        """Insert an email unless (owner, external_id) exists. Returns (id, created)."""
        existing = self._fetchone(
            "SELECT id FROM emails WHERE owner_id = ? AND external_id = ?",
            (owner_id, external_id),
        )
        if existing:
            return existing["id"], False
        cur = self._execute(
            """
            INSERT INTO emails (owner_id, external_id, sender, sender_name, subject, body, received_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (owner_id, external_id, sender.lower(), sender_name, subject, body, _ts(received_at)),
        )
        return cur.lastrowid, True

    def get_email(self, email_id: int, owner_id: str) -> dict[str, Any] | None:
        row = self._fetchone("SELECT * FROM emails WHERE id = ? AND owner_id = ?", (email_id, owner_id))
        return _row_to_record(row) if row else None

    def search_emails(self, owner_id: str, query: str, limit: int = 5) -> list[dict[str, Any]]:
        pattern = f"%{query}%"
        rows = self._fetchall(
            """
            SELECT * FROM emails
            WHERE owner_id = ? AND (subject LIKE ? OR sender LIKE ? OR sender_name LIKE ? OR body LIKE ?)
            ORDER BY received_at DESC LIMIT ?
            """,
            (owner_id, pattern, pattern, pattern, pattern, limit),
        )
        return [_row_to_record(r) for r in rows]

    def add_contact(
        self,
        owner_id: str,
        external_id: str,
        email: str | None,
        name: str,
        properties: dict[str, Any] | None = None,
    ) -> int:
        cur = self._execute(
            "INSERT INTO contacts (owner_id, external_id, email, name, properties) VALUES (?, ?, ?, ?, ?)",
            (owner_id, external_id, email.lower() if email else None, name, json.dumps(properties or {}, default=str)),
        )
        return cur.lastrowid

    def upsert_contact(
        self,
        owner_id: str,
        external_id: str,
        email: str | None,
        name: str,
        properties: dict[str, Any] | None = None,
    ) -> tuple[int, bool]:
        """Insert or update the contact keyed by (owner, external_id). Returns (id, created)."""
        existing = self.find_contact_by_external_id(owner_id, external_id)
        if existing is None:
            return self.add_contact(owner_id, external_id, email, name, properties), True
        self._execute(
            "UPDATE contacts SET email = ?, name = ?, properties = ? WHERE id = ?",
            (email.lower() if email else None, name, json.dumps(properties or {}, default=str), existing["id"]),
        )
        return existing["id"], False

    def find_contact_by_external_id(self, owner_id: str, external_id: str) -> dict[str, Any] | None:
        row = self._fetchone(
            "SELECT * FROM contacts WHERE owner_id = ? AND external_id = ?",
            (owner_id, external_id),
        )
        return _row_to_record(row) if row else None

    def find_contact_by_email(self, owner_id: str, email: str) -> dict[str, Any] | None:
        row = self._fetchone(
            "SELECT * FROM contacts WHERE owner_id = ? AND lower(email) = ?",
            (owner_id, email.strip().lower()),
        )
        return _row_to_record(row) if row else None

    def search_contacts(self, owner_id: str, query: str, limit: int = 5) -> list[dict[str, Any]]:
        pattern = f"%{query}%"
        rows = self._fetchall(
            "SELECT * FROM contacts WHERE owner_id = ? AND (name LIKE ? OR email LIKE ?) ORDER BY id ASC LIMIT ?",
            (owner_id, pattern, pattern, limit),
        )
        return [_row_to_record(r) for r in rows]

    def add_note(self, owner_id: str, external_id: str, body: str, contact_id: int | None = None) -> int:
        cur = self._execute(
            "INSERT INTO notes (owner_id, external_id, contact_id, body) VALUES (?, ?, ?, ?)",
            (owner_id, external_id, contact_id, body),
        )
        return cur.lastrowid

    def upsert_note(
        self, owner_id: str, external_id: str, body: str, contact_id: int | None = None
    ) -> tuple[int, bool]:
        """Insert or update the note keyed by (owner, external_id). Returns (id, created)."""
        existing = self._fetchone(
            "SELECT id FROM notes WHERE owner_id = ? AND external_id = ?",
            (owner_id, external_id),
        )
        if existing is None:
            return self.add_note(owner_id, external_id, body, contact_id=contact_id), True
        self._execute(
            "UPDATE notes SET body = ?, contact_id = ? WHERE id = ?",
            (body, contact_id, existing["id"]),
        )
        return existing["id"], False

    def get_records(self, entity_type: EntityType, record_ids: list[int]) -> dict[int, dict[str, Any]]:
        """Load records by id for one entity type. Notes carry their contact's name and email."""
        if not record_ids:
            return {}
        marks = ",".join("?" for _ in record_ids)
        if entity_type is EntityType.NOTE:
            sql = (
                "SELECT n.*, c.name AS contact_name, c.email AS contact_email "
                f"FROM notes n LEFT JOIN contacts c ON n.contact_id = c.id WHERE n.id IN ({marks})"
            )
        else:
            sql = f"SELECT * FROM {_RECORD_TABLES[entity_type]} WHERE id IN ({marks})"
        rows = self._fetchall(sql, tuple(record_ids))
        return {r["id"]: _row_to_record(r) for r in rows}

    def pending_embeddings(
        self, entity_type: EntityType, owner_id: str | None = None, limit: int = 100
    ) -> list[dict[str, Any]]:
        """Records whose vector has not been computed yet."""
        table = _RECORD_TABLES[entity_type]
        if owner_id is None:
            rows = self._fetchall(f"SELECT * FROM {table} WHERE embedded_at IS NULL ORDER BY id LIMIT ?", (limit,))
        else:
            rows = self._fetchall(
                f"SELECT * FROM {table} WHERE embedded_at IS NULL AND owner_id = ? ORDER BY id LIMIT ?",
                (owner_id, limit),
            )
        return [_row_to_record(r) for r in rows]

    def mark_embedded(self, entity_type: EntityType, record_ids: list[int]) -> None:
        if not record_ids:
            return
        table = _RECORD_TABLES[entity_type]
        marks = ",".join("?" for _ in record_ids)
        self._execute(
            f"UPDATE {table} SET embedded_at = ? WHERE id IN ({marks}) AND embedded_at IS NULL",
            (_ts(utcnow()), *record_ids),
        )

    # --- Ingestion checkpoints ---

    def get_checkpoint(self, owner_id: str) -> datetime | None:
        row = self._fetchone("SELECT last_checked_at FROM ingestion_checkpoints WHERE owner_id = ?", (owner_id,))
        return _parse_ts(row["last_checked_at"]) if row else None

    def set_checkpoint(self, owner_id: str, checked_at: datetime) -> None:
        self._execute(
            """
            INSERT INTO ingestion_checkpoints (owner_id, last_checked_at) VALUES (?, ?)
            ON CONFLICT (owner_id) DO UPDATE SET last_checked_at = excluded.last_checked_at
            """,
            (owner_id, _ts(checked_at)),
        )

    # --- Data sync status ---

    def set_sync_status(self, owner_id: str, source: str, status: str, error_message: str | None = None) -> None:
        self._execute(
            """
            INSERT INTO sync_status (owner_id, source, status, last_sync_at, error_message) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (owner_id, source) DO UPDATE SET
                status = excluded.status,
                last_sync_at = excluded.last_sync_at,
                error_message = excluded.error_message
            """,
            (owner_id, source, status, _ts(utcnow()), error_message),
        )

    def get_sync_statuses(self, owner_id: str) -> dict[str, dict[str, Any]]:
        rows = self._fetchall("SELECT * FROM sync_status WHERE owner_id = ? ORDER BY source", (owner_id,))
        return {
            r["source"]: {
                "status": r["status"],
                "last_sync_at": r["last_sync_at"],
                "error_message": r["error_message"],
            }
            for r in rows
        }
