"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

# SQLite file for owners, conversations, messages, tasks and synced records
DATABASE_PATH: str = os.getenv("DATABASE_PATH", "data/inboxpilot.db").strip() or "data/inboxpilot.db"

# Milvus Cloud (from env)
MILVUS_URI: str = os.getenv("MILVUS_URI", "").strip()
MILVUS_TOKEN: str = os.getenv("MILVUS_TOKEN", "").strip()

# Hugging Face (embeddings)
HF_API_KEY: str = os.getenv("HF_API_KEY", "").strip()

# Vector collection: default embedding dim (e.g. sentence-transformers/all-MiniLM-L6-v2 = 384)
VECTOR_DIM: int = 384
COLLECTION_NAME: str = "records"
HF_EMBED_MODEL: str = "sentence-transformers/all-MiniLM-L6-v2"
EMBED_BATCH_SIZE: int = 32
# Characters of record text sent to the embedding model
EMBED_MAX_CHARS: int = 8000
EMBED_PENDING_BATCH: int = 100

# Retrieval defaults used to ground each turn
RETRIEVAL_TOP_K: int = 5
RETRIEVAL_MIN_SIMILARITY: float = 0.3
CONTEXT_SNIPPET_CHARS: int = 500

# API timeouts (seconds)
EMBED_API_TIMEOUT: float = 30.0
VECTOR_API_TIMEOUT: float = 30.0
LLM_API_TIMEOUT: float = 60.0
MAILBOX_API_TIMEOUT: float = 30.0
CRM_API_TIMEOUT: float = 30.0

# OpenAI (agent LLM, tool calling)
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)
LLM_TEMPERATURE: float = 0.7

# Agent loop
MAX_TOOL_ROUNDS: int = 5
HISTORY_MAX_MESSAGES: int = 10
AGENT_MAX_TOKENS: int = 1024
DEFAULT_CHAT_NAME: str = "New Chat"

# External APIs
GMAIL_API_BASE: str = "https://gmail.googleapis.com/gmail/v1/users/me"
HUBSPOT_API_BASE: str = "https://api.hubapi.com"

# Event ingestion (mailbox polling)
INGESTION_INTERVAL_MINUTES: int = int(os.getenv("INGESTION_INTERVAL_MINUTES", "10") or 10)
INGESTION_LOOKBACK_MINUTES: int = 60
INGESTION_MAX_RESULTS: int = 50
AUTO_CREATE_CONTACTS: bool = _env_bool("AUTO_CREATE_CONTACTS", True)

# Data sync (Gmail history, HubSpot contacts and notes into the local store)
SYNC_INTERVAL_MINUTES: int = int(os.getenv("SYNC_INTERVAL_MINUTES", "15") or 15)
SYNC_GMAIL_DAYS_BACK: int = 2
SYNC_GMAIL_MAX_RESULTS: int = 500
HUBSPOT_PAGE_SIZE: int = 100
