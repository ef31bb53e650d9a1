"""
Agent tools: definitions and execution for tool-calling mode.

Tools: search_emails, read_email, send_email, search_contacts, create_contact,
semantic_search, create_ongoing_task, list_ongoing_tasks, cancel_task.

Every execution returns a dict with a boolean "success". Argument validation
failures and exceptions from the underlying calls (mailbox, CRM, database) are
turned into {"success": False, "error": ...}; nothing propagates past execute().
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from inboxpilot.core.errors import ToolValidationError
from inboxpilot.core.interfaces import CRM, Mailbox
from inboxpilot.core.models import Owner, TaskStatus
from inboxpilot.core.store import Store
from inboxpilot.services.retrieval_service import RetrievalEngine
from inboxpilot.services.task_service import TaskCorrelationEngine

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 200
_INTEGER_RE = re.compile(r"-?[0-9]+")


class ToolName(str, Enum):
    SEARCH_EMAILS = "search_emails"
    READ_EMAIL = "read_email"
    SEND_EMAIL = "send_email"
    SEARCH_CONTACTS = "search_contacts"
    CREATE_CONTACT = "create_contact"
    SEMANTIC_SEARCH = "semantic_search"
    CREATE_ONGOING_TASK = "create_ongoing_task"
    LIST_ONGOING_TASKS = "list_ongoing_tasks"
    CANCEL_TASK = "cancel_task"


@dataclass
class ToolContext:
    """Who is acting and where. conversation_id is required by tools that create tasks."""

    owner: Owner
    conversation_id: int | None = None


def _failure(error: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "error": error, **extra}


def _coerce(name: str, expected: str, value: Any) -> Any:
    if expected == "string":
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    elif expected == "integer":
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and _INTEGER_RE.fullmatch(value.strip()):
            return int(value.strip())
    elif expected == "number":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
    elif expected == "boolean":
        if isinstance(value, bool):
            return value
    else:
        return value
    raise ToolValidationError(f"{name} must be of type {expected}")


def validate_arguments(parameters: dict[str, Any], arguments: dict[str, Any] | None) -> dict[str, Any]:
    """
    Check arguments against a tool's JSON-schema parameters: required keys present
    and non-blank, primitive types coerced where unambiguous, unknown keys dropped,
    defaults filled in.
    """
    args = arguments or {}
    if not isinstance(args, dict):
        raise ToolValidationError("arguments must be an object")
    properties: dict[str, Any] = parameters.get("properties") or {}
    for key in parameters.get("required") or []:
        value = args.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ToolValidationError(f"{key} is required")

    cleaned: dict[str, Any] = {}
    for key, spec in properties.items():
        if key in args and args[key] is not None:
            value = _coerce(key, spec.get("type", ""), args[key])
            if "enum" in spec and value not in spec["enum"]:
                raise ToolValidationError(f"{key} must be one of {spec['enum']}")
            cleaned[key] = value.strip() if isinstance(value, str) else value
        elif "default" in spec:
            cleaned[key] = spec["default"]
    return cleaned


class Tool:
    """One action the model can request. Subclasses define the schema and run()."""

    name: ToolName
    description: str = ""
    parameters: dict[str, Any] = {"type": "object", "properties": {}}

    def schema(self) -> dict[str, Any]:
        """OpenAI function-calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def run(self, args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        raise NotImplementedError


class SearchEmailsTool(Tool):
    name = ToolName.SEARCH_EMAILS
    description = (
        "Search for emails by sender name, email address, subject keywords, or body content. "
        "Returns matching emails with id, sender, subject, date and a snippet."
    )
    parameters = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Sender name, address, subject keywords or body text"},
            "limit": {"type": "integer", "description": "Maximum number of emails to return", "default": 5},
        },
        "required": ["query"],
    }

    def __init__(self, store: Store) -> None:
        self._store = store

    def run(self, args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        rows = self._store.search_emails(context.owner.id, args["query"], limit=args["limit"])
        results = [
            {
                "id": r["id"],
                "subject": r["subject"],
                "from": f"{r['sender_name']} <{r['sender']}>" if r["sender_name"] else r["sender"],
                "date": r["received_at"],
                "snippet": (r["body"] or "")[:SNIPPET_CHARS],
            }
            for r in rows
        ]
        return {"success": True, "results": results, "count": len(results)}


class ReadEmailTool(Tool):
    name = ToolName.READ_EMAIL
    description = "Read the full content of a specific email by its ID (from search results)."
    parameters = {
        "type": "object",
        "properties": {"email_id": {"type": "integer", "description": "The ID of the email to read"}},
        "required": ["email_id"],
    }

    def __init__(self, store: Store) -> None:
        self._store = store

    def run(self, args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        email = self._store.get_email(args["email_id"], context.owner.id)
        if email is None:
            return _failure("Email not found")
        return {
            "success": True,
            "email": {
                "id": email["id"],
                "subject": email["subject"],
                "from": email["sender"],
                "from_name": email["sender_name"],
                "date": email["received_at"],
                "body": email["body"],
            },
        }


class SendEmailTool(Tool):
    name = ToolName.SEND_EMAIL
    description = "Send an email to a recipient via Gmail. Requires recipient email, subject, and body content."
    parameters = {
        "type": "object",
        "properties": {
            "to_email": {"type": "string", "description": "Recipient's email address"},
            "to_name": {"type": "string", "description": "Recipient's name (optional)"},
            "subject": {"type": "string", "description": "Email subject line"},
            "body": {"type": "string", "description": "Email body content"},
        },
        "required": ["to_email", "subject", "body"],
    }

    def __init__(self, mailbox: Mailbox) -> None:
        self._mailbox = mailbox

    def run(self, args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        to_email = args["to_email"]
        if "@" not in to_email:
            return _failure(f"Invalid recipient address: {to_email}")
        sent = self._mailbox.send(context.owner, to_email, args["subject"], args["body"], to_name=args.get("to_name"))
        return {
            "success": True,
            "message_id": sent.get("external_id", ""),
            "message": f"Email sent successfully to {to_email}",
        }


def _contact_summary(record: dict[str, Any]) -> dict[str, Any]:
    props = record.get("properties") or {}
    return {
        "id": record.get("id"),
        "external_id": record.get("external_id"),
        "name": record.get("name"),
        "email": record.get("email"),
        "company": props.get("company"),
        "phone": props.get("phone"),
        "jobtitle": props.get("jobtitle"),
    }


class SearchContactsTool(Tool):
    name = ToolName.SEARCH_CONTACTS
    description = (
        "Search for contacts by name or email. Checks the synced contact list first and "
        "falls back to the HubSpot CRM when nothing is found locally."
    )
    parameters = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Name, email, or company to look for"},
            "limit": {"type": "integer", "description": "Maximum number of contacts to return", "default": 5},
        },
        "required": ["query"],
    }

    def __init__(self, store: Store, crm: CRM) -> None:
        self._store = store
        self._crm = crm

    def run(self, args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        rows = self._store.search_contacts(context.owner.id, args["query"], limit=args["limit"])
        results = [_contact_summary(r) for r in rows]
        source = "local"
        if not results and context.owner.has_crm:
            source = "crm"
            for c in self._crm.search(context.owner, args["query"], limit=args["limit"]):
                name = " ".join(p for p in (c.get("firstname"), c.get("lastname")) if p) or c.get("email") or ""
                results.append({**c, "name": name})
        return {"success": True, "results": results, "count": len(results), "source": source}


class CreateContactTool(Tool):
    name = ToolName.CREATE_CONTACT
    description = "Create a new contact in HubSpot CRM. Requires at least an email or a name."
    parameters = {
        "type": "object",
        "properties": {
            "email": {"type": "string", "description": "Contact's email address"},
            "firstname": {"type": "string", "description": "Contact's first name"},
            "lastname": {"type": "string", "description": "Contact's last name"},
            "company": {"type": "string", "description": "Contact's company name"},
            "jobtitle": {"type": "string", "description": "Contact's job title"},
            "phone": {"type": "string", "description": "Contact's phone number"},
        },
        "required": [],
    }

    def __init__(self, store: Store, crm: CRM) -> None:
        self._store = store
        self._crm = crm

    def run(self, args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        if not (args.get("email") or args.get("firstname") or args.get("lastname")):
            return _failure("email or name is required")
        created = self._crm.create(context.owner, args)
        name = " ".join(p for p in (args.get("firstname"), args.get("lastname")) if p) or args.get("email") or "Unknown"
        properties = {k: v for k, v in args.items() if k != "email"}
        local_id = self._store.add_contact(
            context.owner.id, created.get("external_id", ""), args.get("email"), name, properties
        )
        return {
            "success": True,
            "contact": {
                "id": local_id,
                "external_id": created.get("external_id", ""),
                "name": name,
                "email": args.get("email"),
                "company": args.get("company"),
            },
            "message": f"Contact created successfully: {name}",
        }


class SemanticSearchTool(Tool):
    name = ToolName.SEMANTIC_SEARCH
    description = (
        "Semantic search across emails, contacts, and notes using embeddings. Use for questions "
        "that need meaning rather than exact keywords."
    )
    parameters = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Natural language query"},
            "limit": {"type": "integer", "description": "Maximum number of results", "default": 5},
        },
        "required": ["query"],
    }

    def __init__(self, retrieval: RetrievalEngine) -> None:
        self._retrieval = retrieval

    def run(self, args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        items = self._retrieval.search(context.owner.id, args["query"], top_k=args["limit"])
        results = [{**item.to_source(), "fields": item.fields} for item in items]
        return {"success": True, "results": results, "count": len(results)}


class CreateOngoingTaskTool(Tool):
    name = ToolName.CREATE_ONGOING_TASK
    description = (
        "Create a task that waits for a reply from someone. Use this after sending an email when the "
        "user wants to be told when that person responds."
    )
    parameters = {
        "type": "object",
        "properties": {
            "description": {"type": "string", "description": "What this task is waiting for"},
            "expected_sender_email": {"type": "string", "description": "Email address of the person we wait for"},
            "expected_sender_name": {"type": "string", "description": "Name of the person we wait for"},
            "task_type": {
                "type": "string",
                "description": "Type of task: email_response, meeting_confirmation, etc.",
                "default": "email_response",
            },
        },
        "required": ["description", "expected_sender_email"],
    }

    def __init__(self, tasks: TaskCorrelationEngine) -> None:
        self._tasks = tasks

    def run(self, args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        if context.conversation_id is None:
            return _failure("An active conversation is required to create a task")
        task = self._tasks.register(
            description=args["description"],
            expected_counterparty=args["expected_sender_email"],
            conversation_id=context.conversation_id,
            owner_id=context.owner.id,
            context={"created_by": "ai_agent"},
            expected_counterparty_name=args.get("expected_sender_name"),
            task_type=args["task_type"],
        )
        who = args.get("expected_sender_name") or args["expected_sender_email"]
        return {
            "success": True,
            "task": {
                "id": task.id,
                "description": task.description,
                "expected_sender": task.expected_counterparty,
                "status": task.status.value,
                "created_at": task.created_at.isoformat(),
            },
            "message": f"Task created. I'll watch for a response from {who} and notify you when it arrives.",
        }


class ListOngoingTasksTool(Tool):
    name = ToolName.LIST_ONGOING_TASKS
    description = "List tasks for the current chat ('chat') or all waiting tasks for the user ('all')."
    parameters = {
        "type": "object",
        "properties": {
            "scope": {
                "type": "string",
                "description": "'chat' for the current chat only, 'all' for all waiting tasks",
                "enum": ["chat", "all"],
                "default": "chat",
            }
        },
        "required": [],
    }

    def __init__(self, tasks: TaskCorrelationEngine) -> None:
        self._tasks = tasks

    def run(self, args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        if args["scope"] == "chat" and context.conversation_id is not None:
            tasks = self._tasks.list_tasks(conversation_id=context.conversation_id)
        else:
            tasks = self._tasks.list_tasks(owner_id=context.owner.id, status=TaskStatus.WAITING)
        tasks = [t for t in tasks if t.owner_id == context.owner.id]
        active = sum(1 for t in tasks if t.status is TaskStatus.WAITING)
        completed = sum(1 for t in tasks if t.status is TaskStatus.COMPLETED)
        return {
            "success": True,
            "tasks": [t.to_dict() for t in tasks],
            "summary": {"total": len(tasks), "active": active, "completed": completed},
            "message": (
                f"You have {active} active task(s) waiting for responses."
                if active
                else "No active tasks at the moment."
            ),
        }


class CancelTaskTool(Tool):
    name = ToolName.CANCEL_TASK
    description = "Cancel a waiting task that is no longer needed."
    parameters = {
        "type": "object",
        "properties": {"task_id": {"type": "integer", "description": "ID of the task to cancel"}},
        "required": ["task_id"],
    }

    def __init__(self, tasks: TaskCorrelationEngine) -> None:
        self._tasks = tasks

    def run(self, args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        task = self._tasks.cancel(args["task_id"], context.owner.id)
        return {
            "success": True,
            "task": {"id": task.id, "description": task.description, "status": task.status.value},
            "message": f"Task cancelled: {task.description}",
        }


class ToolRegistry:
    """Lookup table from tool name to tool, built once at start-up."""

    def __init__(self, tools: list[Tool]) -> None:
        self._tools: dict[ToolName, Tool] = {t.name: t for t in tools}

    @property
    def names(self) -> list[str]:
        return [n.value for n in self._tools]

    def get(self, name: str) -> Tool | None:
        try:
            return self._tools.get(ToolName(name))
        except ValueError:
            return None

    def schemas(self) -> list[dict[str, Any]]:
        return [t.schema() for t in self._tools.values()]

    def execute(self, name: str, arguments: dict[str, Any] | None, context: ToolContext) -> dict[str, Any]:
        """
        Execute a tool by name. Always returns a dict with a boolean "success";
        never raises.
        """
        logger.info("[tools] execute name=%r owner=%s arguments=%r", name, context.owner.id, arguments)
        tool = self.get(name)
        if tool is None:
            return _failure(f"Unknown tool: {name}")
        try:
            args = validate_arguments(tool.parameters, arguments)
        except ToolValidationError as e:
            logger.info("[tools] rejected name=%s: %s", name, e)
            return _failure(f"Invalid arguments: {e}")
        except Exception as e:
            logger.exception("[tools] argument validation crashed name=%s", name)
            return _failure(f"Invalid arguments: {e}")
        try:
            result = tool.run(args, context)
        except Exception as e:
            logger.exception("[tools] %s failed", name)
            return _failure(str(e) or e.__class__.__name__)
        if not isinstance(result, dict):
            result = {"success": True, "result": result}
        result["success"] = bool(result.get("success", False))
        logger.info("[tools] done name=%s success=%s", name, result["success"])
        return result


def build_registry(
    store: Store,
    retrieval: RetrievalEngine,
    tasks: TaskCorrelationEngine,
    mailbox: Mailbox,
    crm: CRM,
) -> ToolRegistry:
    return ToolRegistry(
        [
            SearchEmailsTool(store),
            ReadEmailTool(store),
            SendEmailTool(mailbox),
            SearchContactsTool(store, crm),
            CreateContactTool(store, crm),
            SemanticSearchTool(retrieval),
            CreateOngoingTaskTool(tasks),
            ListOngoingTasksTool(tasks),
            CancelTaskTool(tasks),
        ]
    )
