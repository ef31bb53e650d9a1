"""
LangGraph agent: retrieve → reason → (execute_tools → reason)* → END.

One conversational turn. Retrieval grounds the first prompt; the model may then
request tools, which run sequentially in the order requested, with their JSON
results fed back as tool messages. At most MAX_TOOL_ROUNDS rounds of tool
execution happen per turn.
"""

import json
import logging
from typing import Any, Literal, TypedDict

from langgraph.graph import END, StateGraph

from inboxpilot.agent.tools import ToolContext, ToolRegistry
from inboxpilot.core.config import MAX_TOOL_ROUNDS, RETRIEVAL_MIN_SIMILARITY, RETRIEVAL_TOP_K
from inboxpilot.core.errors import TurnFailedError
from inboxpilot.core.interfaces import LanguageModel
from inboxpilot.core.models import Owner, ToolCall, TurnResult
from inboxpilot.services.retrieval_service import RetrievalEngine, deduplicate, format_context

logger = logging.getLogger(__name__)

FALLBACK_ANSWER = "I've completed the requested action."

SYSTEM_PROMPT = """You are a helpful AI assistant that helps users manage their emails, contacts, and business communications.

You have access to various tools that allow you to:
- Search and read emails
- Send emails via Gmail
- Search for contacts in HubSpot CRM
- Create new contacts in HubSpot
- Perform semantic searches across all data
- Create ongoing tasks that wait for someone's reply, list them and cancel them

When a user asks you to do something:
1. Analyze their request carefully
2. Use the appropriate tools to gather information or perform actions
3. Provide clear, helpful responses based on the tool results
4. If you need to use multiple tools to complete a task, do so
5. Always confirm actions that were taken (e.g., "I've sent the email to...")

Guidelines:
- Be concise but informative
- Reference specific details from emails/contacts when relevant
- If you can't find something, say so clearly
- When sending emails, expand on the user's brief instructions to create a professional message
- Always verify you have the correct contact information before sending emails
- When the user asks to be told about a reply, send the email first, then create an ongoing task for the recipient"""


class TurnState(TypedDict):
    messages: list  # OpenAI chat messages, grows across rounds
    pending_tool_calls: list  # list[ToolCall] requested by the last reason step
    tools_invoked: list  # [{"tool": str, "success": bool}]
    sources: list
    rounds: int
    answer: str


def _history_messages(history: list[dict[str, Any]]) -> list[dict[str, str]]:
    out = []
    for m in history or []:
        role = (m.get("role") or "user").strip().lower()
        content = (m.get("content") or "").strip()
        if role in ("user", "assistant") and content:
            out.append({"role": role, "content": content})
    return out


def _assistant_tool_message(text: str, tool_calls: list[ToolCall]) -> dict[str, Any]:
    return {
        "role": "assistant",
        "content": text or "",
        "tool_calls": [
            {"id": tc.id, "type": "function", "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)}}
            for tc in tool_calls
        ],
    }


class AgentOrchestrator:
    def __init__(
        self,
        llm: LanguageModel,
        retrieval: RetrievalEngine,
        registry: ToolRegistry,
        max_tool_rounds: int = MAX_TOOL_ROUNDS,
    ) -> None:
        self._llm = llm
        self._retrieval = retrieval
        self._registry = registry
        self._max_tool_rounds = max_tool_rounds

    def _retrieve_node(self, state: TurnState, owner: Owner, user_text: str, history: list) -> dict:
        """Node 1: ground the turn. Without context the turn cannot proceed."""
        logger.info("[graph:retrieve] IN  owner=%s query=%r", owner.id, user_text)
        try:
            items = self._retrieval.search(
                owner.id, user_text, top_k=RETRIEVAL_TOP_K, min_similarity=RETRIEVAL_MIN_SIMILARITY
            )
        except Exception as e:
            logger.exception("[graph:retrieve] retrieval failed")
            raise TurnFailedError(f"Retrieval failed: {e}") from e
        items = deduplicate(items)
        context = format_context(items)
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        messages.extend(_history_messages(history))
        messages.append({"role": "user", "content": f"{user_text}\n\nContext from previous search:\n{context}"})
        logger.info("[graph:retrieve] OUT items=%d context_len=%d", len(items), len(context))
        return {"messages": messages, "sources": [i.to_source() for i in items]}

    def _reason_node(self, state: TurnState) -> dict:
        """Node 2: ask the model for an answer or for tool calls."""
        rounds = state.get("rounds") or 0
        logger.info("[graph:reason] IN  rounds=%d messages=%d", rounds, len(state["messages"]))
        try:
            completion = self._llm.complete(state["messages"], self._registry.schemas())
        except Exception as e:
            logger.exception("[graph:reason] language model failed")
            raise TurnFailedError(f"Language model failed: {e}") from e

        answer = completion.text or state.get("answer") or ""
        if completion.tool_calls and rounds < self._max_tool_rounds:
            messages = state["messages"] + [_assistant_tool_message(completion.text, completion.tool_calls)]
            logger.info("[graph:reason] OUT tool_calls=%s", [tc.name for tc in completion.tool_calls])
            return {"messages": messages, "pending_tool_calls": completion.tool_calls, "answer": answer}
        if completion.tool_calls:
            logger.warning("[graph:reason] tool round limit %d reached; ignoring further calls", self._max_tool_rounds)
        logger.info("[graph:reason] OUT final answer_len=%d", len(answer))
        return {"pending_tool_calls": [], "answer": answer}

    def _execute_tools_node(self, state: TurnState, context: ToolContext) -> dict:
        """Node 3: run requested tools in order; failures become tool results, not errors."""
        messages = list(state["messages"])
        invoked = list(state.get("tools_invoked") or [])
        for tc in state.get("pending_tool_calls") or []:
            result = self._registry.execute(tc.name, tc.arguments, context)
            invoked.append({"tool": tc.name, "success": bool(result.get("success"))})
            messages.append({"role": "tool", "tool_call_id": tc.id, "content": json.dumps(result, default=str)})
        rounds = (state.get("rounds") or 0) + 1
        logger.info("[graph:execute_tools] OUT round=%d tools_invoked=%d", rounds, len(invoked))
        return {"messages": messages, "tools_invoked": invoked, "pending_tool_calls": [], "rounds": rounds}

    @staticmethod
    def _route_after_reason(state: TurnState) -> Literal["execute_tools", "__end__"]:
        return "execute_tools" if state.get("pending_tool_calls") else END

    def build_graph(self, owner: Owner, conversation_id: int | None, user_text: str, history: list):
        """
        Build and compile the turn graph.
        retrieve → reason → (execute_tools → reason)* → END.
        """
        context = ToolContext(owner=owner, conversation_id=conversation_id)
        graph = StateGraph(TurnState)

        graph.add_node("retrieve", lambda s: self._retrieve_node(s, owner, user_text, history))
        graph.add_node("reason", self._reason_node)
        graph.add_node("execute_tools", lambda s: self._execute_tools_node(s, context))

        graph.set_entry_point("retrieve")
        graph.add_edge("retrieve", "reason")
        graph.add_conditional_edges("reason", self._route_after_reason)
        graph.add_edge("execute_tools", "reason")

        return graph.compile()

    def run_turn(
        self,
        owner: Owner,
        conversation_id: int | None,
        user_text: str,
        history: list[dict[str, Any]] | None = None,
    ) -> TurnResult:
        """
        Run one turn synchronously. Raises TurnFailedError when retrieval or the
        language model fails; tool failures are reported in tools_invoked.
        """
        if not user_text or not str(user_text).strip():
            raise ValueError("message is required")
        q = str(user_text).strip()
        hist = history if history is not None else []
        logger.info("[run_turn] START owner=%s conversation=%s history_len=%d", owner.id, conversation_id, len(hist))
        initial: TurnState = {
            "messages": [],
            "pending_tool_calls": [],
            "tools_invoked": [],
            "sources": [],
            "rounds": 0,
            "answer": "",
        }
        graph = self.build_graph(owner, conversation_id, q, hist)
        # retrieve + (reason, execute_tools) per round + the closing reason
        final = graph.invoke(initial, {"recursion_limit": 2 * self._max_tool_rounds + 5})
        answer = (final.get("answer") or "").strip() or FALLBACK_ANSWER
        rounds = final.get("rounds") or 0
        logger.info("[run_turn] END rounds=%d tools=%s answer_len=%d", rounds, final.get("tools_invoked"), len(answer))
        return TurnResult(
            answer=answer,
            sources=final.get("sources") or [],
            tools_invoked=final.get("tools_invoked") or [],
            rounds=rounds,
        )
