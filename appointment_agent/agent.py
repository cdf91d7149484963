"""LangGraph dispatch loop for the appointment scheduling agent.

Architecture:
  The agent is a **bounded decide/execute loop** built as a LangGraph
  StateGraph with four nodes:

    1. **decide**     — Claude with the booking operations bound as tools
                        picks the next step: an operation call or a reply
    2. **execute**    — runs every operation of that decision and feeds the
                        results back as tool messages
    3. **finish**     — extracts the final reply text
    4. **exhausted**  — fixed fallback reply once the round cap is reached

  Routing:
    decide → (operation, rounds left?) → execute → decide (loop)
           → (operation, cap reached?) → exhausted → END
           → (no operation?)           → finish → END

  The caller's phone number is injected into any operation that takes a
  ``phone`` argument and was not given one, so the model never has to ask
  the client for a number the transport already knows.

  Memory:
    The graph is stateless between turns.  ``ConversationService`` loads the
    persisted transcript and passes it in as ``messages``.
"""

from __future__ import annotations

import logging
import time
from typing import Annotated

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AnyMessage, SystemMessage, ToolMessage
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from appointment_agent.config import ANTHROPIC_API_KEY, MODEL_NAME
from appointment_agent.services.metrics import metrics
from appointment_agent.tools.handover import HANDOVER_MARKER, handover
from appointment_agent.tools.scheduling import (
    cancel_appointment,
    check_availability,
    get_appointments,
    reschedule_appointment,
    schedule_appointment,
)

logger = logging.getLogger(__name__)

MAX_DISPATCH_ROUNDS = 5

FALLBACK_REPLY = "Sorry, I'm handling too many actions at once. Could you repeat that?"


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph.

    ``messages`` uses the ``add_messages`` reducer so nodes append to the
    history.  ``executions`` counts executed rounds (one per decision that
    requested operations, however many it requested).  ``handover`` is set
    as soon as any operation result carries the handover marker.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    system_prompt: str
    phone: str
    executions: int
    handover: bool
    reply: str


# ── All operations the agent can request ────────────────────────────

ALL_TOOLS = [
    check_availability,
    schedule_appointment,
    handover,
    get_appointments,
    cancel_appointment,
    reschedule_appointment,
]

TOOLS_BY_NAME = {t.name: t for t in ALL_TOOLS}


# ── LLM builder ─────────────────────────────────────────────────────


def _build_llm():
    """Build the decision-making LLM with every booking operation bound."""
    llm = ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.3,  # Low temperature for consistent rule following
        max_tokens=1024,
    )
    return llm.bind_tools(ALL_TOOLS)


def message_text(message: AnyMessage) -> str:
    """Plain text of a message whose content may be a list of content blocks."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


# ── Node: decide ────────────────────────────────────────────────────


def _make_decide_node():
    """Create the decide node.

    The bound LLM is captured in the closure so every round of every turn
    shares one client.
    """
    llm_with_tools = _build_llm()

    def decide_node(state: AgentState) -> dict:
        """Ask the LLM for the next step given the conversation so far."""
        system = SystemMessage(content=state["system_prompt"])
        t0 = time.perf_counter()
        try:
            response = llm_with_tools.invoke([system] + state["messages"])
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure("anthropic", "llm_invoke", type(exc).__name__, latency_ms=elapsed)
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "llm_invoke", latency_ms=elapsed)
        logger.debug(
            "decide (round %d) responded in %.0fms with %d tool call(s)",
            state.get("executions", 0) + 1, elapsed, len(getattr(response, "tool_calls", []) or []),
        )
        return {"messages": [response]}

    return decide_node


# ── Node: execute ───────────────────────────────────────────────────


def _run_tool(name: str, args: dict) -> str:
    tool = TOOLS_BY_NAME.get(name)
    if tool is None:
        metrics.record_operation(name, outcome="unknown")
        return f"Unknown operation: {name}"

    t0 = time.perf_counter()
    try:
        result = tool.invoke(args)
    except Exception as exc:
        elapsed = (time.perf_counter() - t0) * 1000
        logger.exception("Operation %s failed", name)
        metrics.record_operation(name, outcome="error", latency_ms=elapsed)
        return f"Error executing {name}: {exc}"

    metrics.record_operation(name, outcome="ok", latency_ms=(time.perf_counter() - t0) * 1000)
    return str(result)


def execute_node(state: AgentState) -> dict:
    """Run every operation requested by the last decision, in order."""
    decision = state["messages"][-1]
    handover_requested = state.get("handover", False)
    results = []

    for call in decision.tool_calls:
        name = call["name"]
        args = dict(call.get("args") or {})
        tool = TOOLS_BY_NAME.get(name)
        if tool is not None and "phone" in tool.args and not args.get("phone"):
            args["phone"] = state["phone"]
            logger.debug("Injected caller phone into %s", name)

        logger.info("Executing %s %s", name, args)
        output = _run_tool(name, args)
        if HANDOVER_MARKER in output:
            handover_requested = True
        results.append(ToolMessage(content=output, tool_call_id=call["id"], name=name))

    return {
        "messages": results,
        "executions": state.get("executions", 0) + 1,
        "handover": handover_requested,
    }


# ── Terminal nodes ──────────────────────────────────────────────────


def finish_node(state: AgentState) -> dict:
    return {"reply": message_text(state["messages"][-1])}


def exhausted_node(state: AgentState) -> dict:
    logger.warning("Dispatch cap of %d rounds reached", MAX_DISPATCH_ROUNDS)
    return {"reply": FALLBACK_REPLY}


# ── Conditional edges ────────────────────────────────────────────────


def route_decision(state: AgentState) -> str:
    """Route a decision: operations → execute (or exhausted), text → finish."""
    last_message = state["messages"][-1]
    if getattr(last_message, "tool_calls", None):
        if state.get("executions", 0) >= MAX_DISPATCH_ROUNDS:
            return "exhausted"
        return "execute"
    return "finish"


# ── Graph assembly ───────────────────────────────────────────────────


def create_appointment_agent():
    """Build and compile the dispatch-loop graph.

    Returns a compiled graph that can be invoked with:
        graph.invoke({
            "messages": [...history..., HumanMessage(content="...")],
            "system_prompt": "...",
            "phone": "5513999999999",
            "executions": 0,
            "handover": False,
            "reply": "",
        })
    """
    graph = StateGraph(AgentState)

    graph.add_node("decide", _make_decide_node())
    graph.add_node("execute", execute_node)
    graph.add_node("finish", finish_node)
    graph.add_node("exhausted", exhausted_node)

    graph.set_entry_point("decide")

    graph.add_conditional_edges(
        "decide",
        route_decision,
        {"execute": "execute", "finish": "finish", "exhausted": "exhausted"},
    )
    graph.add_edge("execute", "decide")
    graph.add_edge("finish", END)
    graph.add_edge("exhausted", END)

    compiled = graph.compile()
    logger.debug("Appointment agent compiled — model: %s, tools: %d", MODEL_NAME, len(ALL_TOOLS))
    return compiled
