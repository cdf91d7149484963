"""Tests for the bounded dispatch loop.

Covers:
  - Routing of decisions (operation vs final text vs round cap reached)
  - Phone injection into operation arguments
  - Operation failures turned into tool results
  - End-to-end graph runs with a mocked LLM
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from appointment_agent.agent import (
    FALLBACK_REPLY,
    MAX_DISPATCH_ROUNDS,
    TOOLS_BY_NAME,
    AgentState,
    _run_tool,
    create_appointment_agent,
    execute_node,
    message_text,
    route_decision,
)

PHONE = "5513999998888"


# ── Helpers ──────────────────────────────────────────────────────────


def _decision(name: str, args: dict | None = None, call_id: str = "call_1") -> AIMessage:
    return AIMessage(content="", tool_calls=[{"name": name, "args": args or {}, "id": call_id}])


def _initial_state(text: str = "Hi") -> AgentState:
    return {
        "messages": [HumanMessage(content=text)],
        "system_prompt": "You are a scheduling assistant.",
        "phone": PHONE,
        "executions": 0,
        "handover": False,
        "reply": "",
    }


def _mock_llm(*responses: AIMessage) -> MagicMock:
    llm = MagicMock()
    llm.invoke.side_effect = list(responses)
    return llm


# ── route_decision ───────────────────────────────────────────────────


class TestRouteDecision:
    def test_text_goes_to_finish(self):
        state = {**_initial_state(), "messages": [AIMessage(content="Hello!")]}
        assert route_decision(state) == "finish"

    def test_operation_goes_to_execute(self):
        state = {**_initial_state(), "messages": [_decision("get_appointments")]}
        assert route_decision(state) == "execute"

    def test_operation_after_cap_goes_to_exhausted(self):
        state = {
            **_initial_state(),
            "messages": [_decision("get_appointments")],
            "executions": MAX_DISPATCH_ROUNDS,
        }
        assert route_decision(state) == "exhausted"

    def test_text_after_cap_still_finishes(self):
        state = {
            **_initial_state(),
            "messages": [AIMessage(content="Done")],
            "executions": MAX_DISPATCH_ROUNDS,
        }
        assert route_decision(state) == "finish"


# ── execute_node ─────────────────────────────────────────────────────


class TestExecuteNode:
    @patch("appointment_agent.agent._run_tool", return_value="ok")
    def test_injects_phone_when_missing(self, mock_run):
        state = {**_initial_state(), "messages": [_decision("get_appointments")]}
        execute_node(state)
        mock_run.assert_called_once_with("get_appointments", {"phone": PHONE})

    @patch("appointment_agent.agent._run_tool", return_value="ok")
    def test_keeps_phone_given_by_model(self, mock_run):
        state = {**_initial_state(), "messages": [_decision("cancel_appointment", {"phone": "13988887777"})]}
        execute_node(state)
        assert mock_run.call_args[0][1]["phone"] == "13988887777"

    @patch("appointment_agent.agent._run_tool", return_value="ok")
    def test_no_phone_for_operations_without_phone(self, mock_run):
        state = {**_initial_state(), "messages": [_decision("check_availability", {"period": "tarde"})]}
        execute_node(state)
        mock_run.assert_called_once_with("check_availability", {"period": "tarde"})

    @patch("appointment_agent.agent._run_tool", return_value="ok")
    def test_every_call_in_a_decision_is_one_round(self, mock_run):
        decision = AIMessage(
            content="",
            tool_calls=[
                {"name": "get_appointments", "args": {}, "id": "a"},
                {"name": "check_availability", "args": {}, "id": "b"},
            ],
        )
        result = execute_node({**_initial_state(), "messages": [decision]})
        assert result["executions"] == 1
        assert [m.tool_call_id for m in result["messages"]] == ["a", "b"]
        assert all(isinstance(m, ToolMessage) for m in result["messages"])

    @patch("appointment_agent.agent._run_tool", return_value="[SYSTEM]: HANDOVER_REQUESTED. Reason: pain")
    def test_handover_marker_sets_flag(self, mock_run):
        result = execute_node({**_initial_state(), "messages": [_decision("handover", {"reason": "pain"})]})
        assert result["handover"] is True


class TestRunTool:
    def test_exception_becomes_text_result(self):
        broken = MagicMock()
        broken.invoke.side_effect = RuntimeError("database is locked")
        with patch.dict(TOOLS_BY_NAME, {"broken_op": broken}):
            result = _run_tool("broken_op", {})
        assert result == "Error executing broken_op: database is locked"

    def test_unknown_operation(self):
        assert _run_tool("teleport", {}) == "Unknown operation: teleport"


def test_message_text_joins_text_blocks():
    message = AIMessage(
        content=[
            {"type": "text", "text": "Your appointment "},
            {"type": "tool_use", "id": "x", "name": "noop", "input": {}},
            {"type": "text", "text": "is confirmed."},
        ]
    )
    assert message_text(message) == "Your appointment is confirmed."


# ── End-to-end graph ─────────────────────────────────────────────────


class TestDispatchLoop:
    @patch("appointment_agent.agent._build_llm")
    def test_plain_reply(self, mock_build):
        mock_build.return_value = _mock_llm(AIMessage(content="Hello! How can I help?"))
        result = create_appointment_agent().invoke(_initial_state())
        assert result["reply"] == "Hello! How can I help?"
        assert result["executions"] == 0

    @patch("appointment_agent.agent._run_tool", return_value="Appointment found")
    @patch("appointment_agent.agent._build_llm")
    def test_operation_then_reply(self, mock_build, mock_run):
        llm = _mock_llm(_decision("get_appointments"), AIMessage(content="You're booked on Wednesday."))
        mock_build.return_value = llm
        result = create_appointment_agent().invoke(_initial_state("When is my appointment?"))

        assert result["reply"] == "You're booked on Wednesday."
        assert result["executions"] == 1
        mock_run.assert_called_once_with("get_appointments", {"phone": PHONE})
        second_call_messages = llm.invoke.call_args_list[1][0][0]
        assert isinstance(second_call_messages[-1], ToolMessage)
        assert second_call_messages[-1].content == "Appointment found"

    @patch("appointment_agent.agent._run_tool", return_value="ok")
    @patch("appointment_agent.agent._build_llm")
    def test_sixth_operation_decision_returns_fallback(self, mock_build, mock_run):
        llm = _mock_llm(*[_decision("check_availability", call_id=f"c{i}") for i in range(6)])
        mock_build.return_value = llm
        result = create_appointment_agent().invoke(_initial_state())

        assert result["reply"] == FALLBACK_REPLY
        assert mock_run.call_count == MAX_DISPATCH_ROUNDS
        assert llm.invoke.call_count == MAX_DISPATCH_ROUNDS + 1

    @patch("appointment_agent.agent._run_tool", return_value="ok")
    @patch("appointment_agent.agent._build_llm")
    def test_text_on_sixth_decision_is_used(self, mock_build, mock_run):
        responses = [_decision("check_availability", call_id=f"c{i}") for i in range(5)]
        responses.append(AIMessage(content="Here are two options."))
        mock_build.return_value = _mock_llm(*responses)
        result = create_appointment_agent().invoke(_initial_state())

        assert result["reply"] == "Here are two options."
        assert mock_run.call_count == 5

    @patch("appointment_agent.agent._build_llm")
    def test_llm_failure_propagates(self, mock_build):
        llm = MagicMock()
        llm.invoke.side_effect = RuntimeError("LLM down")
        mock_build.return_value = llm
        with pytest.raises(RuntimeError):
            create_appointment_agent().invoke(_initial_state())

    @patch("appointment_agent.agent._build_llm")
    def test_system_prompt_is_first_message(self, mock_build):
        llm = _mock_llm(AIMessage(content="Hi"))
        mock_build.return_value = llm
        create_appointment_agent().invoke(_initial_state())
        sent = llm.invoke.call_args[0][0]
        assert sent[0].content == "You are a scheduling assistant."
        assert sent[1].content == "Hi"
