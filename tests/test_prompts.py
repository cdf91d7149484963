"""Tests for system prompt construction."""

from __future__ import annotations

from appointment_agent.prompts import get_system_prompt


class TestSystemPrompt:
    def test_includes_current_clinic_time(self, now):
        prompt = get_system_prompt("Maria", "5513999998888", now=now)
        assert "Monday, 19/10/2026 10:00" in prompt

    def test_includes_client_identity(self, now):
        prompt = get_system_prompt("Maria", "5513999998888", now=now)
        assert "**Maria** (5513999998888)" in prompt

    def test_unknown_name_placeholder(self, now):
        prompt = get_system_prompt("", "5513999998888", now=now)
        assert "Name not identified" in prompt

    def test_booking_rules_are_stated(self, now):
        prompt = get_system_prompt(None, "5513999998888", now=now)
        assert "2 business days" in prompt
        assert "afterDate" in prompt
        assert "do NOT invent" in prompt
