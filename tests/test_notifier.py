"""Tests for the handover staff notifier."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx

from appointment_agent.services.notifier import notify_staff


class TestNotifyStaff:
    def test_without_webhook_only_logs(self):
        with patch("appointment_agent.services.notifier.httpx.post") as mock_post:
            assert notify_staff("note", webhook_url="") is False
        mock_post.assert_not_called()

    def test_posts_note_as_json(self):
        response = MagicMock()
        with patch("appointment_agent.services.notifier.httpx.post", return_value=response) as mock_post:
            assert notify_staff("*REFERRAL*", webhook_url="https://hooks.example.com/x") is True
        assert mock_post.call_args[0][0] == "https://hooks.example.com/x"
        assert mock_post.call_args[1]["json"] == {"text": "*REFERRAL*"}
        response.raise_for_status.assert_called_once()

    def test_failure_is_reported_not_raised(self):
        with patch(
            "appointment_agent.services.notifier.httpx.post",
            side_effect=httpx.ConnectError("refused"),
        ):
            assert notify_staff("note", webhook_url="https://hooks.example.com/x") is False
