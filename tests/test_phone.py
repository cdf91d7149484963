"""Tests for phone normalisation and fuzzy matching."""

from __future__ import annotations

import pytest

from appointment_agent.scheduling.phone import (
    display_phone,
    normalize_phone,
    phones_match,
    text_matches_phone,
)


class TestNormalizePhone:
    def test_strips_formatting(self):
        assert normalize_phone("+55 (13) 99999-8888") == "5513999998888"

    def test_none_and_empty(self):
        assert normalize_phone(None) == ""
        assert normalize_phone("") == ""
        assert normalize_phone("no digits") == ""

    def test_whatsapp_jid(self):
        assert normalize_phone("5513999998888@s.whatsapp.net") == "5513999998888"


class TestPhonesMatch:
    @pytest.mark.parametrize(
        ("a", "b"),
        [
            ("5513999998888", "13999998888"),
            ("13999998888", "5513999998888"),
            ("5513999998888", "999998888"),
            ("5513999998888", "8888"),
        ],
    )
    def test_suffix_containment_either_way(self, a, b):
        assert phones_match(a, b)
        assert phones_match(b, a)

    def test_too_short_never_matches(self):
        assert not phones_match("5513999998888", "888")
        assert not phones_match("", "5513999998888")

    def test_different_numbers(self):
        assert not phones_match("5513999998888", "5513999997777")


class TestTextMatchesPhone:
    def test_matches_number_embedded_in_summary(self):
        assert text_matches_phone("Maria Silva 13999998888", "5513999998888")

    def test_formatted_number_in_summary(self):
        assert text_matches_phone("Maria - (13) 99999-8888", "5513999998888")

    def test_requires_eight_digits(self):
        assert not text_matches_phone("Room 8888", "5513999998888")

    def test_empty_text(self):
        assert not text_matches_phone(None, "5513999998888")
        assert not text_matches_phone("", "5513999998888")


class TestDisplayPhone:
    def test_drops_country_code_from_long_numbers(self):
        assert display_phone("5513999998888") == "13999998888"

    def test_keeps_short_numbers(self):
        assert display_phone("5599998888") == "5599998888"

    def test_keeps_numbers_without_country_code(self):
        assert display_phone("13999998888") == "13999998888"
