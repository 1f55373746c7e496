"""Tests for validators and bot utilities."""

import logging

import pytest

from bot.logging_config import SecretRedactionFilter
from bot.utils import Page, callback_data, chunk_list, esc, pagination_row, truncate_text, unpack
from bot.validators import (
    is_valid_otp,
    is_valid_student_id,
    is_valid_telegram_id,
    parse_subjects,
    validate_class_name,
    validate_name,
    validate_number,
    validate_password,
    validate_score,
    validate_subject,
    validate_text,
)


class TestValidators:
    """Field format checks."""

    def test_student_id(self):
        assert is_valid_student_id("0123456789")
        assert is_valid_student_id(" 0123456789 ")
        assert not is_valid_student_id("12345")
        assert not is_valid_student_id("01234567890")
        assert not is_valid_student_id("abcdefghij")

    def test_telegram_id_and_otp(self):
        assert is_valid_telegram_id("123456789")
        assert not is_valid_telegram_id("12ab")
        assert is_valid_otp("123456")
        assert not is_valid_otp("12345")

    def test_name(self):
        result = validate_name("  Siti   Aminah ")
        assert result.valid and result.value == "Siti Aminah"
        assert validate_name("O'Brien-Lee").valid
        assert not validate_name("A").valid
        assert not validate_name("R2D2").valid

    def test_class_name(self):
        assert validate_class_name("Grade 5").value == "Grade 5"
        assert validate_class_name("5-A").valid
        assert not validate_class_name("").valid
        assert not validate_class_name("Grade/5").valid

    def test_score(self):
        assert validate_score("85").value == 85
        assert validate_score("0").valid
        assert validate_score("100").valid
        assert not validate_score("101").valid
        assert not validate_score("-1").valid
        assert not validate_score("85.5").valid
        assert not validate_score("abc").valid

    def test_text(self):
        assert validate_text("  hello ").value == "hello"
        assert not validate_text("   ").valid
        assert not validate_text("x" * 11, max_length=10).valid

    def test_password(self):
        assert validate_password("abc123").valid
        assert not validate_password("ab1").valid
        assert not validate_password("abcdefgh").valid
        assert not validate_password("12345678").valid

    def test_number(self):
        assert validate_number("12,5", 0, 100).value == 12.5
        assert validate_number("3", 1, 7, integer=True).value == 3
        assert not validate_number("3.5", 1, 7, integer=True).valid
        assert not validate_number("200", 0, 100).valid

    def test_subjects(self):
        assert parse_subjects("Math, science ,math,, Art") == ["Math", "science", "Art"]

    def test_subject_name(self):
        assert validate_subject(" Bahasa  Melayu ").value == "Bahasa Melayu"
        assert validate_subject("Arts & Crafts").valid
        assert not validate_subject("Home_Economics").valid
        assert not validate_subject("x" * 31).valid
        assert not validate_subject("é" * 16).valid


class TestUtils:
    """Payload and formatting helpers."""

    def test_callback_data(self):
        assert callback_data("approve", "parent", 12) == "approve_parent_12"
        assert callback_data("subject", "Bahasa Melayu") == "subject_Bahasa_Melayu"
        assert unpack("Bahasa_Melayu") == "Bahasa Melayu"

    def test_callback_data_too_long(self):
        with pytest.raises(ValueError):
            callback_data("x" * 65)

    def test_esc(self):
        assert esc("<b>Tom & Jerry</b>") == "&lt;b&gt;Tom &amp; Jerry&lt;/b&gt;"
        assert esc(None) == ""

    def test_truncate_and_chunk(self):
        assert truncate_text("abcdefghij", 8) == "abcde..."
        assert truncate_text("short", 8) == "short"
        assert chunk_list([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_page_clamp(self):
        page = Page.clamp(9, 10, 25)
        assert (page.number, page.pages, page.offset) == (3, 3, 20)
        assert Page.clamp(0, 10, 25).number == 1
        assert Page.clamp(1, 10, 0).pages == 1

    def test_pagination_row(self):
        middle = [b.callback_data for b in pagination_row("list", Page.clamp(2, 10, 30))]
        assert middle == ["list_1", "noop", "list_3"]
        assert pagination_row("list", Page.clamp(1, 10, 5)) == []


class TestLogRedaction:
    """Credential redaction in log records."""

    def make_record(self, msg, args=()):
        return logging.LogRecord("bot", logging.INFO, __file__, 1, msg, args, None)

    def test_redacts_message(self):
        record = self.make_record("login password=abc123 otp: 123456")
        assert SecretRedactionFilter().filter(record)
        assert record.msg == "login password=[REDACTED] otp=[REDACTED]"

    def test_redacts_bot_token_in_args(self):
        token = "123456789:" + "A" * 35
        record = self.make_record("GET %s", (f"https://api.telegram.org/bot{token}/getMe",))
        SecretRedactionFilter().filter(record)
        assert token not in record.getMessage()
        assert "[TELEGRAM_BOT_TOKEN_REDACTED]" in record.getMessage()

    def test_leaves_plain_text(self):
        record = self.make_record("Student 0123456789 added")
        SecretRedactionFilter().filter(record)
        assert record.msg == "Student 0123456789 added"
