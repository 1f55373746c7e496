"""Format checkers for IDs, names, scores and free text."""

import re
from dataclasses import dataclass
from typing import List, Optional

STUDENT_ID_PATTERN = re.compile(r"^\d{10}$")
TEACHER_ID_PATTERN = re.compile(r"^\d{10}$")
TELEGRAM_ID_PATTERN = re.compile(r"^\d{5,15}$")
OTP_PATTERN = re.compile(r"^\d{6}$")
NAME_PATTERN = re.compile(r"^[^\W\d_]+(?:[ '\-.]{1,2}[^\W\d_]+)*\.?$", re.UNICODE)
CLASS_PATTERN = re.compile(r"^[\w][\w \-]{0,48}$", re.UNICODE)

MAX_TEXT_LENGTH = 3500
MIN_PASSWORD_LENGTH = 6


@dataclass
class ValidationResult:
    """Outcome of a single field check."""
    valid: bool
    value: Optional[object] = None
    message: str = ""


def is_valid_student_id(value: str) -> bool:
    return bool(STUDENT_ID_PATTERN.match(value.strip()))


def is_valid_teacher_id(value: str) -> bool:
    return bool(TEACHER_ID_PATTERN.match(value.strip()))


def is_valid_telegram_id(value: str) -> bool:
    return bool(TELEGRAM_ID_PATTERN.match(value.strip()))


def is_valid_otp(value: str) -> bool:
    return bool(OTP_PATTERN.match(value.strip()))


def validate_name(value: str, max_length: int = 60) -> ValidationResult:
    """Person names: letters separated by spaces, hyphens, apostrophes or dots."""
    name = " ".join(value.split())
    if len(name) < 2 or len(name) > max_length:
        return ValidationResult(False, message=f"Name must be 2-{max_length} characters long.")
    if not NAME_PATTERN.match(name):
        return ValidationResult(False, message="Name may only contain letters, spaces, hyphens and apostrophes.")
    return ValidationResult(True, value=name)


def validate_class_name(value: str) -> ValidationResult:
    class_name = " ".join(value.split())
    if not class_name or not CLASS_PATTERN.match(class_name):
        return ValidationResult(False, message="Class must be 1-50 letters, digits, spaces or hyphens (e.g. Grade 5).")
    return ValidationResult(True, value=class_name)


def validate_text(value: str, max_length: int = MAX_TEXT_LENGTH) -> ValidationResult:
    """Free text: non-empty after trimming and within length."""
    text = (value or "").strip()
    if not text:
        return ValidationResult(False, message="Message cannot be empty.")
    if len(text) > max_length:
        return ValidationResult(False, message=f"Message is too long (max {max_length} characters).")
    return ValidationResult(True, value=text)


def validate_score(value: str) -> ValidationResult:
    """Scores are whole numbers between 0 and 100."""
    raw = value.strip()
    if not re.fullmatch(r"-?\d{1,4}", raw):
        return ValidationResult(False, message="Score must be a whole number between 0 and 100.")
    score = int(raw)
    if score < 0 or score > 100:
        return ValidationResult(False, message="Score must be between 0 and 100.")
    return ValidationResult(True, value=score)


def validate_password(value: str) -> ValidationResult:
    password = value.strip()
    if len(password) < MIN_PASSWORD_LENGTH:
        return ValidationResult(False, message=f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if password.isdigit() or password.isalpha():
        return ValidationResult(False, message="Password must mix letters and digits.")
    return ValidationResult(True, value=password)


def validate_number(value: str, minimum: float, maximum: float, integer: bool = False) -> ValidationResult:
    raw = value.strip().replace(",", ".")
    try:
        number = int(raw) if integer else float(raw)
    except ValueError:
        kind = "a whole number" if integer else "a number"
        return ValidationResult(False, message=f"Please enter {kind}.")
    if number < minimum or number > maximum:
        return ValidationResult(False, message=f"Value must be between {minimum:g} and {maximum:g}.")
    return ValidationResult(True, value=number)


def parse_subjects(value: str) -> List[str]:
    """Comma-separated subject list, trimmed, de-duplicated, order kept."""
    subjects: List[str] = []
    for part in value.split(","):
        subject = " ".join(part.split())
        if subject and subject.lower() not in (s.lower() for s in subjects):
            subjects.append(subject[:100])
    return subjects


SUBJECT_PATTERN = re.compile(r"^[\w&.+\- ]{1,30}$", re.UNICODE)


def validate_subject(value: str) -> ValidationResult:
    """Subject names travel in button payloads, so they stay short and underscore-free."""
    subject = " ".join(value.split())
    if not SUBJECT_PATTERN.match(subject) or "_" in subject or len(subject.encode("utf-8")) > 30:
        return ValidationResult(False, message="Subject must be 1-30 letters, digits, spaces, '&', '.', '+' or '-'.")
    return ValidationResult(True, value=subject)
