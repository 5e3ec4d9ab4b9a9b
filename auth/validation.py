"""
auth/validation.py -- Credential and profile policy checks.

Pure functions, no I/O. The service layer calls these and converts failures
into AppError codes (INVALID_EMAIL, WEAK_PASSWORD, INVALID_NAME).

Password policy: 8-100 characters, at least one uppercase letter, one
lowercase letter and one digit. Special characters are allowed but not
required.
"""

from __future__ import annotations

import re

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 100
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def password_problems(password: str) -> list[str]:
    """Return every rule the password breaks, in a stable order. Empty list = acceptable."""
    problems: list[str] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        problems.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password) > PASSWORD_MAX_LENGTH:
        problems.append(f"Password must be no more than {PASSWORD_MAX_LENGTH} characters long")
    if not re.search(r"[A-Z]", password):
        problems.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        problems.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        problems.append("Password must contain at least one number")
    return problems


def name_problem(name: str) -> str | None:
    """Return the reason the display name is unacceptable, or None. Length is measured after trimming."""
    length = len(name.strip())
    if length < NAME_MIN_LENGTH:
        return f"Name must be at least {NAME_MIN_LENGTH} characters long"
    if length > NAME_MAX_LENGTH:
        return f"Name must be no more than {NAME_MAX_LENGTH} characters long"
    return None
