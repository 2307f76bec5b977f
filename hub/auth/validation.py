"""
Password and PIN rules.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

PASSWORD_MIN_LENGTH = 8
RESET_PASSWORD_MIN_LENGTH = 6
PIN_LENGTH = 6

_UPPERCASE = re.compile(r"[A-Z]")
_DIGIT_OR_SPECIAL = re.compile(r"[0-9!@#$%^&*(),.?\":{}|<>_\-+=\[\]\\/;'`~]")
_PIN = re.compile(r"^\d{6}$")
_REPEATED_PAIR = re.compile(r"^(\d{2})\1{2}$")
_ALTERNATING = re.compile(r"^(\d)(\d)\1\2\1\2$")
_DOUBLED_TRIPLE = re.compile(r"^(\d)\1(\d)\2(\d)\3$")


@dataclass
class ValidationResult:
    """Outcome of a rule check; `errors` holds message keys."""
    errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def first_error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None


def validate_password(password: str, min_length: int = PASSWORD_MIN_LENGTH) -> ValidationResult:
    """
    At least `min_length` characters, one uppercase letter and one digit or
    special character.
    """
    result = ValidationResult()
    if len(password) < min_length:
        result.errors.append("password_too_short")
    if not _UPPERCASE.search(password):
        result.errors.append("password_needs_uppercase")
    if not _DIGIT_OR_SPECIAL.search(password):
        result.errors.append("password_needs_digit_or_special")
    return result


def is_simple_sequence(pin: str) -> bool:
    """
    Detect PINs that are trivial to guess.

    Example:
        >>> is_simple_sequence("123456"), is_simple_sequence("121212"), is_simple_sequence("482915")
        (True, True, False)
    """
    if len(pin) != PIN_LENGTH or not pin.isdigit():
        return False
    if len(set(pin)) == 1:
        return True

    digits = [int(c) for c in pin]
    steps = {b - a for a, b in zip(digits, digits[1:])}
    if steps in ({1}, {-1}):
        return True

    return bool(_REPEATED_PAIR.match(pin) or _ALTERNATING.match(pin) or _DOUBLED_TRIPLE.match(pin))


def validate_pin(pin: str) -> ValidationResult:
    result = ValidationResult()
    if not _PIN.match(pin):
        result.errors.append("pin_format")
    elif is_simple_sequence(pin):
        result.errors.append("pin_too_simple")
    return result


def validate_secret(secret: str, secret_type: str = "password") -> ValidationResult:
    if secret_type == "pin":
        return validate_pin(secret)
    return validate_password(secret)


def is_password_history_valid(new_password: str, old_password: Optional[str]) -> bool:
    """New password must differ from the one it replaces."""
    if not old_password:
        return True
    return new_password != old_password
