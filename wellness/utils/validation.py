"""Form validation helpers shared by the auth views."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Optional, Union

MINIMUM_AGE = 13

_EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
_SPECIAL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


@dataclass
class PasswordValidation:
    is_valid: bool
    checks: Dict[str, bool] = field(default_factory=dict)

    def failed(self) -> list[str]:
        return [name for name, passed in self.checks.items() if not passed]


def validate_password(password: str) -> PasswordValidation:
    """Return the strength checks for ``password``.

    Every check must pass for the password to be considered valid: at least
    eight characters, one uppercase letter, one lowercase letter, one digit and
    one special character.
    """

    password = password or ''
    checks = {
        'length': len(password) >= 8,
        'uppercase': re.search(r'[A-Z]', password) is not None,
        'lowercase': re.search(r'[a-z]', password) is not None,
        'number': re.search(r'\d', password) is not None,
        'special': _SPECIAL_RE.search(password) is not None,
    }
    return PasswordValidation(is_valid=all(checks.values()), checks=checks)


def validate_email(email: str) -> bool:
    if not email:
        return False
    return _EMAIL_RE.fullmatch(email) is not None


def _parse_date(value: Union[str, date, None]) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def validate_age(date_of_birth: Union[str, date, None], today: Optional[date] = None) -> bool:
    """Return ``True`` when the person is at least :data:`MINIMUM_AGE` years old."""

    birth_date = _parse_date(date_of_birth)
    if birth_date is None:
        return False

    today = today or date.today()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age >= MINIMUM_AGE
