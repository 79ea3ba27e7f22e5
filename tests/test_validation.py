from __future__ import annotations

from datetime import date
from unittest import TestCase

from wellness.utils.validation import validate_age, validate_email, validate_password


class PasswordValidationTests(TestCase):
    def test_strong_password_passes_every_check(self) -> None:
        result = validate_password("Sunrise#2024")

        self.assertTrue(result.is_valid)
        self.assertEqual([], result.failed())

    def test_each_missing_requirement_is_reported(self) -> None:
        result = validate_password("abc")

        self.assertFalse(result.is_valid)
        self.assertEqual(["length", "uppercase", "number", "special"], result.failed())
        self.assertTrue(result.checks["lowercase"])

    def test_empty_password_is_invalid(self) -> None:
        result = validate_password("")

        self.assertFalse(result.is_valid)
        self.assertFalse(any(result.checks.values()))


class EmailValidationTests(TestCase):
    def test_accepts_plain_address(self) -> None:
        self.assertTrue(validate_email("someone@example.com"))

    def test_rejects_malformed_addresses(self) -> None:
        for value in ("", "someone", "someone@example", "some one@example.com", "@example.com", "a@b.com\n"):
            with self.subTest(value=value):
                self.assertFalse(validate_email(value))


class AgeValidationTests(TestCase):
    def test_thirteenth_birthday_is_old_enough(self) -> None:
        self.assertTrue(validate_age("2011-06-15", today=date(2024, 6, 15)))

    def test_day_before_thirteenth_birthday_is_too_young(self) -> None:
        self.assertFalse(validate_age("2011-06-15", today=date(2024, 6, 14)))

    def test_unparseable_date_is_rejected(self) -> None:
        self.assertFalse(validate_age("not a date", today=date(2024, 1, 1)))
        self.assertFalse(validate_age(None))
