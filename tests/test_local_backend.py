from __future__ import annotations

import os
from tempfile import TemporaryDirectory
from types import SimpleNamespace
from unittest import TestCase
from unittest.mock import patch

from wellness.services.backend import BackendError, Query
from wellness.services.local_backend import LocalBackend


class LocalBackendAuthTests(TestCase):
    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.backend = LocalBackend(secret_key="local-secret", data_dir=self.tmpdir.name)

    def test_sign_up_returns_session_and_creates_profile(self) -> None:
        response = self.backend.sign_up("New@Example.com", "Sunrise#2024", {"first_name": "Ada"})

        self.assertEqual("new@example.com", response.user.email)
        self.assertIsNotNone(response.session)
        profiles = self.backend.select("profiles", Query(filters={"id": response.user.id}))
        self.assertEqual("Ada", profiles[0]["first_name"])

    def test_duplicate_sign_up_is_rejected(self) -> None:
        self.backend.sign_up("a@example.com", "Sunrise#2024", {})

        with self.assertRaises(BackendError) as raised:
            self.backend.sign_up("a@example.com", "Sunrise#2024", {})
        self.assertEqual("User already registered", raised.exception.message)

    def test_wrong_password_is_rejected(self) -> None:
        self.backend.sign_up("a@example.com", "Sunrise#2024", {})

        with self.assertRaises(BackendError) as raised:
            self.backend.sign_in("a@example.com", "wrong")
        self.assertEqual("invalid_credentials", raised.exception.code)

    def test_unconfirmed_email_blocks_sign_in_until_confirmed(self) -> None:
        backend = LocalBackend("local-secret", data_dir=self.tmpdir.name, require_email_confirmation=True)
        response = backend.sign_up("c@example.com", "Sunrise#2024", {})

        self.assertIsNone(response.session)
        self.assertEqual("confirm_signup", backend.outbox[-1]["template"])
        with self.assertRaises(BackendError) as raised:
            backend.sign_in("c@example.com", "Sunrise#2024")
        self.assertEqual("Email not confirmed", raised.exception.message)

        backend.confirm_email("c@example.com")
        self.assertIsNotNone(backend.sign_in("c@example.com", "Sunrise#2024").session)

    def test_signed_out_token_is_rejected(self) -> None:
        session = self.backend.sign_up("a@example.com", "Sunrise#2024", {}).session
        self.assertEqual("a@example.com", self.backend.get_user(session.access_token).email)

        self.backend.sign_out(session.access_token)

        with self.assertRaises(BackendError):
            self.backend.get_user(session.access_token)

    def test_refresh_token_issues_new_session(self) -> None:
        session = self.backend.sign_up("a@example.com", "Sunrise#2024", {}).session

        refreshed = self.backend.refresh_session(session.refresh_token)

        self.assertEqual(session.user.id, refreshed.user.id)
        with self.assertRaises(BackendError):
            self.backend.refresh_session(session.access_token)

    def test_password_reset_flow(self) -> None:
        self.backend.sign_up("a@example.com", "Sunrise#2024", {})

        self.backend.send_password_reset("a@example.com", "http://localhost/auth/reset-password")
        mail = self.backend.outbox[-1]
        self.assertEqual("recovery", mail["template"])
        self.assertTrue(mail["link"].startswith("http://localhost/auth/reset-password?token="))

        recovery = self.backend.verify_recovery_token(mail["token"])
        with self.assertRaises(BackendError):
            self.backend.update_password(recovery.access_token, recovery.refresh_token, "Sunrise#2024")
        self.backend.update_password(recovery.access_token, recovery.refresh_token, "Moonrise#2025")

        self.assertIsNotNone(self.backend.sign_in("a@example.com", "Moonrise#2025").session)

    def test_reset_for_unknown_email_is_silent(self) -> None:
        self.backend.send_password_reset("nobody@example.com", None)

        self.assertEqual([], self.backend.outbox)

    def test_recovery_requires_recovery_token(self) -> None:
        session = self.backend.sign_up("a@example.com", "Sunrise#2024", {}).session

        with self.assertRaises(BackendError) as raised:
            self.backend.verify_recovery_token(session.refresh_token)
        self.assertEqual("otp_expired", raised.exception.code)


class LocalBackendDataTests(TestCase):
    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.backend = LocalBackend(secret_key="local-secret", data_dir=self.tmpdir.name)
        self.alice = self.backend.sign_up("alice@example.com", "Sunrise#2024", {}).session
        self.bob = self.backend.sign_up("bob@example.com", "Sunrise#2024", {}).session

    def _insert(self, session, **fields):
        return self.backend.insert(
            "exercise_entries", {"user_id": session.user.id, **fields}, access_token=session.access_token
        )

    def test_rows_are_scoped_to_token_owner(self) -> None:
        self._insert(self.alice, date="2024-05-01", exercise_name="Squats", duration=45)
        self._insert(self.bob, date="2024-05-01", exercise_name="Plank", duration=30)

        rows = self.backend.select("exercise_entries", Query(), self.alice.access_token)

        self.assertEqual(["Squats"], [row["exercise_name"] for row in rows])

    def test_insert_for_another_user_is_refused(self) -> None:
        with self.assertRaises(BackendError) as raised:
            self.backend.insert(
                "exercise_entries",
                {"user_id": self.bob.user.id, "date": "2024-05-01"},
                access_token=self.alice.access_token,
            )
        self.assertEqual("42501", raised.exception.code)

    def test_name_filters_and_date_window(self) -> None:
        self._insert(self.alice, date="2024-05-01", exercise_name="Box Breathing", duration=64)
        self._insert(self.alice, date="2024-05-02", exercise_name="Squats", duration=45)
        self._insert(self.alice, date="2024-05-09", exercise_name="Lunges", duration=45)

        breathing = self.backend.select(
            "exercise_entries",
            Query(name_column="exercise_name", name_contains="breathing"),
            self.alice.access_token,
        )
        window = self.backend.select(
            "exercise_entries",
            Query(
                date_from="2024-05-01",
                date_to="2024-05-07",
                name_column="exercise_name",
                name_excludes="breathing",
            ),
            self.alice.access_token,
        )

        self.assertEqual(["Box Breathing"], [row["exercise_name"] for row in breathing])
        self.assertEqual(["Squats"], [row["exercise_name"] for row in window])

    def test_ordering_limit_and_columns(self) -> None:
        for day in ("2024-05-03", "2024-05-01", "2024-05-02"):
            self._insert(self.alice, date=day, exercise_name="Squats", duration=45)

        rows = self.backend.select(
            "exercise_entries",
            Query(order_by="date", descending=True, limit=2, columns=("date",)),
            self.alice.access_token,
        )

        self.assertEqual([{"date": "2024-05-03"}, {"date": "2024-05-02"}], rows)

    def test_update_and_delete_ignore_other_users_rows(self) -> None:
        row = self._insert(self.alice, date="2024-05-01", exercise_name="Squats", duration=45)

        self.assertIsNone(
            self.backend.update("exercise_entries", row["id"], {"duration": 1}, access_token=self.bob.access_token)
        )
        self.backend.delete("exercise_entries", row["id"], access_token=self.bob.access_token)
        remaining = self.backend.select("exercise_entries", Query(), self.alice.access_token)
        self.assertEqual(45, remaining[0]["duration"])

        updated = self.backend.update(
            "exercise_entries", row["id"], {"duration": 60}, access_token=self.alice.access_token
        )
        self.assertEqual(60, updated["duration"])
        self.backend.delete("exercise_entries", row["id"], access_token=self.alice.access_token)
        self.assertEqual([], self.backend.select("exercise_entries", Query(), self.alice.access_token))


class LocalBackendRedisTests(TestCase):
    def test_documents_are_kept_in_redis_when_configured(self) -> None:
        redis_store = {}

        class _FakeRedis:
            def set(self, key: str, value: str) -> None:
                redis_store[key] = value

            def get(self, key: str):
                return redis_store.get(key)

        fake_module = SimpleNamespace(from_url=lambda *args, **kwargs: _FakeRedis())

        with TemporaryDirectory() as tmpdir:
            with patch.dict(os.environ, {"UPSTASH_REDIS_URL": "redis://localhost:6379"}, clear=False):
                with patch("wellness.services.local_backend.redis", fake_module):
                    backend = LocalBackend(secret_key="local-secret", data_dir=tmpdir)

            backend.sign_up("r@example.com", "Sunrise#2024", {})

            self.assertIn("wellness:users", redis_store)
            self.assertIn("wellness:tables/profiles", redis_store)
            self.assertFalse(os.path.exists(os.path.join(tmpdir, "users.json")))
            self.assertIsNotNone(backend.sign_in("r@example.com", "Sunrise#2024").session)
