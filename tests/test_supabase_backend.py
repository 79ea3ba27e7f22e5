from __future__ import annotations

from types import SimpleNamespace
from unittest import TestCase
from unittest.mock import MagicMock, patch

from wellness.services.backend import BackendError, Query
from wellness.services.supabase_backend import SupabaseBackend


def _user(**overrides):
    fields = {
        "id": "user-1",
        "email": "ada@example.com",
        "user_metadata": {"first_name": "Ada"},
        "email_confirmed_at": None,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class SupabaseBackendAuthTests(TestCase):
    def setUp(self) -> None:
        patcher = patch("wellness.services.supabase_backend.create_client")
        self.create_client = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = MagicMock()
        self.create_client.return_value = self.client
        self.backend = SupabaseBackend("https://project.supabase.co", "anon-key")

    def test_sign_in_converts_response(self) -> None:
        user = _user()
        session = SimpleNamespace(access_token="access", refresh_token="refresh", user=user)
        self.client.auth.sign_in_with_password.return_value = SimpleNamespace(user=user, session=session)

        response = self.backend.sign_in("ada@example.com", "Sunrise#2024")

        self.create_client.assert_called_with("https://project.supabase.co", "anon-key")
        self.assertEqual("user-1", response.user.id)
        self.assertEqual({"first_name": "Ada"}, response.user.metadata)
        self.assertEqual("access", response.session.access_token)

    def test_sign_up_without_session_requires_confirmation(self) -> None:
        self.client.auth.sign_up.return_value = SimpleNamespace(user=_user(), session=None)

        response = self.backend.sign_up("ada@example.com", "Sunrise#2024", {"first_name": "Ada"})

        self.assertIsNone(response.session)
        payload = self.client.auth.sign_up.call_args.args[0]
        self.assertEqual({"data": {"first_name": "Ada"}}, payload["options"])

    def test_provider_errors_are_wrapped(self) -> None:
        error = Exception("Invalid login credentials")
        error.code = "invalid_credentials"
        error.status = 400
        self.client.auth.sign_in_with_password.side_effect = error

        with self.assertRaises(BackendError) as raised:
            self.backend.sign_in("ada@example.com", "bad")

        self.assertEqual("Invalid login credentials", raised.exception.message)
        self.assertEqual("invalid_credentials", raised.exception.code)
        self.assertEqual(400, raised.exception.status)

    def test_password_reset_passes_redirect(self) -> None:
        self.backend.send_password_reset("ada@example.com", "https://app.example.com/auth/reset-password")

        self.client.auth.reset_password_for_email.assert_called_once_with(
            "ada@example.com", {"redirect_to": "https://app.example.com/auth/reset-password"}
        )

    def test_recovery_token_is_verified_as_otp(self) -> None:
        user = _user()
        session = SimpleNamespace(access_token="access", refresh_token="refresh", user=user)
        self.client.auth.verify_otp.return_value = SimpleNamespace(user=user, session=session)

        result = self.backend.verify_recovery_token("hash")

        self.client.auth.verify_otp.assert_called_once_with({"token_hash": "hash", "type": "recovery"})
        self.assertEqual("access", result.access_token)

    def test_recovery_without_session_is_rejected(self) -> None:
        self.client.auth.verify_otp.return_value = SimpleNamespace(user=None, session=None)

        with self.assertRaises(BackendError) as raised:
            self.backend.verify_recovery_token("hash")
        self.assertEqual("otp_expired", raised.exception.code)

    def test_update_password_restores_session_first(self) -> None:
        self.client.auth.update_user.return_value = SimpleNamespace(user=_user())

        self.backend.update_password("access", "refresh", "Moonrise#2025")

        self.client.auth.set_session.assert_called_once_with("access", "refresh")
        self.client.auth.update_user.assert_called_once_with({"password": "Moonrise#2025"})


class SupabaseBackendDataTests(TestCase):
    def setUp(self) -> None:
        patcher = patch("wellness.services.supabase_backend.create_client")
        self.create_client = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = MagicMock()
        self.create_client.return_value = self.client
        self.backend = SupabaseBackend("https://project.supabase.co", "anon-key")

    def test_select_builds_filtered_query_with_user_token(self) -> None:
        builder = MagicMock()
        for method in ("select", "eq", "gte", "lte", "ilike", "order", "limit"):
            getattr(builder, method).return_value = builder
        builder.not_.ilike.return_value = builder
        builder.execute.return_value = SimpleNamespace(data=[{"id": "row-1"}])
        self.client.table.return_value = builder

        rows = self.backend.select(
            "exercise_entries",
            Query(
                filters={"user_id": "user-1"},
                date_from="2024-05-01",
                date_to="2024-05-07",
                order_by="date",
                descending=True,
                limit=5,
                name_column="exercise_name",
                name_excludes="breathing",
            ),
            access_token="token",
        )

        self.assertEqual([{"id": "row-1"}], rows)
        self.client.postgrest.auth.assert_called_once_with("token")
        self.client.table.assert_called_once_with("exercise_entries")
        builder.select.assert_called_once_with("*")
        builder.eq.assert_called_once_with("user_id", "user-1")
        builder.gte.assert_called_once_with("date", "2024-05-01")
        builder.lte.assert_called_once_with("date", "2024-05-07")
        builder.not_.ilike.assert_called_once_with("exercise_name", "%breathing%")
        builder.ilike.assert_not_called()
        builder.order.assert_called_once_with("date", desc=True)
        builder.limit.assert_called_once_with(5)

    def test_update_scopes_to_owner(self) -> None:
        table = self.client.table.return_value
        builder = table.update.return_value
        builder.eq.return_value = builder
        builder.execute.return_value = SimpleNamespace(data=[{"id": "row-1", "weight": 70}])

        row = self.backend.update("weight_entries", "row-1", {"weight": 70}, access_token="token", user_id="user-1")

        self.assertEqual(70, row["weight"])
        builder.eq.assert_any_call("id", "row-1")
        builder.eq.assert_any_call("user_id", "user-1")

    def test_insert_failure_is_wrapped(self) -> None:
        self.client.table.return_value.insert.return_value.execute.side_effect = Exception("permission denied")

        with self.assertRaises(BackendError):
            self.backend.insert("mood_entries", {"user_id": "user-1"}, access_token="token")

    def test_client_construction_failure_is_wrapped(self) -> None:
        self.create_client.side_effect = Exception("Invalid API key")
        query = Query(filters={"user_id": "user-1"})

        calls = (
            lambda: self.backend.select("mood_entries", query, access_token="token"),
            lambda: self.backend.insert("mood_entries", {"user_id": "user-1"}, access_token="token"),
            lambda: self.backend.update("mood_entries", "row-1", {"notes": "x"}, access_token="token"),
            lambda: self.backend.delete("mood_entries", "row-1", access_token="token"),
            lambda: self.backend.update_password("access", "refresh", "Moonrise#2025"),
        )
        for call in calls:
            with self.subTest(call=call), self.assertRaises(BackendError) as raised:
                call()
            self.assertEqual("Invalid API key", raised.exception.message)
