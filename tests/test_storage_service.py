from __future__ import annotations

from datetime import date, timedelta
from tempfile import TemporaryDirectory
from unittest import TestCase

from wellness.guard import SessionContext
from wellness.services.catalog import find_breathing_pattern
from wellness.services.local_backend import LocalBackend
from wellness.services.realtime import ChangeFeed
from wellness.services.storage_service import (
    MAX_WATER_CUPS,
    StorageNotConfigured,
    StorageService,
    clean_fields,
    get_tracker,
)


class StorageServiceTests(TestCase):
    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.backend = LocalBackend(secret_key="storage-secret", data_dir=self.tmpdir.name)
        session = self.backend.sign_up("user@example.com", "Sunrise#2024", {}).session
        self.ctx = SessionContext(
            user={"id": session.user.id, "email": session.user.email},
            access_token=session.access_token,
            refresh_token=session.refresh_token,
        )
        self.feed = ChangeFeed()
        self.service = StorageService(self.backend, self.feed)

    def test_daily_entry_is_updated_in_place(self) -> None:
        first, created = self.service.save_daily_entry(self.ctx, "mood", clean_fields("mood", {"mood_value": "1"}))
        second, created_again = self.service.save_daily_entry(
            self.ctx, "mood", clean_fields("mood", {"mood_value": "4", "notes": "Great run"})
        )

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(first["id"], second["id"])
        rows = self.service.entries_for_date(self.ctx, "mood")
        self.assertEqual(1, len(rows))
        self.assertEqual("🤩", rows[0]["mood_emoji"])
        self.assertEqual("Great run", rows[0]["notes"])

    def test_daily_entries_for_different_days_are_separate(self) -> None:
        today = date.today()
        fields = clean_fields("sleep", {"bedtime": "22:30", "wake_time": "07:00", "sleep_quality": "4"})
        self.service.save_daily_entry(self.ctx, "sleep", fields, day=today - timedelta(days=1))
        self.service.save_daily_entry(self.ctx, "sleep", fields, day=today)

        rows = self.service.recent_entries(self.ctx, "sleep", 7)

        self.assertEqual([(today - timedelta(days=1)).isoformat(), today.isoformat()], [row["date"] for row in rows])

    def test_recent_window_includes_today_and_excludes_older_rows(self) -> None:
        today = date(2024, 5, 10)
        for offset in (0, 6, 7):
            self.service.save_daily_entry(
                self.ctx, "weight", {"weight": 80 - offset}, day=today - timedelta(days=offset)
            )

        rows = self.service.recent_entries(self.ctx, "weight", 7, today)

        self.assertEqual(["2024-05-04", "2024-05-10"], [row["date"] for row in rows])

    def test_multi_entry_tracker_refuses_daily_upsert(self) -> None:
        with self.assertRaises(ValueError):
            self.service.save_daily_entry(self.ctx, "meals", {"meal_name": "Soup"})

    def test_water_add_caps_and_removal_deletes_row(self) -> None:
        self.service.add_water(self.ctx, 1, goal=10)
        row = self.service.add_water(self.ctx, 1)
        self.assertEqual(2, row["cups_consumed"])
        self.assertEqual(10, row["daily_goal"])

        capped = self.service.add_water(self.ctx, 50)
        self.assertEqual(MAX_WATER_CUPS, capped["cups_consumed"])

        self.service.remove_water(self.ctx, MAX_WATER_CUPS)
        self.assertIsNone(self.service.entry_for_date(self.ctx, "water"))
        self.assertIsNone(self.service.remove_water(self.ctx))

    def test_water_goal_needs_a_row(self) -> None:
        self.assertIsNone(self.service.set_water_goal(self.ctx, 12))

        self.service.add_water(self.ctx)
        row = self.service.set_water_goal(self.ctx, 12)

        self.assertEqual(12, row["daily_goal"])
        with self.assertRaises(ValueError):
            self.service.set_water_goal(self.ctx, 40)

    def test_weight_adjust_starts_from_default_and_is_floored(self) -> None:
        row = self.service.adjust_weight(self.ctx, 0.5)
        self.assertEqual(70.5, row["weight"])

        row = self.service.adjust_weight(self.ctx, -100)
        self.assertEqual(30.0, row["weight"])
        self.assertEqual(1, len(self.service.entries_for_date(self.ctx, "weight")))

    def test_breathing_sessions_are_kept_apart_from_workouts(self) -> None:
        pattern = find_breathing_pattern("box")
        saved = self.service.log_breathing_session(self.ctx, pattern, 4)
        self.service.add_entry(self.ctx, "exercise", {"exercise_name": "Push-ups", "duration": 30})

        self.assertEqual("Box Breathing", saved["exercise_name"])
        self.assertEqual(64, saved["duration"])
        self.assertEqual(["Box Breathing"], [r["exercise_name"] for r in self.service.breathing_sessions(self.ctx)])
        workouts = self.service.entries_for_date(self.ctx, "exercise", name_excludes="breathing")
        self.assertEqual(["Push-ups"], [r["exercise_name"] for r in workouts])

        with self.assertRaises(ValueError):
            self.service.log_breathing_session(self.ctx, pattern, 0)

    def test_writes_are_published(self) -> None:
        table = get_tracker("meals").table
        with self.feed.subscribe(self.ctx.user_id, table) as subscription:
            row = self.service.add_entry(
                self.ctx, "meals", clean_fields("meals", {"meal_name": "Oats", "meal_type": "breakfast", "calories": "350"})
            )
            self.service.delete_entry(self.ctx, "meals", row["id"])

            inserted = subscription.get(timeout=0.1)
            deleted = subscription.get(timeout=0.1)

        self.assertEqual("INSERT", inserted.event_type)
        self.assertEqual("DELETE", deleted.event_type)
        self.assertEqual({"id": row["id"]}, deleted.record)
        self.assertEqual([], self.service.entries_for_date(self.ctx, "meals"))

    def test_profile_update_only_touches_known_columns(self) -> None:
        self.service.update_profile(self.ctx, {"first_name": "Grace", "email": "other@example.com"})

        profile = self.service.fetch_profile(self.ctx)

        self.assertEqual("Grace", profile["first_name"])
        self.assertEqual("user@example.com", profile["email"])
        with self.assertRaises(ValueError):
            self.service.update_profile(self.ctx, {"email": "other@example.com"})

    def test_unconfigured_backend_raises(self) -> None:
        service = StorageService(None)

        self.assertFalse(service.configured)
        with self.assertRaises(StorageNotConfigured):
            service.list_entries(self.ctx, "mood")

    def test_quick_actions_reject_non_finite_amounts(self) -> None:
        for value in ("nan", "inf", "-inf"):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    self.service.add_water(self.ctx, value)
                with self.assertRaises(ValueError):
                    self.service.adjust_weight(self.ctx, value)

        self.assertIsNone(self.service.entry_for_date(self.ctx, "water"))
        self.assertIsNone(self.service.entry_for_date(self.ctx, "weight"))


class CleanFieldsTests(TestCase):
    def test_mood_value_out_of_range(self) -> None:
        with self.assertRaises(ValueError):
            clean_fields("mood", {"mood_value": "5"})

    def test_sleep_times_are_normalised(self) -> None:
        fields = clean_fields("sleep", {"bedtime": "9:05", "wake_time": "06:30", "sleep_quality": "3"})

        self.assertEqual({"bedtime": "09:05", "wake_time": "06:30", "sleep_quality": 3}, fields)

    def test_meal_requires_known_type(self) -> None:
        with self.assertRaises(ValueError) as raised:
            clean_fields("meals", {"meal_name": "Cake", "meal_type": "brunch", "calories": "400"})
        self.assertEqual("Choose breakfast, lunch, dinner or snack.", str(raised.exception))

    def test_journal_tags_are_split(self) -> None:
        fields = clean_fields(
            "journal", {"title": "Day", "content": "Walked", "mood_emoji": "🙂", "tags": "walk, , outdoors"}
        )

        self.assertEqual(["walk", "outdoors"], fields["tags"])

    def test_weight_optional_measurements(self) -> None:
        fields = clean_fields("weight", {"weight": "72.46", "waist_measurement": ""})

        self.assertEqual(72.5, fields["weight"])
        self.assertIsNone(fields["waist_measurement"])

    def test_unknown_tracker(self) -> None:
        with self.assertRaises(ValueError):
            get_tracker("steps")

    def test_non_finite_numbers_are_rejected(self) -> None:
        cases = (
            ("meals", {"meal_name": "Oats", "meal_type": "lunch", "calories": "inf"}),
            ("meals", {"meal_name": "Oats", "meal_type": "lunch", "calories": "200", "protein": "nan"}),
            ("exercise", {"exercise_name": "Run", "duration": "inf"}),
            ("weight", {"weight": "nan"}),
            ("mood", {"mood_value": "nan"}),
        )
        for tracker, fields in cases:
            with self.subTest(tracker=tracker, fields=fields), self.assertRaises(ValueError):
                clean_fields(tracker, fields)
