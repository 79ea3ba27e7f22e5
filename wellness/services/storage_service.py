from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..guard import SessionContext
from .backend import Backend, BackendError, Query
from .catalog import BreathingPattern
from .realtime import ChangeEvent, ChangeFeed

logger = logging.getLogger(__name__)

MAX_WATER_CUPS = 20
DEFAULT_WATER_GOAL = 8
MIN_WEIGHT_KG = 30.0
DEFAULT_WEIGHT_KG = 70.0
MAX_WEIGHT_KG = 500.0
MAX_WEIGHT_CHANGE_KG = 100.0
MEAL_TYPES = ('breakfast', 'lunch', 'dinner', 'snack')
JOURNAL_MOODS = ('😢', '😔', '😐', '🙂', '😊')
MOOD_EMOJIS = ('😞', '😐', '😊', '😁', '🤩')


class StorageNotConfigured(Exception):
    """Raised when no backend is configured for tracker data."""


@dataclass(frozen=True)
class Tracker:
    name: str
    table: str
    one_per_day: bool
    name_column: Optional[str] = None


TRACKERS: Dict[str, Tracker] = {
    'mood': Tracker('mood', 'mood_entries', True),
    'water': Tracker('water', 'water_entries', True),
    'sleep': Tracker('sleep', 'sleep_entries', True),
    'weight': Tracker('weight', 'weight_entries', True),
    'meals': Tracker('meals', 'meal_entries', False),
    'journal': Tracker('journal', 'journal_entries', False),
    'exercise': Tracker('exercise', 'exercise_entries', False, name_column='exercise_name'),
    'stretch': Tracker('stretch', 'stretch_entries', False, name_column='stretch_name'),
}


def get_tracker(name: str) -> Tracker:
    try:
        return TRACKERS[name]
    except KeyError as exc:
        raise ValueError(f'Unknown tracker: {name}') from exc


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _day(value: Optional[date]) -> str:
    return (value or date.today()).isoformat()


def parse_number(
    value: Any,
    field: str,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
) -> float:
    """Parse a user-entered number, rejecting ``nan``, infinities and out-of-range values."""

    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f'{field} must be a number.') from exc
    if not math.isfinite(number):
        raise ValueError(f'{field} must be a number.')
    too_low = minimum is not None and number < minimum
    too_high = maximum is not None and number > maximum
    if too_low or too_high:
        if minimum is not None and maximum is not None:
            bounds = f'between {minimum:g} and {maximum:g}'
        elif minimum is not None:
            bounds = f'at least {minimum:g}'
        else:
            bounds = f'at most {maximum:g}'
        raise ValueError(f'{field} must be {bounds}.')
    return number


def _optional_number(value: Any, field: str, minimum: float = 0, maximum: Optional[float] = None) -> Optional[float]:
    if value in (None, ''):
        return None
    return parse_number(value, field, minimum, maximum)


def _clock(value: Any, field: str) -> str:
    text = str(value or '').strip()
    try:
        parsed = datetime.strptime(text, '%H:%M')
    except ValueError as exc:
        raise ValueError(f'{field} must be a time in HH:MM format.') from exc
    return parsed.strftime('%H:%M')


def clean_fields(tracker: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and normalise the user-editable columns of a tracker row.

    Raises ``ValueError`` with a message suitable for flashing to the user.
    """

    if tracker == 'mood':
        value = int(parse_number(fields.get('mood_value'), 'Mood', 0, len(MOOD_EMOJIS) - 1))
        return {
            'mood_value': value,
            'mood_emoji': MOOD_EMOJIS[value],
            'notes': (fields.get('notes') or '').strip() or None,
        }

    if tracker == 'water':
        cleaned = {'cups_consumed': parse_number(fields.get('cups_consumed', 0), 'Cups', 0, MAX_WATER_CUPS)}
        if fields.get('daily_goal') not in (None, ''):
            cleaned['daily_goal'] = int(parse_number(fields['daily_goal'], 'Daily goal', 1, MAX_WATER_CUPS))
        return cleaned

    if tracker == 'sleep':
        return {
            'bedtime': _clock(fields.get('bedtime'), 'Bedtime'),
            'wake_time': _clock(fields.get('wake_time'), 'Wake time'),
            'sleep_quality': int(parse_number(fields.get('sleep_quality'), 'Sleep quality', 1, 5)),
        }

    if tracker == 'weight':
        return {
            'weight': round(parse_number(fields.get('weight'), 'Weight', 1, MAX_WEIGHT_KG), 1),
            'body_fat_percentage': _optional_number(fields.get('body_fat_percentage'), 'Body fat', 0, 100),
            'waist_measurement': _optional_number(fields.get('waist_measurement'), 'Waist'),
            'chest_measurement': _optional_number(fields.get('chest_measurement'), 'Chest'),
            'hip_measurement': _optional_number(fields.get('hip_measurement'), 'Hips'),
        }

    if tracker == 'meals':
        name = (fields.get('meal_name') or '').strip()
        if not name:
            raise ValueError('Please give the meal a name.')
        meal_type = (fields.get('meal_type') or '').strip().lower()
        if meal_type not in MEAL_TYPES:
            raise ValueError('Choose breakfast, lunch, dinner or snack.')
        return {
            'meal_name': name,
            'meal_type': meal_type,
            'calories': int(parse_number(fields.get('calories'), 'Calories', 0)),
            'protein': _optional_number(fields.get('protein'), 'Protein'),
            'carbs': _optional_number(fields.get('carbs'), 'Carbs'),
            'fat': _optional_number(fields.get('fat'), 'Fat'),
        }

    if tracker == 'journal':
        title = (fields.get('title') or '').strip()
        content = (fields.get('content') or '').strip()
        if not title or not content:
            raise ValueError('A journal entry needs a title and some content.')
        mood_emoji = fields.get('mood_emoji') or '😐'
        if mood_emoji not in JOURNAL_MOODS:
            raise ValueError('Pick one of the journal moods.')
        tags = fields.get('tags') or []
        if isinstance(tags, str):
            tags = [tag.strip() for tag in tags.split(',')]
        return {
            'title': title,
            'content': content,
            'mood_emoji': mood_emoji,
            'tags': [tag for tag in tags if tag],
        }

    if tracker in ('exercise', 'stretch'):
        column = 'exercise_name' if tracker == 'exercise' else 'stretch_name'
        name = (fields.get(column) or '').strip()
        if not name:
            raise ValueError('A name is required.')
        return {column: name, 'duration': int(parse_number(fields.get('duration'), 'Duration', 1))}

    raise ValueError(f'Unknown tracker: {tracker}')


class StorageService:
    """Tracker persistence on top of the configured backend.

    One-per-day trackers are upserted with a check-then-insert-or-update; the
    store itself does not enforce uniqueness. Every successful write is
    announced on the change feed so open pages can refetch.
    """

    def __init__(self, backend: Optional[Backend], change_feed: Optional[ChangeFeed] = None) -> None:
        self._backend = backend
        self._feed = change_feed or ChangeFeed()

    @property
    def configured(self) -> bool:
        return self._backend is not None

    @property
    def change_feed(self) -> ChangeFeed:
        return self._feed

    # --- reads ----------------------------------------------------------
    def list_entries(
        self,
        ctx: SessionContext,
        tracker: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        descending: bool = False,
        name_contains: Optional[str] = None,
        name_excludes: Optional[str] = None,
        order_by: str = 'date',
    ) -> List[Dict[str, Any]]:
        definition = get_tracker(tracker)
        query = Query(
            filters={'user_id': ctx.user_id},
            date_from=start.isoformat() if start else None,
            date_to=end.isoformat() if end else None,
            order_by=order_by,
            descending=descending,
            name_column=definition.name_column,
            name_contains=name_contains,
            name_excludes=name_excludes,
        )
        return self._require_backend().select(definition.table, query, ctx.access_token)

    def recent_entries(
        self,
        ctx: SessionContext,
        tracker: str,
        days: int,
        today: Optional[date] = None,
        **kwargs: Any,
    ) -> List[Dict[str, Any]]:
        """Rows from the last ``days`` days, today included, oldest first."""

        today = today or date.today()
        start = today - timedelta(days=max(days, 1) - 1)
        return self.list_entries(ctx, tracker, start=start, end=today, **kwargs)

    def entry_for_date(self, ctx: SessionContext, tracker: str, day: Optional[date] = None) -> Optional[Dict[str, Any]]:
        rows = self.list_entries(ctx, tracker, start=day or date.today(), end=day or date.today(), order_by='created_at')
        return rows[0] if rows else None

    def entries_for_date(self, ctx: SessionContext, tracker: str, day: Optional[date] = None, **kwargs: Any):
        day = day or date.today()
        return self.list_entries(ctx, tracker, start=day, end=day, order_by='created_at', **kwargs)

    # --- writes ---------------------------------------------------------
    def save_daily_entry(
        self,
        ctx: SessionContext,
        tracker: str,
        fields: Dict[str, Any],
        day: Optional[date] = None,
    ) -> Tuple[Dict[str, Any], bool]:
        """Insert or update the single row for ``day``; returns ``(row, created)``."""

        definition = get_tracker(tracker)
        if not definition.one_per_day:
            raise ValueError(f'{tracker} allows several entries per day; use add_entry instead.')

        existing = self.entry_for_date(ctx, tracker, day)
        if existing:
            changes = {**fields, 'updated_at': _now()}
            row = self._require_backend().update(
                definition.table, existing['id'], changes, access_token=ctx.access_token, user_id=ctx.user_id
            )
            row = row or {**existing, **changes}
            self._publish(definition.table, ctx, 'UPDATE', row)
            logger.info('storage.entry.updated', extra={'user_id': ctx.user_id, 'tracker': tracker})
            return row, False

        record = {**fields, 'user_id': ctx.user_id, 'date': _day(day)}
        row = self._require_backend().insert(definition.table, record, access_token=ctx.access_token)
        self._publish(definition.table, ctx, 'INSERT', row)
        logger.info('storage.entry.created', extra={'user_id': ctx.user_id, 'tracker': tracker})
        return row, True

    def add_entry(
        self,
        ctx: SessionContext,
        tracker: str,
        fields: Dict[str, Any],
        day: Optional[date] = None,
    ) -> Dict[str, Any]:
        definition = get_tracker(tracker)
        record = {**fields, 'user_id': ctx.user_id, 'date': _day(day)}
        row = self._require_backend().insert(definition.table, record, access_token=ctx.access_token)
        self._publish(definition.table, ctx, 'INSERT', row)
        logger.info('storage.entry.created', extra={'user_id': ctx.user_id, 'tracker': tracker})
        return row

    def delete_entry(self, ctx: SessionContext, tracker: str, entry_id: str) -> None:
        definition = get_tracker(tracker)
        self._require_backend().delete(definition.table, entry_id, access_token=ctx.access_token, user_id=ctx.user_id)
        self._publish(definition.table, ctx, 'DELETE', {'id': entry_id})
        logger.info('storage.entry.deleted', extra={'user_id': ctx.user_id, 'tracker': tracker})

    # --- profile --------------------------------------------------------
    def fetch_profile(self, ctx: SessionContext) -> Optional[Dict[str, Any]]:
        try:
            rows = self._require_backend().select(
                'profiles', Query(filters={'id': ctx.user_id}, limit=1), ctx.access_token
            )
        except BackendError:
            logger.warning('storage.profile.fetch_failed', exc_info=True, extra={'user_id': ctx.user_id})
            return None
        return rows[0] if rows else None

    def update_profile(self, ctx: SessionContext, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        allowed = {'first_name', 'last_name', 'date_of_birth', 'gender', 'marketing_consent'}
        cleaned = {key: value for key, value in changes.items() if key in allowed}
        if not cleaned:
            raise ValueError('Nothing to update.')
        cleaned['updated_at'] = _now()
        row = self._require_backend().update('profiles', ctx.user_id, cleaned, access_token=ctx.access_token)
        self._publish('profiles', ctx, 'UPDATE', row or {'id': ctx.user_id, **cleaned})
        return row

    # --- water ----------------------------------------------------------
    def add_water(self, ctx: SessionContext, amount: Any = 1, goal: Optional[int] = None) -> Dict[str, Any]:
        amount = parse_number(amount, 'Amount', maximum=MAX_WATER_CUPS)
        if amount <= 0:
            raise ValueError('Amount must be positive.')
        existing = self.entry_for_date(ctx, 'water')
        current = float(existing['cups_consumed']) if existing else 0.0
        daily_goal = goal or (existing or {}).get('daily_goal') or DEFAULT_WATER_GOAL
        cups = min(current + amount, MAX_WATER_CUPS)
        row, _ = self.save_daily_entry(ctx, 'water', {'cups_consumed': cups, 'daily_goal': daily_goal})
        return row

    def remove_water(self, ctx: SessionContext, amount: float = 1) -> Optional[Dict[str, Any]]:
        """Take cups away; the day's row is deleted once it reaches zero."""

        existing = self.entry_for_date(ctx, 'water')
        if not existing or float(existing.get('cups_consumed') or 0) <= 0:
            return None
        cups = max(float(existing['cups_consumed']) - amount, 0)
        if cups == 0:
            self.delete_entry(ctx, 'water', existing['id'])
            return None
        row, _ = self.save_daily_entry(ctx, 'water', {'cups_consumed': cups, 'daily_goal': existing.get('daily_goal')})
        return row

    def set_water_goal(self, ctx: SessionContext, goal: int) -> Optional[Dict[str, Any]]:
        """Persist today's goal; returns ``None`` when there is no row to attach it to yet."""

        goal = int(parse_number(goal, 'Daily goal', 1, MAX_WATER_CUPS))
        existing = self.entry_for_date(ctx, 'water')
        if not existing:
            return None
        row, _ = self.save_daily_entry(ctx, 'water', {'daily_goal': goal})
        return row

    # --- weight ---------------------------------------------------------
    def adjust_weight(self, ctx: SessionContext, delta: Any) -> Dict[str, Any]:
        delta = parse_number(delta, 'Weight change', -MAX_WEIGHT_CHANGE_KG, MAX_WEIGHT_CHANGE_KG)
        rows = self.recent_entries(ctx, 'weight', 30)
        current = float(rows[-1]['weight']) if rows else DEFAULT_WEIGHT_KG
        new_weight = min(max(round(current + delta, 1), MIN_WEIGHT_KG), MAX_WEIGHT_KG)
        row, _ = self.save_daily_entry(ctx, 'weight', {'weight': new_weight})
        return row

    # --- breathing ------------------------------------------------------
    def log_breathing_session(self, ctx: SessionContext, pattern: BreathingPattern, cycles: int) -> Dict[str, Any]:
        if cycles <= 0:
            raise ValueError('Complete at least one breathing cycle before saving.')
        return self.add_entry(
            ctx,
            'exercise',
            {'exercise_name': pattern.session_name, 'duration': cycles * pattern.cycle_seconds},
        )

    def breathing_sessions(self, ctx: SessionContext, day: Optional[date] = None) -> List[Dict[str, Any]]:
        return self.entries_for_date(ctx, 'exercise', day, name_contains='breathing', descending=True)

    # --- helpers --------------------------------------------------------
    def _require_backend(self) -> Backend:
        if self._backend is None:
            raise StorageNotConfigured('Supabase is not configured; tracker data is unavailable.')
        return self._backend

    def _publish(self, table: str, ctx: SessionContext, event_type: str, record: Dict[str, Any]) -> None:
        self._feed.publish(ChangeEvent(table=table, user_id=ctx.user_id, event_type=event_type, record=record))
