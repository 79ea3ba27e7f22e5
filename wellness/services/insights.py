"""Read-time aggregation over fetched tracker rows.

Nothing here touches the backend: views fetch a window of rows through
:class:`~wellness.services.storage_service.StorageService` and hand them to
these functions to build the numbers and chart series shown on each page.
"""

from __future__ import annotations

from collections import Counter
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

SLEEP_TARGET_HOURS = 8
SLEEP_MIN_HOURS = 7
SLEEP_MAX_HOURS = 9

MOOD_LABELS = ('Very Bad', 'Bad', 'Neutral', 'Good', 'Excellent')
MOOD_EMOJIS = ('😞', '😐', '😊', '😁', '🤩')
DEFAULT_MOOD_VALUE = 2
MOOD_STREAK_LIMIT = 30

JOURNAL_MOOD_SCORES = {'😢': 1, '😔': 2, '😐': 3, '🙂': 4, '😊': 5}

DEFAULT_NUTRITION_GOALS = {'calories': 2500, 'protein': 100, 'carbs': 250, 'fat': 67}
DASHBOARD_CALORIE_BUDGET = 2200
DEFAULT_WATER_GOAL = 8
DEFAULT_WEIGHT_GOAL = 70.0


def _by_date(rows: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """First row per ``date``; later duplicates are ignored."""

    indexed: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        day = str(row.get('date') or '')[:10]
        if day and day not in indexed:
            indexed[day] = row
    return indexed


def _days_ending(today: date, count: int) -> List[date]:
    return [today - timedelta(days=offset) for offset in range(count - 1, -1, -1)]


def _average(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# --- sleep ------------------------------------------------------------------

def _clock_hours(value: str) -> float:
    hours, minutes = str(value).split(':')[:2]
    return int(hours) + int(minutes) / 60


def calculate_sleep_hours(bedtime: str, wake_time: str) -> float:
    """Hours between ``bedtime`` and ``wake_time`` (``HH:MM``), wrapping past midnight.

    >>> calculate_sleep_hours('22:30', '07:00')
    8.5
    >>> calculate_sleep_hours('06:00', '07:00')
    1.0
    """

    bed = _clock_hours(bedtime)
    wake = _clock_hours(wake_time)
    if bed > wake:
        wake += 24
    return wake - bed


def sleep_quality_label(rating: float) -> str:
    if rating >= 5:
        return 'Excellent'
    if rating >= 4:
        return 'Good'
    if rating >= 3:
        return 'Fair'
    if rating >= 2:
        return 'Poor'
    return 'Very Poor'


def sleep_duration_status(hours: float) -> str:
    if SLEEP_MIN_HOURS <= hours <= SLEEP_MAX_HOURS:
        return 'Optimal'
    if hours < SLEEP_MIN_HOURS:
        return 'Too Short'
    return 'Too Long'


def sleep_summary(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    nights = [
        {
            'date': row['date'],
            'hours': round(calculate_sleep_hours(row['bedtime'], row['wake_time']), 2),
            'quality': row.get('sleep_quality') or 0,
        }
        for row in rows
        if row.get('bedtime') and row.get('wake_time')
    ]
    average_hours = _average([night['hours'] for night in nights])
    average_quality = _average([float(night['quality']) for night in nights])

    if average_quality <= 0:
        grade = 'N/A'
    elif average_quality >= 4:
        grade = 'A'
    elif average_quality >= 3:
        grade = 'B'
    else:
        grade = 'C'

    return {
        'nights': nights,
        'average_hours': round(average_hours, 1),
        'average_quality': round(average_quality, 1),
        'quality_label': sleep_quality_label(average_quality) if nights else None,
        'duration_status': sleep_duration_status(average_hours) if nights else None,
        'goal_progress': min(average_hours / SLEEP_TARGET_HOURS * 100, 100),
        'grade': grade,
    }


# --- mood -------------------------------------------------------------------

def mood_emoji(value: Optional[int]) -> str:
    if value is None or not 0 <= int(value) < len(MOOD_EMOJIS):
        return MOOD_EMOJIS[DEFAULT_MOOD_VALUE]
    return MOOD_EMOJIS[int(value)]


def mood_label(value: Optional[int]) -> str:
    if value is None or not 0 <= int(value) < len(MOOD_LABELS):
        return MOOD_LABELS[DEFAULT_MOOD_VALUE]
    return MOOD_LABELS[int(value)]


def mood_summary(rows: List[Dict[str, Any]], today: Optional[date] = None, period_days: int = 7) -> Dict[str, Any]:
    """Average, most common emoji, streak, distribution and a gap-aware series.

    The streak counts consecutive days with an entry ending today, capped at
    :data:`MOOD_STREAK_LIMIT`.
    """

    today = today or date.today()
    indexed = _by_date(rows)

    values = [float(row['mood_value']) for row in rows if row.get('mood_value') is not None]
    counts = Counter(row.get('mood_emoji') for row in rows if row.get('mood_emoji'))

    streak = 0
    for offset in range(MOOD_STREAK_LIMIT):
        if (today - timedelta(days=offset)).isoformat() in indexed:
            streak += 1
        else:
            break

    series = []
    for day in _days_ending(today, period_days + 1):
        row = indexed.get(day.isoformat())
        series.append(
            {
                'date': day.isoformat(),
                'mood': row.get('mood_value') if row else None,
                'emoji': row.get('mood_emoji') if row else None,
            }
        )

    return {
        'average': round(_average(values), 1),
        'most_common': counts.most_common(1)[0][0] if counts else MOOD_EMOJIS[DEFAULT_MOOD_VALUE],
        'streak': streak,
        'total_entries': len(rows),
        'distribution': [{'emoji': emoji, 'count': count} for emoji, count in counts.items()],
        'series': series,
    }


def mood_status(value: Optional[int]) -> str:
    if value is None:
        return 'No entry today'
    if value >= 4:
        return 'Excellent mood today!'
    if value >= 3:
        return 'Good mood today'
    if value >= 2:
        return 'Neutral mood'
    if value >= 1:
        return 'Low mood today'
    return 'Very low mood'


# --- water ------------------------------------------------------------------

def water_percentage(cups: float, goal: float) -> int:
    if not goal:
        return 0
    return min(round(cups / goal * 100), 100)


def hydration_level(percentage: float) -> str:
    if percentage >= 100:
        return 'Excellent'
    if percentage >= 75:
        return 'Good'
    if percentage >= 50:
        return 'Fair'
    if percentage >= 25:
        return 'Low'
    return 'Very Low'


def hydration_message(percentage: float) -> str:
    if percentage >= 100:
        return "🎉 Fantastic! You've reached your daily hydration goal!"
    if percentage >= 75:
        return '💪 Almost there! Just a few more sips to go!'
    if percentage >= 50:
        return '🌊 Great progress! Your body is loving the hydration!'
    if percentage >= 25:
        return '💧 Good start! Keep the momentum going!'
    return '🚰 Time to hydrate! Your wellness journey starts now!'


def water_summary(rows: List[Dict[str, Any]], today: Optional[date] = None, days: int = 7) -> Dict[str, Any]:
    today = today or date.today()
    indexed = _by_date(rows)
    current = indexed.get(today.isoformat()) or {}
    cups = float(current.get('cups_consumed') or 0)
    goal = float(current.get('daily_goal') or DEFAULT_WATER_GOAL)
    percentage = water_percentage(cups, goal)

    series = []
    for day in _days_ending(today, days):
        row = indexed.get(day.isoformat())
        day_cups = float(row.get('cups_consumed') or 0) if row else 0.0
        day_goal = float(row.get('daily_goal') or DEFAULT_WATER_GOAL) if row else float(DEFAULT_WATER_GOAL)
        series.append(
            {
                'date': day.isoformat(),
                'day': day.strftime('%a'),
                'cups': day_cups,
                'goal': day_goal,
                'percentage': round(day_cups / day_goal * 100) if row and day_goal else 0,
            }
        )

    goal_days = sum(1 for point in series if point['cups'] >= point['goal'])
    return {
        'cups': cups,
        'goal': goal,
        'percentage': percentage,
        'goal_reached': cups >= goal,
        'level': hydration_level(percentage),
        'message': hydration_message(percentage),
        'series': series,
        'weekly_average': round(_average([point['cups'] for point in series]), 1),
        'consistency': round(goal_days / len(series) * 100) if series else 0,
    }


# --- weight -----------------------------------------------------------------

def weight_status(current: float, goal: float) -> str:
    diff = current - goal
    if diff <= 0:
        return 'Goal Achieved'
    if diff <= 2:
        return 'Very Close'
    if diff <= 5:
        return 'On Track'
    if diff <= 10:
        return 'In Progress'
    return 'Getting Started'


def weight_summary(rows: List[Dict[str, Any]], goal: float = DEFAULT_WEIGHT_GOAL) -> Dict[str, Any]:
    """Progress over ``rows`` ordered oldest first."""

    weights = [float(row['weight']) for row in rows if row.get('weight') is not None]
    current = weights[-1] if weights else 0.0
    first = weights[0] if weights else current
    if first == goal:
        progress = 100.0 if current <= goal else 0.0
    else:
        progress = min(max((first - current) / (first - goal) * 100, 0.0), 100.0)

    if current and current <= goal:
        message = "🎉 Congratulations! You've reached your weight goal!"
    elif progress >= 75:
        message = "💪 Almost there! You're so close to your goal!"
    elif progress >= 50:
        message = '🌟 Great progress! Keep up the amazing work!'
    elif progress >= 25:
        message = '📈 Good start! Stay consistent with your journey!'
    else:
        message = '🎯 Begin your transformation! Every step counts!'

    return {
        'current': current,
        'first': first,
        'goal': goal,
        'total_change': round(first - current, 1),
        'progress': round(progress, 1),
        'goal_reached': bool(weights) and current <= goal,
        'status': weight_status(current, goal) if weights else None,
        'message': message,
        'series': [
            {
                'date': row['date'],
                'weight': row.get('weight'),
                'body_fat': row.get('body_fat_percentage'),
                'waist': row.get('waist_measurement'),
                'chest': row.get('chest_measurement'),
                'hips': row.get('hip_measurement'),
            }
            for row in rows
        ],
    }


# --- meals ------------------------------------------------------------------

def meal_summary(rows: List[Dict[str, Any]], goals: Optional[Dict[str, float]] = None) -> Dict[str, Any]:
    goals = {**DEFAULT_NUTRITION_GOALS, **(goals or {})}
    totals = {
        'calories': sum(float(row.get('calories') or 0) for row in rows),
        'protein': sum(float(row.get('protein') or 0) for row in rows),
        'carbs': sum(float(row.get('carbs') or 0) for row in rows),
        'fat': sum(float(row.get('fat') or 0) for row in rows),
    }
    score = round(sum(min(totals[key] / goals[key], 1) * 25 for key in totals if goals[key]))

    by_type = {meal_type: 0.0 for meal_type in ('breakfast', 'lunch', 'dinner', 'snack')}
    for row in rows:
        meal_type = row.get('meal_type')
        if meal_type in by_type:
            by_type[meal_type] += float(row.get('calories') or 0)

    return {
        'totals': totals,
        'goals': goals,
        'nutrition_score': score,
        'consistency_score': round(len(rows) / 4 * 100),
        'calories_by_type': by_type,
        'macro_calories': {
            'protein': totals['protein'] * 4,
            'carbs': totals['carbs'] * 4,
            'fat': totals['fat'] * 9,
        },
        'progress': {key: (totals[key] / goals[key] * 100 if goals[key] else 0) for key in totals},
    }


# --- journal ----------------------------------------------------------------

def search_journal(rows: List[Dict[str, Any]], term: str) -> List[Dict[str, Any]]:
    if not term:
        return list(rows)
    needle = term.lower()
    return [
        row
        for row in rows
        if needle in (row.get('title') or '').lower()
        or needle in (row.get('content') or '').lower()
        or any(needle in tag.lower() for tag in row.get('tags') or [])
    ]


def journal_trend(rows: List[Dict[str, Any]], days: int, today: Optional[date] = None) -> List[Dict[str, Any]]:
    today = today or date.today()
    grouped: Dict[str, List[int]] = {}
    for row in rows:
        score = JOURNAL_MOOD_SCORES.get(row.get('mood_emoji'))
        if score is not None:
            grouped.setdefault(str(row.get('date'))[:10], []).append(score)

    trend = []
    for day in _days_ending(today, days):
        scores = grouped.get(day.isoformat(), [])
        trend.append(
            {
                'date': day.isoformat(),
                'label': f"{day.strftime('%b')} {day.day}",
                'mood_score': _average(scores) if scores else None,
                'entry_count': len(scores),
            }
        )
    return trend


def journal_trend_insight(trend: List[Dict[str, Any]]) -> str:
    scores = [point['mood_score'] for point in trend if point['mood_score'] is not None]
    if len(scores) < 2:
        return 'Not enough data for trend analysis'
    difference = scores[-1] - scores[-2]
    if difference > 0.5:
        return '📈 Your mood is trending upward! Keep up the positive momentum.'
    if difference < -0.5:
        return '📉 Your mood has been declining. Consider reaching out for support.'
    return '📊 Your mood has been relatively stable recently.'


def journal_summary(rows: List[Dict[str, Any]], today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    scores = [JOURNAL_MOOD_SCORES[row['mood_emoji']] for row in rows if row.get('mood_emoji') in JOURNAL_MOOD_SCORES]
    recent = 0
    for row in rows:
        try:
            entry_day = date.fromisoformat(str(row.get('date'))[:10])
        except ValueError:
            continue
        if (today - entry_day).days <= 7:
            recent += 1

    weekly = journal_trend(rows, 7, today)
    tags = sorted({tag for row in rows for tag in row.get('tags') or []})
    return {
        'total_entries': len(rows),
        'recent_entries': recent,
        'average_mood_score': round(_average([float(score) for score in scores]), 1),
        'mood_counts': dict(Counter(row.get('mood_emoji') for row in rows if row.get('mood_emoji'))),
        'positive_entries': sum(1 for score in scores if score >= 4),
        'tags': tags,
        'weekly_trend': weekly,
        'monthly_trend': journal_trend(rows, 30, today),
        'quarterly_trend': journal_trend(rows, 90, today),
        'insight': journal_trend_insight(weekly),
    }


# --- dashboard --------------------------------------------------------------

def sleep_status(hours: float) -> str:
    if hours <= 0:
        return 'No data'
    if hours >= 8:
        return 'Great sleep!'
    if hours >= 7:
        return 'Good sleep'
    if hours >= 6:
        return 'Adequate sleep'
    return 'Need more sleep'


def dashboard_summary(
    mood: List[Dict[str, Any]],
    water: List[Dict[str, Any]],
    sleep: List[Dict[str, Any]],
    weight: List[Dict[str, Any]],
    meals: List[Dict[str, Any]],
    exercise: List[Dict[str, Any]],
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Combine a 7-day window of every tracker into chart points and today's stats.

    ``exercise`` is expected to exclude breathing sessions already. Exercise
    durations are stored in seconds and reported here in whole minutes.
    """

    today = today or date.today()
    mood_by_day = _by_date(mood)
    water_by_day = _by_date(water)
    sleep_by_day = _by_date(sleep)
    weight_by_day = _by_date(weight)

    series = []
    for day in _days_ending(today, 7):
        key = day.isoformat()
        sleep_row = sleep_by_day.get(key)
        hours = 0.0
        if sleep_row and sleep_row.get('bedtime') and sleep_row.get('wake_time'):
            hours = round(calculate_sleep_hours(sleep_row['bedtime'], sleep_row['wake_time']), 1)
        day_exercise = [row for row in exercise if str(row.get('date'))[:10] == key]
        series.append(
            {
                'date': key,
                'day': day.strftime('%a'),
                'mood': (mood_by_day.get(key) or {}).get('mood_value'),
                'water': float((water_by_day.get(key) or {}).get('cups_consumed') or 0),
                'sleep': hours,
                'weight': (weight_by_day.get(key) or {}).get('weight'),
                'calories': sum(float(row.get('calories') or 0) for row in meals if str(row.get('date'))[:10] == key),
                'exercise_minutes': round(sum(float(row.get('duration') or 0) for row in day_exercise) / 60),
                'exercise_sessions': len(day_exercise),
            }
        )

    latest = series[-1]
    previous_weight = series[-2]['weight'] if len(series) > 1 else None
    today_mood = mood_by_day.get(latest['date'])
    today_water = water_by_day.get(latest['date']) or {}
    today_sleep = sleep_by_day.get(latest['date']) or {}
    water_goal = float(today_water.get('daily_goal') or DEFAULT_WATER_GOAL)

    weight_change = None
    if latest['weight'] and previous_weight:
        weight_change = round(float(latest['weight']) - float(previous_weight), 1)

    stats = {
        'mood': {
            'value': today_mood.get('mood_value') if today_mood else DEFAULT_MOOD_VALUE,
            'emoji': today_mood.get('mood_emoji') if today_mood else MOOD_EMOJIS[DEFAULT_MOOD_VALUE],
            'status': mood_status(today_mood.get('mood_value')) if today_mood else 'No entry today',
        },
        'water': {
            'current': latest['water'],
            'goal': water_goal,
            'percentage': round(latest['water'] / water_goal * 100) if water_goal else 0,
        },
        'sleep': {
            'hours': latest['sleep'],
            'quality': today_sleep.get('sleep_quality'),
            'status': sleep_status(latest['sleep']),
        },
        'weight': {'current': latest['weight'], 'change': weight_change},
        'calories': {
            'consumed': latest['calories'],
            'remaining': max(0, DASHBOARD_CALORIE_BUDGET - latest['calories']),
        },
        'exercise': {'minutes': latest['exercise_minutes'], 'sessions': latest['exercise_sessions']},
    }
    return {'series': series, 'today': stats}
