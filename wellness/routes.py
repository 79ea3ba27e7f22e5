from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Callable, Dict, Optional

from flask import (
    Blueprint,
    Response,
    abort,
    current_app,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    session,
    stream_with_context,
    url_for,
)

from .guard import current_context
from .services import insights
from .services.backend import BackendError
from .services.catalog import (
    BREATHING_PATTERNS,
    STRETCH_SEQUENCES,
    WORKOUTS,
    find_breathing_pattern,
    find_exercise,
    find_stretch,
)
from .services.storage_service import (
    JOURNAL_MOODS,
    MEAL_TYPES,
    MAX_WEIGHT_KG,
    MIN_WEIGHT_KG,
    MOOD_EMOJIS,
    StorageNotConfigured,
    clean_fields,
    get_tracker,
    parse_number,
)

main_bp = Blueprint('main', __name__)

logger = logging.getLogger(__name__)

SSE_KEEPALIVE_SECONDS = 15
API_MAX_DAYS = 366


@main_bp.errorhandler(StorageNotConfigured)
def storage_not_configured(exc: StorageNotConfigured):
    logger.info('storage.not_configured', extra={'path': request.path})
    if request.path.startswith('/api/'):
        return {'error': 'Supabase is not configured'}, 503
    return render_template('not_configured.html'), 503


@main_bp.errorhandler(BackendError)
def storage_unavailable(exc: BackendError):
    logger.warning(
        'storage.read.failed',
        extra={'path': request.path, 'error': exc.message, 'error_code': exc.code},
    )
    if request.path.startswith('/api/'):
        return {'error': 'Tracker data is temporarily unavailable'}, 502
    return render_template('storage_error.html'), 502


def _parse_day(value: Optional[str], default: Optional[date] = None) -> date:
    if value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            flash('That date was not recognised; showing today instead.', 'warning')
    return default or date.today()


def _perform(event: str, success_message: Optional[str], action: Callable[[], Any]) -> Any:
    """Run a tracker write and flash the outcome.

    Validation problems (``ValueError``) and provider failures
    (``BackendError``) become form-level alerts; anything else propagates.
    """

    ctx = current_context()
    try:
        result = action()
    except ValueError as exc:
        flash(str(exc), 'warning')
        logger.info(f'{event}.validation_failed', extra={'user_id': ctx.user_id, 'error': str(exc)})
    except BackendError as exc:
        flash('We could not save your changes. Please try again.', 'danger')
        logger.warning(
            f'{event}.error',
            extra={'user_id': ctx.user_id, 'error': exc.message, 'error_code': exc.code},
        )
    else:
        if success_message:
            flash(success_message, 'success')
        logger.info(f'{event}.success', extra={'user_id': ctx.user_id})
        return result
    return None


def _delete(tracker: str, entry_id: str, target: str) -> Response:
    _perform(
        f'{tracker}.delete',
        'Entry removed.',
        lambda: current_app.storage_service.delete_entry(current_context(), tracker, entry_id),
    )
    return redirect(target)


# --- public pages -----------------------------------------------------------

@main_bp.route('/')
def index() -> str:
    return render_template('index.html')


@main_bp.route('/privacy')
def privacy() -> str:
    return render_template('privacy.html')


@main_bp.route('/terms')
def terms() -> str:
    return render_template('terms.html')


# --- dashboard --------------------------------------------------------------

def _dashboard_data(today: Optional[date] = None) -> Dict[str, Any]:
    storage = current_app.storage_service
    ctx = current_context()
    today = today or date.today()
    return insights.dashboard_summary(
        mood=storage.recent_entries(ctx, 'mood', 7, today),
        water=storage.recent_entries(ctx, 'water', 7, today),
        sleep=storage.recent_entries(ctx, 'sleep', 7, today),
        weight=storage.recent_entries(ctx, 'weight', 7, today),
        meals=storage.recent_entries(ctx, 'meals', 7, today),
        exercise=storage.recent_entries(ctx, 'exercise', 7, today, name_excludes='breathing'),
        today=today,
    )


@main_bp.route('/dashboard')
def dashboard() -> str:
    user = current_context().user
    logger.info('dashboard.view', extra={'user_id': user['id']})
    return render_template('dashboard.html', data=_dashboard_data())


# --- mood -------------------------------------------------------------------

@main_bp.route('/mood', methods=['GET', 'POST'])
def mood() -> str | Response:
    storage = current_app.storage_service
    ctx = current_context()

    if request.method == 'POST':
        _perform(
            'mood.save',
            'Mood saved. Thanks for checking in!',
            lambda: storage.save_daily_entry(ctx, 'mood', clean_fields('mood', request.form)),
        )
        return redirect(url_for('main.mood', period=request.args.get('period', 'week')))

    period = request.args.get('period', 'week')
    period_days = 30 if period == 'month' else 7
    rows = storage.recent_entries(ctx, 'mood', period_days + 1)
    today_entry = storage.entry_for_date(ctx, 'mood')
    return render_template(
        'mood.html',
        entry=today_entry,
        summary=insights.mood_summary(rows, period_days=period_days),
        period=period,
        emojis=MOOD_EMOJIS,
        labels=insights.MOOD_LABELS,
    )


# --- water ------------------------------------------------------------------

@main_bp.route('/water')
def water_alias() -> Response:
    return redirect(url_for('main.water'))


@main_bp.route('/dashboard/water', methods=['GET', 'POST'])
def water() -> str | Response:
    storage = current_app.storage_service
    ctx = current_context()

    if request.method == 'POST':
        action = request.form.get('action', 'add')
        if action == 'add':
            amount = request.form.get('amount', '1')
            _perform(
                'water.add',
                None,
                lambda: storage.add_water(ctx, amount, goal=session.get('water_goal')),
            )
        elif action == 'remove':
            _perform('water.remove', None, lambda: storage.remove_water(ctx))
        elif action == 'goal':
            goal = request.form.get('daily_goal', '')
            _perform('water.goal', 'Daily goal updated.', lambda: storage.set_water_goal(ctx, goal))
            if goal.isdigit() and 1 <= int(goal) <= 20:
                # Remembered until the first cup of the day creates a row to hold it.
                session['water_goal'] = int(goal)
        else:
            abort(400)
        return redirect(url_for('main.water'))

    rows = storage.recent_entries(ctx, 'water', 30)
    summary = insights.water_summary(rows)
    if not storage.entry_for_date(ctx, 'water') and session.get('water_goal'):
        summary['goal'] = float(session['water_goal'])
    return render_template('water.html', summary=summary, monthly=rows)


# --- sleep ------------------------------------------------------------------

@main_bp.route('/sleep', methods=['GET', 'POST'])
def sleep() -> str | Response:
    storage = current_app.storage_service
    ctx = current_context()
    selected = _parse_day(request.values.get('date'))

    if request.method == 'POST':
        _perform(
            'sleep.save',
            'Sleep logged.',
            lambda: storage.save_daily_entry(ctx, 'sleep', clean_fields('sleep', request.form), day=selected),
        )
        return redirect(url_for('main.sleep', date=selected.isoformat()))

    today = date.today()
    rows = storage.list_entries(
        ctx,
        'sleep',
        start=today - timedelta(days=30),
        end=today + timedelta(days=1),
        descending=True,
    )
    entry = storage.entry_for_date(ctx, 'sleep', selected)
    bedtime = entry['bedtime'] if entry else '22:30'
    wake_time = entry['wake_time'] if entry else '07:00'
    hours = insights.calculate_sleep_hours(bedtime, wake_time)
    return render_template(
        'sleep.html',
        selected=selected,
        entry=entry,
        bedtime=bedtime,
        wake_time=wake_time,
        quality=(entry or {}).get('sleep_quality') or 4,
        hours=round(hours, 1),
        duration_status=insights.sleep_duration_status(hours),
        summary=insights.sleep_summary(rows),
    )


# --- weight -----------------------------------------------------------------

@main_bp.route('/dashboard/weight', methods=['GET', 'POST'])
def weight() -> str | Response:
    storage = current_app.storage_service
    ctx = current_context()

    if request.method == 'POST':
        _perform(
            'weight.save',
            'Weight entry saved.',
            lambda: storage.save_daily_entry(ctx, 'weight', clean_fields('weight', request.form)),
        )
        return redirect(url_for('main.weight'))

    rows = storage.recent_entries(ctx, 'weight', 30)
    goal = float(session.get('weight_goal', insights.DEFAULT_WEIGHT_GOAL))
    return render_template(
        'weight.html',
        summary=insights.weight_summary(rows, goal),
        entry=storage.entry_for_date(ctx, 'weight'),
    )


@main_bp.route('/dashboard/weight/adjust', methods=['POST'])
def adjust_weight() -> Response:
    storage = current_app.storage_service
    ctx = current_context()
    delta = request.form.get('delta', '0')
    _perform('weight.adjust', None, lambda: storage.adjust_weight(ctx, delta))
    return redirect(url_for('main.weight'))


@main_bp.route('/dashboard/weight/goal', methods=['POST'])
def weight_goal() -> Response:
    try:
        goal = parse_number(request.form.get('goal_weight'), 'Goal weight', maximum=MAX_WEIGHT_KG)
    except ValueError:
        flash(f'Enter your goal weight in kilograms, up to {MAX_WEIGHT_KG:g}.', 'warning')
        return redirect(url_for('main.weight'))
    session['weight_goal'] = max(goal, MIN_WEIGHT_KG)
    flash('Goal weight updated.', 'success')
    return redirect(url_for('main.weight'))


# --- meals ------------------------------------------------------------------

@main_bp.route('/meals', methods=['GET', 'POST'])
def meals() -> str | Response:
    storage = current_app.storage_service
    ctx = current_context()

    if request.method == 'POST':
        _perform(
            'meals.add',
            'Meal logged.',
            lambda: storage.add_entry(ctx, 'meals', clean_fields('meals', request.form)),
        )
        return redirect(url_for('main.meals'))

    rows = storage.entries_for_date(ctx, 'meals', descending=True)
    return render_template(
        'meals.html',
        meals=rows,
        summary=insights.meal_summary(rows, session.get('nutrition_goals')),
        meal_types=MEAL_TYPES,
    )


@main_bp.route('/meals/goals', methods=['POST'])
def meal_goals() -> Response:
    goals: Dict[str, float] = {}
    for key in insights.DEFAULT_NUTRITION_GOALS:
        try:
            value = parse_number(request.form.get(key), key)
        except ValueError:
            continue
        if value > 0:
            goals[key] = value
    session['nutrition_goals'] = goals
    flash('Daily nutrition goals saved.', 'success')
    return redirect(url_for('main.meals'))


@main_bp.route('/meals/<entry_id>/delete', methods=['POST'])
def delete_meal(entry_id: str) -> Response:
    return _delete('meals', entry_id, url_for('main.meals'))


# --- journal ----------------------------------------------------------------

@main_bp.route('/journal', methods=['GET', 'POST'])
def journal() -> str | Response:
    storage = current_app.storage_service
    ctx = current_context()

    if request.method == 'POST':
        day = _parse_day(request.form.get('date'))
        fields = request.form.to_dict()
        _perform(
            'journal.add',
            'Journal entry saved.',
            lambda: storage.add_entry(ctx, 'journal', clean_fields('journal', fields), day=day),
        )
        return redirect(url_for('main.journal'))

    rows = storage.list_entries(ctx, 'journal', descending=True)
    term = request.args.get('q', '').strip()
    return render_template(
        'journal.html',
        entries=insights.search_journal(rows, term),
        term=term,
        summary=insights.journal_summary(rows),
        moods=JOURNAL_MOODS,
    )


@main_bp.route('/journal/<entry_id>/delete', methods=['POST'])
def delete_journal_entry(entry_id: str) -> Response:
    return _delete('journal', entry_id, url_for('main.journal'))


# --- breathing, fitness and stretching --------------------------------------

@main_bp.route('/breathing', methods=['GET', 'POST'])
def breathing() -> str | Response:
    storage = current_app.storage_service
    ctx = current_context()

    if request.method == 'POST':
        pattern = find_breathing_pattern(request.form.get('pattern_id', ''))
        if pattern is None:
            abort(400)
        try:
            cycles = int(request.form.get('cycles', '0'))
        except ValueError:
            cycles = 0
        _perform(
            'breathing.save',
            'Breathing session saved.',
            lambda: storage.log_breathing_session(ctx, pattern, cycles),
        )
        return redirect(url_for('main.breathing'))

    return render_template(
        'breathing.html',
        patterns=BREATHING_PATTERNS,
        sessions=storage.breathing_sessions(ctx),
    )


@main_bp.route('/dashboard/fitness', methods=['GET', 'POST'])
def fitness() -> str | Response:
    storage = current_app.storage_service
    ctx = current_context()

    if request.method == 'POST':
        exercise = find_exercise(request.form.get('exercise_id', ''))
        if exercise is None:
            abort(400)
        _perform(
            'fitness.complete',
            f'{exercise.name} completed!',
            lambda: storage.add_entry(
                ctx, 'exercise', {'exercise_name': exercise.name, 'duration': exercise.duration}
            ),
        )
        return redirect(url_for('main.fitness'))

    completed = storage.entries_for_date(ctx, 'exercise', name_excludes='breathing')
    return render_template(
        'fitness.html',
        workouts=WORKOUTS,
        completed=completed,
        total_seconds=sum(int(row.get('duration') or 0) for row in completed),
    )


@main_bp.route('/dashboard/fitness/<entry_id>/delete', methods=['POST'])
def delete_exercise(entry_id: str) -> Response:
    return _delete('exercise', entry_id, url_for('main.fitness'))


@main_bp.route('/dashboard/stretching', methods=['GET', 'POST'])
def stretching() -> str | Response:
    storage = current_app.storage_service
    ctx = current_context()

    if request.method == 'POST':
        stretch = find_stretch(request.form.get('stretch_id', ''))
        if stretch is None:
            abort(400)
        _perform(
            'stretch.complete',
            f'{stretch.name} completed!',
            lambda: storage.add_entry(ctx, 'stretch', {'stretch_name': stretch.name, 'duration': stretch.duration}),
        )
        return redirect(url_for('main.stretching', sequence=request.args.get('sequence', 'morning')))

    sequence = request.args.get('sequence', 'morning')
    if sequence not in STRETCH_SEQUENCES:
        sequence = 'morning'
    return render_template(
        'stretching.html',
        sequences=STRETCH_SEQUENCES,
        sequence=sequence,
        completed=storage.entries_for_date(ctx, 'stretch'),
    )


@main_bp.route('/dashboard/stretching/<entry_id>/delete', methods=['POST'])
def delete_stretch(entry_id: str) -> Response:
    return _delete('stretch', entry_id, url_for('main.stretching'))


# --- JSON API ---------------------------------------------------------------

@main_bp.route('/api/dashboard')
def api_dashboard() -> Response:
    return jsonify(_dashboard_data())


@main_bp.route('/api/<tracker>/entries')
def api_entries(tracker: str) -> Response:
    try:
        get_tracker(tracker)
    except ValueError:
        abort(404)
    try:
        days = int(request.args.get('days', '30'))
    except ValueError:
        return jsonify({'error': 'days must be an integer'}), 400
    days = min(max(days, 1), API_MAX_DAYS)
    rows = current_app.storage_service.recent_entries(current_context(), tracker, days)
    return jsonify({'tracker': tracker, 'days': days, 'entries': rows})


@main_bp.route('/api/<tracker>/changes')
def api_changes(tracker: str) -> Response:
    """Server-sent events for writes to one tracker table of the signed-in user."""

    try:
        table = get_tracker(tracker).table
    except ValueError:
        abort(404)

    user_id = current_context().user_id
    feed = current_app.change_feed
    keepalive = current_app.config.get('SSE_KEEPALIVE_SECONDS', SSE_KEEPALIVE_SECONDS)

    def stream():
        with feed.subscribe(user_id, table) as subscription:
            yield 'retry: 5000\n\n'
            while True:
                event = subscription.get(timeout=keepalive)
                yield event.to_sse() if event else ': keep-alive\n\n'

    return Response(
        stream_with_context(stream()),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )
