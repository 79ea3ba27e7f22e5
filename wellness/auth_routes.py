from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse

from flask import (
    Blueprint,
    Response,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    session,
    url_for,
)

from .guard import HOME_PATH, current_context
from .services.auth_service import RegisterData
from .utils.validation import validate_age, validate_password

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')

logger = logging.getLogger(__name__)


def _safe_next(target: Optional[str]) -> str:
    """Only follow same-site relative redirects."""

    if not target:
        return HOME_PATH
    parsed = urlparse(target)
    if parsed.scheme or parsed.netloc or not target.startswith('/') or target.startswith('//'):
        return HOME_PATH
    if target.startswith('/auth/'):
        return HOME_PATH
    return target


@auth_bp.route('/login', methods=['GET', 'POST'])
def login() -> str | Response:
    redirected_from = request.values.get('redirectedFrom', '')
    if request.method == 'POST':
        email = request.form.get('email', '')
        password = request.form.get('password', '')
        remember_me = request.form.get('remember_me') in {'on', '1', 'true'}

        result = current_app.auth_service.login_user(current_context(), email, password, remember_me)
        if not result.success:
            flash(result.error, 'danger')
            logger.info(
                'auth.login.denied',
                extra={'error_code': result.error_details.code if result.error_details else None},
            )
            return render_template(
                'auth/login.html',
                email=email,
                redirected_from=redirected_from,
                resend_email=email if result.requires_email_confirmation else None,
            )

        session.permanent = remember_me
        name = result.user.first_name or 'there'
        flash(f'Welcome back, {name}!', 'success')
        return redirect(_safe_next(redirected_from))

    return render_template('auth/login.html', email='', redirected_from=redirected_from, resend_email=None)


@auth_bp.route('/signup', methods=['GET', 'POST'])
def signup() -> str | Response:
    if request.method == 'POST':
        form = request.form
        data = RegisterData(
            first_name=form.get('first_name', '').strip(),
            last_name=form.get('last_name', '').strip(),
            email=form.get('email', '').strip(),
            password=form.get('password', ''),
            date_of_birth=form.get('date_of_birth', ''),
            gender=form.get('gender', ''),
            marketing_consent=form.get('marketing_consent') in {'on', '1', 'true'},
        )

        problem = None
        strength = validate_password(data.password)
        if not strength.is_valid:
            problem = 'Password must be at least 8 characters and include uppercase, lowercase, a number and a special character.'
        elif data.password != form.get('confirm_password', ''):
            problem = 'Passwords do not match.'
        elif not data.date_of_birth or not validate_age(data.date_of_birth):
            problem = 'You must be at least 13 years old to create an account.'
        elif form.get('accept_terms') not in {'on', '1', 'true'}:
            problem = 'Please accept the Terms of Service and Privacy Policy.'

        if problem:
            flash(problem, 'warning')
            logger.info('auth.register.validation_failed')
            return render_template('auth/signup.html', form=form, password_checks=strength.checks)

        result = current_app.auth_service.register_user(current_context(), data)
        if not result.success:
            flash(result.error, 'danger')
            return render_template('auth/signup.html', form=form, password_checks=strength.checks)

        if result.requires_email_confirmation:
            flash(
                'Account created! Please check your email and click the confirmation link to complete your registration.',
                'success',
            )
            return redirect(url_for('auth.login'))

        flash('Welcome! Your account is ready.', 'success')
        return redirect(HOME_PATH)

    return render_template('auth/signup.html', form={}, password_checks=None)


@auth_bp.route('/resend-confirmation', methods=['POST'])
def resend_confirmation() -> Response:
    email = request.form.get('email', '')
    result = current_app.auth_service.resend_confirmation_email(email)
    if result.success:
        flash('Confirmation email sent. Please check your inbox.', 'info')
    else:
        flash(result.error, 'danger')
    return redirect(url_for('auth.login'))


@auth_bp.route('/forgot-password', methods=['GET', 'POST'])
def forgot_password() -> str | Response:
    if request.method == 'POST':
        email = request.form.get('email', '')
        redirect_to = current_app.config.get('PASSWORD_RESET_REDIRECT_URL') or url_for(
            'auth.reset_password', _external=True
        )
        result = current_app.auth_service.request_password_reset(email, redirect_to)
        if not result.success:
            flash(result.error, 'danger')
            return render_template('auth/forgot_password.html', email=email, sent=False)

        flash('If an account exists for that address, a reset link is on its way.', 'success')
        return render_template('auth/forgot_password.html', email=email, sent=True)

    return render_template('auth/forgot_password.html', email='', sent=False)


@auth_bp.route('/reset-password', methods=['GET', 'POST'])
def reset_password() -> str | Response:
    ctx = current_context()

    token = request.args.get('token') or request.args.get('token_hash')
    if request.method == 'GET' and token:
        result = current_app.auth_service.begin_recovery(ctx, token)
        if not result.success:
            flash(result.error, 'danger')
            return redirect(url_for('auth.forgot_password'))
        # Drop the token from the address bar once it has been exchanged.
        return redirect(url_for('auth.reset_password'))

    if not ctx.is_authenticated:
        flash('This reset link is invalid or has expired. Request a new one below.', 'warning')
        return redirect(url_for('auth.forgot_password'))

    if request.method == 'POST':
        password = request.form.get('password', '')
        confirm = request.form.get('confirm_password', '')
        strength = validate_password(password)

        if password != confirm:
            flash('Passwords do not match.', 'warning')
            return render_template('auth/reset_password.html', password_checks=strength.checks)
        if not strength.is_valid:
            flash(
                'Password must be at least 8 characters and include uppercase, lowercase, a number and a special character.',
                'warning',
            )
            return render_template('auth/reset_password.html', password_checks=strength.checks)

        result = current_app.auth_service.reset_password(ctx, password)
        if not result.success:
            flash(result.error, 'danger')
            return render_template('auth/reset_password.html', password_checks=strength.checks)

        current_app.auth_service.sign_out(ctx)
        flash('Your password has been updated. Please sign in with your new password.', 'success')
        return redirect(url_for('auth.login'))

    return render_template('auth/reset_password.html', password_checks=None)


@auth_bp.route('/logout', methods=['GET', 'POST'])
def logout() -> Response:
    current_app.auth_service.sign_out(current_context())
    session.clear()
    flash('You have been logged out.', 'info')
    return redirect(url_for('main.index'))
