"""Authentication helpers: provider error mapping and access tokens."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

import jwt


@dataclass(eq=False)
class AuthError(Exception):
    """A provider or validation failure translated for the person at the keyboard."""

    code: str
    message: str
    user_message: str
    action: Optional[str] = None
    status_code: int = 400

    def __str__(self) -> str:  # pragma: no cover - dataclass convenience
        return self.user_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'message': self.message,
            'user_message': self.user_message,
            'action': self.action,
        }


AUTH_ERRORS: Dict[str, AuthError] = {
    'invalid_credentials': AuthError(
        code='invalid_credentials',
        message='Invalid login credentials',
        user_message='The email or password you entered is incorrect. Please check your credentials and try again.',
        action='verify_credentials',
        status_code=401,
    ),
    'email_not_confirmed': AuthError(
        code='email_not_confirmed',
        message='Email not confirmed',
        user_message='Please check your email and click the confirmation link before signing in.',
        action='resend_confirmation',
        status_code=403,
    ),
    'too_many_requests': AuthError(
        code='too_many_requests',
        message='Too many requests',
        user_message='Too many sign-in attempts. Please wait a few minutes before trying again.',
        action='wait_and_retry',
        status_code=429,
    ),
    'signup_disabled': AuthError(
        code='signup_disabled',
        message='Signup disabled',
        user_message='New account registration is currently disabled. Please contact support.',
        action='contact_support',
        status_code=403,
    ),
    'email_address_invalid': AuthError(
        code='email_address_invalid',
        message='Invalid email address',
        user_message='Please enter a valid email address.',
        action='fix_email',
    ),
    'password_too_short': AuthError(
        code='password_too_short',
        message='Password too short',
        user_message='Password must be at least 8 characters long.',
        action='strengthen_password',
    ),
    'user_not_found': AuthError(
        code='user_not_found',
        message='User not found',
        user_message='No account found with this email address. Please check your email or create a new account.',
        action='check_email_or_signup',
        status_code=404,
    ),
    'weak_password': AuthError(
        code='weak_password',
        message='Weak password',
        user_message=(
            'Please choose a stronger password with at least 8 characters, including uppercase, '
            'lowercase, numbers, and special characters.'
        ),
        action='strengthen_password',
    ),
    'email_already_registered': AuthError(
        code='email_already_registered',
        message='Email already registered',
        user_message='An account with this email already exists. Please sign in instead or use a different email.',
        action='sign_in_instead',
        status_code=409,
    ),
}

# Checked in order; the first message fragment or provider code that matches wins.
_MATCHERS = (
    ('invalid login credentials', 'invalid_credentials'),
    ('email not confirmed', 'email_not_confirmed'),
    ('too many requests', 'too_many_requests'),
    ('signup disabled', 'signup_disabled'),
    ('invalid email', 'email_address_invalid'),
    ('password is too short', 'password_too_short'),
    ('user not found', 'user_not_found'),
    ('weak password', 'weak_password'),
    ('already registered', 'email_already_registered'),
)

UNKNOWN_ERROR_MESSAGE = (
    'An unexpected error occurred. Please try again or contact support if the problem persists.'
)


def _field(error: Any, name: str) -> Any:
    if error is None:
        return None
    if isinstance(error, dict):
        return error.get(name)
    return getattr(error, name, None)


def get_auth_error(error: Any) -> AuthError:
    """Map a provider error (exception, response object or dict) to an :class:`AuthError`."""

    if isinstance(error, AuthError):
        return error

    raw_message = _field(error, 'message')
    if raw_message is None and isinstance(error, Exception) and error.args:
        raw_message = str(error.args[0])
    message = str(raw_message or '').lower()
    code = _field(error, 'code') or _field(error, 'error_code') or ''

    for fragment, key in _MATCHERS:
        if fragment in message or code == key:
            return AUTH_ERRORS[key]

    return AuthError(
        code='unknown_error',
        message=str(raw_message or 'Unknown error'),
        user_message=UNKNOWN_ERROR_MESSAGE,
        action='retry_or_contact_support',
        status_code=500,
    )


def not_configured_error() -> AuthError:
    return AuthError(
        code='not_configured',
        message='Supabase is not configured',
        user_message=(
            'Authentication is not configured on this server. '
            'Set SUPABASE_URL and SUPABASE_ANON_KEY and try again.'
        ),
        action='contact_support',
        status_code=503,
    )


def validation_error(user_message: str, code: str = 'validation_error') -> AuthError:
    """Build a form-level error that never reached the provider."""

    base = AUTH_ERRORS.get(code)
    if base is not None:
        return replace(base, user_message=user_message)
    return AuthError(code=code, message=user_message, user_message=user_message)


def issue_access_token(
    subject: str,
    secret: str,
    email: Optional[str] = None,
    lifetime: timedelta = timedelta(hours=1),
) -> str:
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        'sub': subject,
        'iat': int(now.timestamp()),
        'exp': int((now + lifetime).timestamp()),
        'role': 'authenticated',
        'jti': uuid4().hex,
    }
    if email:
        payload['email'] = email
    return jwt.encode(payload, secret, algorithm='HS256')


def decode_access_token(token: str, secret: str) -> Dict[str, Any]:
    """Validate and decode an HS256 access token.

    Raises
    ------
    AuthError
        If the token is missing, expired or fails signature verification.
    """

    if not token:
        raise AuthError('session_missing', 'Access token missing', 'Please sign in to continue.', status_code=401)

    try:
        return jwt.decode(
            token,
            secret,
            algorithms=['HS256'],
            options={'require': ['exp', 'sub']},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthError(
            'session_expired', 'Access token has expired', 'Your session has expired. Please sign in again.',
            status_code=401,
        ) from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError(
            'session_invalid', 'Access token is invalid', 'Your session is no longer valid. Please sign in again.',
            status_code=401,
        ) from exc


def token_expired(token: Optional[str], leeway: int = 30) -> bool:
    """Return ``True`` when ``token`` is missing or its ``exp`` claim has passed.

    The signature is not verified; provider tokens are checked by the provider.
    """

    if not token:
        return True
    try:
        payload = jwt.decode(token, options={'verify_signature': False})
    except jwt.InvalidTokenError:
        return True

    exp = payload.get('exp')
    if not isinstance(exp, (int, float)):
        return False
    expiry = datetime.fromtimestamp(exp, tz=timezone.utc)
    return expiry <= datetime.now(timezone.utc) + timedelta(seconds=leeway)
