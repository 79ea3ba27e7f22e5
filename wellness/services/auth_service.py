"""Account flows wrapped around the configured backend."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from ..guard import SessionContext
from ..utils.auth import AuthError, get_auth_error, not_configured_error, token_expired, validation_error
from ..utils.validation import validate_email
from .backend import AuthSession, Backend, BackendError, BackendUser, Query

logger = logging.getLogger(__name__)


@dataclass
class AuthUser:
    id: str
    email: str
    first_name: str = ''
    last_name: str = ''
    is_email_verified: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AuthResult:
    success: bool
    user: Optional[AuthUser] = None
    error: Optional[str] = None
    error_details: Optional[AuthError] = None
    requires_email_confirmation: bool = False

    @classmethod
    def failure(cls, details: AuthError, message: Optional[str] = None, **kwargs: Any) -> 'AuthResult':
        return cls(success=False, error=message or details.user_message, error_details=details, **kwargs)


# The three flows share a result shape; the names document intent at call sites.
LoginResult = AuthResult
RegisterResult = AuthResult
PasswordResetResult = AuthResult


@dataclass
class RegisterData:
    first_name: str
    last_name: str
    email: str
    password: str
    date_of_birth: str = ''
    gender: str = ''
    marketing_consent: bool = False


def convert_user(user: BackendUser, profile: Optional[Dict[str, Any]] = None) -> AuthUser:
    """Merge the profile row over the user metadata captured at sign up."""

    profile = profile or {}
    metadata = user.metadata or {}
    return AuthUser(
        id=user.id,
        email=user.email,
        first_name=profile.get('first_name') or metadata.get('first_name') or '',
        last_name=profile.get('last_name') or metadata.get('last_name') or '',
        is_email_verified=user.email_confirmed_at is not None,
    )


def _log_backend_error(event: str, exc: BackendError, **extra: Any) -> None:
    logger.debug(
        event,
        extra={'error_message': exc.message, 'error_code': exc.code, 'error_status': exc.status, **extra},
    )


class AuthService:
    """Sign-up, sign-in and password flows that never raise to the view layer.

    Every public method returns a result object (or a plain value for status
    checks); provider failures are mapped through :func:`get_auth_error`.
    """

    def __init__(self, backend: Optional[Backend]) -> None:
        self._backend = backend

    @property
    def configured(self) -> bool:
        return self._backend is not None

    # --- status ---------------------------------------------------------
    def check_auth_status(self, ctx: SessionContext) -> bool:
        if self._backend is None or not ctx.access_token:
            return False
        try:
            return self._backend.get_user(ctx.access_token) is not None
        except BackendError as exc:
            _log_backend_error('auth.status.failed', exc)
            return False

    def get_current_user(self, ctx: SessionContext) -> Optional[AuthUser]:
        if self._backend is None or not ctx.access_token:
            return None
        try:
            user = self._backend.get_user(ctx.access_token)
        except BackendError as exc:
            _log_backend_error('auth.current_user.failed', exc)
            return None
        if user is None:
            return None
        return convert_user(user, self._fetch_profile(user.id, ctx.access_token))

    def refresh_if_needed(self, ctx: SessionContext) -> bool:
        """Renew an expired access token; ``False`` means the session is gone."""

        if self._backend is None:
            return True
        if not token_expired(ctx.access_token):
            return True
        if not ctx.refresh_token:
            return False
        try:
            session = self._backend.refresh_session(ctx.refresh_token)
        except BackendError as exc:
            _log_backend_error('auth.refresh.failed', exc, user_id=ctx.user_id)
            return False
        if session is None:
            return False
        self._store_session(ctx, session, ctx.user)
        logger.info('auth.refresh.success', extra={'user_id': ctx.user_id})
        return True

    # --- sign in / out --------------------------------------------------
    def login_user(self, ctx: SessionContext, email: str, password: str, remember_me: bool = False) -> AuthResult:
        if not email or not password:
            return AuthResult.failure(
                get_auth_error({'message': 'Email and password are required'}),
                'Email and password are required',
            )
        if not validate_email(email.strip()):
            return AuthResult.failure(
                get_auth_error({'message': 'Invalid email address'}),
                'Please enter a valid email address',
            )
        if self._backend is None:
            return AuthResult.failure(not_configured_error())

        try:
            response = self._backend.sign_in(email.strip().lower(), password)
        except BackendError as exc:
            _log_backend_error('auth.login.failed', exc)
            details = get_auth_error(exc)
            return AuthResult.failure(
                details,
                requires_email_confirmation=details.code == 'email_not_confirmed',
            )

        if response.session is None:
            logger.error('auth.login.no_session')
            return AuthResult.failure(get_auth_error({'message': 'No session data'}), 'Login failed - no session received')
        if response.user is None:
            logger.error('auth.login.no_user')
            return AuthResult.failure(get_auth_error({'message': 'No user data'}), 'Login failed - no user data received')

        profile = self._fetch_profile(response.user.id, response.session.access_token)
        user = convert_user(response.user, profile)
        self._store_session(ctx, response.session, user.to_dict())
        logger.info('auth.login.success', extra={'user_id': user.id, 'remember_me': remember_me})
        return AuthResult(success=True, user=user)

    def sign_out(self, ctx: SessionContext) -> None:
        user_id = ctx.user_id
        try:
            if self._backend is not None:
                self._backend.sign_out(ctx.access_token)
        except BackendError as exc:
            _log_backend_error('auth.logout.provider_failed', exc, user_id=user_id)
            logger.warning('auth.logout.provider_failed', extra={'user_id': user_id})
        finally:
            ctx.clear()
        logger.info('auth.logout.success', extra={'user_id': user_id})

    # --- registration ---------------------------------------------------
    def register_user(self, ctx: SessionContext, data: RegisterData) -> AuthResult:
        if not data.email or not data.password or not data.first_name or not data.last_name:
            return AuthResult.failure(
                get_auth_error({'message': 'All required fields must be filled'}),
                'Please fill in all required fields',
            )
        if not validate_email(data.email.strip()):
            return AuthResult.failure(
                get_auth_error({'message': 'Invalid email address'}),
                'Please enter a valid email address',
            )
        if len(data.password) < 8:
            return AuthResult.failure(
                get_auth_error({'message': 'Password too short'}),
                'Password must be at least 8 characters long',
            )
        if self._backend is None:
            return AuthResult.failure(not_configured_error())

        metadata = {
            'first_name': data.first_name,
            'last_name': data.last_name,
            'date_of_birth': data.date_of_birth,
            'gender': data.gender,
            'marketing_consent': data.marketing_consent,
        }
        try:
            response = self._backend.sign_up(data.email.strip().lower(), data.password, metadata)
        except BackendError as exc:
            _log_backend_error('auth.register.failed', exc)
            return AuthResult.failure(get_auth_error(exc))

        if response.user is None:
            logger.error('auth.register.no_user')
            return AuthResult.failure(
                get_auth_error({'message': 'No user data'}), 'Registration failed - no user data received'
            )

        if response.session is None:
            logger.info('auth.register.confirmation_required', extra={'user_id': response.user.id})
            return AuthResult(
                success=True,
                requires_email_confirmation=True,
                error='Please check your email and click the confirmation link to complete your registration.',
            )

        access_token = response.session.access_token
        try:
            self._backend.update(
                'profiles',
                response.user.id,
                {
                    'date_of_birth': data.date_of_birth or None,
                    'gender': data.gender or None,
                    'marketing_consent': data.marketing_consent,
                },
                access_token=access_token,
            )
        except BackendError as exc:
            _log_backend_error('auth.register.profile_update_failed', exc, user_id=response.user.id)

        user = convert_user(response.user, self._fetch_profile(response.user.id, access_token))
        self._store_session(ctx, response.session, user.to_dict())
        logger.info('auth.register.success', extra={'user_id': user.id})
        return AuthResult(success=True, user=user)

    def resend_confirmation_email(self, email: str) -> AuthResult:
        if not email or not validate_email(email.strip()):
            return AuthResult.failure(
                get_auth_error({'message': 'Invalid email address'}),
                'Please enter a valid email address',
            )
        if self._backend is None:
            return AuthResult.failure(not_configured_error())
        try:
            self._backend.resend_confirmation(email.strip().lower())
        except BackendError as exc:
            _log_backend_error('auth.resend_confirmation.failed', exc)
            return AuthResult.failure(get_auth_error(exc))
        logger.info('auth.resend_confirmation.sent')
        return AuthResult(success=True)

    # --- password reset -------------------------------------------------
    def request_password_reset(self, email: str, redirect_to: Optional[str] = None) -> AuthResult:
        if not email:
            return AuthResult.failure(get_auth_error({'message': 'Email is required'}), 'Email address is required')
        if not validate_email(email.strip()):
            return AuthResult.failure(
                get_auth_error({'message': 'Invalid email address'}),
                'Please enter a valid email address',
            )
        if self._backend is None:
            return AuthResult.failure(not_configured_error())
        try:
            self._backend.send_password_reset(email.strip().lower(), redirect_to)
        except BackendError as exc:
            _log_backend_error('auth.password_reset.request_failed', exc)
            return AuthResult.failure(get_auth_error(exc))
        logger.info('auth.password_reset.requested')
        return AuthResult(success=True)

    def begin_recovery(self, ctx: SessionContext, token: str) -> AuthResult:
        """Exchange the emailed reset token for a short-lived recovery session."""

        if not token:
            return AuthResult.failure(
                validation_error('This reset link is invalid or has expired.', 'invalid_reset_link')
            )
        if self._backend is None:
            return AuthResult.failure(not_configured_error())
        try:
            session = self._backend.verify_recovery_token(token)
        except BackendError as exc:
            _log_backend_error('auth.password_reset.token_rejected', exc)
            return AuthResult.failure(
                validation_error('This reset link is invalid or has expired.', 'invalid_reset_link')
            )
        user = convert_user(session.user)
        self._store_session(ctx, session, user.to_dict())
        ctx.user['recovery'] = True
        ctx.save()
        return AuthResult(success=True, user=user)

    def reset_password(self, ctx: SessionContext, new_password: str) -> AuthResult:
        if not new_password:
            return AuthResult.failure(get_auth_error({'message': 'Password is required'}), 'New password is required')
        if len(new_password) < 8:
            return AuthResult.failure(
                get_auth_error({'message': 'Password too short'}),
                'Password must be at least 8 characters long',
            )
        if self._backend is None:
            return AuthResult.failure(not_configured_error())
        if not ctx.access_token:
            return AuthResult.failure(
                validation_error('This reset link is invalid or has expired.', 'invalid_reset_link')
            )
        try:
            self._backend.update_password(ctx.access_token, ctx.refresh_token, new_password)
        except BackendError as exc:
            _log_backend_error('auth.password_reset.failed', exc, user_id=ctx.user_id)
            return AuthResult.failure(get_auth_error(exc))
        logger.info('auth.password_reset.success', extra={'user_id': ctx.user_id})
        return AuthResult(success=True)

    # --- helpers --------------------------------------------------------
    def _fetch_profile(self, user_id: str, access_token: Optional[str]) -> Optional[Dict[str, Any]]:
        # A missing profile row or table is tolerated; metadata fills the gaps.
        try:
            rows = self._backend.select('profiles', Query(filters={'id': user_id}, limit=1), access_token)
        except BackendError as exc:
            _log_backend_error('auth.profile.fetch_failed', exc, user_id=user_id)
            return None
        return rows[0] if rows else None

    @staticmethod
    def _store_session(ctx: SessionContext, session: AuthSession, user: Optional[Dict[str, Any]]) -> None:
        ctx.user = dict(user) if user else convert_user(session.user).to_dict()
        ctx.access_token = session.access_token
        ctx.refresh_token = session.refresh_token
        ctx.save()
