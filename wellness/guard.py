"""Per-request auth state and the route guard applied before every view."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from flask import current_app, g, redirect, request, session

logger = logging.getLogger(__name__)

LOGIN_PATH = '/auth/login'
HOME_PATH = '/dashboard'

PUBLIC_PATHS = frozenset({'/', '/privacy', '/terms', '/favicon.ico'})
PUBLIC_PREFIXES = ('/auth/', '/static/', '/public/')
# Auth pages that a signed-in user must still be able to reach.
AUTHENTICATED_AUTH_PATHS = frozenset({'/auth/reset-password', '/auth/logout'})


@dataclass
class SessionContext:
    """Auth state for the current request, rebuilt from the Flask session."""

    user: Optional[Dict[str, Any]] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user and self.user.get('id'))

    @property
    def user_id(self) -> Optional[str]:
        return self.user.get('id') if self.user else None

    @classmethod
    def load(cls) -> 'SessionContext':
        tokens = session.get('auth_tokens') or {}
        return cls(
            user=session.get('user'),
            access_token=tokens.get('access_token'),
            refresh_token=tokens.get('refresh_token'),
        )

    def save(self) -> None:
        if self.user is None:
            session.pop('user', None)
            session.pop('auth_tokens', None)
        else:
            session['user'] = self.user
            session['auth_tokens'] = {
                'access_token': self.access_token,
                'refresh_token': self.refresh_token,
            }
        session.modified = True

    def clear(self) -> None:
        self.user = None
        self.access_token = None
        self.refresh_token = None
        self.save()


def current_context() -> SessionContext:
    ctx = g.get('auth_context')
    if ctx is None:
        ctx = SessionContext.load()
        g.auth_context = ctx
    return ctx


def is_public_path(path: str) -> bool:
    if path in PUBLIC_PATHS:
        return True
    return any(path.startswith(prefix) or path == prefix.rstrip('/') for prefix in PUBLIC_PREFIXES)


def resolve_redirect(path: str, authenticated: bool) -> Optional[str]:
    """Return where a request for ``path`` must be sent, or ``None`` to let it through.

    Anonymous visitors to protected pages go to the login page with the
    original path in ``redirectedFrom``. Signed-in users visiting the auth
    pages go to the dashboard, except for password reset and logout.
    """

    if not authenticated and not is_public_path(path):
        return f'{LOGIN_PATH}?{urlencode({"redirectedFrom": path})}'

    if authenticated and (path.startswith('/auth/') or path == '/auth'):
        if path.rstrip('/') not in AUTHENTICATED_AUTH_PATHS:
            return HOME_PATH

    return None


def enforce_session():
    """``before_request`` hook that applies :func:`resolve_redirect`."""

    if request.endpoint == 'static':
        return None

    ctx = current_context()
    if ctx.is_authenticated and not current_app.auth_service.refresh_if_needed(ctx):
        logger.info('guard.session_expired', extra={'user_id': ctx.user_id})
        ctx.clear()

    target = resolve_redirect(request.path, ctx.is_authenticated)
    if target is None:
        return None

    if request.path.startswith('/api/') and not ctx.is_authenticated:
        return {'error': 'Unauthorized'}, 401

    logger.debug('guard.redirect', extra={'path': request.path, 'target': target})
    return redirect(target)
