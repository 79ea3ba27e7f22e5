"""Supabase implementation of :class:`~wellness.services.backend.Backend`."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from .backend import AuthResponse, AuthSession, Backend, BackendError, BackendUser, Query

logger = logging.getLogger(__name__)


def _to_user(user: Any) -> Optional[BackendUser]:
    if user is None:
        return None
    confirmed = getattr(user, 'email_confirmed_at', None)
    return BackendUser(
        id=str(user.id),
        email=getattr(user, 'email', '') or '',
        metadata=dict(getattr(user, 'user_metadata', None) or {}),
        email_confirmed_at=confirmed.isoformat() if hasattr(confirmed, 'isoformat') else confirmed,
    )


def _to_session(session: Any, fallback_user: Optional[BackendUser] = None) -> Optional[AuthSession]:
    if session is None:
        return None
    user = _to_user(getattr(session, 'user', None)) or fallback_user
    if user is None:
        return None
    return AuthSession(
        access_token=session.access_token,
        refresh_token=getattr(session, 'refresh_token', None),
        user=user,
    )


def _to_response(response: Any) -> AuthResponse:
    user = _to_user(getattr(response, 'user', None))
    session = _to_session(getattr(response, 'session', None), user)
    return AuthResponse(user=user, session=session)


class SupabaseBackend(Backend):
    """Talks to Supabase auth and PostgREST through the ``supabase`` client.

    A new client is created per call so no auth state leaks between requests
    served by the same worker.
    """

    name = 'supabase'

    def __init__(self, url: str, key: str) -> None:
        self._url = url
        self._key = key

    def _client(self, access_token: Optional[str] = None) -> Client:
        client = create_client(self._url, self._key)
        if access_token:
            client.postgrest.auth(access_token)
        return client

    # --- auth -----------------------------------------------------------
    def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> AuthResponse:
        try:
            response = self._client().auth.sign_up(
                {'email': email, 'password': password, 'options': {'data': metadata}}
            )
        except Exception as exc:
            raise BackendError.from_exception(exc) from exc
        return _to_response(response)

    def sign_in(self, email: str, password: str) -> AuthResponse:
        try:
            response = self._client().auth.sign_in_with_password({'email': email, 'password': password})
        except Exception as exc:
            raise BackendError.from_exception(exc) from exc
        return _to_response(response)

    def sign_out(self, access_token: Optional[str]) -> None:
        if not access_token:
            return
        try:
            self._client().auth.admin.sign_out(access_token)
        except Exception as exc:
            raise BackendError.from_exception(exc) from exc

    def get_user(self, access_token: str) -> Optional[BackendUser]:
        try:
            response = self._client().auth.get_user(access_token)
        except Exception as exc:
            raise BackendError.from_exception(exc) from exc
        return _to_user(getattr(response, 'user', None)) if response else None

    def refresh_session(self, refresh_token: str) -> Optional[AuthSession]:
        try:
            response = self._client().auth.refresh_session(refresh_token)
        except Exception as exc:
            raise BackendError.from_exception(exc) from exc
        return _to_response(response).session

    def update_password(self, access_token: str, refresh_token: Optional[str], new_password: str) -> BackendUser:
        try:
            client = self._client()
            client.auth.set_session(access_token, refresh_token or '')
            response = client.auth.update_user({'password': new_password})
        except Exception as exc:
            raise BackendError.from_exception(exc) from exc
        user = _to_user(getattr(response, 'user', None))
        if user is None:
            raise BackendError('Password update returned no user')
        return user

    def send_password_reset(self, email: str, redirect_to: Optional[str]) -> None:
        options = {'redirect_to': redirect_to} if redirect_to else {}
        try:
            self._client().auth.reset_password_for_email(email, options)
        except Exception as exc:
            raise BackendError.from_exception(exc) from exc

    def verify_recovery_token(self, token: str) -> AuthSession:
        try:
            response = self._client().auth.verify_otp({'token_hash': token, 'type': 'recovery'})
        except Exception as exc:
            raise BackendError.from_exception(exc) from exc
        session = _to_response(response).session
        if session is None:
            raise BackendError('Invalid or expired reset link', code='otp_expired')
        return session

    def resend_confirmation(self, email: str) -> None:
        try:
            self._client().auth.resend({'type': 'signup', 'email': email})
        except Exception as exc:
            raise BackendError.from_exception(exc) from exc

    # --- data -----------------------------------------------------------
    def select(self, table: str, query: Query, access_token: Optional[str] = None) -> List[Dict[str, Any]]:
        try:
            response = self._select_builder(table, query, access_token).execute()
        except Exception as exc:
            logger.debug('supabase.select.failed', extra={'table': table, 'error': str(exc)})
            raise BackendError.from_exception(exc) from exc
        return list(response.data or [])

    def _select_builder(self, table: str, query: Query, access_token: Optional[str]):
        builder = self._client(access_token).table(table).select(','.join(query.columns))
        for column, value in query.filters.items():
            builder = builder.eq(column, value)
        if query.date_from:
            builder = builder.gte('date', query.date_from)
        if query.date_to:
            builder = builder.lte('date', query.date_to)
        if query.name_column and query.name_contains:
            builder = builder.ilike(query.name_column, f'%{query.name_contains}%')
        if query.name_column and query.name_excludes:
            builder = builder.not_.ilike(query.name_column, f'%{query.name_excludes}%')
        if query.order_by:
            builder = builder.order(query.order_by, desc=query.descending)
        if query.limit:
            builder = builder.limit(query.limit)
        return builder

    def insert(self, table: str, record: Dict[str, Any], access_token: Optional[str] = None) -> Dict[str, Any]:
        try:
            response = self._client(access_token).table(table).insert(record).execute()
        except Exception as exc:
            logger.debug('supabase.insert.failed', extra={'table': table, 'error': str(exc)})
            raise BackendError.from_exception(exc) from exc
        rows = response.data or []
        return rows[0] if rows else dict(record)

    def update(
        self,
        table: str,
        record_id: str,
        changes: Dict[str, Any],
        access_token: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        try:
            builder = self._client(access_token).table(table).update(changes).eq('id', record_id)
            if user_id:
                builder = builder.eq('user_id', user_id)
            response = builder.execute()
        except Exception as exc:
            logger.debug('supabase.update.failed', extra={'table': table, 'error': str(exc)})
            raise BackendError.from_exception(exc) from exc
        rows = response.data or []
        return rows[0] if rows else None

    def delete(
        self,
        table: str,
        record_id: str,
        access_token: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        try:
            builder = self._client(access_token).table(table).delete().eq('id', record_id)
            if user_id:
                builder = builder.eq('user_id', user_id)
            builder.execute()
        except Exception as exc:
            logger.debug('supabase.delete.failed', extra={'table': table, 'error': str(exc)})
            raise BackendError.from_exception(exc) from exc
