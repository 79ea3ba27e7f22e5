"""File-backed stand-in for Supabase used in local development and tests."""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

import jwt
import redis
from werkzeug.security import check_password_hash, generate_password_hash

from ..utils.auth import AuthError, decode_access_token, issue_access_token
from .backend import AuthResponse, AuthSession, Backend, BackendError, BackendUser, Query

logger = logging.getLogger(__name__)

ACCESS_TOKEN_LIFETIME = timedelta(hours=1)
REFRESH_TOKEN_LIFETIME = timedelta(days=30)
RECOVERY_TOKEN_LIFETIME = timedelta(hours=1)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _owner_column(table: str) -> str:
    return 'id' if table == 'profiles' else 'user_id'


class LocalBackend(Backend):
    """Persist users and tracker rows as JSON documents.

    Documents live under ``STORAGE_DATA_DIR``. When ``UPSTASH_REDIS_URL`` is
    set the same documents are kept in Redis instead, with the filesystem as a
    fallback when Redis is unreachable. Outgoing emails (confirmation and
    password reset links) are appended to an ``outbox`` document.
    """

    name = 'local'

    def __init__(
        self,
        secret_key: str,
        data_dir: Optional[str] = None,
        require_email_confirmation: Optional[bool] = None,
    ) -> None:
        self._secret = secret_key
        self._redis: Optional[Any] = self._init_redis()
        directory = Path(data_dir or os.getenv('STORAGE_DATA_DIR', '/tmp/wellness-data')).expanduser()
        directory.mkdir(parents=True, exist_ok=True)
        self._data_dir = directory.resolve()
        if require_email_confirmation is None:
            require_email_confirmation = os.getenv('LOCAL_REQUIRE_EMAIL_CONFIRMATION', '').lower() in {
                '1', 'true', 'yes', 'on',
            }
        self._require_confirmation = require_email_confirmation
        self._lock = threading.RLock()

    # --- auth -----------------------------------------------------------
    def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> AuthResponse:
        email = email.strip().lower()
        with self._lock:
            users = self._read_json('users') or {}
            if email in users:
                raise BackendError('User already registered', code='user_already_exists', status=422)
            if len(password) < 6:
                raise BackendError('Password should be at least 6 characters', code='weak_password', status=422)

            user_id = str(uuid4())
            confirmed_at = None if self._require_confirmation else _now()
            users[email] = {
                'id': user_id,
                'email': email,
                'password_hash': generate_password_hash(password),
                'metadata': dict(metadata),
                'email_confirmed_at': confirmed_at,
                'created_at': _now(),
            }
            self._write_json('users', users)

            profile = {
                'id': user_id,
                'email': email,
                'first_name': metadata.get('first_name'),
                'last_name': metadata.get('last_name'),
                'date_of_birth': metadata.get('date_of_birth'),
                'gender': metadata.get('gender'),
                'marketing_consent': bool(metadata.get('marketing_consent')),
                'created_at': _now(),
                'updated_at': _now(),
            }
            rows = self._read_json(self._table_key('profiles')) or []
            rows.append(profile)
            self._write_json(self._table_key('profiles'), rows)

        user = self._user_from_record(users[email])
        if self._require_confirmation:
            self._send_mail(email, 'confirm_signup', self._sign_purpose_token(user_id, 'signup'))
            return AuthResponse(user=user, session=None)
        return AuthResponse(user=user, session=self._session_for(user))

    def sign_in(self, email: str, password: str) -> AuthResponse:
        record = (self._read_json('users') or {}).get(email.strip().lower())
        if not record or not check_password_hash(record['password_hash'], password):
            raise BackendError('Invalid login credentials', code='invalid_credentials', status=400)
        if not record.get('email_confirmed_at'):
            raise BackendError('Email not confirmed', code='email_not_confirmed', status=400)
        user = self._user_from_record(record)
        return AuthResponse(user=user, session=self._session_for(user))

    def sign_out(self, access_token: Optional[str]) -> None:
        if not access_token:
            return
        with self._lock:
            revoked = self._read_json('revoked_tokens') or []
            revoked.append(access_token)
            self._write_json('revoked_tokens', revoked[-500:])

    def get_user(self, access_token: str) -> Optional[BackendUser]:
        claims = self._claims(access_token)
        record = self._find_user_by_id(claims['sub'])
        return self._user_from_record(record) if record else None

    def refresh_session(self, refresh_token: str) -> Optional[AuthSession]:
        try:
            claims = jwt.decode(refresh_token, self._secret, algorithms=['HS256'], options={'require': ['exp', 'sub']})
        except jwt.InvalidTokenError as exc:
            raise BackendError('Invalid Refresh Token', code='refresh_token_not_found', status=400) from exc
        if claims.get('purpose') != 'refresh':
            raise BackendError('Invalid Refresh Token', code='refresh_token_not_found', status=400)
        record = self._find_user_by_id(claims['sub'])
        if record is None:
            return None
        return self._session_for(self._user_from_record(record))

    def update_password(self, access_token: str, refresh_token: Optional[str], new_password: str) -> BackendUser:
        claims = self._claims(access_token)
        with self._lock:
            users = self._read_json('users') or {}
            for record in users.values():
                if record['id'] == claims['sub']:
                    if check_password_hash(record['password_hash'], new_password):
                        raise BackendError(
                            'New password should be different from the old password.',
                            code='same_password',
                            status=422,
                        )
                    record['password_hash'] = generate_password_hash(new_password)
                    self._write_json('users', users)
                    return self._user_from_record(record)
        raise BackendError('User not found', code='user_not_found', status=404)

    def send_password_reset(self, email: str, redirect_to: Optional[str]) -> None:
        record = (self._read_json('users') or {}).get(email.strip().lower())
        if record is None:
            # Unknown addresses are accepted silently so accounts cannot be enumerated.
            logger.info('local.password_reset.unknown_email')
            return
        token = self._sign_purpose_token(record['id'], 'recovery', RECOVERY_TOKEN_LIFETIME)
        link = f'{redirect_to}?token={token}' if redirect_to else token
        self._send_mail(record['email'], 'recovery', link, token=token)

    def verify_recovery_token(self, token: str) -> AuthSession:
        try:
            claims = jwt.decode(token, self._secret, algorithms=['HS256'], options={'require': ['exp', 'sub']})
        except jwt.InvalidTokenError as exc:
            raise BackendError('Email link is invalid or has expired', code='otp_expired', status=403) from exc
        if claims.get('purpose') != 'recovery':
            raise BackendError('Email link is invalid or has expired', code='otp_expired', status=403)
        record = self._find_user_by_id(claims['sub'])
        if record is None:
            raise BackendError('User not found', code='user_not_found', status=404)
        return self._session_for(self._user_from_record(record))

    def resend_confirmation(self, email: str) -> None:
        record = (self._read_json('users') or {}).get(email.strip().lower())
        if record is None or record.get('email_confirmed_at'):
            return
        self._send_mail(record['email'], 'confirm_signup', self._sign_purpose_token(record['id'], 'signup'))

    def confirm_email(self, email: str) -> None:
        """Mark an address as confirmed, as following the emailed link would."""

        with self._lock:
            users = self._read_json('users') or {}
            record = users.get(email.strip().lower())
            if record is None:
                raise BackendError('User not found', code='user_not_found', status=404)
            record['email_confirmed_at'] = _now()
            self._write_json('users', users)

    @property
    def outbox(self) -> List[Dict[str, Any]]:
        return list(self._read_json('outbox') or [])

    # --- data -----------------------------------------------------------
    def select(self, table: str, query: Query, access_token: Optional[str] = None) -> List[Dict[str, Any]]:
        owner = self._owner(access_token)
        owner_column = _owner_column(table)
        rows = self._read_json(self._table_key(table)) or []

        matched = []
        for row in rows:
            if owner is not None and row.get(owner_column) != owner:
                continue
            if any(row.get(column) != value for column, value in query.filters.items()):
                continue
            day = row.get('date') or ''
            if query.date_from and day < query.date_from:
                continue
            if query.date_to and day > query.date_to:
                continue
            if query.name_column:
                name = str(row.get(query.name_column) or '').lower()
                if query.name_contains and query.name_contains.lower() not in name:
                    continue
                if query.name_excludes and query.name_excludes.lower() in name:
                    continue
            matched.append(dict(row))

        if query.order_by:
            matched.sort(key=lambda row: str(row.get(query.order_by) or ''), reverse=query.descending)
        if query.limit:
            matched = matched[: query.limit]
        if tuple(query.columns) != ('*',):
            matched = [{column: row.get(column) for column in query.columns} for row in matched]
        return matched

    def insert(self, table: str, record: Dict[str, Any], access_token: Optional[str] = None) -> Dict[str, Any]:
        owner = self._owner(access_token)
        owner_column = _owner_column(table)
        if owner is not None and record.get(owner_column) != owner:
            raise BackendError('new row violates row-level security policy', code='42501', status=403)

        row = dict(record)
        row.setdefault('id', str(uuid4()))
        row.setdefault('created_at', _now())
        row.setdefault('updated_at', row['created_at'])
        with self._lock:
            rows = self._read_json(self._table_key(table)) or []
            rows.append(row)
            self._write_json(self._table_key(table), rows)
        return dict(row)

    def update(
        self,
        table: str,
        record_id: str,
        changes: Dict[str, Any],
        access_token: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        owner = self._owner(access_token)
        owner_column = _owner_column(table)
        with self._lock:
            rows = self._read_json(self._table_key(table)) or []
            for row in rows:
                if row.get('id') != record_id:
                    continue
                if owner is not None and row.get(owner_column) != owner:
                    return None
                if user_id is not None and row.get(owner_column) != user_id:
                    return None
                row.update(changes)
                self._write_json(self._table_key(table), rows)
                return dict(row)
        return None

    def delete(
        self,
        table: str,
        record_id: str,
        access_token: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        owner = self._owner(access_token)
        owner_column = _owner_column(table)
        with self._lock:
            rows = self._read_json(self._table_key(table)) or []
            kept = [
                row
                for row in rows
                if not (
                    row.get('id') == record_id
                    and (owner is None or row.get(owner_column) == owner)
                    and (user_id is None or row.get(owner_column) == user_id)
                )
            ]
            if len(kept) != len(rows):
                self._write_json(self._table_key(table), kept)

    # --- helpers --------------------------------------------------------
    def _session_for(self, user: BackendUser) -> AuthSession:
        access = issue_access_token(user.id, self._secret, email=user.email, lifetime=ACCESS_TOKEN_LIFETIME)
        refresh = self._sign_purpose_token(user.id, 'refresh', REFRESH_TOKEN_LIFETIME)
        return AuthSession(access_token=access, refresh_token=refresh, user=user)

    def _sign_purpose_token(self, user_id: str, purpose: str, lifetime: timedelta = timedelta(days=1)) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            'sub': user_id,
            'purpose': purpose,
            'jti': uuid4().hex,
            'iat': int(now.timestamp()),
            'exp': int((now + lifetime).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm='HS256')

    def _claims(self, access_token: str) -> Dict[str, Any]:
        try:
            claims = decode_access_token(access_token, self._secret)
        except AuthError as exc:
            raise BackendError(exc.message, code=exc.code, status=401) from exc
        if access_token in (self._read_json('revoked_tokens') or []):
            raise BackendError('Session not found', code='session_not_found', status=401)
        return claims

    def _owner(self, access_token: Optional[str]) -> Optional[str]:
        if not access_token:
            return None
        return self._claims(access_token)['sub']

    def _find_user_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        for record in (self._read_json('users') or {}).values():
            if record['id'] == user_id:
                return record
        return None

    @staticmethod
    def _user_from_record(record: Dict[str, Any]) -> BackendUser:
        return BackendUser(
            id=record['id'],
            email=record['email'],
            metadata=dict(record.get('metadata') or {}),
            email_confirmed_at=record.get('email_confirmed_at'),
        )

    def _send_mail(self, email: str, template: str, link: str, **extra: Any) -> None:
        with self._lock:
            outbox = self._read_json('outbox') or []
            outbox.append({'to': email, 'template': template, 'link': link, 'sent_at': _now(), **extra})
            self._write_json('outbox', outbox)
        logger.info('local.mail.queued', extra={'template': template})

    @staticmethod
    def _table_key(table: str) -> str:
        return f'tables/{table}'

    def _path(self, key: str) -> Path:
        return self._data_dir / f'{key}.json'

    def _init_redis(self) -> Optional[Any]:
        redis_url = os.getenv('UPSTASH_REDIS_URL')
        if not redis_url:
            return None
        try:
            return redis.from_url(redis_url, decode_responses=True)
        except Exception:  # pragma: no cover - network dependent
            logger.warning('Redis init failed', exc_info=True)
            return None

    def _redis_key(self, key: str) -> str:
        return f'wellness:{key}'

    def _write_json(self, key: str, data: Any) -> None:
        if self._redis is not None:
            try:
                self._redis.set(self._redis_key(key), json.dumps(data))
                return
            except Exception:
                logger.warning('Redis write failed; using filesystem fallback', exc_info=True)

        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))

    def _read_json(self, key: str) -> Any:
        if self._redis is not None:
            try:
                raw = self._redis.get(self._redis_key(key))
            except Exception:
                logger.warning('Redis read failed; using filesystem fallback', exc_info=True)
            else:
                if raw is not None:
                    try:
                        return json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning('Redis value was not valid JSON for %s', key)

        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text())
        except json.JSONDecodeError:
            logger.warning('Stored JSON was unreadable for %s', path.name)
            return None
