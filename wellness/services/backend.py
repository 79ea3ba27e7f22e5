"""Backend capability interface shared by the hosted and local data stores."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Raised when the auth/data provider rejects a request."""

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status

    @classmethod
    def from_exception(cls, exc: Exception) -> 'BackendError':
        if isinstance(exc, BackendError):
            return exc
        message = getattr(exc, 'message', None) or str(exc) or exc.__class__.__name__
        code = getattr(exc, 'code', None)
        status = getattr(exc, 'status', None)
        return cls(str(message), code=str(code) if code is not None else None, status=status)


@dataclass
class BackendUser:
    id: str
    email: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    email_confirmed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'email': self.email,
            'metadata': dict(self.metadata),
            'email_confirmed_at': self.email_confirmed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackendUser':
        return cls(
            id=data['id'],
            email=data.get('email', ''),
            metadata=dict(data.get('metadata') or {}),
            email_confirmed_at=data.get('email_confirmed_at'),
        )


@dataclass
class AuthSession:
    access_token: str
    refresh_token: Optional[str]
    user: BackendUser


@dataclass
class AuthResponse:
    user: Optional[BackendUser]
    session: Optional[AuthSession]


@dataclass
class Query:
    """Filters applied to a table select.

    ``date_from`` and ``date_to`` are inclusive bounds on the ``date`` column.
    ``name_contains`` / ``name_excludes`` apply a case-insensitive substring
    match on ``name_column``.
    """

    filters: Dict[str, Any] = field(default_factory=dict)
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None
    name_column: Optional[str] = None
    name_contains: Optional[str] = None
    name_excludes: Optional[str] = None
    columns: Sequence[str] = ('*',)


class Backend(ABC):
    """Narrow set of capabilities the application needs from a provider.

    Every call that touches user data receives the caller's access token so the
    provider can enforce row ownership.
    """

    name = 'backend'

    # --- auth -----------------------------------------------------------
    @abstractmethod
    def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> AuthResponse: ...

    @abstractmethod
    def sign_in(self, email: str, password: str) -> AuthResponse: ...

    @abstractmethod
    def sign_out(self, access_token: Optional[str]) -> None: ...

    @abstractmethod
    def get_user(self, access_token: str) -> Optional[BackendUser]: ...

    @abstractmethod
    def refresh_session(self, refresh_token: str) -> Optional[AuthSession]: ...

    @abstractmethod
    def update_password(self, access_token: str, refresh_token: Optional[str], new_password: str) -> BackendUser: ...

    @abstractmethod
    def send_password_reset(self, email: str, redirect_to: Optional[str]) -> None: ...

    @abstractmethod
    def verify_recovery_token(self, token: str) -> AuthSession: ...

    @abstractmethod
    def resend_confirmation(self, email: str) -> None: ...

    # --- data -----------------------------------------------------------
    @abstractmethod
    def select(self, table: str, query: Query, access_token: Optional[str] = None) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def insert(self, table: str, record: Dict[str, Any], access_token: Optional[str] = None) -> Dict[str, Any]: ...

    @abstractmethod
    def update(
        self,
        table: str,
        record_id: str,
        changes: Dict[str, Any],
        access_token: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def delete(
        self,
        table: str,
        record_id: str,
        access_token: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None: ...


def get_env_value(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def supabase_credentials() -> tuple[Optional[str], Optional[str]]:
    url = get_env_value('SUPABASE_URL', 'NEXT_PUBLIC_SUPABASE_URL', 'SUPABASE_PROJECT_URL')
    key = get_env_value('SUPABASE_ANON_KEY', 'NEXT_PUBLIC_SUPABASE_ANON_KEY', 'SUPABASE_API_KEY')
    return url, key


def resolve_backend(secret_key: str) -> Optional[Backend]:
    """Pick the configured backend, or ``None`` when nothing is configured."""

    choice = (os.getenv('WELLNESS_BACKEND') or '').strip().lower()

    if choice == 'local':
        from .local_backend import LocalBackend

        logger.info('backend.local.enabled')
        return LocalBackend(secret_key=secret_key)

    url, key = supabase_credentials()
    if url and key:
        from .supabase_backend import SupabaseBackend

        logger.info('backend.supabase.enabled')
        return SupabaseBackend(url, key)

    logger.info('backend.disabled', extra={'reason': 'missing SUPABASE_URL or SUPABASE_ANON_KEY'})
    return None
