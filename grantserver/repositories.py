"""Persistence contracts consumed by the engine.

The host application supplies implementations (see ``stores.py`` for the
in-memory ones). Every method is a coroutine; the engine awaits them and
applies no timeout of its own.

Conditional updates (``mark_auth_code_used``, ``revoke_refresh_token``,
``mark_session_granted``) must be atomic: they return ``True`` for exactly one
caller and ``False`` once the flag is already set or the record is unknown.
"""

from datetime import datetime
from typing import Optional, Protocol

from grantserver.entities import AccessToken, AuthorizationCode, Client, RefreshToken, Scope, Session


class RepositoryError(Exception):
    """A repository could not complete the operation."""


class RepositoryUnavailable(RepositoryError):
    """The backing store is temporarily unreachable."""


class UniqueIdentifierViolation(RepositoryError):
    """Persisting failed because the identifier already exists."""


class ClientRepository(Protocol):
    async def get_client(self, client_id: str) -> Optional[Client]: ...


class ScopeRepository(Protocol):
    async def get_scope(self, identifier: str) -> Optional[Scope]: ...


class AuthCodeRepository(Protocol):
    async def persist_new_auth_code(self, code: AuthorizationCode) -> None: ...

    async def get_auth_code(self, identifier: str) -> Optional[AuthorizationCode]: ...

    async def mark_auth_code_used(self, identifier: str) -> bool: ...


class AccessTokenRepository(Protocol):
    async def persist_new_access_token(self, token: AccessToken) -> None: ...

    async def get_access_token(self, identifier: str) -> Optional[AccessToken]: ...

    async def revoke_access_token(self, identifier: str) -> bool: ...

    async def is_access_token_revoked(self, identifier: str) -> bool: ...


class RefreshTokenRepository(Protocol):
    async def persist_new_refresh_token(self, token: RefreshToken) -> None: ...

    async def get_refresh_token(self, identifier: str) -> Optional[RefreshToken]: ...

    async def revoke_refresh_token(self, identifier: str) -> bool: ...


class SessionRepository(Protocol):
    async def create_session(self, session: Session) -> str: ...

    async def update_session(
        self,
        client_id: str,
        owner_type: str,
        owner_id: str,
        auth_code: str,
        access_token_id: Optional[str],
        stage: str,
        expires_at: datetime,
    ) -> None: ...

    async def delete_sessions(self, client_id: str, owner_type: str, owner_id: str) -> None: ...

    async def add_session_scope(self, session_id: str, scope_id: str) -> None: ...

    async def get_session(self, client_id: str, owner_type: str, owner_id: str) -> Optional[Session]: ...

    async def get_session_by_code(self, auth_code: str) -> Optional[Session]: ...

    async def mark_session_granted(self, session_id: str, auth_code: str, access_token_id: str) -> bool: ...


class UserAuthenticator(Protocol):
    """Verifies resource-owner credentials for the password grant."""

    async def authenticate(self, username: str, password: str) -> Optional[str]:
        """Return the owner identifier, or None when the credentials are wrong."""
        ...
