"""In-memory repositories.

Reference implementations of the contracts in ``repositories.py``, used by
``main.py`` for local runs and by the test suite. Records live in plain dicts;
conditional updates are serialized with an asyncio.Lock so a code or refresh
token can be consumed at most once.
"""

import asyncio
import secrets
from datetime import datetime
from typing import Iterable, Optional

from grantserver.entities import (
    STAGE_GRANTED,
    STAGE_REQUEST,
    AccessToken,
    AuthorizationCode,
    Client,
    RefreshToken,
    Scope,
    Session,
)
from grantserver.repositories import UniqueIdentifierViolation


class InMemoryClientRepository:
    def __init__(self, clients: Iterable[Client] = ()):
        self.clients: dict[str, Client] = {c.identifier: c for c in clients}

    def add(self, client: Client) -> None:
        self.clients[client.identifier] = client

    async def get_client(self, client_id: str) -> Optional[Client]:
        return self.clients.get(client_id)


class InMemoryScopeRepository:
    def __init__(self, scopes: Iterable[Scope] = ()):
        self.scopes: dict[str, Scope] = {s.identifier: s for s in scopes}

    def add(self, scope: Scope) -> None:
        self.scopes[scope.identifier] = scope

    async def get_scope(self, identifier: str) -> Optional[Scope]:
        return self.scopes.get(identifier)


class InMemoryAuthCodeRepository:
    def __init__(self):
        self.codes: dict[str, AuthorizationCode] = {}
        self._lock = asyncio.Lock()

    async def persist_new_auth_code(self, code: AuthorizationCode) -> None:
        if code.identifier in self.codes:
            raise UniqueIdentifierViolation(code.identifier)
        self.codes[code.identifier] = code

    async def get_auth_code(self, identifier: str) -> Optional[AuthorizationCode]:
        return self.codes.get(identifier)

    async def mark_auth_code_used(self, identifier: str) -> bool:
        async with self._lock:
            code = self.codes.get(identifier)
            if code is None or code.used:
                return False
            code.mark_used()
            return True


class InMemoryAccessTokenRepository:
    def __init__(self):
        self.tokens: dict[str, AccessToken] = {}
        self._lock = asyncio.Lock()

    async def persist_new_access_token(self, token: AccessToken) -> None:
        if token.identifier in self.tokens:
            raise UniqueIdentifierViolation(token.identifier)
        self.tokens[token.identifier] = token

    async def get_access_token(self, identifier: str) -> Optional[AccessToken]:
        return self.tokens.get(identifier)

    async def revoke_access_token(self, identifier: str) -> bool:
        async with self._lock:
            token = self.tokens.get(identifier)
            if token is None or token.revoked:
                return False
            token.revoke()
            return True

    async def is_access_token_revoked(self, identifier: str) -> bool:
        token = self.tokens.get(identifier)
        # Unknown tokens count as revoked
        return token is None or token.revoked


class InMemoryRefreshTokenRepository:
    def __init__(self):
        self.tokens: dict[str, RefreshToken] = {}
        self._lock = asyncio.Lock()

    async def persist_new_refresh_token(self, token: RefreshToken) -> None:
        if token.identifier in self.tokens:
            raise UniqueIdentifierViolation(token.identifier)
        self.tokens[token.identifier] = token

    async def get_refresh_token(self, identifier: str) -> Optional[RefreshToken]:
        return self.tokens.get(identifier)

    async def revoke_refresh_token(self, identifier: str) -> bool:
        async with self._lock:
            token = self.tokens.get(identifier)
            if token is None or token.revoked:
                return False
            token.revoke()
            return True


class InMemorySessionRepository:
    """Legacy authorization sessions keyed by a generated session id."""

    def __init__(self):
        self.sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def create_session(self, session: Session) -> str:
        session_id = secrets.token_hex(8)
        session.identifier = session_id
        self.sessions[session_id] = session
        return session_id

    def _find(self, client_id: str, owner_type: str, owner_id: str) -> list[Session]:
        return [
            s for s in self.sessions.values()
            if s.client_id == client_id and s.owner_type == owner_type and s.owner_id == owner_id
        ]

    async def update_session(
        self,
        client_id: str,
        owner_type: str,
        owner_id: str,
        auth_code: str,
        access_token_id: Optional[str],
        stage: str,
        expires_at: datetime,
    ) -> None:
        for session in self._find(client_id, owner_type, owner_id):
            session.auth_code = auth_code
            session.access_token_id = access_token_id
            session.stage = stage
            session.expires_at = expires_at

    async def delete_sessions(self, client_id: str, owner_type: str, owner_id: str) -> None:
        for session in self._find(client_id, owner_type, owner_id):
            del self.sessions[session.identifier]

    async def add_session_scope(self, session_id: str, scope_id: str) -> None:
        self.sessions[session_id].scopes.append(scope_id)

    async def get_session(self, client_id: str, owner_type: str, owner_id: str) -> Optional[Session]:
        found = self._find(client_id, owner_type, owner_id)
        return found[0] if found else None

    async def get_session_by_code(self, auth_code: str) -> Optional[Session]:
        for session in self.sessions.values():
            if session.auth_code == auth_code:
                return session
        return None

    async def mark_session_granted(self, session_id: str, auth_code: str, access_token_id: str) -> bool:
        async with self._lock:
            session = self.sessions.get(session_id)
            if session is None or session.stage != STAGE_REQUEST or session.auth_code != auth_code:
                return False
            session.stage = STAGE_GRANTED
            session.auth_code = None
            session.access_token_id = access_token_id
            return True
