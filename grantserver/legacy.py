"""Session-based authorization code flow kept for older integrations.

A session binds a client, an owner (type and id), a redirect URI and the
requested scopes to one pending authorization code:

    no session -> pending (code issued) -> exchanged (access token bound)
                                        -> expired

Errors are raised as ClientError/GrantError with the usual RFC codes.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional

from config import Config
from grantserver.entities import STAGE_REQUEST, AccessToken, Session
from grantserver.errors import (
    invalid_grant,
    invalid_request,
    invalid_scope,
    unauthorized_client,
    unsupported_response_type,
)
from grantserver.grants import TokenIssuer
from grantserver.jwt_utils import KeyPair
from grantserver.repositories import AccessTokenRepository, ClientRepository, ScopeRepository, SessionRepository
from grantserver.responses import append_query, bearer_token_response
from grantserver.server import repository_errors
from grantserver.validators import RequestValidator

logger = logging.getLogger(__name__)


class LegacyAuthServer:
    def __init__(
        self,
        config: Config,
        clients: ClientRepository,
        scopes: ScopeRepository,
        access_tokens: AccessTokenRepository,
        sessions: SessionRepository,
        key_pair: KeyPair,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.clients = clients
        self.scopes = scopes
        self.access_tokens = access_tokens
        self.sessions = sessions
        self.validator = RequestValidator(config, clients, scopes)
        self.issuer = TokenIssuer(config, access_tokens, None, key_pair, clock)

    async def check_client_authorise_params(self, params: Mapping) -> dict:
        """Validate the parameters of an authorise request.

        Returns:
            dict with client_id, redirect_uri, response_type and, when a
            scope parameter was sent, the resolved Scope list under `scopes`
        """
        get = self.validator.get_request_parameter
        result = {}

        for name in ("client_id", "redirect_uri"):
            value = get(name, params)
            if not value:
                raise invalid_request(name)
            result[name] = value

        with repository_errors():
            client = await self.clients.get_client(result["client_id"])
        if client is None or result["redirect_uri"] not in client.redirect_uris:
            raise unauthorized_client()

        response_type = get("response_type", params)
        if not response_type:
            raise invalid_request("response_type")
        if response_type not in self.config.legacy_response_types:
            raise unsupported_response_type()
        result["response_type"] = response_type

        scope_param = get("scope", params)
        if scope_param is not None:
            identifiers = self.validator.split_scopes(scope_param, self.config.legacy_scope_delimiter)
            if not identifiers:
                raise invalid_request("scope")

            result["scopes"] = []
            for identifier in identifiers:
                with repository_errors():
                    scope = await self.scopes.get_scope(identifier)
                if scope is None or not client.allows_scope(identifier):
                    raise invalid_scope(identifier)
                result["scopes"].append(scope)

        return result

    async def new_authorise_request(self, owner_type: str, owner_id: str, params: Mapping) -> str:
        """Create or refresh the owner's session and return a new authorization code."""
        requested = [s.identifier for s in params.get("scopes", [])]

        with repository_errors():
            access_token = await self._session_access_token(params["client_id"], owner_type, owner_id)

        if access_token is not None:
            # Re-authorisation may not widen what was already granted
            for identifier in requested:
                if identifier not in access_token.scopes:
                    raise invalid_scope(identifier)
            return await self.new_auth_code(
                params["client_id"], owner_type, owner_id, params["redirect_uri"], requested, access_token.identifier
            )

        return await self.new_auth_code(params["client_id"], owner_type, owner_id, params["redirect_uri"], requested)

    async def _session_access_token(self, client_id: str, owner_type: str, owner_id: str) -> Optional[AccessToken]:
        """Live access token bound to the owner's session for this client, if any."""
        session = await self.sessions.get_session(client_id, owner_type, owner_id)
        if session is None or not session.access_token_id:
            return None
        token = await self.access_tokens.get_access_token(session.access_token_id)
        if token is None or token.revoked or token.is_expired(self.issuer.now()):
            return None
        return token

    @staticmethod
    def generate_code() -> str:
        return secrets.token_hex(20)

    async def new_auth_code(
        self,
        client_id: str,
        owner_type: str,
        owner_id: str,
        redirect_uri: str,
        scopes=(),
        access_token_id: Optional[str] = None,
    ) -> str:
        """Attach a fresh code to the (client, owner) session.

        With an existing access token the session is updated in place;
        otherwise older sessions are dropped and a new one is created.
        """
        auth_code = self.generate_code()
        now = self.issuer.now()
        expires_at = now + timedelta(seconds=self.config.auth_code_ttl)

        with repository_errors():
            if access_token_id is not None:
                await self.sessions.update_session(
                    client_id, owner_type, owner_id, auth_code, access_token_id, STAGE_REQUEST, expires_at
                )
            else:
                await self.sessions.delete_sessions(client_id, owner_type, owner_id)
                session_id = await self.sessions.create_session(Session(
                    client_id=client_id,
                    redirect_uri=redirect_uri,
                    owner_type=owner_type,
                    owner_id=owner_id,
                    auth_code=auth_code,
                    created_at=now,
                    expires_at=expires_at,
                ))
                for scope in scopes:
                    await self.sessions.add_session_scope(session_id, scope)

        logger.info(f"[GRANT] Legacy authorization code issued to client {client_id}")
        return auth_code

    @staticmethod
    def redirect_uri(redirect_uri: str, params: Optional[Mapping] = None, query_delimiter: str = "?") -> str:
        return append_query(redirect_uri, params or {}, query_delimiter)

    async def exchange_auth_code(self, params: Mapping) -> dict:
        """Exchange a session's pending code for an access token."""
        get = self.validator.get_request_parameter
        code = get("code", params)
        if not code:
            raise invalid_request("code")

        with repository_errors():
            client = await self.validator.validate_client(params)
            session = await self.sessions.get_session_by_code(code)
            if session is None or session.stage != STAGE_REQUEST:
                raise invalid_grant("Authorization code is invalid")
            if session.client_id != client.identifier:
                logger.warning(f"[AUDIT] Client {client.identifier} presented a session code of {session.client_id}")
                raise invalid_grant("Authorization code was not issued to this client")
            if session.is_expired(self.issuer.now()):
                raise invalid_grant("Authorization code has expired")
            if get("redirect_uri", params) != session.redirect_uri:
                raise invalid_grant("Redirect URI does not match the authorization request")

            previous_token_id = session.access_token_id
            issued = await self.issuer.issue(client, session.owner_id, session.scopes, with_refresh=False)
            if not await self.sessions.mark_session_granted(session.identifier, code, issued.access_token.identifier):
                # Lost the race: withdraw the token we just minted
                await self.access_tokens.revoke_access_token(issued.access_token.identifier)
                logger.warning(f"[AUDIT] Concurrent replay of session code by client {client.identifier}")
                raise invalid_grant("Authorization code has already been used")

            if previous_token_id:
                # Re-authorisation replaces the token the owner already held
                await self.access_tokens.revoke_access_token(previous_token_id)

        return bearer_token_response(
            issued.access_token,
            issued.encoded,
            now=self.issuer.now(),
            default_scopes=client.default_scopes,
            delimiter=self.config.scope_delimiter,
        )
