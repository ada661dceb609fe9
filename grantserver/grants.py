"""Grant types.

Each grant is a standalone class sharing one small base and a TokenIssuer,
selected by its GrantType tag:

- authorization_code: code issued at the authorization step, exchanged once
- client_credentials: machine-to-machine, no resource owner, no refresh token
- refresh_token: rotates a refresh token into a new access/refresh pair
- password: resource-owner credentials checked by a UserAuthenticator
- implicit: access token returned directly from the authorization step
"""

import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Mapping, Optional

from config import Config
from grantserver.entities import AccessToken, AuthorizationCode, Client, RefreshToken, Scope, utcnow
from grantserver.errors import (
    access_denied,
    invalid_client,
    invalid_grant,
    invalid_request,
    invalid_scope,
    server_error,
    unauthorized_client,
    unsupported_grant_type,
)
from grantserver.jwt_utils import KeyPair, encode_access_token
from grantserver.repositories import (
    AccessTokenRepository,
    AuthCodeRepository,
    RefreshTokenRepository,
    UniqueIdentifierViolation,
    UserAuthenticator,
)
from grantserver.responses import TOKEN_TYPE, append_query, expires_in
from grantserver.validators import CODE_CHALLENGE_METHODS, RequestValidator, verify_code_verifier

logger = logging.getLogger(__name__)

MAX_TOKEN_GENERATION_ATTEMPTS = 10


class GrantType(str, Enum):
    AUTHORIZATION_CODE = "authorization_code"
    CLIENT_CREDENTIALS = "client_credentials"
    REFRESH_TOKEN = "refresh_token"
    PASSWORD = "password"
    IMPLICIT = "implicit"


@dataclass
class IssuedTokens:
    client: Client
    access_token: AccessToken
    encoded: str
    refresh_token: Optional[RefreshToken] = None


@dataclass
class AuthorizationRequest:
    """A validated authorization-step request waiting for the owner's decision."""
    grant_type: GrantType
    client: Client
    redirect_uri: str
    redirect_uri_supplied: bool
    scopes: list = field(default_factory=list)
    state: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None


def new_identifier() -> str:
    return secrets.token_urlsafe(32)


class TokenIssuer:
    """Creates, signs and persists access and refresh tokens."""

    def __init__(
        self,
        config: Config,
        access_tokens: AccessTokenRepository,
        refresh_tokens: Optional[RefreshTokenRepository],
        key_pair: KeyPair,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.access_tokens = access_tokens
        self.refresh_tokens = refresh_tokens
        self.key_pair = key_pair
        self.clock = clock or utcnow

    def now(self) -> datetime:
        # Whole seconds so the JWT `exp` claim matches the stored expiry
        return self.clock().replace(microsecond=0)

    async def persist_unique(self, build: Callable[[str], object], persist: Callable[[object], Awaitable[None]]):
        """Persist a record under a fresh random identifier, retrying on collisions."""
        for _ in range(MAX_TOKEN_GENERATION_ATTEMPTS):
            record = build(new_identifier())
            try:
                await persist(record)
                return record
            except UniqueIdentifierViolation:
                logger.warning("[TOKEN] Identifier collision, regenerating")
        raise server_error("Could not generate a unique identifier")

    async def issue_access_token(self, ttl: int, client: Client, owner_id: Optional[str], scopes) -> AccessToken:
        now = self.now()
        scope_ids = tuple(s.identifier if isinstance(s, Scope) else s for s in scopes)
        return await self.persist_unique(
            lambda identifier: AccessToken(
                identifier=identifier,
                client_id=client.identifier,
                owner_id=owner_id,
                scopes=scope_ids,
                issued_at=now,
                expires_at=now + timedelta(seconds=ttl),
            ),
            self.access_tokens.persist_new_access_token,
        )

    async def issue_refresh_token(self, access_token: AccessToken, ttl: int, rotation: int = 0) -> RefreshToken:
        if self.refresh_tokens is None:
            raise server_error("Refresh tokens are not configured")
        now = self.now()
        return await self.persist_unique(
            lambda identifier: RefreshToken(
                identifier=identifier,
                access_token_id=access_token.identifier,
                client_id=access_token.client_id,
                owner_id=access_token.owner_id,
                scopes=access_token.scopes,
                issued_at=now,
                expires_at=now + timedelta(seconds=ttl),
                rotation=rotation,
            ),
            self.refresh_tokens.persist_new_refresh_token,
        )

    def encode(self, access_token: AccessToken) -> str:
        return encode_access_token(access_token, self.key_pair.private_key, issuer=self.config.issuer)

    async def issue(
        self,
        client: Client,
        owner_id: Optional[str],
        scopes,
        with_refresh: bool,
        rotation: int = 0,
    ) -> IssuedTokens:
        access_token = await self.issue_access_token(self.config.access_token_ttl, client, owner_id, scopes)
        encoded = self.encode(access_token)
        refresh_token = None
        if with_refresh:
            refresh_token = await self.issue_refresh_token(access_token, self.config.refresh_token_ttl, rotation)
        return IssuedTokens(client=client, access_token=access_token, encoded=encoded, refresh_token=refresh_token)


class BaseGrant(ABC):
    """Shared plumbing: the grant tag and token-endpoint matching."""

    identifier: GrantType

    def __init__(self, config: Config, validator: RequestValidator, issuer: TokenIssuer):
        self.config = config
        self.validator = validator
        self.issuer = issuer

    def can_respond_to_access_token_request(self, params: Mapping) -> bool:
        return self.validator.get_request_parameter("grant_type", params) == self.identifier.value

    def can_respond_to_authorization_request(self, params: Mapping) -> bool:
        return False

    def refresh_available(self, client: Client) -> bool:
        return (
            GrantType.REFRESH_TOKEN.value in self.config.grant_types
            and client.allows_grant(GrantType.REFRESH_TOKEN.value)
            and self.issuer.refresh_tokens is not None
        )

    @abstractmethod
    async def respond_to_access_token_request(self, params: Mapping) -> IssuedTokens:
        ...

    async def validate_authorization_params(self, params: Mapping) -> AuthorizationRequest:
        """Common authorization-step checks for the code and implicit grants.

        The client is identified, not authenticated, at this step.
        """
        get = self.validator.get_request_parameter
        client_id = get("client_id", params)
        if not client_id:
            raise invalid_request("client_id")
        client = await self.validator.clients.get_client(client_id)
        if client is None:
            raise invalid_client()
        if not client.allows_grant(self.identifier.value):
            raise unauthorized_client(f"Client may not use the {self.identifier.value} grant")

        supplied = get("redirect_uri", params)
        redirect_uri = self.validator.validate_redirect_uri(client, supplied)
        scopes = await self.validator.validate_scopes(get("scope", params), client)

        return AuthorizationRequest(
            grant_type=self.identifier,
            client=client,
            redirect_uri=redirect_uri,
            redirect_uri_supplied=bool(supplied),
            scopes=scopes,
            state=get("state", params),
        )


class ClientCredentialsGrant(BaseGrant):
    identifier = GrantType.CLIENT_CREDENTIALS

    async def respond_to_access_token_request(self, params: Mapping) -> IssuedTokens:
        client = await self.validator.validate_client(params, self.identifier.value)
        if not client.confidential:
            raise unauthorized_client("Public clients cannot use the client_credentials grant")
        scopes = await self.validator.validate_scopes(
            self.validator.get_request_parameter("scope", params), client
        )
        # No end user: the client acts on its own behalf
        return await self.issuer.issue(client, client.identifier, scopes, with_refresh=False)


class PasswordGrant(BaseGrant):
    identifier = GrantType.PASSWORD

    def __init__(self, config: Config, validator: RequestValidator, issuer: TokenIssuer, authenticator: UserAuthenticator):
        super().__init__(config, validator, issuer)
        self.authenticator = authenticator

    async def respond_to_access_token_request(self, params: Mapping) -> IssuedTokens:
        client = await self.validator.validate_client(params, self.identifier.value)
        get = self.validator.get_request_parameter
        scopes = await self.validator.validate_scopes(get("scope", params), client)

        username = get("username", params)
        if not username:
            raise invalid_request("username")
        password = get("password", params)
        if not password:
            raise invalid_request("password")

        owner_id = await self.authenticator.authenticate(username, password)
        if owner_id is None:
            logger.info(f"[GRANT] Password grant rejected for client {client.identifier}")
            raise invalid_grant("The user credentials were incorrect")

        return await self.issuer.issue(client, str(owner_id), scopes, with_refresh=self.refresh_available(client))


class AuthorizationCodeGrant(BaseGrant):
    identifier = GrantType.AUTHORIZATION_CODE
    response_type = "code"

    def __init__(self, config: Config, validator: RequestValidator, issuer: TokenIssuer, auth_codes: AuthCodeRepository):
        super().__init__(config, validator, issuer)
        self.auth_codes = auth_codes

    def can_respond_to_authorization_request(self, params: Mapping) -> bool:
        return self.validator.get_request_parameter("response_type", params) == self.response_type

    async def validate_authorization_request(self, params: Mapping) -> AuthorizationRequest:
        auth_request = await self.validate_authorization_params(params)
        get = self.validator.get_request_parameter

        challenge = get("code_challenge", params)
        if challenge:
            method = get("code_challenge_method", params) or "plain"
            if method not in CODE_CHALLENGE_METHODS:
                raise invalid_request("code_challenge_method", "Code challenge method must be `plain` or `S256`")
            auth_request.code_challenge = challenge
            auth_request.code_challenge_method = method
        elif not auth_request.client.confidential and self.config.require_pkce_for_public_clients:
            raise invalid_request("code_challenge", "Public clients must use PKCE")

        return auth_request

    async def complete_authorization_request(self, auth_request: AuthorizationRequest, owner_id: str, approved: bool = True) -> str:
        if not approved:
            error = access_denied()
            return append_query(auth_request.redirect_uri, {**error.to_dict(), "state": auth_request.state})

        now = self.issuer.now()
        code = await self.issuer.persist_unique(
            lambda identifier: AuthorizationCode(
                identifier=identifier,
                client_id=auth_request.client.identifier,
                owner_id=str(owner_id),
                redirect_uri=auth_request.redirect_uri if auth_request.redirect_uri_supplied else None,
                scopes=[s.identifier for s in auth_request.scopes],
                issued_at=now,
                expires_at=now + timedelta(seconds=self.config.auth_code_ttl),
                code_challenge=auth_request.code_challenge,
                code_challenge_method=auth_request.code_challenge_method,
            ),
            self.auth_codes.persist_new_auth_code,
        )
        logger.info(f"[GRANT] Authorization code issued to client {code.client_id}")
        return append_query(auth_request.redirect_uri, {"code": code.identifier, "state": auth_request.state})

    async def respond_to_access_token_request(self, params: Mapping) -> IssuedTokens:
        client = await self.validator.validate_client(params, self.identifier.value)
        get = self.validator.get_request_parameter

        code_id = get("code", params)
        if not code_id:
            raise invalid_request("code")

        code = await self.auth_codes.get_auth_code(code_id)
        if code is None:
            raise invalid_grant("Authorization code is invalid")
        if code.client_id != client.identifier:
            logger.warning(f"[AUDIT] Client {client.identifier} presented a code issued to {code.client_id}")
            raise invalid_grant("Authorization code was not issued to this client")
        if code.used:
            logger.warning(f"[AUDIT] Replay of used authorization code by client {client.identifier}")
            raise invalid_grant("Authorization code has already been used")
        if code.is_expired(self.issuer.now()):
            raise invalid_grant("Authorization code has expired")

        if code.redirect_uri is not None:
            redirect_uri = get("redirect_uri", params)
            if not redirect_uri:
                raise invalid_request("redirect_uri")
            if redirect_uri != code.redirect_uri:
                raise invalid_grant("Redirect URI does not match the authorization request")

        if code.code_challenge:
            verify_code_verifier(get("code_verifier", params), code.code_challenge, code.code_challenge_method)

        # Conditional update: only one concurrent exchange can win
        if not await self.auth_codes.mark_auth_code_used(code.identifier):
            logger.warning(f"[AUDIT] Concurrent replay of authorization code by client {client.identifier}")
            raise invalid_grant("Authorization code has already been used")

        return await self.issuer.issue(client, code.owner_id, code.scopes, with_refresh=self.refresh_available(client))


class RefreshTokenGrant(BaseGrant):
    identifier = GrantType.REFRESH_TOKEN

    async def respond_to_access_token_request(self, params: Mapping) -> IssuedTokens:
        client = await self.validator.validate_client(params, self.identifier.value)
        get = self.validator.get_request_parameter

        token_id = get("refresh_token", params)
        if not token_id:
            raise invalid_request("refresh_token")

        refresh_tokens = self.issuer.refresh_tokens
        old = await refresh_tokens.get_refresh_token(token_id)
        if old is None:
            raise invalid_grant("Refresh token is invalid")
        if old.client_id != client.identifier:
            logger.warning(f"[AUDIT] Client {client.identifier} presented a refresh token issued to {old.client_id}")
            raise invalid_grant("Refresh token was not issued to this client")
        if old.revoked:
            logger.warning(f"[AUDIT] Replay of revoked refresh token by client {client.identifier}")
            raise invalid_grant("Refresh token has been revoked")
        if old.is_expired(self.issuer.now()):
            raise invalid_grant("Refresh token has expired")
        limit = self.config.max_refresh_rotations
        if limit is not None and old.rotation >= limit:
            raise invalid_grant("Refresh token rotation limit reached")

        # Narrowing is allowed, widening is not
        scopes = list(old.scopes)
        requested = self.validator.split_scopes(get("scope", params))
        if requested:
            for identifier in requested:
                if identifier not in old.scopes:
                    raise invalid_scope(identifier)
            scopes = [s.identifier for s in await self.validator.validate_scopes(get("scope", params), client)]

        if not await refresh_tokens.revoke_refresh_token(old.identifier):
            logger.warning(f"[AUDIT] Concurrent replay of refresh token by client {client.identifier}")
            raise invalid_grant("Refresh token has been revoked")
        await self.issuer.access_tokens.revoke_access_token(old.access_token_id)

        return await self.issuer.issue(client, old.owner_id, scopes, with_refresh=True, rotation=old.rotation + 1)


class ImplicitGrant(BaseGrant):
    identifier = GrantType.IMPLICIT
    response_type = "token"

    def can_respond_to_access_token_request(self, params: Mapping) -> bool:
        # Tokens come straight from the authorization step
        return False

    async def respond_to_access_token_request(self, params: Mapping) -> IssuedTokens:
        raise unsupported_grant_type()

    def can_respond_to_authorization_request(self, params: Mapping) -> bool:
        return self.validator.get_request_parameter("response_type", params) == self.response_type

    async def validate_authorization_request(self, params: Mapping) -> AuthorizationRequest:
        return await self.validate_authorization_params(params)

    async def complete_authorization_request(self, auth_request: AuthorizationRequest, owner_id: str, approved: bool = True) -> str:
        if not approved:
            error = access_denied()
            return append_query(auth_request.redirect_uri, {**error.to_dict(), "state": auth_request.state}, "#")

        issued = await self.issuer.issue(auth_request.client, str(owner_id), auth_request.scopes, with_refresh=False)
        params = {
            "access_token": issued.encoded,
            "token_type": TOKEN_TYPE,
            "expires_in": expires_in(issued.access_token.expires_at, self.issuer.now()),
            "scope": self.config.scope_delimiter.join(issued.access_token.scopes) or None,
            "state": auth_request.state,
        }
        logger.info(f"[GRANT] Implicit access token issued to client {auth_request.client.identifier}")
        return append_query(auth_request.redirect_uri, params, "#")
