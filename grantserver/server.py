"""Authorization server: dispatches requests to the enabled grants."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Mapping, Optional

from config import Config
from grantserver.errors import (
    InvalidToken,
    invalid_request,
    server_error,
    temporarily_unavailable,
    unsupported_grant_type,
    unsupported_response_type,
)
from grantserver.grants import (
    AuthorizationCodeGrant,
    AuthorizationRequest,
    BaseGrant,
    ClientCredentialsGrant,
    GrantType,
    ImplicitGrant,
    PasswordGrant,
    RefreshTokenGrant,
    TokenIssuer,
)
from grantserver.jwt_utils import KeyPair, decode_access_token
from grantserver.repositories import (
    AccessTokenRepository,
    AuthCodeRepository,
    ClientRepository,
    RefreshTokenRepository,
    RepositoryError,
    RepositoryUnavailable,
    ScopeRepository,
    UserAuthenticator,
)
from grantserver.responses import bearer_token_response
from grantserver.validators import RequestValidator

logger = logging.getLogger(__name__)


@contextmanager
def repository_errors():
    """Translate repository failures into server errors. Never retried here."""
    try:
        yield
    except RepositoryUnavailable as e:
        logger.error(f"[TOKEN] Repository unavailable: {e}")
        raise temporarily_unavailable() from e
    except RepositoryError as e:
        logger.error(f"[TOKEN] Repository failure: {e}")
        raise server_error() from e


class AuthorizationServer:
    """Entry point for token and authorization requests.

    Args:
        config: Server configuration
        clients, scopes, auth_codes, access_tokens, refresh_tokens: Repositories
        key_pair: Signing and verification keys
        authenticator: Resource-owner authenticator, needed for the password grant
        clock: Returns the current aware UTC datetime (tests inject their own)
    """

    def __init__(
        self,
        config: Config,
        clients: ClientRepository,
        scopes: ScopeRepository,
        auth_codes: AuthCodeRepository,
        access_tokens: AccessTokenRepository,
        refresh_tokens: Optional[RefreshTokenRepository],
        key_pair: KeyPair,
        authenticator: Optional[UserAuthenticator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.key_pair = key_pair
        self.access_tokens = access_tokens
        self.refresh_tokens = refresh_tokens
        self.validator = RequestValidator(config, clients, scopes)
        self.issuer = TokenIssuer(config, access_tokens, refresh_tokens, key_pair, clock)
        self.grants: dict[GrantType, BaseGrant] = {}

        for name in config.grant_types:
            grant_type = GrantType(name)
            if grant_type is GrantType.AUTHORIZATION_CODE:
                self.enable_grant(AuthorizationCodeGrant(config, self.validator, self.issuer, auth_codes))
            elif grant_type is GrantType.CLIENT_CREDENTIALS:
                self.enable_grant(ClientCredentialsGrant(config, self.validator, self.issuer))
            elif grant_type is GrantType.REFRESH_TOKEN:
                if refresh_tokens is None:
                    logger.warning("[STARTUP] refresh_token grant disabled: no refresh token repository")
                    continue
                self.enable_grant(RefreshTokenGrant(config, self.validator, self.issuer))
            elif grant_type is GrantType.PASSWORD:
                if authenticator is None:
                    logger.warning("[STARTUP] password grant disabled: no user authenticator")
                    continue
                self.enable_grant(PasswordGrant(config, self.validator, self.issuer, authenticator))
            elif grant_type is GrantType.IMPLICIT:
                self.enable_grant(ImplicitGrant(config, self.validator, self.issuer))

    def enable_grant(self, grant: BaseGrant) -> None:
        self.grants[grant.identifier] = grant
        logger.debug(f"[STARTUP] Grant enabled: {grant.identifier.value}")

    async def respond_to_access_token_request(self, params: Mapping) -> dict:
        """Handle a token endpoint request and return the bearer token payload."""
        grant_type = self.validator.get_request_parameter("grant_type", params)
        if not grant_type:
            raise invalid_request("grant_type")

        for grant in self.grants.values():
            if grant.can_respond_to_access_token_request(params):
                break
        else:
            raise unsupported_grant_type()

        with repository_errors():
            issued = await grant.respond_to_access_token_request(params)

        logger.info(
            f"[TOKEN] {grant_type} token issued to client {issued.client.identifier}"
            f" (refresh: {issued.refresh_token is not None})"
        )
        return bearer_token_response(
            issued.access_token,
            issued.encoded,
            issued.refresh_token,
            now=self.issuer.now(),
            default_scopes=issued.client.default_scopes or self.config.default_scopes,
            delimiter=self.config.scope_delimiter,
        )

    def _authorization_grant(self, params: Mapping) -> BaseGrant:
        response_type = self.validator.get_request_parameter("response_type", params)
        if not response_type:
            raise invalid_request("response_type")
        if response_type in self.config.response_types:
            for grant in self.grants.values():
                if grant.can_respond_to_authorization_request(params):
                    return grant
        raise unsupported_response_type()

    async def validate_authorization_request(self, params: Mapping) -> AuthorizationRequest:
        """Validate an authorization endpoint request before asking the owner."""
        grant = self._authorization_grant(params)
        with repository_errors():
            return await grant.validate_authorization_request(params)

    async def complete_authorization_request(
        self,
        auth_request: AuthorizationRequest,
        owner_id: str,
        approved: bool = True,
    ) -> str:
        """Finish the authorization step and return the URI to redirect the user agent to."""
        grant = self.grants[auth_request.grant_type]
        with repository_errors():
            return await grant.complete_authorization_request(auth_request, owner_id, approved)

    async def validate_bearer_token(self, token: str) -> dict:
        """Verify a presented access token and reject revoked ones."""
        claims = decode_access_token(token, self.key_pair.public_key, issuer=self.config.issuer)
        with repository_errors():
            revoked = await self.access_tokens.is_access_token_revoked(claims["jti"])
        if revoked:
            raise InvalidToken("The access token has been revoked")
        return claims

    async def revoke_token(self, params: Mapping) -> None:
        """Token revocation (RFC 7009).

        Unknown tokens and tokens owned by other clients are ignored so the
        response does not reveal whether a token exists.
        """
        get = self.validator.get_request_parameter
        with repository_errors():
            client = await self.validator.validate_client(params)
            token = get("token", params)
            if not token:
                raise invalid_request("token")
            hint = get("token_type_hint", params)

            if hint != "access_token" and self.refresh_tokens is not None:
                refresh_token = await self.refresh_tokens.get_refresh_token(token)
                if refresh_token is not None:
                    if refresh_token.client_id == client.identifier:
                        await self.refresh_tokens.revoke_refresh_token(refresh_token.identifier)
                        await self.access_tokens.revoke_access_token(refresh_token.access_token_id)
                        logger.info(f"[TOKEN] Refresh token revoked by client {client.identifier}")
                    return

            try:
                claims = decode_access_token(token, self.key_pair.public_key)
            except InvalidToken:
                return
            access_token = await self.access_tokens.get_access_token(claims["jti"])
            if access_token is not None and access_token.client_id == client.identifier:
                await self.access_tokens.revoke_access_token(access_token.identifier)
                logger.info(f"[TOKEN] Access token revoked by client {client.identifier}")
