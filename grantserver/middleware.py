"""Bearer token middleware for protected resource routes.

Validates `Authorization: Bearer <jwt>` with the authorization server's
public key and rejects revoked tokens. The decoded claims are exposed to the
route as `request.state.token_claims`.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from grantserver.errors import InvalidToken, OAuthError
from grantserver.server import AuthorizationServer

logger = logging.getLogger(__name__)


class BearerTokenMiddleware(BaseHTTPMiddleware):
    """Middleware to validate OAuth Bearer tokens on paths under `protected_prefix`."""

    def __init__(self, app, auth_server: AuthorizationServer, protected_prefix: str = "/api", required_scopes=()):
        super().__init__(app)
        self.auth_server = auth_server
        self.protected_prefix = protected_prefix
        self.required_scopes = set(required_scopes)

    def _challenge(self, error: OAuthError) -> JSONResponse:
        return JSONResponse(
            error.to_dict(),
            status_code=error.http_status,
            headers={"WWW-Authenticate": f'Bearer error="{error.error.value}"'}
        )

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.protected_prefix):
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            logger.info("[AUTH] Request rejected: no Bearer token")
            return JSONResponse(
                {"error": "invalid_request", "error_description": "Missing or invalid Authorization header"},
                status_code=401,
                headers={"WWW-Authenticate": "Bearer"}
            )

        token = auth_header[7:]
        try:
            claims = await self.auth_server.validate_bearer_token(token)
        except InvalidToken as e:
            logger.info("[AUTH] Request rejected: invalid, expired or revoked token")
            return self._challenge(e)
        except OAuthError as e:
            return JSONResponse(e.to_dict(), status_code=e.http_status)

        missing = self.required_scopes - set(claims["scopes"])
        if missing:
            logger.warning(f"[AUTH] Access denied: token for {claims['sub']} lacks {sorted(missing)}")
            return JSONResponse(
                {"error": "insufficient_scope", "error_description": "The token lacks a required scope"},
                status_code=403,
                headers={"WWW-Authenticate": 'Bearer error="insufficient_scope"'}
            )

        request.state.token_claims = claims
        logger.info(f"[AUTH] Request authorized: {claims['sub']} via client {claims['aud']}")
        return await call_next(request)
