"""OAuth 2.0 error taxonomy.

Every failure the engine reports is an ``OAuthError`` carrying a stable RFC 6749
error code plus a human readable description. The transport layer maps the
error to an HTTP status with ``http_status`` and renders ``to_dict()``.

Categories:
- ClientError: bad request shape, unknown/untrusted client, bad redirect URI
- GrantError: invalid, expired, used or revoked credential, scope overreach
- ServerError: signing failure, repository unavailable
- InvalidToken: a presented bearer token failed verification (RFC 6750)
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """OAuth 2.0 error codes (RFC 6749 section 5.2, RFC 6750 section 3.1)."""
    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    INVALID_SCOPE = "invalid_scope"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
    ACCESS_DENIED = "access_denied"
    SERVER_ERROR = "server_error"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"
    INVALID_TOKEN = "invalid_token"


DESCRIPTIONS = {
    ErrorCode.INVALID_REQUEST: (
        "The request is missing a required parameter, includes an invalid "
        "parameter value, includes a parameter more than once, or is "
        "otherwise malformed."
    ),
    ErrorCode.INVALID_CLIENT: "Client authentication failed.",
    ErrorCode.INVALID_GRANT: (
        "The provided authorization grant or refresh token is invalid, "
        "expired, revoked, does not match the redirection URI used in the "
        "authorization request, or was issued to another client."
    ),
    ErrorCode.UNAUTHORIZED_CLIENT: (
        "The client is not authorized to request an access token using this "
        "method."
    ),
    ErrorCode.INVALID_SCOPE: "The requested scope is invalid, unknown, or malformed.",
    ErrorCode.UNSUPPORTED_GRANT_TYPE: (
        "The authorization grant type is not supported by the authorization "
        "server."
    ),
    ErrorCode.UNSUPPORTED_RESPONSE_TYPE: (
        "The authorization server does not support obtaining an access token "
        "using this method."
    ),
    ErrorCode.ACCESS_DENIED: "The resource owner or authorization server denied the request.",
    ErrorCode.SERVER_ERROR: (
        "The authorization server encountered an unexpected condition which "
        "prevented it from fulfilling the request."
    ),
    ErrorCode.TEMPORARILY_UNAVAILABLE: (
        "The authorization server is currently unable to handle the request "
        "due to a temporary overloading or maintenance of the server."
    ),
    ErrorCode.INVALID_TOKEN: (
        "The access token provided is expired, revoked, malformed, or invalid."
    ),
}

HTTP_STATUS = {
    ErrorCode.INVALID_CLIENT: 401,
    ErrorCode.INVALID_TOKEN: 401,
    ErrorCode.SERVER_ERROR: 500,
    ErrorCode.TEMPORARILY_UNAVAILABLE: 503,
}


class OAuthError(Exception):
    """Base class for every protocol error raised by the engine."""

    def __init__(self, error: ErrorCode, description: Optional[str] = None, hint: Optional[str] = None):
        self.error = ErrorCode(error)
        self.description = description or DESCRIPTIONS[self.error]
        self.hint = hint
        super().__init__(f"{self.error.value}: {self.description}")

    @property
    def http_status(self) -> int:
        return HTTP_STATUS.get(self.error, 400)

    def to_dict(self) -> dict:
        """Response body per RFC 6749 section 5.2."""
        body = {"error": self.error.value, "error_description": self.description}
        if self.hint:
            body["hint"] = self.hint
        return body


class ClientError(OAuthError):
    """Malformed request or an untrusted client. Never retried."""


class GrantError(OAuthError):
    """The presented credential or scope request cannot be honoured."""


class ServerError(OAuthError):
    """Signing or persistence failure. The engine does not retry."""


class InvalidToken(OAuthError):
    """A bearer token failed signature, structure or expiry checks."""

    def __init__(self, description: Optional[str] = None, hint: Optional[str] = None):
        super().__init__(ErrorCode.INVALID_TOKEN, description, hint)


def invalid_request(parameter: Optional[str] = None, hint: Optional[str] = None) -> ClientError:
    if parameter and not hint:
        hint = f'Check the `{parameter}` parameter'
    return ClientError(ErrorCode.INVALID_REQUEST, hint=hint)


def invalid_client(hint: Optional[str] = None) -> ClientError:
    return ClientError(ErrorCode.INVALID_CLIENT, hint=hint)


def unauthorized_client(hint: Optional[str] = None) -> ClientError:
    return ClientError(ErrorCode.UNAUTHORIZED_CLIENT, hint=hint)


def unsupported_grant_type(hint: Optional[str] = None) -> ClientError:
    return ClientError(ErrorCode.UNSUPPORTED_GRANT_TYPE, hint=hint)


def unsupported_response_type(hint: Optional[str] = None) -> ClientError:
    return ClientError(ErrorCode.UNSUPPORTED_RESPONSE_TYPE, hint=hint)


def access_denied(hint: Optional[str] = None) -> ClientError:
    return ClientError(ErrorCode.ACCESS_DENIED, hint=hint)


def invalid_grant(hint: Optional[str] = None) -> GrantError:
    return GrantError(ErrorCode.INVALID_GRANT, hint=hint)


def invalid_scope(scope: Optional[str] = None, hint: Optional[str] = None) -> GrantError:
    if scope and not hint:
        hint = f'Check the `{scope}` scope'
    return GrantError(ErrorCode.INVALID_SCOPE, hint=hint)


def server_error(hint: Optional[str] = None) -> ServerError:
    return ServerError(ErrorCode.SERVER_ERROR, hint=hint)


def temporarily_unavailable(hint: Optional[str] = None) -> ServerError:
    return ServerError(ErrorCode.TEMPORARILY_UNAVAILABLE, hint=hint)
