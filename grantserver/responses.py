"""Token response shaping.

Pure functions of the issued entities; nothing is persisted here.
"""

from datetime import datetime
from typing import Iterable, Mapping, Optional
from urllib.parse import urlencode

from grantserver.entities import AccessToken, RefreshToken, utcnow
from grantserver.errors import OAuthError

TOKEN_TYPE = "Bearer"


def expires_in(expires_at: datetime, now: Optional[datetime] = None) -> int:
    """Whole seconds until expiry, never negative."""
    now = now or utcnow()
    return max(0, int((expires_at - now).total_seconds()))


def bearer_token_response(
    access_token: AccessToken,
    encoded: str,
    refresh_token: Optional[RefreshToken] = None,
    now: Optional[datetime] = None,
    default_scopes: Optional[Iterable[str]] = None,
    delimiter: str = " ",
) -> dict:
    """Build the RFC 6749 section 5.1 payload.

    `scope` is left out when the granted set equals the client's default set.
    """
    payload = {
        "access_token": encoded,
        "token_type": TOKEN_TYPE,
        "expires_in": expires_in(access_token.expires_at, now),
    }
    if refresh_token is not None:
        payload["refresh_token"] = refresh_token.identifier

    granted = list(access_token.scopes)
    defaults = set(default_scopes or ())
    if granted and set(granted) != defaults:
        payload["scope"] = delimiter.join(granted)
    return payload


def error_response(error: OAuthError) -> dict:
    return error.to_dict()


def append_query(uri: str, params: Mapping, delimiter: str = "?") -> str:
    """Append response parameters to a redirect URI.

    Uses `&` when the URI already contains the delimiter, the delimiter
    otherwise. Pass "#" to build an implicit-grant fragment.
    """
    query = urlencode({k: v for k, v in params.items() if v is not None})
    if delimiter in uri:
        return f"{uri}&{query}"
    return f"{uri}{delimiter}{query}"
