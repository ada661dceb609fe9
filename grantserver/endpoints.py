"""OAuth 2.0 HTTP endpoints.

Thin FastAPI layer over AuthorizationServer:
- Discovery metadata (/.well-known/oauth-authorization-server)
- Token endpoint (/token)
- Token revocation (/revoke)

No login, consent or registration pages are served here.
"""

import base64
import binascii
import logging
from typing import Optional
from urllib.parse import unquote

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from grantserver.errors import OAuthError, invalid_client, invalid_request
from grantserver.server import AuthorizationServer

logger = logging.getLogger(__name__)

# Router for OAuth endpoints
router = APIRouter(tags=["oauth"])

# These will be set by init_oauth_routes()
_server_url: str = ""
_auth_server: Optional[AuthorizationServer] = None

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def init_oauth_routes(server_url: str, auth_server: AuthorizationServer):
    """Initialize OAuth routes with server URL and the authorization server.

    Must be called before including the router in the app.
    """
    global _server_url, _auth_server
    _server_url = server_url
    _auth_server = auth_server


def error_json(error: OAuthError, basic_auth: bool = False) -> JSONResponse:
    headers = dict(NO_STORE_HEADERS)
    if basic_auth and error.http_status == 401:
        headers["WWW-Authenticate"] = 'Basic realm="oauth"'
    return JSONResponse(error.to_dict(), status_code=error.http_status, headers=headers)


def parse_basic_auth(header: str) -> Optional[tuple[str, str]]:
    """Decode `Authorization: Basic` client credentials (RFC 6749 section 2.3.1)."""
    if not header.startswith("Basic "):
        return None
    try:
        decoded = base64.b64decode(header[6:], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise invalid_client("Malformed Basic authorization header")
    if ":" not in decoded:
        raise invalid_client("Malformed Basic authorization header")
    client_id, client_secret = decoded.split(":", 1)
    return unquote(client_id), unquote(client_secret)


async def read_params(request: Request) -> tuple[dict, bool]:
    """Collect request parameters from the form body (or JSON) plus Basic auth.

    Repeated form fields are kept as lists so the validator can reject them.
    """
    params: dict = {}
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            raise invalid_request(hint="Request body is not valid JSON")
        if not isinstance(data, dict):
            raise invalid_request(hint="Request body must be a JSON object")
        params.update(data)
    else:
        form = await request.form()
        for key in form.keys():
            values = form.getlist(key)
            params[key] = values if len(values) > 1 else values[0]

    credentials = parse_basic_auth(request.headers.get("Authorization", ""))
    if credentials:
        client_id, client_secret = credentials
        if params.get("client_id") not in (None, client_id):
            raise invalid_request("client_id", "Client id in body and Authorization header differ")
        params["client_id"] = client_id
        params["client_secret"] = client_secret
    return params, credentials is not None


# ============== Discovery ==============

@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server():
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    config = _auth_server.config
    return {
        "issuer": config.issuer or _server_url,
        "token_endpoint": f"{_server_url}/token",
        "revocation_endpoint": f"{_server_url}/revoke",
        "response_types_supported": config.response_types,
        "grant_types_supported": [g.value for g in _auth_server.grants],
        "token_endpoint_auth_methods_supported": ["none", "client_secret_post", "client_secret_basic"],
        "code_challenge_methods_supported": ["S256", "plain"],
    }


# ============== Token Endpoint ==============

@router.post("/token")
async def token(request: Request):
    """OAuth 2.0 Token Endpoint."""
    basic_auth = False
    try:
        params, basic_auth = await read_params(request)
        logger.debug(f"[TOKEN] grant_type: {params.get('grant_type')}, client_id: {params.get('client_id')}")
        payload = await _auth_server.respond_to_access_token_request(params)
    except OAuthError as e:
        logger.info(f"[TOKEN] Request rejected: {e.error.value}")
        return error_json(e, basic_auth)
    return JSONResponse(payload, headers=NO_STORE_HEADERS)


# ============== Revocation ==============

@router.post("/revoke")
async def revoke(request: Request):
    """OAuth 2.0 Token Revocation (RFC 7009)."""
    basic_auth = False
    try:
        params, basic_auth = await read_params(request)
        await _auth_server.revoke_token(params)
    except OAuthError as e:
        return error_json(e, basic_auth)
    return JSONResponse({}, headers=NO_STORE_HEADERS)
