"""Request parameter validation.

Pulls protocol parameters out of a generic parameter mapping and checks them
against the client and scope repositories. Nothing here writes state.
"""

import base64
import hashlib
import hmac
import logging
import re
from typing import Mapping, Optional

import bcrypt

from config import Config
from grantserver.entities import Client, Scope
from grantserver.errors import invalid_client, invalid_grant, invalid_request, invalid_scope, unauthorized_client
from grantserver.repositories import ClientRepository, ScopeRepository

logger = logging.getLogger(__name__)

CODE_VERIFIER_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")
CODE_CHALLENGE_METHODS = ("S256", "plain")


def hash_client_secret(secret: str) -> str:
    """Hash a client secret with bcrypt for storage on a Client."""
    return bcrypt.hashpw(secret.encode("utf-8")[:72], bcrypt.gensalt()).decode("utf-8")


def verify_client_secret(secret: str, secret_hash: Optional[str]) -> bool:
    if not secret or not secret_hash:
        return False
    try:
        return bcrypt.checkpw(secret.encode("utf-8")[:72], secret_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        logger.warning("[AUTH] Stored client secret hash is malformed")
        return False


def s256_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_verifier(verifier: Optional[str], challenge: str, method: Optional[str]) -> None:
    """Check a PKCE code_verifier against the challenge recorded with a code (RFC 7636)."""
    if not verifier:
        raise invalid_request("code_verifier")
    if not CODE_VERIFIER_PATTERN.match(verifier):
        raise invalid_request("code_verifier", "Code verifier must follow the specifications of RFC-7636")

    method = method or "plain"
    if method == "S256":
        expected = s256_challenge(verifier)
    elif method == "plain":
        expected = verifier
    else:
        raise invalid_request("code_challenge_method")

    if not hmac.compare_digest(expected, challenge):
        raise invalid_grant("Failed to verify `code_verifier`")


class RequestValidator:
    """Validates client credentials, redirect URIs and scopes."""

    def __init__(self, config: Config, clients: ClientRepository, scopes: ScopeRepository):
        self.config = config
        self.clients = clients
        self.scopes = scopes

    @staticmethod
    def get_request_parameter(name: str, params: Mapping, default: Optional[str] = None) -> Optional[str]:
        """Read a single-valued parameter. Repeated parameters are rejected."""
        value = params.get(name, default)
        if isinstance(value, (list, tuple)):
            if len(value) > 1:
                raise invalid_request(name, f"Parameter `{name}` was supplied more than once")
            value = value[0] if value else default
        if value is not None and not isinstance(value, str):
            raise invalid_request(name)
        return value

    async def validate_client(self, params: Mapping, grant_type: Optional[str] = None) -> Client:
        """Authenticate the client making the request.

        Confidential clients must present a valid secret. Public clients are
        identified by client_id alone; the code grant adds PKCE on top.
        """
        client_id = self.get_request_parameter("client_id", params)
        if not client_id:
            raise invalid_request("client_id")

        client = await self.clients.get_client(client_id)
        if client is None:
            logger.info(f"[AUTH] Unknown client: {client_id}")
            raise invalid_client()

        if client.confidential:
            secret = self.get_request_parameter("client_secret", params)
            if not verify_client_secret(secret, client.secret_hash):
                logger.info(f"[AUTH] Client authentication failed: {client_id}")
                raise invalid_client()

        if grant_type is not None and not client.allows_grant(grant_type):
            raise unauthorized_client(f"Client may not use the {grant_type} grant")

        return client

    @staticmethod
    def validate_redirect_uri(client: Client, supplied: Optional[str]) -> str:
        """Return the redirect URI to use, which must be registered for the client."""
        if not supplied:
            if len(client.redirect_uris) == 1:
                return next(iter(client.redirect_uris))
            raise invalid_request("redirect_uri")
        if supplied not in client.redirect_uris:
            raise invalid_request("redirect_uri", "Redirect URI is not registered for this client")
        return supplied

    def split_scopes(self, requested: Optional[str], delimiter: Optional[str] = None) -> list[str]:
        """Split a scope string, trimming entries and dropping empties and duplicates."""
        delimiter = delimiter or self.config.scope_delimiter
        identifiers: list[str] = []
        for item in (requested or "").split(delimiter):
            item = item.strip()
            if item and item not in identifiers:
                identifiers.append(item)
        return identifiers

    async def validate_scopes(
        self,
        requested: Optional[str],
        client: Client,
        delimiter: Optional[str] = None,
    ) -> list[Scope]:
        """Resolve requested scopes, falling back to the defaults when none are given.

        Raises:
            ClientError: invalid_request when no scope results and scopes are required
            GrantError: invalid_scope for unknown scopes or ones the client may not use
        """
        identifiers = self.split_scopes(requested, delimiter)
        if not identifiers:
            identifiers = sorted(client.default_scopes) or list(self.config.default_scopes)
        if not identifiers:
            if self.config.require_scope:
                raise invalid_request("scope")
            return []

        resolved = []
        for identifier in identifiers:
            scope = await self.scopes.get_scope(identifier)
            if scope is None:
                raise invalid_scope(identifier)
            if not client.allows_scope(identifier):
                logger.info(f"[AUTH] Client {client.identifier} requested disallowed scope: {identifier}")
                raise invalid_scope(identifier)
            resolved.append(scope)
        return resolved
