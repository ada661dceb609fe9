"""JWT utilities for OAuth access tokens.

Access tokens are RS256-signed JWTs built with PyJWT. Signing and verification
are pure functions of the key and the claims; the only state in this module is
the per-process cache of loaded key material.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from grantserver.entities import AccessToken
from grantserver.errors import InvalidToken, server_error

logger = logging.getLogger(__name__)

# JWT configuration
JWT_ALGORITHM = "RS256"
REQUIRED_CLAIMS = ["aud", "jti", "iat", "nbf", "exp", "sub", "scopes"]

# Loaded key pairs, keyed by private key path
_key_cache: dict[str, "KeyPair"] = {}


@dataclass(frozen=True)
class KeyPair:
    """RSA private key for signing and the matching public key for verifying."""
    private_key: rsa.RSAPrivateKey
    public_key: rsa.RSAPublicKey


def generate_key_pair(key_size: int = 2048) -> KeyPair:
    """Generate a throwaway RSA key pair (development and tests)."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    return KeyPair(private_key=private_key, public_key=private_key.public_key())


def load_key_pair(
    private_key_path: str,
    passphrase: Optional[str] = None,
    public_key_path: Optional[str] = None,
) -> KeyPair:
    """Load PEM key material once per process.

    Args:
        private_key_path: Path to the PEM encoded RSA private key
        passphrase: Passphrase protecting the private key, if any
        public_key_path: Path to the PEM public key. Derived from the
            private key when omitted.

    Returns:
        The cached KeyPair for this path
    """
    cached = _key_cache.get(private_key_path)
    if cached:
        return cached

    pem = Path(private_key_path).read_bytes()
    private_key = serialization.load_pem_private_key(
        pem,
        password=passphrase.encode() if passphrase else None,
    )
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise ValueError(f"{private_key_path} is not an RSA private key")

    if public_key_path:
        public_key = serialization.load_pem_public_key(Path(public_key_path).read_bytes())
    else:
        public_key = private_key.public_key()

    key_pair = KeyPair(private_key=private_key, public_key=public_key)
    _key_cache[private_key_path] = key_pair
    logger.info(f"[JWT] Loaded signing key from {private_key_path}")
    return key_pair


def build_claims(token: AccessToken, now: Optional[int] = None, issuer: Optional[str] = None) -> dict:
    """Assemble the claim set for an access token."""
    now = int(time.time()) if now is None else now
    claims = {
        "aud": token.client_id,                   # Audience - the client
        "jti": token.identifier,                  # Token id
        "iat": now,                               # Issued at
        "nbf": now,                               # Not before
        "exp": int(token.expires_at.timestamp()), # Expiration
        "sub": str(token.owner_id) if token.owner_id is not None else "",
        "scopes": list(token.scopes),
    }
    if issuer:
        claims["iss"] = issuer
    return claims


def encode_access_token(token: AccessToken, private_key, issuer: Optional[str] = None) -> str:
    """Sign an access token.

    Args:
        token: The access token entity to encode
        private_key: RSA private key (key object or PEM)
        issuer: Optional `iss` claim

    Returns:
        A signed JWT string

    Raises:
        ServerError: if signing fails
    """
    try:
        return jwt.encode(build_claims(token, issuer=issuer), private_key, algorithm=JWT_ALGORITHM)
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        logger.error(f"[JWT] Signing failed: {e}")
        raise server_error("Unable to sign access token") from e


def decode_access_token(
    token: str,
    public_key,
    audience: Optional[str] = None,
    issuer: Optional[str] = None,
) -> dict:
    """Verify and decode a signed access token.

    Signature, structure, `exp` and `nbf` are all checked; any failure raises
    InvalidToken.

    Args:
        token: The JWT string
        public_key: RSA public key (key object or PEM)
        audience: Expected client id (optional)
        issuer: Expected issuer (optional)

    Returns:
        The decoded claims: aud, jti, iat, nbf, exp, sub, scopes
    """
    options = {"require": REQUIRED_CLAIMS, "verify_aud": audience is not None}
    kwargs = {}
    if audience is not None:
        kwargs["audience"] = audience
    if issuer is not None:
        kwargs["issuer"] = issuer

    try:
        claims = jwt.decode(token, public_key, algorithms=[JWT_ALGORITHM], options=options, **kwargs)
    except jwt.ExpiredSignatureError as e:
        logger.debug("[JWT] Token expired")
        raise InvalidToken("The access token has expired") from e
    except jwt.InvalidTokenError as e:
        logger.debug(f"[JWT] Invalid token: {e}")
        raise InvalidToken() from e

    if not isinstance(claims.get("scopes"), list):
        raise InvalidToken()
    return claims
