"""Entity records for clients, scopes, codes, tokens and legacy sessions.

Plain dataclasses; ``__post_init__`` only enforces invariants. All timestamps
are timezone-aware UTC datetimes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_window(issued_at: datetime, expires_at: datetime) -> None:
    if issued_at.tzinfo is None or expires_at.tzinfo is None:
        raise ValueError("timestamps must be timezone-aware")
    if expires_at <= issued_at:
        raise ValueError("expiry must be strictly after issuance")


@dataclass(frozen=True)
class Scope:
    identifier: str
    description: str = ""

    def __post_init__(self):
        if not self.identifier or any(c.isspace() for c in self.identifier):
            raise ValueError(f"invalid scope identifier: {self.identifier!r}")


@dataclass(frozen=True)
class Client:
    """A registered client. Immutable from the engine's point of view."""
    identifier: str
    redirect_uris: frozenset = frozenset()
    secret_hash: Optional[str] = None   # bcrypt hash, None for public clients
    confidential: bool = True
    name: str = ""
    allowed_scopes: Optional[frozenset] = None   # None: any known scope
    default_scopes: frozenset = frozenset()
    grant_types: Optional[frozenset] = None      # None: every enabled grant

    def __post_init__(self):
        if not self.identifier:
            raise ValueError("client identifier is required")
        if self.confidential and not self.secret_hash:
            raise ValueError(f"confidential client {self.identifier} has no secret")
        # Accept any iterable from callers, store frozensets
        object.__setattr__(self, "redirect_uris", frozenset(self.redirect_uris))
        object.__setattr__(self, "default_scopes", frozenset(self.default_scopes))
        if self.allowed_scopes is not None:
            object.__setattr__(self, "allowed_scopes", frozenset(self.allowed_scopes))
        if self.grant_types is not None:
            object.__setattr__(self, "grant_types", frozenset(self.grant_types))

    def allows_grant(self, grant_type: str) -> bool:
        return self.grant_types is None or grant_type in self.grant_types

    def allows_scope(self, scope_id: str) -> bool:
        return self.allowed_scopes is None or scope_id in self.allowed_scopes


@dataclass
class AuthorizationCode:
    identifier: str
    client_id: str
    owner_id: str
    redirect_uri: Optional[str]
    scopes: tuple
    issued_at: datetime
    expires_at: datetime
    used: bool = False
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None

    def __post_init__(self):
        _check_window(self.issued_at, self.expires_at)
        self.scopes = tuple(self.scopes)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def mark_used(self) -> None:
        self.used = True


@dataclass
class AccessToken:
    identifier: str
    client_id: str
    owner_id: Optional[str]
    scopes: tuple
    issued_at: datetime
    expires_at: datetime
    revoked: bool = False

    def __post_init__(self):
        _check_window(self.issued_at, self.expires_at)
        self.scopes = tuple(self.scopes)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def revoke(self) -> None:
        self.revoked = True


@dataclass
class RefreshToken:
    identifier: str
    access_token_id: str
    client_id: str
    owner_id: Optional[str]
    scopes: tuple
    issued_at: datetime
    expires_at: datetime
    revoked: bool = False
    rotation: int = 0

    def __post_init__(self):
        _check_window(self.issued_at, self.expires_at)
        self.scopes = tuple(self.scopes)
        if self.rotation < 0:
            raise ValueError("rotation counter cannot be negative")

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def revoke(self) -> None:
        self.revoked = True


# Legacy session stages
STAGE_REQUEST = "request"
STAGE_GRANTED = "granted"


@dataclass
class Session:
    """Legacy authorization session: one owner, one pending code."""
    client_id: str
    redirect_uri: str
    owner_type: str
    owner_id: str
    auth_code: Optional[str]
    created_at: datetime
    expires_at: datetime
    access_token_id: Optional[str] = None
    stage: str = STAGE_REQUEST
    scopes: list = field(default_factory=list)
    identifier: Optional[str] = None

    def __post_init__(self):
        _check_window(self.created_at, self.expires_at)
        if self.stage not in (STAGE_REQUEST, STAGE_GRANTED):
            raise ValueError(f"unknown session stage: {self.stage}")

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
