# Shared fixtures: signing keys, a controllable clock, in-memory repositories
# seeded with a few clients and scopes.

from datetime import datetime, timedelta, timezone

import bcrypt
import pytest

from config import Config
from grantserver.entities import Client, Scope
from grantserver.jwt_utils import generate_key_pair
from grantserver.server import AuthorizationServer
from grantserver.stores import (
    InMemoryAccessTokenRepository,
    InMemoryAuthCodeRepository,
    InMemoryClientRepository,
    InMemoryRefreshTokenRepository,
    InMemoryScopeRepository,
    InMemorySessionRepository,
)

# Low cost factor keeps the suite fast
SECRET_HASH = bcrypt.hashpw(b"s3cr3t", bcrypt.gensalt(rounds=4)).decode()

APP_REDIRECT = "https://app.example/cb"
SPA_REDIRECT = "https://spa.example/cb"


class FakeClock:
    def __init__(self):
        self.current = datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: int) -> None:
        self.current += timedelta(seconds=seconds)


class FakeAuthenticator:
    def __init__(self, users: dict):
        self.users = users

    async def authenticate(self, username, password):
        entry = self.users.get(username)
        if entry and entry[0] == password:
            return entry[1]
        return None


@pytest.fixture(scope="session")
def key_pair():
    return generate_key_pair()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def scopes():
    return InMemoryScopeRepository([
        Scope("read", "Read access"),
        Scope("write", "Write access"),
        Scope("admin", "Administrative access"),
    ])


@pytest.fixture
def clients():
    return InMemoryClientRepository([
        Client(
            identifier="abc",
            secret_hash=SECRET_HASH,
            redirect_uris={APP_REDIRECT},
            allowed_scopes={"read", "write"},
        ),
        Client(
            identifier="spa",
            confidential=False,
            redirect_uris={SPA_REDIRECT},
            allowed_scopes={"read"},
        ),
        Client(
            identifier="machine",
            secret_hash=SECRET_HASH,
            grant_types={"client_credentials"},
        ),
    ])


@pytest.fixture
def auth_codes():
    return InMemoryAuthCodeRepository()


@pytest.fixture
def access_tokens():
    return InMemoryAccessTokenRepository()


@pytest.fixture
def refresh_tokens():
    return InMemoryRefreshTokenRepository()


@pytest.fixture
def sessions():
    return InMemorySessionRepository()


@pytest.fixture
def authenticator():
    return FakeAuthenticator({"alice": ("wonderland", "user-1")})


@pytest.fixture
def auth_server(config, clients, scopes, auth_codes, access_tokens, refresh_tokens, key_pair, authenticator, clock):
    return AuthorizationServer(
        config,
        clients=clients,
        scopes=scopes,
        auth_codes=auth_codes,
        access_tokens=access_tokens,
        refresh_tokens=refresh_tokens,
        key_pair=key_pair,
        authenticator=authenticator,
        clock=clock,
    )
