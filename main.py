"""grant-server - OAuth 2.0 authorization server.

Runs the token engine behind a small FastAPI app:
- Token endpoint (/token) and revocation (/revoke)
- Authorization server metadata (/.well-known/oauth-authorization-server)
- Bearer-protected resource routes under /api

Clients and scopes come from the config file ("clients", "scopes") and are
held in memory; production deployments supply their own repositories.
"""
import os
import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from supabase import create_client

from config import Config, load_config
from grantserver.endpoints import init_oauth_routes, router as oauth_router
from grantserver.entities import Client, Scope
from grantserver.jwt_utils import generate_key_pair, load_key_pair
from grantserver.middleware import BearerTokenMiddleware
from grantserver.server import AuthorizationServer
from grantserver.stores import (
    InMemoryAccessTokenRepository,
    InMemoryAuthCodeRepository,
    InMemoryClientRepository,
    InMemoryRefreshTokenRepository,
    InMemoryScopeRepository,
)
from grantserver.supabase_auth import SupabaseAuthenticator
from grantserver.validators import hash_client_secret

logger = logging.getLogger(__name__)

VERSION = "0.3.0"


def load_registry(config: Config) -> tuple[InMemoryClientRepository, InMemoryScopeRepository]:
    """Build client and scope repositories from the config file entries."""
    scopes = InMemoryScopeRepository(
        Scope(identifier, description) for identifier, description in config.data.get("scopes", {}).items()
    )
    clients = InMemoryClientRepository()
    for entry in config.data.get("clients", []):
        secret = entry.get("client_secret")
        clients.add(Client(
            identifier=entry["client_id"],
            secret_hash=hash_client_secret(secret) if secret else None,
            confidential=bool(secret),
            name=entry.get("name", ""),
            redirect_uris=entry.get("redirect_uris", []),
            allowed_scopes=entry.get("allowed_scopes"),
            default_scopes=entry.get("default_scopes", []),
            grant_types=entry.get("grant_types"),
        ))
    logger.info(f"[STARTUP] Registry loaded: {len(clients.clients)} clients, {len(scopes.scopes)} scopes")
    return clients, scopes


def build_auth_server(config: Config, supabase_client=None) -> AuthorizationServer:
    if config.private_key_path:
        key_pair = load_key_pair(config.private_key_path, config.private_key_passphrase, config.public_key_path)
    else:
        logger.warning("[STARTUP] No private_key_path configured, using an ephemeral signing key")
        key_pair = generate_key_pair()

    clients, scopes = load_registry(config)
    authenticator = SupabaseAuthenticator(supabase_client) if supabase_client else None
    return AuthorizationServer(
        config,
        clients=clients,
        scopes=scopes,
        auth_codes=InMemoryAuthCodeRepository(),
        access_tokens=InMemoryAccessTokenRepository(),
        refresh_tokens=InMemoryRefreshTokenRepository(),
        key_pair=key_pair,
        authenticator=authenticator,
    )


def create_app(auth_server: AuthorizationServer, server_url: str) -> FastAPI:
    app = FastAPI(
        title="grant-server",
        description="OAuth 2.0 authorization server",
        version=VERSION,
    )
    app.add_middleware(BearerTokenMiddleware, auth_server=auth_server, protected_prefix="/api")

    init_oauth_routes(server_url, auth_server)
    app.include_router(oauth_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "grant-server"}

    @app.get("/api/me")
    async def me(request: Request):
        """Echo the verified token claims back to the caller."""
        claims = request.state.token_claims
        return {"sub": claims["sub"], "client_id": claims["aud"], "scopes": claims["scopes"]}

    return app


# ============== Main Entry Point ==============

if __name__ == "__main__":
    import uvicorn
    from logging_config import setup_logging

    # Load environment: .env (local override)
    _env_file = Path(".env")
    if _env_file.exists():
        load_dotenv(_env_file)

    setup_logging(service_name="grant-server")

    HOST = os.getenv("GRANT_SERVER_HOST", "0.0.0.0")
    PORT = int(os.getenv("GRANT_SERVER_PORT", "8765"))
    SERVER_URL = os.getenv("SERVER_URL", f"http://localhost:{PORT}")

    SUPABASE_URL = os.getenv("SUPABASE_URL", "")
    SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
    supabase = create_client(SUPABASE_URL, SUPABASE_ANON_KEY) if SUPABASE_URL and SUPABASE_ANON_KEY else None

    config = load_config()
    logger.info(f"[STARTUP] SERVER_URL: {SERVER_URL}")
    logger.info(f"[STARTUP] Grants: {', '.join(config.grant_types)}")

    app = create_app(build_auth_server(config, supabase), SERVER_URL)
    uvicorn.run(app, host=HOST, port=PORT)
