# Tests for the grant engine and the authorization server dispatch

import asyncio
import dataclasses
import secrets
from urllib.parse import parse_qs, urlparse

import pytest

from config import Config
from grantserver.errors import ClientError, ErrorCode, GrantError, InvalidToken, OAuthError, ServerError
from grantserver.grants import BaseGrant, GrantType
from grantserver.jwt_utils import decode_access_token
from grantserver.repositories import RepositoryError, RepositoryUnavailable, UniqueIdentifierViolation
from grantserver.responses import expires_in
from grantserver.server import AuthorizationServer
from grantserver.stores import InMemoryAccessTokenRepository, InMemoryAuthCodeRepository, InMemoryRefreshTokenRepository
from grantserver.validators import s256_challenge

from conftest import APP_REDIRECT, SPA_REDIRECT

ABC = {"client_id": "abc", "client_secret": "s3cr3t"}


async def authorize(auth_server, owner_id="user-1", **params):
    request = {"response_type": "code", "client_id": "abc", "redirect_uri": APP_REDIRECT, **params}
    auth_request = await auth_server.validate_authorization_request(request)
    location = await auth_server.complete_authorization_request(auth_request, owner_id)
    return parse_qs(urlparse(location).query)


async def password_tokens(auth_server, scope="read write"):
    return await auth_server.respond_to_access_token_request({
        "grant_type": "password", "username": "alice", "password": "wonderland", "scope": scope, **ABC,
    })


class TestClientCredentialsGrant:

    @pytest.mark.asyncio
    async def test_issues_bearer_token_without_refresh(self, auth_server, key_pair):
        response = await auth_server.respond_to_access_token_request(
            {"grant_type": "client_credentials", "scope": "read", **ABC}
        )
        assert response["token_type"] == "Bearer"
        assert response["scope"] == "read"
        assert response["expires_in"] == 3600
        assert "refresh_token" not in response

        claims = decode_access_token(response["access_token"], key_pair.public_key)
        assert claims["sub"] == "abc"
        assert claims["aud"] == "abc"
        assert claims["scopes"] == ["read"]

    @pytest.mark.asyncio
    async def test_scope_outside_allowance(self, auth_server):
        with pytest.raises(GrantError) as exc:
            await auth_server.respond_to_access_token_request(
                {"grant_type": "client_credentials", "scope": "read admin", **ABC}
            )
        assert exc.value.error == ErrorCode.INVALID_SCOPE

    @pytest.mark.asyncio
    async def test_public_client_rejected(self, auth_server):
        with pytest.raises(ClientError) as exc:
            await auth_server.respond_to_access_token_request({"grant_type": "client_credentials", "client_id": "spa"})
        assert exc.value.error == ErrorCode.UNAUTHORIZED_CLIENT

    @pytest.mark.asyncio
    async def test_bad_secret(self, auth_server):
        with pytest.raises(ClientError) as exc:
            await auth_server.respond_to_access_token_request(
                {"grant_type": "client_credentials", "client_id": "abc", "client_secret": "nope"}
            )
        assert exc.value.error == ErrorCode.INVALID_CLIENT
        assert exc.value.http_status == 401

    @pytest.mark.asyncio
    async def test_expires_in_tracks_clock(self, auth_server, access_tokens, clock):
        await auth_server.respond_to_access_token_request({"grant_type": "client_credentials", **ABC})
        token = next(iter(access_tokens.tokens.values()))
        assert expires_in(token.expires_at, clock()) == 3600
        clock.advance(100)
        assert expires_in(token.expires_at, clock()) == 3500
        clock.advance(10_000)
        assert expires_in(token.expires_at, clock()) == 0


class TestDispatch:

    @pytest.mark.asyncio
    async def test_missing_grant_type(self, auth_server):
        with pytest.raises(ClientError) as exc:
            await auth_server.respond_to_access_token_request(ABC)
        assert exc.value.error == ErrorCode.INVALID_REQUEST

    @pytest.mark.asyncio
    @pytest.mark.parametrize("grant_type", ["magic", "implicit"])
    async def test_unsupported_grant_type(self, auth_server, grant_type):
        with pytest.raises(ClientError) as exc:
            await auth_server.respond_to_access_token_request({"grant_type": grant_type, **ABC})
        assert exc.value.error == ErrorCode.UNSUPPORTED_GRANT_TYPE

    @pytest.mark.asyncio
    async def test_disabled_grant_is_unsupported(self, clients, scopes, auth_codes, access_tokens, refresh_tokens, key_pair):
        server = AuthorizationServer(
            Config({"grant_types": ["authorization_code"]}),
            clients, scopes, auth_codes, access_tokens, refresh_tokens, key_pair,
        )
        with pytest.raises(ClientError) as exc:
            await server.respond_to_access_token_request({"grant_type": "client_credentials", **ABC})
        assert exc.value.error == ErrorCode.UNSUPPORTED_GRANT_TYPE

    @pytest.mark.asyncio
    async def test_password_grant_needs_authenticator(self, clients, scopes, auth_codes, access_tokens, refresh_tokens, key_pair):
        server = AuthorizationServer(Config(), clients, scopes, auth_codes, access_tokens, refresh_tokens, key_pair)
        with pytest.raises(ClientError) as exc:
            await server.respond_to_access_token_request(
                {"grant_type": "password", "username": "alice", "password": "wonderland", **ABC}
            )
        assert exc.value.error == ErrorCode.UNSUPPORTED_GRANT_TYPE


class TestAuthorizationCodeGrant:

    @pytest.mark.asyncio
    async def test_full_exchange(self, auth_server, key_pair):
        query = await authorize(auth_server, scope="read write", state="xyz")
        assert query["state"] == ["xyz"]

        response = await auth_server.respond_to_access_token_request({
            "grant_type": "authorization_code", "code": query["code"][0], "redirect_uri": APP_REDIRECT, **ABC,
        })
        assert response["scope"] == "read write"
        assert response["refresh_token"]
        claims = decode_access_token(response["access_token"], key_pair.public_key)
        assert claims["sub"] == "user-1"

    @pytest.mark.asyncio
    async def test_used_code_is_rejected(self, auth_server):
        query = await authorize(auth_server, scope="read")
        params = {"grant_type": "authorization_code", "code": query["code"][0], "redirect_uri": APP_REDIRECT, **ABC}
        await auth_server.respond_to_access_token_request(params)

        for _ in range(2):
            with pytest.raises(GrantError) as exc:
                await auth_server.respond_to_access_token_request(params)
            assert exc.value.error == ErrorCode.INVALID_GRANT
            assert exc.value.http_status == 400

    @pytest.mark.asyncio
    async def test_concurrent_exchange_has_one_winner(self, clients, scopes, access_tokens, refresh_tokens, key_pair, authenticator):
        class StaleReadCodes(InMemoryAuthCodeRepository):
            # Every reader sees a snapshot, so only the conditional update can decide
            async def get_auth_code(self, identifier):
                code = self.codes.get(identifier)
                snapshot = dataclasses.replace(code) if code else None
                await asyncio.sleep(0)
                return snapshot

        server = AuthorizationServer(
            Config(), clients, scopes, StaleReadCodes(), access_tokens, refresh_tokens, key_pair, authenticator,
        )
        query = await authorize(server, scope="read")
        params = {"grant_type": "authorization_code", "code": query["code"][0], "redirect_uri": APP_REDIRECT, **ABC}

        results = await asyncio.gather(
            *(server.respond_to_access_token_request(params) for _ in range(5)),
            return_exceptions=True,
        )
        successes = [r for r in results if isinstance(r, dict)]
        failures = [r for r in results if isinstance(r, OAuthError)]
        assert len(successes) == 1
        assert len(failures) == 4
        assert all(f.error == ErrorCode.INVALID_GRANT for f in failures)
        assert len(access_tokens.tokens) == 1

    @pytest.mark.asyncio
    async def test_expired_code(self, auth_server, clock):
        query = await authorize(auth_server, scope="read")
        clock.advance(601)
        with pytest.raises(GrantError) as exc:
            await auth_server.respond_to_access_token_request({
                "grant_type": "authorization_code", "code": query["code"][0], "redirect_uri": APP_REDIRECT, **ABC,
            })
        assert exc.value.error == ErrorCode.INVALID_GRANT

    @pytest.mark.asyncio
    async def test_redirect_uri_must_match(self, auth_server):
        query = await authorize(auth_server, scope="read")
        with pytest.raises(GrantError) as exc:
            await auth_server.respond_to_access_token_request({
                "grant_type": "authorization_code", "code": query["code"][0],
                "redirect_uri": "https://app.example/other", **ABC,
            })
        assert exc.value.error == ErrorCode.INVALID_GRANT

    @pytest.mark.asyncio
    async def test_code_bound_to_client(self, auth_server, clients):
        query = await authorize(auth_server, scope="read")
        with pytest.raises(GrantError) as exc:
            await auth_server.respond_to_access_token_request({
                "grant_type": "authorization_code", "code": query["code"][0], "redirect_uri": APP_REDIRECT,
                "client_id": "spa",
            })
        assert exc.value.error == ErrorCode.INVALID_GRANT

    @pytest.mark.asyncio
    async def test_unknown_code(self, auth_server):
        with pytest.raises(GrantError) as exc:
            await auth_server.respond_to_access_token_request(
                {"grant_type": "authorization_code", "code": "forged", **ABC}
            )
        assert exc.value.error == ErrorCode.INVALID_GRANT

    @pytest.mark.asyncio
    async def test_authorization_scope_escalation(self, auth_server):
        with pytest.raises(GrantError) as exc:
            await authorize(auth_server, scope="read admin")
        assert exc.value.error == ErrorCode.INVALID_SCOPE

    @pytest.mark.asyncio
    async def test_denied_authorization_redirects_with_error(self, auth_server):
        auth_request = await auth_server.validate_authorization_request(
            {"response_type": "code", "client_id": "abc", "redirect_uri": APP_REDIRECT, "state": "s"}
        )
        location = await auth_server.complete_authorization_request(auth_request, "user-1", approved=False)
        query = parse_qs(urlparse(location).query)
        assert query["error"] == ["access_denied"]
        assert query["state"] == ["s"]

    @pytest.mark.asyncio
    async def test_unsupported_response_type(self, auth_server):
        with pytest.raises(ClientError) as exc:
            await auth_server.validate_authorization_request({"response_type": "id_token", "client_id": "abc"})
        assert exc.value.error == ErrorCode.UNSUPPORTED_RESPONSE_TYPE


class TestPKCE:

    async def spa_code(self, auth_server, verifier, method="S256"):
        challenge = s256_challenge(verifier) if method == "S256" else verifier
        auth_request = await auth_server.validate_authorization_request({
            "response_type": "code", "client_id": "spa", "scope": "read",
            "code_challenge": challenge, "code_challenge_method": method,
        })
        location = await auth_server.complete_authorization_request(auth_request, "user-2")
        assert location.startswith(SPA_REDIRECT + "?")
        return parse_qs(urlparse(location).query)["code"][0]

    @pytest.mark.asyncio
    async def test_public_client_requires_challenge(self, auth_server):
        with pytest.raises(ClientError) as exc:
            await auth_server.validate_authorization_request({"response_type": "code", "client_id": "spa"})
        assert exc.value.error == ErrorCode.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_verifier_round_trip(self, auth_server):
        verifier = secrets.token_urlsafe(48)
        code = await self.spa_code(auth_server, verifier)
        response = await auth_server.respond_to_access_token_request({
            "grant_type": "authorization_code", "client_id": "spa", "code": code, "code_verifier": verifier,
        })
        assert response["token_type"] == "Bearer"

    @pytest.mark.asyncio
    async def test_missing_verifier(self, auth_server):
        code = await self.spa_code(auth_server, secrets.token_urlsafe(48))
        with pytest.raises(ClientError) as exc:
            await auth_server.respond_to_access_token_request(
                {"grant_type": "authorization_code", "client_id": "spa", "code": code}
            )
        assert exc.value.error == ErrorCode.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_wrong_verifier(self, auth_server):
        code = await self.spa_code(auth_server, secrets.token_urlsafe(48))
        with pytest.raises(GrantError) as exc:
            await auth_server.respond_to_access_token_request({
                "grant_type": "authorization_code", "client_id": "spa", "code": code,
                "code_verifier": secrets.token_urlsafe(48),
            })
        assert exc.value.error == ErrorCode.INVALID_GRANT

    @pytest.mark.asyncio
    async def test_unknown_challenge_method(self, auth_server):
        with pytest.raises(ClientError):
            await auth_server.validate_authorization_request({
                "response_type": "code", "client_id": "spa", "code_challenge": "x" * 43,
                "code_challenge_method": "S512",
            })


class TestRefreshTokenGrant:

    @pytest.mark.asyncio
    async def test_rotation_revokes_old_pair(self, auth_server, access_tokens, refresh_tokens):
        first = await password_tokens(auth_server)
        old = await refresh_tokens.get_refresh_token(first["refresh_token"])

        second = await auth_server.respond_to_access_token_request(
            {"grant_type": "refresh_token", "refresh_token": first["refresh_token"], **ABC}
        )
        assert second["refresh_token"] != first["refresh_token"]
        assert second["scope"] == "read write"
        assert old.revoked
        assert (await access_tokens.get_access_token(old.access_token_id)).revoked
        assert (await refresh_tokens.get_refresh_token(second["refresh_token"])).rotation == 1

        with pytest.raises(InvalidToken):
            await auth_server.validate_bearer_token(first["access_token"])
        assert (await auth_server.validate_bearer_token(second["access_token"]))["sub"] == "user-1"

    @pytest.mark.asyncio
    async def test_second_use_fails(self, auth_server):
        first = await password_tokens(auth_server)
        params = {"grant_type": "refresh_token", "refresh_token": first["refresh_token"], **ABC}
        await auth_server.respond_to_access_token_request(params)
        with pytest.raises(GrantError) as exc:
            await auth_server.respond_to_access_token_request(params)
        assert exc.value.error == ErrorCode.INVALID_GRANT

    @pytest.mark.asyncio
    async def test_concurrent_refresh_has_one_winner(self, clients, scopes, auth_codes, access_tokens, key_pair, authenticator):
        class StaleReadRefreshTokens(InMemoryRefreshTokenRepository):
            # Readers all see the token unrevoked, so only the conditional revoke decides
            async def get_refresh_token(self, identifier):
                token = self.tokens.get(identifier)
                snapshot = dataclasses.replace(token) if token else None
                await asyncio.sleep(0)
                return snapshot

        refresh_tokens = StaleReadRefreshTokens()
        server = AuthorizationServer(
            Config(), clients, scopes, auth_codes, access_tokens, refresh_tokens, key_pair, authenticator,
        )
        first = await password_tokens(server)
        params = {"grant_type": "refresh_token", "refresh_token": first["refresh_token"], **ABC}

        results = await asyncio.gather(
            *(server.respond_to_access_token_request(params) for _ in range(5)),
            return_exceptions=True,
        )
        successes = [r for r in results if isinstance(r, dict)]
        failures = [r for r in results if isinstance(r, OAuthError)]
        assert len(successes) == 1
        assert len(failures) == 4
        assert all(f.error == ErrorCode.INVALID_GRANT for f in failures)
        assert len(refresh_tokens.tokens) == 2
        assert len(access_tokens.tokens) == 2

    @pytest.mark.asyncio
    async def test_narrowing_allowed(self, auth_server):
        first = await password_tokens(auth_server)
        second = await auth_server.respond_to_access_token_request(
            {"grant_type": "refresh_token", "refresh_token": first["refresh_token"], "scope": "read", **ABC}
        )
        assert second["scope"] == "read"

    @pytest.mark.asyncio
    async def test_widening_forbidden(self, auth_server, refresh_tokens):
        first = await password_tokens(auth_server)
        with pytest.raises(GrantError) as exc:
            await auth_server.respond_to_access_token_request({
                "grant_type": "refresh_token", "refresh_token": first["refresh_token"],
                "scope": "read write admin", **ABC,
            })
        assert exc.value.error == ErrorCode.INVALID_SCOPE
        # A rejected request leaves the token usable
        assert not (await refresh_tokens.get_refresh_token(first["refresh_token"])).revoked

    @pytest.mark.asyncio
    async def test_expired_refresh_token(self, auth_server, clock):
        first = await password_tokens(auth_server)
        clock.advance(31 * 24 * 3600)
        with pytest.raises(GrantError) as exc:
            await auth_server.respond_to_access_token_request(
                {"grant_type": "refresh_token", "refresh_token": first["refresh_token"], **ABC}
            )
        assert exc.value.error == ErrorCode.INVALID_GRANT

    @pytest.mark.asyncio
    async def test_rotation_limit(self, clients, scopes, auth_codes, access_tokens, refresh_tokens, key_pair, authenticator):
        server = AuthorizationServer(
            Config({"max_refresh_rotations": 1}),
            clients, scopes, auth_codes, access_tokens, refresh_tokens, key_pair, authenticator,
        )
        tokens = await password_tokens(server)
        tokens = await server.respond_to_access_token_request(
            {"grant_type": "refresh_token", "refresh_token": tokens["refresh_token"], **ABC}
        )
        with pytest.raises(GrantError):
            await server.respond_to_access_token_request(
                {"grant_type": "refresh_token", "refresh_token": tokens["refresh_token"], **ABC}
            )

    @pytest.mark.asyncio
    async def test_token_bound_to_client(self, auth_server, clients):
        first = await password_tokens(auth_server)
        with pytest.raises(GrantError):
            await auth_server.respond_to_access_token_request(
                {"grant_type": "refresh_token", "refresh_token": first["refresh_token"], "client_id": "spa"}
            )


class TestPasswordGrant:

    @pytest.mark.asyncio
    async def test_issues_owner_token(self, auth_server, key_pair):
        response = await password_tokens(auth_server, scope="read")
        assert response["refresh_token"]
        assert decode_access_token(response["access_token"], key_pair.public_key)["sub"] == "user-1"

    @pytest.mark.asyncio
    async def test_wrong_password(self, auth_server):
        with pytest.raises(GrantError) as exc:
            await auth_server.respond_to_access_token_request(
                {"grant_type": "password", "username": "alice", "password": "nope", **ABC}
            )
        assert exc.value.error == ErrorCode.INVALID_GRANT

    @pytest.mark.asyncio
    async def test_missing_username(self, auth_server):
        with pytest.raises(ClientError) as exc:
            await auth_server.respond_to_access_token_request({"grant_type": "password", "password": "x", **ABC})
        assert exc.value.error == ErrorCode.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_scope_escalation(self, auth_server):
        with pytest.raises(GrantError) as exc:
            await password_tokens(auth_server, scope="admin")
        assert exc.value.error == ErrorCode.INVALID_SCOPE


class TestImplicitGrant:

    @pytest.mark.asyncio
    async def test_token_in_fragment(self, auth_server, key_pair, refresh_tokens):
        auth_request = await auth_server.validate_authorization_request(
            {"response_type": "token", "client_id": "abc", "scope": "read", "state": "st"}
        )
        location = await auth_server.complete_authorization_request(auth_request, "user-3")
        parsed = urlparse(location)
        assert parsed.query == ""
        fragment = parse_qs(parsed.fragment)
        assert fragment["token_type"] == ["Bearer"]
        assert fragment["expires_in"] == ["3600"]
        assert fragment["scope"] == ["read"]
        assert fragment["state"] == ["st"]
        assert "refresh_token" not in fragment
        assert decode_access_token(fragment["access_token"][0], key_pair.public_key)["sub"] == "user-3"
        assert refresh_tokens.tokens == {}

    @pytest.mark.asyncio
    async def test_not_usable_at_token_endpoint(self, auth_server):
        implicit = auth_server.grants[GrantType.IMPLICIT]
        with pytest.raises(ClientError) as exc:
            await implicit.respond_to_access_token_request({"grant_type": "implicit", **ABC})
        assert exc.value.error == ErrorCode.UNSUPPORTED_GRANT_TYPE

        with pytest.raises(ClientError) as exc:
            await auth_server.respond_to_access_token_request({"grant_type": "implicit", **ABC})
        assert exc.value.error == ErrorCode.UNSUPPORTED_GRANT_TYPE

    def test_base_grant_is_abstract(self, auth_server):
        with pytest.raises(TypeError):
            BaseGrant(auth_server.config, None, None)

    @pytest.mark.asyncio
    async def test_scope_escalation(self, auth_server):
        with pytest.raises(GrantError) as exc:
            await auth_server.validate_authorization_request(
                {"response_type": "token", "client_id": "spa", "scope": "write"}
            )
        assert exc.value.error == ErrorCode.INVALID_SCOPE

    @pytest.mark.asyncio
    async def test_disabled_response_type(self, clients, scopes, auth_codes, access_tokens, refresh_tokens, key_pair):
        server = AuthorizationServer(
            Config({"response_types": ["code"]}), clients, scopes, auth_codes, access_tokens, refresh_tokens, key_pair,
        )
        with pytest.raises(ClientError) as exc:
            await server.validate_authorization_request({"response_type": "token", "client_id": "abc"})
        assert exc.value.error == ErrorCode.UNSUPPORTED_RESPONSE_TYPE


class TestFailureMapping:

    class BrokenClients:
        def __init__(self, error):
            self.error = error

        async def get_client(self, client_id):
            raise self.error

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error, code, status", [
        (RepositoryUnavailable("db down"), ErrorCode.TEMPORARILY_UNAVAILABLE, 503),
        (RepositoryError("constraint"), ErrorCode.SERVER_ERROR, 500),
    ])
    async def test_repository_errors(self, scopes, auth_codes, access_tokens, refresh_tokens, key_pair, error, code, status):
        server = AuthorizationServer(
            Config(), self.BrokenClients(error), scopes, auth_codes, access_tokens, refresh_tokens, key_pair,
        )
        with pytest.raises(ServerError) as exc:
            await server.respond_to_access_token_request({"grant_type": "client_credentials", **ABC})
        assert exc.value.error == code
        assert exc.value.http_status == status
        assert "db down" not in str(exc.value.to_dict())

    @pytest.mark.asyncio
    async def test_identifier_collision_is_retried(self, clients, scopes, auth_codes, refresh_tokens, key_pair):
        class Colliding(InMemoryAccessTokenRepository):
            failures = 2

            async def persist_new_access_token(self, token):
                if self.failures:
                    self.failures -= 1
                    raise UniqueIdentifierViolation(token.identifier)
                await super().persist_new_access_token(token)

        tokens = Colliding()
        server = AuthorizationServer(Config(), clients, scopes, auth_codes, tokens, refresh_tokens, key_pair)
        await server.respond_to_access_token_request({"grant_type": "client_credentials", **ABC})
        assert len(tokens.tokens) == 1

    @pytest.mark.asyncio
    async def test_identifier_collision_gives_up(self, clients, scopes, auth_codes, refresh_tokens, key_pair):
        class AlwaysColliding(InMemoryAccessTokenRepository):
            async def persist_new_access_token(self, token):
                raise UniqueIdentifierViolation(token.identifier)

        server = AuthorizationServer(Config(), clients, scopes, auth_codes, AlwaysColliding(), refresh_tokens, key_pair)
        with pytest.raises(ServerError) as exc:
            await server.respond_to_access_token_request({"grant_type": "client_credentials", **ABC})
        assert exc.value.error == ErrorCode.SERVER_ERROR


class TestRevocation:

    @pytest.mark.asyncio
    async def test_revoke_refresh_token_revokes_pair(self, auth_server):
        tokens = await password_tokens(auth_server)
        await auth_server.revoke_token({"token": tokens["refresh_token"], **ABC})
        with pytest.raises(InvalidToken):
            await auth_server.validate_bearer_token(tokens["access_token"])
        with pytest.raises(GrantError):
            await auth_server.respond_to_access_token_request(
                {"grant_type": "refresh_token", "refresh_token": tokens["refresh_token"], **ABC}
            )

    @pytest.mark.asyncio
    async def test_revoke_access_token(self, auth_server):
        tokens = await password_tokens(auth_server)
        await auth_server.revoke_token({"token": tokens["access_token"], "token_type_hint": "access_token", **ABC})
        with pytest.raises(InvalidToken):
            await auth_server.validate_bearer_token(tokens["access_token"])

    @pytest.mark.asyncio
    async def test_unknown_token_is_ignored(self, auth_server):
        await auth_server.revoke_token({"token": "nonsense", **ABC})

    @pytest.mark.asyncio
    async def test_other_clients_tokens_untouched(self, auth_server):
        tokens = await auth_server.respond_to_access_token_request(
            {"grant_type": "client_credentials", "client_id": "machine", "client_secret": "s3cr3t"}
        )
        await auth_server.revoke_token({"token": tokens["access_token"], **ABC})
        assert (await auth_server.validate_bearer_token(tokens["access_token"]))["sub"] == "machine"
