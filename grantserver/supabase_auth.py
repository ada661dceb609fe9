"""Resource-owner authentication against Supabase for the password grant."""

import asyncio
import logging
from typing import Optional

import httpx
from supabase import AuthApiError, Client

from grantserver.repositories import RepositoryUnavailable

logger = logging.getLogger(__name__)


class SupabaseAuthenticator:
    """UserAuthenticator backed by Supabase email/password sign-in.

    The password grant's `username` is the user's email address; the owner
    identifier is the Supabase user id.
    """

    def __init__(self, supabase_client: Client):
        self.supabase = supabase_client

    def _sign_in(self, email: str, password: str) -> Optional[str]:
        response = self.supabase.auth.sign_in_with_password({
            "email": email,
            "password": password
        })
        if response.user:
            return response.user.id
        return None

    async def authenticate(self, username: str, password: str) -> Optional[str]:
        try:
            user_id = await asyncio.to_thread(self._sign_in, username, password)
        except AuthApiError as e:
            logger.info(f"[LOGIN] Sign-in rejected for {username}: {e}")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"[LOGIN] Supabase unreachable: {e}")
            raise RepositoryUnavailable("supabase auth unavailable") from e

        if user_id:
            logger.info(f"[LOGIN] User authenticated: {username}")
        return user_id
