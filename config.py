"""Config management for grant-server."""
import json
import os
from pathlib import Path
from typing import Optional


CONFIG_DIR = Path.home() / ".grant-server"
CONFIG_FILE = CONFIG_DIR / "config.json"

# Environment overrides: GRANT_SERVER_<KEY>
ENV_PREFIX = "GRANT_SERVER_"

DEFAULTS = {
    "grant_types": ["authorization_code", "client_credentials", "refresh_token", "password", "implicit"],
    "response_types": ["code", "token"],
    "scope_delimiter": " ",
    "default_scopes": [],
    "require_scope": False,
    "access_token_ttl": 60 * 60,              # 1 hour
    "refresh_token_ttl": 30 * 24 * 60 * 60,   # 30 days
    "auth_code_ttl": 10 * 60,                 # 10 minutes
    "max_refresh_rotations": None,
    "require_pkce_for_public_clients": True,
    "issuer": None,
    "private_key_path": None,
    "private_key_passphrase": None,
    "public_key_path": None,
    "legacy_response_types": ["code"],
    "legacy_scope_delimiter": ",",
}

_LIST_KEYS = {"grant_types", "response_types", "default_scopes", "legacy_response_types"}
_INT_KEYS = {"access_token_ttl", "refresh_token_ttl", "auth_code_ttl", "max_refresh_rotations"}
_BOOL_KEYS = {"require_scope", "require_pkce_for_public_clients"}


class Config:
    """Configuration container."""

    def __init__(self, data: dict = None):
        self.data = dict(DEFAULTS)
        self.data.update(data or {})
        for key in ("access_token_ttl", "refresh_token_ttl", "auth_code_ttl"):
            if int(self.data[key]) <= 0:
                raise ValueError(f"{key} must be positive")
        if not self.data["scope_delimiter"]:
            raise ValueError("scope_delimiter cannot be empty")

    @property
    def grant_types(self) -> list:
        return list(self.data["grant_types"])

    @property
    def response_types(self) -> list:
        return list(self.data["response_types"])

    @property
    def scope_delimiter(self) -> str:
        return self.data["scope_delimiter"]

    @property
    def default_scopes(self) -> list:
        return list(self.data["default_scopes"])

    @property
    def require_scope(self) -> bool:
        return bool(self.data["require_scope"])

    @property
    def access_token_ttl(self) -> int:
        return int(self.data["access_token_ttl"])

    @property
    def refresh_token_ttl(self) -> int:
        return int(self.data["refresh_token_ttl"])

    @property
    def auth_code_ttl(self) -> int:
        return int(self.data["auth_code_ttl"])

    @property
    def max_refresh_rotations(self) -> Optional[int]:
        value = self.data["max_refresh_rotations"]
        return None if value is None else int(value)

    @property
    def require_pkce_for_public_clients(self) -> bool:
        return bool(self.data["require_pkce_for_public_clients"])

    @property
    def issuer(self) -> Optional[str]:
        return self.data["issuer"]

    @property
    def private_key_path(self) -> Optional[str]:
        return self.data["private_key_path"]

    @property
    def private_key_passphrase(self) -> Optional[str]:
        return self.data["private_key_passphrase"]

    @property
    def public_key_path(self) -> Optional[str]:
        return self.data["public_key_path"]

    @property
    def legacy_response_types(self) -> list:
        return list(self.data["legacy_response_types"])

    @property
    def legacy_scope_delimiter(self) -> str:
        return self.data["legacy_scope_delimiter"]


def _parse_env_value(key: str, raw: str):
    if key in _LIST_KEYS:
        return [item.strip() for item in raw.split(",") if item.strip()]
    if key in _INT_KEYS:
        return None if raw.lower() in ("", "none") else int(raw)
    if key in _BOOL_KEYS:
        return raw.lower() in ("1", "true", "yes")
    return raw


def env_overrides(environ=None) -> dict:
    """Collect GRANT_SERVER_* variables as config values."""
    environ = os.environ if environ is None else environ
    overrides = {}
    for key in DEFAULTS:
        raw = environ.get(ENV_PREFIX + key.upper())
        if raw is not None:
            overrides[key] = _parse_env_value(key, raw)
    return overrides


def load_config(path: Optional[Path] = None, environ=None) -> Config:
    """Load config from file, then apply environment overrides."""
    path = Path(path) if path else Path(os.getenv(ENV_PREFIX + "CONFIG", CONFIG_FILE))
    data = {}
    if path.exists():
        with open(path, "r") as f:
            data = json.load(f)
    data.update(env_overrides(environ))
    return Config(data)
