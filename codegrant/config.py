"""Process configuration from environment variables.

Provider clients are described by CODEGRANT_<NAME>_* variables; well-known
providers only need their client credentials and redirect URI.
"""

import logging
import os
import secrets
from typing import Dict, List, Optional

from pydantic import ValidationError

from codegrant.exceptions import ProviderConfigError
from codegrant.schemas.oauth2 import CookieConfig, ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./codegrant.db"

# Endpoint defaults for well-known providers
PROVIDER_DEFAULTS: Dict[str, Dict[str, str]] = {
    "google": {
        "authorize_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "profile_url": "https://openidconnect.googleapis.com/v1/userinfo",
        "scopes": "openid email profile",
        "extra_authorize_params": "access_type=online,prompt=select_account",
    },
    "github": {
        "authorize_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "profile_url": "https://api.github.com/user",
        "scopes": "read:user user:email",
        "extra_authorize_params": "",
    },
}


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() == "true"


def get_database_url() -> str:
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def get_session_secret() -> str:
    """Signing key for the visitor session cookie.

    Falls back to an in-memory key when unset, which means sessions (and
    therefore in-flight logins) do not survive a restart.
    """
    secret = os.getenv("CODEGRANT_SESSION_SECRET")
    if secret:
        return secret
    logger.warning(
        "CODEGRANT_SESSION_SECRET not set - using temporary in-memory session key "
        "(in-flight logins will fail after restart)"
    )
    return secrets.token_urlsafe(32)


def session_https_only() -> bool:
    return _env_bool("CODEGRANT_SESSION_SECURE")


def allow_insecure_endpoints() -> bool:
    return _env_bool("CODEGRANT_ALLOW_INSECURE_ENDPOINTS")


def get_provider_names() -> List[str]:
    raw = os.getenv("CODEGRANT_PROVIDERS", "google")
    return [name.strip().lower() for name in raw.split(",") if name.strip()]


def get_default_provider() -> Optional[str]:
    """Provider served by the unprefixed /oauth2/protected route."""
    explicit = os.getenv("CODEGRANT_DEFAULT_PROVIDER", "").strip().lower()
    if explicit:
        return explicit
    names = get_provider_names()
    return names[0] if names else None


def _parse_params(raw: str) -> tuple:
    """Parse "key=value,key=value" into a tuple of pairs."""
    pairs = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ProviderConfigError(f"Invalid authorize parameter '{item}' (expected key=value)")
        pairs.append((key.strip(), value.strip()))
    return tuple(pairs)


def load_provider_config(name: str) -> Optional[ProviderConfig]:
    """Build one provider's configuration from the environment.

    Returns:
        ProviderConfig, or None if the provider has no client credentials

    Raises:
        ProviderConfigError: If the configuration is present but invalid
    """
    prefix = f"CODEGRANT_{name.upper().replace('-', '_')}_"
    defaults = PROVIDER_DEFAULTS.get(name, {})

    def setting(key: str, default: str = "") -> str:
        return os.getenv(prefix + key, defaults.get(key.lower(), default)).strip()

    client_id = setting("CLIENT_ID")
    client_secret = setting("CLIENT_SECRET")
    if not client_id or not client_secret:
        logger.warning("OAuth2 provider '%s' has no client credentials, skipping", name)
        return None

    cookie_fields = {
        "protected_url": setting("PROTECTED_URL") or None,
        "domain": setting("COOKIE_DOMAIN") or None,
        "secure": setting("COOKIE_SECURE", "true").lower() == "true",
    }
    if not cookie_fields["secure"]:
        logger.warning(
            "%sCOOKIE_SECURE is not true - credential cookie for provider '%s' "
            "will be sent over plain HTTP (local development only)",
            prefix,
            name,
        )
    for key, env_key in (("name", "COOKIE_NAME"), ("path", "COOKIE_PATH"), ("max_age", "COOKIE_MAX_AGE")):
        value = setting(env_key)
        if value:
            cookie_fields[key] = value

    try:
        return ProviderConfig(
            name=name,
            client_id=client_id,
            client_secret=client_secret,
            authorize_url=setting("AUTHORIZE_URL"),
            token_url=setting("TOKEN_URL"),
            profile_url=setting("PROFILE_URL"),
            redirect_uri=setting("REDIRECT_URI"),
            scopes=tuple(setting("SCOPES").replace(",", " ").split()),
            extra_authorize_params=_parse_params(setting("EXTRA_AUTHORIZE_PARAMS")),
            timeout=float(setting("TIMEOUT", "10")),
            cookie=CookieConfig(**cookie_fields),
        )
    except (ValidationError, ValueError) as e:
        raise ProviderConfigError(f"Invalid configuration for provider '{name}': {e}") from e


def load_provider_configs() -> List[ProviderConfig]:
    """Configurations of every provider listed in CODEGRANT_PROVIDERS."""
    configs = []
    for name in get_provider_names():
        config = load_provider_config(name)
        if config is not None:
            configs.append(config)
    return configs
