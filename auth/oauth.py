"""
auth/oauth.py -- Authlib OAuth client registry built from stored provider configs.

Providers are data, not code: an operator adds "GitHub-Enterprise" through the
admin API and it becomes an Authlib client registered under that unique name.
build_oauth_registry() is called at startup and again after every provider
mutation; the fresh OAuth object replaces app.state.oauth wholesale so a
request never sees a half-built registry.

Endpoint definitions per provider type:
  github    -- static endpoints (no OIDC discovery document)
  google    -- OIDC discovery
  microsoft -- OIDC discovery (common tenant)
  gitee     -- static endpoints
  wechat    -- static endpoints (QR-code web login)
  custom    -- endpoints from additional_config: authorize_url +
               access_token_url (+ api_base_url), or server_metadata_url

The token exchange and user-info normalization are out of scope here; this
module only makes the configured clients available by name.

Layer rule: no imports from api/. registry/models.py is imported for the
config shapes only.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from authlib.integrations.starlette_client import OAuth

from registry.models import ExternalAuthProviderSummary, OAuthClientConfig

logger = logging.getLogger("idcore.auth.oauth")

# ---------------------------------------------------------------------------
# Provider endpoint definitions
# ---------------------------------------------------------------------------

_PROVIDER_ENDPOINTS: dict[str, dict[str, str]] = {
    "github": {
        "access_token_url": "https://github.com/login/oauth/access_token",  # noqa: S105 -- URL, not a password
        "authorize_url": "https://github.com/login/oauth/authorize",
        "api_base_url": "https://api.github.com/",
    },
    "google": {
        "server_metadata_url": "https://accounts.google.com/.well-known/openid-configuration",
    },
    "microsoft": {
        "server_metadata_url": "https://login.microsoftonline.com/common/v2.0/.well-known/openid-configuration",
    },
    "gitee": {
        "access_token_url": "https://gitee.com/oauth/token",  # noqa: S105 -- URL, not a password
        "authorize_url": "https://gitee.com/oauth/authorize",
        "api_base_url": "https://gitee.com/api/v5/",
    },
    "wechat": {
        "access_token_url": "https://api.weixin.qq.com/sns/oauth2/access_token",  # noqa: S105 -- URL, not a password
        "authorize_url": "https://open.weixin.qq.com/connect/qrconnect",
        "api_base_url": "https://api.weixin.qq.com/",
    },
}

_DEFAULT_SCOPES: dict[str, str] = {
    "github": "read:user user:email",
    "google": "openid email profile",
    "microsoft": "openid email profile",
    "gitee": "user_info emails",
    "wechat": "snsapi_login",
    "custom": "openid email profile",
}

_CUSTOM_ENDPOINT_KEYS = ("authorize_url", "access_token_url", "api_base_url", "server_metadata_url")


def _endpoints(config: OAuthClientConfig) -> dict[str, str] | None:
    """Authlib endpoint kwargs for config, or None when they cannot be determined."""
    if config.provider_type in _PROVIDER_ENDPOINTS:
        return dict(_PROVIDER_ENDPOINTS[config.provider_type])
    if config.provider_type != "custom":
        return None
    extra = config.additional_config
    endpoints = {k: extra[k] for k in _CUSTOM_ENDPOINT_KEYS if extra.get(k)}
    if "server_metadata_url" in endpoints:
        return endpoints
    if "authorize_url" in endpoints and "access_token_url" in endpoints:
        return endpoints
    return None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def build_oauth_registry(configs: Iterable[OAuthClientConfig]) -> OAuth:
    """Register one Authlib client per config, keyed by provider name.

    A config whose endpoints cannot be determined (unknown type, or a custom
    provider missing its URLs) is skipped with a warning rather than failing
    the whole registry.
    """
    oauth = OAuth()
    for config in configs:
        endpoints = _endpoints(config)
        if endpoints is None:
            logger.warning(
                "External auth provider %s (%s) skipped: endpoints not configured",
                config.name,
                config.provider_type,
            )
            continue
        scope = " ".join(config.scopes) if config.scopes else _DEFAULT_SCOPES.get(config.provider_type, "")
        oauth.register(
            name=config.name,
            client_id=config.client_id,
            client_secret=config.client_secret,
            client_kwargs={"scope": scope},
            **endpoints,
        )
        logger.info("External auth provider registered: %s (%s)", config.name, config.provider_type)
    return oauth


def public_provider_list(providers: Iterable[ExternalAuthProviderSummary]) -> list[dict]:
    """Login-page metadata for enabled providers. Never includes client credentials.

    Returns list of {"name", "display_name", "provider_type", "callback_path"}.
    """
    return [
        {
            "name": p.name,
            "display_name": p.display_name,
            "provider_type": p.provider_type,
            "callback_path": p.callback_path,
        }
        for p in providers
        if p.enabled
    ]
