"""Authentication module for Microsoft 365 accounts.

Picks the login flow configured for an account and hands out bearer
tokens for Microsoft Graph. The sync engine never sees credentials; it
only receives a ready token through the Graph client.

Usage:
    from miroir.auth import authenticate, get_access_token

    # Perform OAuth flow (interactive)
    result = authenticate("work", account_config)

    # Get cached access token (non-interactive)
    token = get_access_token("work", account_config)
"""

from miroir.config.schema import AccountConfig

from .ms365 import (
    authenticate_auth_code_flow,
    authenticate_device_flow,
    clear_token_cache,
    get_access_token as _ms365_token,
)

__all__ = [
    "AUTH_FLOWS",
    "authenticate",
    "clear_token_cache",
    "get_access_token",
    "is_authenticated",
]

AUTH_FLOWS = {
    "devicecode": authenticate_device_flow,
    "authcode": authenticate_auth_code_flow,
}


def authenticate(account_name: str, account: AccountConfig) -> dict:
    """Authenticate an account with its configured flow.

    "devicecode" (the default) prints a code and URL to use on any device.
    "authcode" opens a browser on this machine and captures the redirect
    on a local port.

    Args:
        account_name: Name of the account in config.toml.
        account: Account configuration from config.toml.

    Returns:
        Authentication result dict:
        - On success: contains 'access_token' and 'id_token_claims'
        - On failure: contains 'error' and 'error_description'
    """
    client_id = account.get("client_id")
    if not client_id:
        return {
            "error": "missing_config",
            "error_description": "Account must have 'client_id' configured.",
        }

    flow_name = account.get("auth_flow", "devicecode")
    flow = AUTH_FLOWS.get(flow_name)
    if flow is None:
        return {
            "error": "unknown_auth_flow",
            "error_description": (
                f"Unknown auth_flow '{flow_name}'. "
                f"Valid values: {', '.join(AUTH_FLOWS)}"
            ),
        }

    return flow(
        account_name,
        client_id,
        account.get("tenant_id"),
        account.get("hint"),
    )


def get_access_token(account_name: str, account: AccountConfig) -> str | None:
    """Get a cached access token for an account.

    Returns:
        Access token string, or None if not authenticated.
    """
    client_id = account.get("client_id")
    if not client_id:
        return None

    return _ms365_token(
        account_name,
        client_id,
        account.get("tenant_id"),
        account.get("hint"),
    )


def is_authenticated(account_name: str, account: AccountConfig) -> bool:
    """Check if an account has usable cached credentials."""
    return get_access_token(account_name, account) is not None
