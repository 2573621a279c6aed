"""Microsoft 365 authentication via MSAL.

Two interactive flows establish credentials:
- Device Code Flow: a code and URL are printed; sign in on any device.
- Authorization Code Flow with PKCE: MSAL opens a browser here and
  catches the redirect on a loopback port.

Each configured account has its own MSAL SerializableTokenCache, stored
in ~/.config/miroir/credentials/<account>.json. Afterwards tokens are
obtained silently, refreshing them when needed.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import msal

from miroir.config.paths import ensure_credentials_dir, token_cache_file

logger = logging.getLogger(__name__)

# Delegated Graph permissions; only cal create and cal delete write.
# offline_access (refresh tokens) is added by MSAL itself.
SCOPES = ["User.Read", "Calendars.ReadWrite", "Contacts.Read"]

DEFAULT_TENANT = "common"
AUTHORITY_URL = "https://login.microsoftonline.com/{tenant}"


@contextmanager
def _msal_session(
    account_name: str, client_id: str, tenant_id: str | None
) -> Iterator[msal.PublicClientApplication]:
    """MSAL app bound to an account's token cache.

    The cache is read on entry and written back on exit if MSAL changed
    it (new sign-in or refreshed token). The file is made owner-only.
    """
    cache = msal.SerializableTokenCache()
    cache_file = token_cache_file(account_name)
    if cache_file.exists():
        cache.deserialize(cache_file.read_text())

    yield msal.PublicClientApplication(
        client_id=client_id,
        authority=AUTHORITY_URL.format(tenant=tenant_id or DEFAULT_TENANT),
        token_cache=cache,
    )

    if cache.has_state_changed:
        ensure_credentials_dir()
        cache_file.write_text(cache.serialize())
        cache_file.chmod(0o600)


def _silent_token(
    app: msal.PublicClientApplication, hint: str | None
) -> dict | None:
    """Token result from the cache, or None when a sign-in is needed."""
    accounts = app.get_accounts(username=hint) if hint else app.get_accounts()
    if not accounts:
        return None

    result = app.acquire_token_silent(SCOPES, account=accounts[0])
    if result and "access_token" in result:
        return result
    return None


def authenticate_device_flow(
    account_name: str,
    client_id: str,
    tenant_id: str | None = None,
    hint: str | None = None,
) -> dict:
    """Sign in with the Device Code Flow.

    Blocks until the user enters the code or the flow times out (about
    15 minutes). Cached credentials are returned without prompting.

    Args:
        account_name: Configured account name (selects the token cache).
        client_id: Azure app registration client/application ID.
        tenant_id: Tenant ID; "common" when unset.
        hint: Username used to pick a cached account.

    Returns:
        MSAL result: 'access_token' and 'id_token_claims' on success,
        'error' and 'error_description' on failure.
    """
    with _msal_session(account_name, client_id, tenant_id) as app:
        cached = _silent_token(app, hint)
        if cached:
            return cached

        flow = app.initiate_device_flow(scopes=SCOPES)
        if "user_code" not in flow:
            return {
                "error": "device_flow_failed",
                "error_description": flow.get(
                    "error_description", "Failed to initiate device flow"
                ),
            }

        print(flow["message"])
        sys.stdout.flush()
        return app.acquire_token_by_device_flow(flow)


def authenticate_auth_code_flow(
    account_name: str,
    client_id: str,
    tenant_id: str | None = None,
    hint: str | None = None,
) -> dict:
    """Sign in with the Authorization Code Flow in a local browser.

    The app registration must allow the ``http://localhost`` redirect URI.
    Arguments and result are as for authenticate_device_flow(); ``hint``
    is also pre-filled on the sign-in page.
    """
    with _msal_session(account_name, client_id, tenant_id) as app:
        cached = _silent_token(app, hint)
        if cached:
            return cached

        print("Opening browser for authentication...")
        sys.stdout.flush()
        return app.acquire_token_interactive(
            SCOPES, login_hint=hint, prompt="select_account"
        )


def get_access_token(
    account_name: str,
    client_id: str,
    tenant_id: str | None = None,
    hint: str | None = None,
) -> str | None:
    """Bearer token for Graph from the cache, refreshed if expired.

    Never prompts; returns None when the account must sign in first.
    """
    with _msal_session(account_name, client_id, tenant_id) as app:
        result = _silent_token(app, hint)

    if result is None:
        logger.debug("No usable cached token for account %s", account_name)
        return None
    return result["access_token"]


def clear_token_cache(account_name: str) -> bool:
    """Forget an account's tokens. Returns True if a cache file existed."""
    cache_file = token_cache_file(account_name)
    if not cache_file.exists():
        return False
    cache_file.unlink()
    return True
