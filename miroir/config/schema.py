"""Configuration schema definitions.

Uses TypedDict for type safety without runtime overhead.
These types match the structure of config.toml.
"""

from typing import TypedDict


class DefaultsConfig(TypedDict, total=False):
    """Default settings applied to all operations.

    Attributes:
        data_dir: Root directory of the local mirror.
        timezone: IANA time zone used for event timestamps (e.g. "Europe/Berlin").
        past_days: Days before today included in the calendar window.
        future_days: Days after today included in the calendar window.
        timeout: Per-request timeout for Graph API calls, in seconds.
    """

    data_dir: str
    timezone: str
    past_days: int
    future_days: int
    timeout: int


class AccountConfig(TypedDict, total=False):
    """Single Microsoft 365 account configuration.

    Attributes:
        client_id: Azure app registration client/application ID.
        tenant_id: Tenant ID, or "common" / "organizations" / "consumers".
        auth_flow: "devicecode" (default) or "authcode" (browser + loopback).
        hint: Login hint (the account's email address).
        client_secret: Unused by public client flows; redacted in output.
    """

    client_id: str
    tenant_id: str
    auth_flow: str
    hint: str
    client_secret: str


class MiroirConfig(TypedDict, total=False):
    """Root configuration structure.

    Attributes:
        defaults: Default settings for all operations.
        accounts: Dict mapping account names to their configurations.
    """

    defaults: DefaultsConfig
    accounts: dict[str, AccountConfig]
