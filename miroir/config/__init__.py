"""Configuration management module.

Reads and writes ~/.config/miroir/config.toml and answers the questions
the commands ask of it: which accounts exist, where the mirror lives,
which time zone events are written in and how wide the calendar window is.

Usage:
    from miroir.config import load_config, resolve_accounts, get_data_dir

    config = load_config()
    for name in resolve_accounts(config, None):
        ...
"""

import copy
import tomllib
from collections.abc import Callable
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import tomli_w

from .paths import CONFIG_FILE, DEFAULT_DATA_DIR, ensure_config_dir
from .schema import AccountConfig, MiroirConfig
from .template import CONFIG_TEMPLATE

__all__ = [
    "CONFIG_FILE",
    "DEFAULTS",
    "dump_config",
    "get_account",
    "get_account_names",
    "get_data_dir",
    "get_default",
    "get_timezone",
    "init_config",
    "load_config",
    "resolve_accounts",
    "save_config",
    "set_config_value",
]

# [defaults] values used when config.toml is silent
DEFAULTS = {
    "timezone": "UTC",
    "past_days": 30,
    "future_days": 90,
    "timeout": 30,
}

# Keys whose values are never printed
SECRET_KEYS = {"client_secret"}

# Parsed config.toml, shared by every command of one invocation
_cached_config: MiroirConfig | None = None


def load_config(*, force_reload: bool = False) -> MiroirConfig:
    """Return the parsed config.toml (an empty dict when there is none).

    The first call reads the file; later calls reuse that result unless
    ``force_reload`` is set.
    """
    global _cached_config

    if _cached_config is None or force_reload:
        if CONFIG_FILE.exists():
            with open(CONFIG_FILE, "rb") as f:
                _cached_config = tomllib.load(f)
        else:
            _cached_config = {}

    return _cached_config


def save_config(config: MiroirConfig) -> None:
    """Write ``config`` to config.toml and make it the cached config."""
    global _cached_config

    ensure_config_dir()
    with open(CONFIG_FILE, "wb") as f:
        tomli_w.dump(config, f)
    _cached_config = config


def init_config(*, overwrite: bool = False) -> bool:
    """Write the commented template to config.toml.

    Returns:
        False if a config file was already there and ``overwrite`` is unset.
    """
    ensure_config_dir()
    if CONFIG_FILE.exists() and not overwrite:
        return False

    CONFIG_FILE.write_text(CONFIG_TEMPLATE)
    return True


def dump_config(config: MiroirConfig) -> str:
    """Render a config as TOML with secrets masked."""
    shown = copy.deepcopy(config)
    for account in shown.get("accounts", {}).values():
        for key in SECRET_KEYS & account.keys():
            account[key] = "***REDACTED***" if account[key] else ""
    return tomli_w.dumps(shown)


def get_account_names(config: MiroirConfig) -> list[str]:
    """Names of the [accounts.*] tables, in file order."""
    return list(config.get("accounts", {}))


def get_account(
    config: MiroirConfig, name: str | None = None
) -> AccountConfig | None:
    """Settings of one account; the first account when ``name`` is None."""
    names = get_account_names(config)
    if not names:
        return None
    return config["accounts"].get(name if name is not None else names[0])


def resolve_accounts(config: MiroirConfig, name: str | None) -> list[str]:
    """Accounts a command should act on.

    None or "all" selects every configured account; any other value is
    taken as a single account name, configured or not.
    """
    if name and name != "all":
        return [name]
    return get_account_names(config)


def get_default(config: MiroirConfig, key: str):
    """A [defaults] value, falling back to DEFAULTS."""
    return config.get("defaults", {}).get(key, DEFAULTS.get(key))


def get_data_dir(config: MiroirConfig) -> Path:
    """Root of the mirror: defaults.data_dir with ``~`` expanded."""
    configured = config.get("defaults", {}).get("data_dir")
    return Path(configured).expanduser() if configured else DEFAULT_DATA_DIR


def get_timezone(config: MiroirConfig) -> ZoneInfo:
    """Zone in which event timestamps are written.

    Raises:
        ValueError: If defaults.timezone is not a known IANA zone.
    """
    return _zone(get_default(config, "timezone"))


def set_config_value(key: str, value: str) -> None:
    """Set one config.toml value addressed by a dotted key.

    Intermediate tables are created as needed. Values of known fields are
    converted and checked before anything is written.

    Examples:
        set_config_value("defaults.timezone", "Europe/Berlin")
        set_config_value("accounts.work.client_id", "xxxx-xxxx")

    Raises:
        ValueError: If the value is invalid for its field.
    """
    *path, field = key.split(".")
    converted = _FIELD_CONVERTERS.get(field, str)(value)

    config = load_config(force_reload=True)
    table: dict = config
    for part in path:
        table = table.setdefault(part, {})
    table[field] = converted

    save_config(config)


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown time zone: {name!r}")


def _day_count(value: str) -> int:
    days = int(value)
    if days < 0:
        raise ValueError(f"day count must not be negative: {days}")
    return days


def _seconds(value: str) -> int:
    seconds = int(value)
    if seconds <= 0:
        raise ValueError(f"timeout must be positive: {seconds}")
    return seconds


def _zone_name(value: str) -> str:
    _zone(value)
    return value


_FIELD_CONVERTERS: dict[str, Callable[[str], object]] = {
    "past_days": _day_count,
    "future_days": _day_count,
    "timeout": _seconds,
    "timezone": _zone_name,
}
