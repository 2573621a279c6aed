"""Path constants and directory utilities for miroir config.

Follows the XDG Base Directory specification:
- Config: ~/.config/miroir/
- Credentials: ~/.config/miroir/credentials/ (with restricted permissions)
- Data: ~/.local/share/miroir/ (mirrored records)
"""

import os
from pathlib import Path


# XDG-compliant config directory
CONFIG_DIR = (
    Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config") / "miroir"
)
CONFIG_FILE = CONFIG_DIR / "config.toml"

# Credentials stored separately with restricted permissions
CREDENTIALS_DIR = CONFIG_DIR / "credentials"

# Default location of the mirrored records
DEFAULT_DATA_DIR = (
    Path(os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share")
    / "miroir"
)

# Sync state lives beside the account directories, never inside them
STATE_DIR_NAME = ".sync"


def ensure_config_dir() -> Path:
    """Create CONFIG_DIR if needed and return it."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    return CONFIG_DIR


def ensure_credentials_dir() -> Path:
    """Create CREDENTIALS_DIR as owner-only (700) and return it.

    Token caches hold refresh tokens.
    """
    CREDENTIALS_DIR.mkdir(parents=True, exist_ok=True)
    CREDENTIALS_DIR.chmod(0o700)
    return CREDENTIALS_DIR


def token_cache_file(account_name: str) -> Path:
    """Path of the MSAL token cache for one account."""
    return CREDENTIALS_DIR / f"{account_name}.json"


def state_dir_for(data_dir: Path) -> Path:
    """Sync state directory for a data directory."""
    return data_dir / STATE_DIR_NAME
