"""Key store settings.

Settings are read from a TOML file:

    base_path = "/etc/sshkeystore"
    default_dir = "ssh"
    default_type = "rsa"
    ssh_keygen = "ssh-keygen"
    ledger_header = "# managed by sshkeystore"
    private_key_mode = "0400"
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

import tomli_w  # type: ignore

from .keygen import DEFAULT_PRIVATE_KEY_MODE
from .ledger import DEFAULT_HEADER
from .request import DEFAULT_DIR, DEFAULT_KEY_TYPE


DEFAULT_BASE_PATH = Path("/etc/sshkeystore")
DEFAULT_CONFIG_PATH = DEFAULT_BASE_PATH / "config.toml"

CONFIG_ENV = "SSHKEYSTORE_CONFIG"
BASE_PATH_ENV = "SSHKEYSTORE_BASE"


@dataclass
class Settings:
    """Settings for a key store.

    Attributes:
        base_path: Root of the key tree; request directories are relative to it
        default_dir: Directory used when a request does not name one
        default_type: Key type used when a request does not name one
        ssh_keygen: ssh-keygen binary to run
        ledger_header: Comment line written at the top of new ledgers
        private_key_mode: Permission bits for generated private keys
    """
    base_path: Path = DEFAULT_BASE_PATH
    default_dir: str = DEFAULT_DIR
    default_type: str = DEFAULT_KEY_TYPE
    ssh_keygen: str = "ssh-keygen"
    ledger_header: str = DEFAULT_HEADER
    private_key_mode: int = DEFAULT_PRIVATE_KEY_MODE

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        mode = data.get("private_key_mode", DEFAULT_PRIVATE_KEY_MODE)
        if isinstance(mode, str):
            try:
                mode = int(mode, 8)
            except ValueError:
                raise ValueError(f"Invalid private_key_mode: {mode!r}")

        return cls(
            base_path=Path(data.get("base_path", DEFAULT_BASE_PATH)),
            default_dir=data.get("default_dir", DEFAULT_DIR),
            default_type=data.get("default_type", DEFAULT_KEY_TYPE),
            ssh_keygen=data.get("ssh_keygen", "ssh-keygen"),
            ledger_header=data.get("ledger_header", DEFAULT_HEADER),
            private_key_mode=mode,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_path": str(self.base_path),
            "default_dir": self.default_dir,
            "default_type": self.default_type,
            "ssh_keygen": self.ssh_keygen,
            "ledger_header": self.ledger_header,
            "private_key_mode": f"{self.private_key_mode:04o}",
        }


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings.

    Resolution order:
    1. Explicit ``config_path``
    2. SSHKEYSTORE_CONFIG environment variable
    3. /etc/sshkeystore/config.toml, if present
    4. Built-in defaults

    SSHKEYSTORE_BASE overrides the base path of whatever was loaded.
    """
    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV)
        if env_path:
            config_path = Path(env_path)
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
        settings = Settings.from_dict(data)
    else:
        settings = Settings()

    base_override = os.environ.get(BASE_PATH_ENV)
    if base_override:
        settings.base_path = Path(base_override)

    return settings


def save_settings(settings: Settings, config_path: Path) -> Path:
    """Write settings to a TOML file."""
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "wb") as f:
        tomli_w.dump(settings.to_dict(), f)

    return config_path
