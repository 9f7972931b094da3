"""
Configuration management for tiddlykeep stores.

The configuration is stored as a TOML file in the store directory.
It names the content store backend, how tiddlers are filed and shown,
the server defaults, and the identity claims are signed with.
"""

import getpass
import os
import secrets
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# tomli_w for writing TOML (tomllib is read-only)
try:
    import tomli_w
except ImportError:
    tomli_w = None  # type: ignore

from .types import DEFAULT_BAG, RECIPE_ALL, VISIBILITY_CHOICES


CONFIG_FILENAME = "tiddlykeep.toml"
CONFIG_VERSION = 1

DEFAULT_LISTEN = "localhost:8080"


def current_user() -> str:
    """OS user name, or GUEST when it cannot be determined."""
    try:
        return getpass.getuser() or "GUEST"
    except (KeyError, OSError):
        return "GUEST"


def get_store_path(override: Optional[Path] = None) -> Path:
    """Store directory: explicit, else $TIDDLYKEEP_STORE_PATH, else ~/.tiddlykeep."""
    if override is not None:
        return Path(override).expanduser()
    env = os.environ.get("TIDDLYKEEP_STORE_PATH")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".tiddlykeep"


def validate_visibility(name: str, value: str) -> str:
    if value not in VISIBILITY_CHOICES:
        raise ValueError(
            f"Invalid {name}: {value!r}. Choose one of {', '.join(VISIBILITY_CHOICES)}"
        )
    return value


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    backend: str = "local"

    # Tiddler filing and visibility
    default_bag: str = DEFAULT_BAG
    hide_nodes: str = "system"
    embed: str = "system"

    # Server defaults
    listen: str = DEFAULT_LISTEN
    username: str = field(default_factory=current_user)
    recipe: str = RECIPE_ALL
    index_ref: str = ""

    # Claim signing
    signer: str = field(default_factory=current_user)
    signing_key: str = field(default_factory=lambda: secrets.token_hex(32))

    def __post_init__(self):
        validate_visibility("hide_nodes", self.hide_nodes)
        validate_visibility("embed", self.embed)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def blob_db_path(self) -> Path:
        """SQLite file of the local content store."""
        return self.path / "blobs.db"

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    tiddlers = data.get("tiddlers", {})
    server = data.get("server", {})
    signing = data.get("signing", {})

    defaults = StoreConfig(path=store_path)
    return StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        backend=store.get("backend", "local"),
        default_bag=tiddlers.get("default_bag", DEFAULT_BAG),
        hide_nodes=tiddlers.get("hide_nodes", "system"),
        embed=tiddlers.get("embed", "system"),
        listen=server.get("listen", DEFAULT_LISTEN),
        username=server.get("username", defaults.username),
        recipe=server.get("recipe", RECIPE_ALL),
        index_ref=server.get("index_ref", ""),
        signer=signing.get("signer", defaults.signer),
        signing_key=signing.get("key", defaults.signing_key),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.  The file holds the
    signing key, so it is only readable by its owner.
    """
    if tomli_w is None:
        raise RuntimeError("tomli_w is required to save config. Install with: pip install tomli-w")

    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "backend": config.backend,
        },
        "tiddlers": {
            "default_bag": config.default_bag,
            "hide_nodes": config.hide_nodes,
            "embed": config.embed,
        },
        "server": {
            "listen": config.listen,
            "username": config.username,
            "recipe": config.recipe,
            "index_ref": config.index_ref,
        },
        "signing": {
            "signer": config.signer,
            "key": config.signing_key,
        },
    }

    fd = os.open(config.config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = StoreConfig(path=store_path)
        save_config(config)
        return config
