"""
Pluggable content store factory.

Creates the content store backend based on configuration.  The local
backend is an SQLite file in the store directory.  External backends
(e.g. a Perkeep server client) register via the ``tiddlykeep.backends``
entry point group.

External backend packages provide a factory function::

    def create_content_store(config: StoreConfig) -> ContentStoreProtocol:
        ...

and register it in their pyproject.toml::

    [project.entry-points."tiddlykeep.backends"]
    perkeep = "my_package.backend:create_content_store"
"""

from .config import StoreConfig
from .protocol import ContentStoreProtocol


def create_content_store(config: StoreConfig) -> ContentStoreProtocol:
    """
    Create the content store named by ``config.backend``.

    For ``backend = "local"`` (default), opens an SqliteContentStore.
    For other values, loads the backend via the ``tiddlykeep.backends``
    entry point group.
    """
    if config.backend == "local":
        return _create_local_store(config)
    return _load_backend(config.backend, config)


def _create_local_store(config: StoreConfig) -> ContentStoreProtocol:
    """Create the default local content store."""
    from .blob_store import SqliteContentStore

    return SqliteContentStore(
        config.blob_db_path,
        signer=config.signer,
        signing_key=config.signing_key,
    )


def _load_backend(name: str, config: StoreConfig) -> ContentStoreProtocol:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="tiddlykeep.backends")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = [ep.name for ep in eps]
    if available:
        raise ValueError(
            f"Unknown backend: {name!r}. Available: {available}"
        )
    raise ValueError(
        f"Unknown backend: {name!r}. No backends registered. "
        f"Install a package providing a 'tiddlykeep.backends' entry point."
    )
