"""
Pluggable storage backend factory.

Creates the item store named by configuration. ``sqlite`` (default) and
``memory`` are built in. External backends register via the
``quizcore.backends`` entry point group.

External backend packages provide a factory function::

    def create_store(config: StoreConfig) -> ItemStoreProtocol:
        ...

and register it in their pyproject.toml::

    [project.entry-points."quizcore.backends"]
    my-backend = "my_package.backend:create_store"
"""

from .config import StoreConfig
from .protocol import ItemStoreProtocol


def create_store(config: StoreConfig) -> ItemStoreProtocol:
    """Create the item store for a configuration."""
    if config.backend == "sqlite":
        from .item_store import ItemStore
        return ItemStore(config.db_path)
    if config.backend == "memory":
        from .memory_store import MemoryItemStore
        return MemoryItemStore()
    return _load_backend(config.backend, config)


def _load_backend(name: str, config: StoreConfig) -> ItemStoreProtocol:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="quizcore.backends")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = [ep.name for ep in eps]
    if available:
        raise ValueError(
            f"Unknown backend: {name!r}. Available: sqlite, memory, {', '.join(available)}"
        )
    raise ValueError(
        f"Unknown backend: {name!r}. Built-in backends are 'sqlite' and 'memory'."
    )
