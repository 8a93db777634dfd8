from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from src.api.config import BackendConfig
from src.api.db.memory import InMemoryStores
from src.api.db.mongo import MongoStores
from src.api.db.stores import Stores
from src.api.services.classifier import MessageClassifier
from src.api.services.notifications import LoggingNotifier, Notifier


@dataclass
class AppState:
    """Typed app.state container for shared singletons."""

    config: BackendConfig
    stores: Stores
    classifier: MessageClassifier
    notifier: Notifier
    checker_task: Optional[object] = None  # asyncio.Task, but kept loose to avoid import cycles


def build_stores(config: BackendConfig) -> Stores:
    """Instantiate the configured store backend (no I/O happens here)."""
    if config.store_backend == "mongo":
        assert config.mongo_uri is not None
        return MongoStores(config.mongo_uri, config.mongo_db_name)
    return InMemoryStores()


# PUBLIC_INTERFACE
def build_state(config: BackendConfig, stores: Optional[Stores] = None, notifier: Optional[Notifier] = None) -> AppState:
    """Wire stores, classifier and notifier for one app instance."""
    stores = stores if stores is not None else build_stores(config)
    classifier = MessageClassifier.from_stores(stores.tags, stores.devices, timeout=config.store_timeout_sec)
    return AppState(
        config=config,
        stores=stores,
        classifier=classifier,
        notifier=notifier if notifier is not None else LoggingNotifier(),
    )


# PUBLIC_INTERFACE
def init_state(app: FastAPI, state: AppState) -> None:
    """Attach an AppState to a FastAPI app."""
    app.state.state = state


# PUBLIC_INTERFACE
def get_state(app: FastAPI) -> AppState:
    """Fetch typed AppState from a FastAPI app."""
    return app.state.state  # type: ignore[attr-defined]
