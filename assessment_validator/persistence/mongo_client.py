"""
Mongo connection shared by the requirement source and the result store.
Never opened in mock mode.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from assessment_validator.config import Settings, get_settings

logger = logging.getLogger(__name__)


class MongoConnection:
    """Lazily opened pymongo client plus the configured database handle."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client: Any = None
        self._lock = threading.Lock()

    @property
    def client(self) -> Any:
        with self._lock:
            if self._client is None:
                if self.settings.mock_mode:
                    raise RuntimeError("MongoDB is not used in mock mode")
                from pymongo import MongoClient

                self._client = MongoClient(
                    self.settings.mongodb_uri, serverSelectionTimeoutMS=5000
                )
                logger.info(f"[Mongo] Connected to {self.settings.mongodb_database}")
            return self._client

    @property
    def database(self) -> Any:
        return self.client[self.settings.mongodb_database]

    def supports_transactions(self) -> bool:
        """Multi-document transactions need a replica set or a mongos router."""
        hello = self.client.admin.command("hello")
        return bool(hello.get("setName")) or hello.get("msg") == "isdbgrid"

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
                logger.info("[Mongo] Connection closed")


_connection: Optional[MongoConnection] = None
_connection_lock = threading.Lock()


def get_mongo() -> MongoConnection:
    """Process-wide connection (singleton)."""
    global _connection
    with _connection_lock:
        if _connection is None:
            _connection = MongoConnection()
        return _connection
