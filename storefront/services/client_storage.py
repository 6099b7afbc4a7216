from __future__ import annotations

import json
import logging
from typing import Any, Optional

from storefront.db.sqlite import SqliteStore

logger = logging.getLogger(__name__)


class ClientStorage:
    """Durable key-value slot owned by one client (a browser or a chat user)."""

    def __init__(self, store: SqliteStore, client_id: str) -> None:
        self.store = store
        self.client_id = client_id

    def get_raw(self, key: str) -> Optional[str]:
        return self.store.kv_get(self.client_id, key)

    def get_json(self, key: str, default: Any = None) -> Any:
        raw = self.get_raw(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("discarding malformed %r for client %s", key, self.client_id)
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.store.kv_set(self.client_id, key, json.dumps(value, ensure_ascii=False))

    def remove(self, key: str) -> None:
        self.store.kv_remove(self.client_id, key)
