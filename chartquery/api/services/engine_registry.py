from __future__ import annotations

import threading
from typing import Dict, Optional

from chartquery.api.services.query_service import QueryService


class ServiceRegistry:
    """Thread-safe registry of query services per connection string."""

    def __init__(self) -> None:
        self._services: Dict[str, QueryService] = {}
        self._lock = threading.Lock()

    def get_service(self, connection_string: str) -> QueryService:
        with self._lock:
            if connection_string not in self._services:
                self._services[connection_string] = QueryService(connection_string)
            return self._services[connection_string]

    def register(self, service: QueryService) -> None:
        with self._lock:
            self._services[service.connection_string] = service

    def drop_service(self, connection_string: str) -> Optional[QueryService]:
        with self._lock:
            return self._services.pop(connection_string, None)

    def clear(self) -> None:
        with self._lock:
            self._services.clear()


def get_registry() -> ServiceRegistry:
    global _REGISTRY
    try:
        return _REGISTRY
    except NameError:
        _REGISTRY = ServiceRegistry()
        return _REGISTRY
