"""Connector type registry."""

from __future__ import annotations

import threading
from typing import Callable

from localdex.connectors.base import Connector
from localdex.core.errors import AlreadyExistsError, InvalidInputError, UnsupportedTypeError
from localdex.models.entities import ConnectorType

ConnectorBuilder = Callable[[], Connector]


class ConnectorRegistry:
    """Known connector types and how to build a connector for each."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._types: dict[str, ConnectorType] = {}
        self._builders: dict[str, ConnectorBuilder] = {}

    def register(self, connector_type: ConnectorType, builder: ConnectorBuilder) -> None:
        with self._lock:
            if connector_type.id in self._types:
                raise AlreadyExistsError(f"connector type {connector_type.id} already registered")
            self._types[connector_type.id] = connector_type
            self._builders[connector_type.id] = builder

    def get_type(self, type_id: str) -> ConnectorType:
        with self._lock:
            connector_type = self._types.get(type_id)
        if connector_type is None:
            raise UnsupportedTypeError(f"unsupported connector type: {type_id}")
        return connector_type

    def list_types(self) -> list[ConnectorType]:
        with self._lock:
            return sorted(self._types.values(), key=lambda item: item.id)

    def create(self, type_id: str) -> Connector:
        with self._lock:
            builder = self._builders.get(type_id)
        if builder is None:
            raise UnsupportedTypeError(f"unsupported connector type: {type_id}")
        return builder()

    def validate_config(self, type_id: str, config: dict[str, str]) -> None:
        """Raise ``UnsupportedTypeError`` or ``InvalidInputError`` for an unusable source config."""
        connector_type = self.get_type(type_id)
        missing = [key.key for key in connector_type.config_keys if key.required and not config.get(key.key)]
        if missing:
            raise InvalidInputError(f"missing required config for {type_id}: {', '.join(missing)}")


__all__ = ["ConnectorRegistry", "ConnectorBuilder"]
