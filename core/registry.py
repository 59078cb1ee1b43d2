from __future__ import annotations

from connectors.base import Connector
from core.errors import ConfigError


class ConnectorRegistry:
    """Central registry of downstream connectors, keyed by name.

    Adding a connector requires only building it and calling
    ``register()``; the engine partitions by delivery mode itself.
    """

    def __init__(self) -> None:
        self._connectors: dict[str, Connector] = {}

    def register(self, connector: Connector) -> None:
        if connector.name in self._connectors:
            raise ConfigError(f"Duplicate connector name '{connector.name}'")
        self._connectors[connector.name] = connector

    def get(self, name: str) -> Connector:
        try:
            return self._connectors[name]
        except KeyError:
            raise ConfigError(f"Unknown connector '{name}'") from None

    @property
    def connectors(self) -> list[Connector]:
        return list(self._connectors.values())

    def partition(self) -> tuple[list[Connector], list[Connector]]:
        """Split into ``(batch, individual)`` connectors."""
        batch = [c for c in self._connectors.values() if c.is_batch_mode]
        individual = [c for c in self._connectors.values() if not c.is_batch_mode]
        return batch, individual

    def __len__(self) -> int:
        return len(self._connectors)
