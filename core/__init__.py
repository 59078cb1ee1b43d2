from core.errors import (
    ConfigError,
    ConflictError,
    DeliveryError,
    FetchError,
    NotFoundError,
    RelayError,
    StoreError,
)
from core.tracking_store import TrackingStore

__all__ = [
    "ConfigError",
    "ConflictError",
    "DeliveryError",
    "FetchError",
    "NotFoundError",
    "RelayError",
    "StoreError",
    "TrackingStore",
]
