from connectors.base import Connector, ConnectorConfig, DeliveryMode

__all__ = ["Connector", "ConnectorConfig", "DeliveryMode"]
