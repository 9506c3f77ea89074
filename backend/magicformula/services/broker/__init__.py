from typing import Dict, Type

from magicformula.services.broker.alpaca_gateway import AlpacaGateway
from magicformula.services.broker.base import BrokerGateway, BrokerPosition, OrderConfirmation

GATEWAYS: Dict[str, Type[BrokerGateway]] = {
    "alpaca": AlpacaGateway,
}


def get_broker_gateway(name: str = "alpaca") -> BrokerGateway:
    """Factory to get broker gateway instance."""
    gateway_class = GATEWAYS.get(name)
    if not gateway_class:
        raise ValueError(f"Unknown broker gateway: {name}")

    return gateway_class()


__all__ = ["BrokerGateway", "BrokerPosition", "OrderConfirmation", "get_broker_gateway"]
