from typing import Dict, Type

from magicformula.services.data_feed.base import DataFeed
from magicformula.services.data_feed.fmp_provider import FMPDataFeed

PROVIDERS: Dict[str, Type[DataFeed]] = {
    "fmp": FMPDataFeed,
}


def get_data_feed(name: str = "fmp") -> DataFeed:
    """Factory to get data feed instance."""
    provider_class = PROVIDERS.get(name)
    if not provider_class:
        raise ValueError(f"Unknown data feed: {name}")

    return provider_class()
