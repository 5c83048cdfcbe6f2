"""Remote compute providers for preview machines."""

from .fly_client import FlyClient
from .fly_provider import FlyProvider

__all__ = [
    "FlyClient",
    "FlyProvider",
]
