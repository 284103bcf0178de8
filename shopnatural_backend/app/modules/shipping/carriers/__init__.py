"""
Carrier Registry and Factory

- CarrierFactory creates carrier instances based on CarrierCode
- Returns None for carriers without a registered implementation
- Credentials are injected by the caller, carriers never read settings
"""
from typing import Any, Dict, List, Optional, Type
import logging

from app.modules.shipping.carriers.base import BaseCarrier, CarrierCode

logger = logging.getLogger(__name__)

# Registry of carrier implementations
_CARRIER_REGISTRY: Dict[CarrierCode, Type[BaseCarrier]] = {}


def register_carrier(carrier_code: CarrierCode):
    """
    Decorator to register a carrier implementation.

    Usage:
        @register_carrier(CarrierCode.VENIPAK)
        class VenipakClient(BaseCarrier):
            ...
    """
    def decorator(cls: Type[BaseCarrier]):
        _CARRIER_REGISTRY[carrier_code] = cls
        logger.info(f"Registered carrier: {carrier_code.value} -> {cls.__name__}")
        return cls
    return decorator


class CarrierFactory:
    """Factory for creating carrier instances."""

    @classmethod
    def get_carrier(
        cls,
        carrier_code: CarrierCode,
        credentials: Any,
        **kwargs,
    ) -> Optional[BaseCarrier]:
        """
        Get a carrier instance.

        Args:
            carrier_code: The carrier to get
            credentials: Carrier-specific credentials struct
            **kwargs: Passed to the carrier constructor (timeout, http_client)

        Returns:
            BaseCarrier instance or None if not registered
        """
        carrier_cls = _CARRIER_REGISTRY.get(carrier_code)
        if not carrier_cls:
            logger.warning(f"No implementation registered for carrier: {carrier_code.value}")
            return None

        return carrier_cls(credentials, **kwargs)

    @classmethod
    def get_registered_carriers(cls) -> List[CarrierCode]:
        """Get list of all registered carrier codes."""
        return list(_CARRIER_REGISTRY.keys())


def get_carrier(carrier_code: CarrierCode, credentials: Any, **kwargs) -> Optional[BaseCarrier]:
    """Equivalent to CarrierFactory.get_carrier()."""
    return CarrierFactory.get_carrier(carrier_code, credentials, **kwargs)


# Import carriers to trigger registration
# These imports must be at the bottom to avoid circular imports
from app.modules.shipping.carriers.venipak import VenipakClient, VenipakCredentials  # noqa: E402, F401
