"""
Shipping Module

Venipak carrier integration:
- destinations: country -> routing tier and flat fee
- pack_numbers: collision-free pack numbers and manifest titles
- xml_builder / responses: carrier wire formats
- reconciler: tracking status -> order state
- carriers: BaseCarrier interface, registry and the Venipak client
"""
from app.modules.shipping.carriers import CarrierFactory, get_carrier
from app.modules.shipping.carriers.base import BaseCarrier, CarrierCode

__all__ = [
    "CarrierFactory",
    "get_carrier",
    "BaseCarrier",
    "CarrierCode",
]
