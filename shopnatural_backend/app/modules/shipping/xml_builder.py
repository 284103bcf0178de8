"""
Venipak shipment XML builder

Renders the data-import payload (description type="1") for one order:

    <description type="1">
      <manifest title="{account}{yymmdd}001" name="{store} {order}">
        <shipment>
          <consignee>...</consignee>
          <attribute>...</attribute>
          <pack>...</pack>
        </shipment>
      </manifest>
    </description>

Venipak's importer is strict about element order and names, so every block
is appended in the exact sequence below. No <shipper> block is sent for
type="1" imports.
"""
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from app.modules.shipping.destinations import (
    HOME_COUNTRY,
    Destination,
    ShipmentClass,
    classify,
    normalize_phone,
    normalize_postal_code,
)

logger = logging.getLogger(__name__)

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

PICKUP_SHIPPING_METHODS = frozenset({"venipak_pickup", "venipak-pickup", "pickup", "pickup_point"})

# Next working day, standard Venipak delivery
DELIVERY_TYPE = "nwd"
# Cheapest global option
GLOBAL_DELIVERY = "global"

# Coarse weight model: kilograms per ordered unit, and a floor
WEIGHT_PER_UNIT_KG = Decimal("0.5")
MIN_WEIGHT_KG = Decimal("0.1")
# Above this weight Venipak needs dimensions even for domestic parcels
DIMENSIONS_REQUIRED_ABOVE_KG = Decimal("30")

# Default box in METERS (Venipak unit), 30 x 20 x 15 cm
DEFAULT_DIMENSIONS_M = (("length", "0.30"), ("width", "0.20"), ("height", "0.15"))

DEFAULT_GOODS_DESCRIPTION = "Cosmetics and beauty products"
DEFAULT_PICKUP_NAME = "Venipak Pickup"


@dataclass(frozen=True)
class PickupPoint:
    """Venipak pickup point chosen at checkout."""
    code: str
    name: str
    address: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = HOME_COUNTRY

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "PickupPoint":
        """
        Build from the JSON stored on the order.

        Venipak identifies the point by "code", NOT by "id"; older orders
        may carry display_name/zip instead of name/postal_code.
        """
        return cls(
            code=str(data.get("code") or ""),
            name=data.get("name") or data.get("display_name") or DEFAULT_PICKUP_NAME,
            address=data.get("address") or "",
            city=data.get("city") or "",
            postal_code=data.get("postal_code") or data.get("zip") or "",
            country=(data.get("country") or HOME_COUNTRY).upper(),
        )


def is_pickup_point_delivery(order) -> bool:
    """Pickup-point method selected and a pickup point actually stored."""
    return order.shipping_method in PICKUP_SHIPPING_METHODS and bool(order.pickup_point)


def missing_pickup_code(order) -> bool:
    """True for pickup-point orders whose point has no carrier code."""
    if not is_pickup_point_delivery(order):
        return False
    return not PickupPoint.from_json(order.pickup_point).code


def calculate_weight(total_units: int) -> Decimal:
    """0.5 kg per ordered unit, never below 0.1 kg."""
    return max(MIN_WEIGHT_KG, WEIGHT_PER_UNIT_KG * (total_units or 0))


def format_decimal(value: Decimal) -> str:
    """Plain decimal text without trailing zeros (1.50 -> "1.5", 2.0 -> "2")."""
    return format(Decimal(value).normalize(), "f")


def _element(parent: ET.Element, tag: str, text: Optional[Any] = None) -> ET.Element:
    element = ET.SubElement(parent, tag)
    element.text = "" if text is None else str(text)
    return element


def _pickup_consignee(parent: ET.Element, point: PickupPoint, order) -> None:
    """The pickup point is the addressee; the customer is the contact."""
    consignee = ET.SubElement(parent, "consignee")
    _element(consignee, "name", point.name)
    _element(consignee, "company_code", point.code)
    _element(consignee, "country", point.country)
    _element(consignee, "city", point.city)
    _element(consignee, "address", point.address)
    _element(consignee, "post_code", point.postal_code)
    _element(consignee, "contact_person", order.shipping_name)
    _element(consignee, "contact_tel", normalize_phone(order.shipping_phone, point.country))
    _element(consignee, "contact_email", order.customer_email)


def _home_consignee(parent: ET.Element, order, destination: Destination) -> None:
    consignee = ET.SubElement(parent, "consignee")
    _element(consignee, "name", order.shipping_name)
    _element(consignee, "country", destination.code)
    _element(consignee, "city", order.shipping_city)
    _element(consignee, "address", order.shipping_address)
    _element(consignee, "post_code", normalize_postal_code(order.shipping_postal_code, destination.code))
    _element(consignee, "contact_person", order.shipping_name)
    _element(consignee, "contact_tel", normalize_phone(order.shipping_phone, destination.code))
    _element(consignee, "contact_email", order.customer_email)


def _attribute_block(
    parent: ET.Element,
    order,
    shipment_class: ShipmentClass,
    goods_description: str,
) -> None:
    attribute = ET.SubElement(parent, "attribute")
    _element(attribute, "shipment_code", order.order_number)
    _element(attribute, "delivery_type", DELIVERY_TYPE)
    _element(attribute, "cod", 0)

    if shipment_class is ShipmentClass.INTERNATIONAL:
        _element(attribute, "international")

    if shipment_class is ShipmentClass.GLOBAL:
        global_block = ET.SubElement(attribute, "global")
        _element(global_block, "global_delivery", GLOBAL_DELIVERY)
        _element(global_block, "shipment_description", goods_description)
        _element(global_block, "value", f"{Decimal(order.total or 0):.2f}")


def _pack_block(
    parent: ET.Element,
    pack_no: str,
    weight: Decimal,
    shipment_class: ShipmentClass,
    goods_description: str,
) -> None:
    pack = ET.SubElement(parent, "pack")
    _element(pack, "pack_no", pack_no)
    _element(pack, "weight", format_decimal(weight))

    if shipment_class is ShipmentClass.GLOBAL or weight > DIMENSIONS_REQUIRED_ABOVE_KG:
        for tag, meters in DEFAULT_DIMENSIONS_M:
            _element(pack, tag, meters)
        _element(pack, "description", goods_description)


def build_shipment_xml(
    order,
    pack_no: str,
    manifest: str,
    store_name: str = "Shop Natural",
    goods_description: str = DEFAULT_GOODS_DESCRIPTION,
    destination: Optional[Destination] = None,
) -> str:
    """
    Build the shipment XML for an order.

    Args:
        order: Order with items loaded
        pack_no: Pack number claimed for this shipment
        manifest: Daily manifest title
        store_name: Prefix of the manifest name attribute
        goods_description: Free-text contents for global/heavy parcels
        destination: Precomputed routing decision (classified from the
            order's shipping country when omitted)

    Returns:
        XML document as a string, declaration included
    """
    destination = destination or classify(order.shipping_country)

    root = ET.Element("description", {"type": "1"})
    manifest_el = ET.SubElement(root, "manifest", {
        "title": manifest,
        "name": f"{store_name} {order.order_number}",
    })
    shipment = ET.SubElement(manifest_el, "shipment")

    if is_pickup_point_delivery(order):
        point = PickupPoint.from_json(order.pickup_point)
        if not point.code:
            logger.warning(f"Pickup point missing code field for order {order.order_number}: {order.pickup_point}")
        _pickup_consignee(shipment, point, order)
    else:
        _home_consignee(shipment, order, destination)

    weight = calculate_weight(order.total_quantity)
    _attribute_block(shipment, order, destination.shipment_class, goods_description)
    _pack_block(shipment, pack_no, weight, destination.shipment_class, goods_description)

    return XML_DECLARATION + ET.tostring(root, encoding="unicode", short_empty_elements=False)
