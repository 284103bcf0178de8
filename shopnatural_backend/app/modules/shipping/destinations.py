"""
Destination routing for Venipak shipments

Maps a free-text or ISO country value to a Venipak routing tier and the flat
fee charged for it:
- domestic: LT, LV, EE (Baltic countries - Venipak direct)
- international: PL, FI (requires <international> marker - handed to GLS)
- global: everything else (requires <global> block - TNT/GLS)

SHIPPING_FEES is the single fee table. Checkout quotes and shipment-time
branching both go through classify() so the quoted and billed fee cannot
drift apart.
"""
import enum
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

HOME_COUNTRY = "LT"


class ShipmentClass(str, enum.Enum):
    """Venipak routing tier."""
    DOMESTIC = "domestic"
    INTERNATIONAL = "international"
    GLOBAL = "global"


DOMESTIC_COUNTRIES = frozenset({"LT", "LV", "EE"})
INTERNATIONAL_COUNTRIES = frozenset({"PL", "FI"})

SHIPPING_FEES: Dict[ShipmentClass, Decimal] = {
    ShipmentClass.DOMESTIC: Decimal("4.00"),
    ShipmentClass.INTERNATIONAL: Decimal("4.00"),
    ShipmentClass.GLOBAL: Decimal("20.00"),
}

# Country names as customers type them (English + native spelling)
COUNTRY_NAMES: Dict[str, str] = {
    "lithuania": "LT",
    "lietuva": "LT",
    "latvia": "LV",
    "latvija": "LV",
    "estonia": "EE",
    "eesti": "EE",
    "poland": "PL",
    "polska": "PL",
    "finland": "FI",
    "suomi": "FI",
    "germany": "DE",
    "deutschland": "DE",
    "sweden": "SE",
    "sverige": "SE",
    "norway": "NO",
    "norge": "NO",
    "denmark": "DK",
    "danmark": "DK",
    "france": "FR",
    "netherlands": "NL",
    "belgium": "BE",
    "austria": "AT",
    "ireland": "IE",
    "spain": "ES",
    "italy": "IT",
    "united kingdom": "GB",
    "united states": "US",
}

DIALING_PREFIXES: Dict[str, str] = {
    "LT": "+370",
    "LV": "+371",
    "EE": "+372",
    "PL": "+48",
    "FI": "+358",
    "DE": "+49",
}


@dataclass(frozen=True)
class Destination:
    """Routing decision for a destination country."""
    code: str
    shipment_class: ShipmentClass
    fee: Decimal
    # True when the input was not recognised and the home country was assumed
    defaulted: bool = False

    @property
    def is_domestic(self) -> bool:
        return self.shipment_class is ShipmentClass.DOMESTIC

    @property
    def is_international(self) -> bool:
        return self.shipment_class is ShipmentClass.INTERNATIONAL

    @property
    def is_global(self) -> bool:
        return self.shipment_class is ShipmentClass.GLOBAL


def normalize_country(country: Optional[str]) -> str:
    """
    Normalize a country name or code to ISO-3166 alpha-2.

    Two-letter input is treated as already normalized. Unknown names fall
    back to the carrier's home country; use resolve_country() to learn
    whether that fallback was taken.
    """
    code, _ = resolve_country(country)
    return code


def resolve_country(country: Optional[str]) -> Tuple[str, bool]:
    """Return (iso_code, defaulted)."""
    value = (country or "").strip()

    if len(value) == 2:
        return value.upper(), False

    code = COUNTRY_NAMES.get(value.lower())
    if code:
        return code, False

    return _default_country(value), True


def _default_country(value: str) -> str:
    """Unmapped country branch: assume the home country."""
    logger.warning(f"Unmapped shipping country {value!r}, defaulting to {HOME_COUNTRY}")
    return HOME_COUNTRY


def shipment_class_for(code: str) -> ShipmentClass:
    if code in DOMESTIC_COUNTRIES:
        return ShipmentClass.DOMESTIC
    if code in INTERNATIONAL_COUNTRIES:
        return ShipmentClass.INTERNATIONAL
    return ShipmentClass.GLOBAL


def classify(country: Optional[str]) -> Destination:
    """Classify a destination into routing tier and flat fee."""
    code, defaulted = resolve_country(country)
    shipment_class = shipment_class_for(code)
    return Destination(
        code=code,
        shipment_class=shipment_class,
        fee=SHIPPING_FEES[shipment_class],
        defaulted=defaulted,
    )


def shipping_cost(country: Optional[str]) -> Decimal:
    """Flat shipping fee for checkout; same table as shipment creation."""
    return classify(country).fee


def is_country_supported(country: Optional[str]) -> bool:
    """Every destination ships; countries outside the Baltics go global."""
    return True


def normalize_postal_code(postal_code: Optional[str], country_code: str) -> str:
    """
    Normalize postal code for Venipak.

    Poland writes XX-XXX but Venipak wants digits only. Finland and the
    Baltic countries are accepted as entered.
    """
    postal_code = postal_code or ""
    if country_code == "PL":
        return re.sub(r"[^0-9]", "", postal_code)
    return postal_code


def normalize_phone(phone: Optional[str], country_code: str) -> str:
    """
    Normalize a phone number to E.164-like form.

    "060012345" for LT -> "+37060012345". Numbers already starting with
    "+" are returned unchanged (after stripping punctuation), so the
    function is idempotent.
    """
    phone = re.sub(r"[^0-9+]", "", phone or "")
    if not phone:
        return ""

    if phone.startswith("+"):
        return phone

    prefix = DIALING_PREFIXES.get(country_code, DIALING_PREFIXES[HOME_COUNTRY])

    if phone.startswith("0"):
        phone = phone[1:]

    return prefix + phone
