"""
Base Carrier Interface

All carriers implement this interface. A carrier is a thin HTTP adapter:
it never raises to its caller and never touches orders. Every exchange
comes back as a result object; failures carry a ShippingError value that
the shipping service turns into an outcome.
"""
import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from app.core.exceptions import ShippingError


class CarrierCode(str, enum.Enum):
    VENIPAK = "venipak"


# =============================================================================
# Carrier-Agnostic Data Classes
# =============================================================================

@dataclass
class CarrierResponse:
    """Raw outcome of one carrier HTTP exchange."""
    ok: bool
    status_code: Optional[int] = None
    body: Optional[str] = None
    error: Optional[ShippingError] = None


@dataclass
class LabelResponse:
    """Label download; pdf is only set when the body really is a PDF."""
    ok: bool
    pdf: Optional[bytes] = None
    error: Optional[ShippingError] = None


# =============================================================================
# Base Carrier Interface
# =============================================================================

class BaseCarrier(ABC):
    """Abstract base class for shipping carriers."""

    @property
    @abstractmethod
    def carrier_code(self) -> CarrierCode:
        pass

    @property
    @abstractmethod
    def carrier_name(self) -> str:
        pass

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Credentials present; checked before any network call."""
        pass

    @abstractmethod
    async def create_shipment(self, payload: str) -> CarrierResponse:
        """
        Submit a shipment import document.

        Args:
            payload: Carrier request body (Venipak: shipment XML)

        Returns:
            CarrierResponse with the raw reply body on success
        """
        pass

    @abstractmethod
    async def fetch_label(self, pack_no: str) -> LabelResponse:
        """Download the printable label for a pack number."""
        pass

    @abstractmethod
    async def fetch_tracking(self, pack_no: str) -> CarrierResponse:
        """Fetch raw tracking data for a pack number."""
        pass

    @abstractmethod
    async def fetch_pickup_points(self) -> CarrierResponse:
        """Fetch the carrier's full pickup point list."""
        pass

    @abstractmethod
    def tracking_url(self, pack_no: str) -> str:
        """Public tracking page for customers."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
