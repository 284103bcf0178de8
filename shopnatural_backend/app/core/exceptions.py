"""
Shop Natural Exception Hierarchy

Structured exception classes for the carrier shipment integration.
All exceptions include code, message, and details for audit trail and
debugging. Carrier-facing code returns these as values inside result
objects; only the service internals raise them.

Exception Hierarchy:
    ShopBaseError
    ├── ShippingError
    │   ├── CarrierNotConfiguredError
    │   ├── CarrierTransportError
    │   ├── CarrierParseError
    │   ├── CarrierRejectedError
    │   ├── DataQualityWarning
    │   ├── PackNumberUnavailableError
    │   └── OrderNotFoundError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

# Carrier bodies are truncated before they land in error details/logs
MAX_BODY_EXCERPT = 500


class ShopBaseError(Exception):
    """
    Base exception for all Shop Natural custom errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "SHOP_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# SHIPPING ERRORS
# =============================================================================

class ShippingError(ShopBaseError):
    """Base exception for shipping-related errors."""
    default_code = "SHIPPING_ERROR"
    default_severity = "P1"


class CarrierNotConfiguredError(ShippingError):
    """Carrier credentials missing; raised before any network call."""
    default_code = "CARRIER_NOT_CONFIGURED"
    default_severity = "P1"


class CarrierTransportError(ShippingError):
    """Network failure, timeout or non-2xx response from the carrier."""
    default_code = "CARRIER_TRANSPORT_FAILED"
    default_severity = "P2"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "status_code": status_code,
            "body": body[:MAX_BODY_EXCERPT] if body else body,
        })
        self.status_code = status_code
        super().__init__(message, details=details, **kwargs)


class CarrierParseError(ShippingError):
    """Carrier response could not be read as the expected XML/PDF/JSON."""
    default_code = "CARRIER_RESPONSE_UNPARSEABLE"
    default_severity = "P2"

    def __init__(self, message: str, body: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["body"] = body[:MAX_BODY_EXCERPT] if body else body
        super().__init__(message, details=details, **kwargs)


class CarrierRejectedError(ShippingError):
    """Carrier explicitly refused the request; message is the carrier's text."""
    default_code = "CARRIER_REJECTED"
    default_severity = "P2"


class DataQualityWarning(ShippingError):
    """Non-fatal data defect (e.g. pickup point without carrier code)."""
    default_code = "SHIPMENT_DATA_QUALITY"
    default_severity = "P3"


class PackNumberUnavailableError(ShippingError):
    """Pack number sequence could not be claimed after all retries."""
    default_code = "PACK_NUMBER_UNAVAILABLE"
    default_severity = "P0"

    def __init__(self, message: str, attempts: Optional[int] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["attempts"] = attempts
        super().__init__(message, details=details, **kwargs)


class OrderNotFoundError(ShippingError):
    """Order number does not exist."""
    default_code = "ORDER_NOT_FOUND"
    default_severity = "P3"
