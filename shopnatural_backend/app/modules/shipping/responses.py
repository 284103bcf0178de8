"""
Venipak response decoding

Turns raw carrier bodies into typed results:
- shipment import replies (XML) -> ShipmentAccepted | ShipmentRejected
- tracking replies (JSON) -> TrackingSnapshot | TrackingUnavailable
- label replies (PDF) -> is_pdf()

Import replies look like:

    <description type="ok"><text tracking="..." carrier="TNT" shipment="...">V10281E1000050</text></description>
    <description type="error"><error code="..."><text>Invalid address</text></error></description>

tracking/carrier/shipment attributes only appear for global shipments that
Venipak hands over to a secondary carrier.
"""
import json
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from app.core.exceptions import CarrierParseError, CarrierRejectedError, ShippingError

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"

# Venipak sometimes embeds HTML line breaks that are not valid XML
_BR_TAG = re.compile(r"<br\s*/?>", re.IGNORECASE)


@dataclass(frozen=True)
class ShipmentAccepted:
    """Carrier accepted the shipment import."""
    pack_no: Optional[str] = None
    external_tracking: Optional[str] = None
    carrier_code: Optional[str] = None
    shipment_id: Optional[str] = None
    # False when the reply had an unknown shape and success was assumed
    recognized: bool = True

    ok = True


@dataclass(frozen=True)
class ShipmentRejected:
    """Carrier refused the import or the reply could not be read."""
    reason: str
    error: ShippingError
    detail: Optional[str] = None

    ok = False


CreateShipmentResult = Union[ShipmentAccepted, ShipmentRejected]


@dataclass(frozen=True)
class TrackingSnapshot:
    """Latest tracking event for a pack number."""
    status: Optional[str]
    date: Optional[str] = None
    occurred_at: Optional[datetime] = None
    events: List[Dict[str, Any]] = field(default_factory=list)

    ok = True


@dataclass(frozen=True)
class TrackingUnavailable:
    """No usable tracking data (not found yet, or unreadable)."""
    reason: str
    error: Optional[ShippingError] = None

    ok = False


TrackingResult = Union[TrackingSnapshot, TrackingUnavailable]


def _to_text(body: Union[bytes, str, None]) -> str:
    if body is None:
        return ""
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def _clean(value: Optional[str]) -> Optional[str]:
    """Strip whitespace; empty strings become None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def normalize_markup(body: str) -> str:
    """Replace stray <br> tags with a space so the XML parser accepts the body."""
    return _BR_TAG.sub(" ", body)


def load_xml(body: Union[bytes, str]) -> ET.Element:
    """Parse a Venipak XML body. Raises ET.ParseError on malformed input."""
    return ET.fromstring(normalize_markup(_to_text(body)).strip())


def _error_text(root: ET.Element) -> str:
    messages = []
    for error in root.iter("error"):
        text = error.findtext("text")
        if text is None:
            text = "".join(error.itertext())
        text = _clean(text)
        if text:
            messages.append(text)
    return "; ".join(messages) or "Unknown error"


def _unrecognized(root: ET.Element) -> ShipmentAccepted:
    """
    Reply is neither type="ok" nor type="error".

    Treated as success without extracted fields, matching the carrier's
    historical behaviour. Logged so operators can check the shipment.
    """
    logger.warning(f"Unrecognized Venipak import reply <{root.tag} type={root.get('type')!r}>; assuming success")
    return ShipmentAccepted(recognized=False)


def parse_create_response(body: Union[bytes, str, None]) -> CreateShipmentResult:
    """Decode a shipment import reply."""
    text = _to_text(body)

    try:
        root = load_xml(text)
    except ET.ParseError as e:
        error = CarrierParseError(f"Failed to parse XML response: {e}", body=text)
        return ShipmentRejected(reason=error.message, error=error, detail=text[:500])

    response_type = (root.get("type") or "").strip().lower()

    if response_type == "error":
        reason = _error_text(root)
        return ShipmentRejected(
            reason=reason,
            error=CarrierRejectedError(reason, details={"body": text[:500]}),
            detail=text[:500],
        )

    if response_type == "ok":
        node = root.find("text")
        if node is None:
            return ShipmentAccepted()
        return ShipmentAccepted(
            pack_no=_clean(node.text),
            external_tracking=_clean(node.get("tracking")),
            carrier_code=_clean(node.get("carrier")),
            shipment_id=_clean(node.get("shipment")),
        )

    return _unrecognized(root)


def _parse_event_time(value: Any) -> Optional[datetime]:
    """Venipak dates are "YYYY-MM-DD HH:MM:SS"; naive values are taken as UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_tracking_response(body: Union[bytes, str, None]) -> TrackingResult:
    """
    Decode a tracking reply.

    The carrier returns a JSON array (newest event first), a single object,
    or an empty body when the parcel is not in its system yet.
    """
    text = _to_text(body).strip()
    if not text:
        return TrackingUnavailable(reason="No tracking data found")

    try:
        data = json.loads(text)
    except ValueError as e:
        error = CarrierParseError(f"Tracking response is not JSON: {e}", body=text)
        return TrackingUnavailable(reason=error.message, error=error)

    if not data:
        return TrackingUnavailable(reason="No tracking data found")

    if isinstance(data, list):
        events = [event for event in data if isinstance(event, dict)]
        latest = events[0] if events else None
    elif isinstance(data, dict):
        events = [data]
        latest = data
    else:
        latest = None
        events = []

    if latest is None:
        error = CarrierParseError("Unexpected tracking payload shape", body=text)
        return TrackingUnavailable(reason=error.message, error=error)

    status = latest.get("status")
    date = latest.get("date")
    return TrackingSnapshot(
        status=_clean(str(status)) if status is not None else None,
        date=date,
        occurred_at=_parse_event_time(date),
        events=events,
    )


def is_pdf(body: Optional[bytes]) -> bool:
    return bool(body) and body.startswith(PDF_MAGIC)
