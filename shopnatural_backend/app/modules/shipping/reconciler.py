"""
Tracking status reconciler

Maps Venipak tracking status text onto the order's shipping state:

    not_shipped -> at_sender -> in_transit -> delivered

and advances the order lifecycle where the carrier status allows it:
- delivered (known list, or other text containing "deliver"):
  shipping_delivered_at set, order -> completed unless already final
- in transit vocabulary while the order is processing: order -> shipped
- anything else: status text recorded, lifecycle untouched

Applying the same snapshot twice is a no-op. Timestamps are only written
when unset, the order never leaves completed/cancelled, and a delivered
shipment ignores any later non-delivered snapshot.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from app.models.order import FINAL_ORDER_STATUSES, SHIPPING_STATUS_MAX_LENGTH, OrderStatus
from app.modules.shipping.responses import TrackingSnapshot

logger = logging.getLogger(__name__)


class ShippingState(str, enum.Enum):
    NOT_SHIPPED = "not_shipped"
    AT_SENDER = "at_sender"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"


# Shipping status written when the carrier accepts a shipment
AT_SENDER_STATUS = "At sender"

# Venipak localizes status text per destination country
DELIVERED_STATUSES = frozenset({
    "Delivered",
    "Pristatyta",          # LT
    "Piegādāts",           # LV
    "Kohale toimetatud",   # EE
})

IN_TRANSIT_MARKERS = (
    "in transit",
    "out for delivery",
    "at terminal",
    "sorting",
)


def is_delivered_status(status: Optional[str]) -> bool:
    return classify_carrier_status(status) is ShippingState.DELIVERED


def is_in_transit_status(status: Optional[str]) -> bool:
    if not status:
        return False
    lowered = status.lower()
    return any(marker in lowered for marker in IN_TRANSIT_MARKERS)


def classify_carrier_status(status: Optional[str]) -> ShippingState:
    """
    Classify carrier status text.

    Order of checks: exact delivered text, in-transit vocabulary, then the
    "deliver" substring. "Out for delivery" contains "deliver" but is still
    in transit.
    """
    if not status:
        return ShippingState.AT_SENDER
    if status in DELIVERED_STATUSES:
        return ShippingState.DELIVERED
    if is_in_transit_status(status):
        return ShippingState.IN_TRANSIT
    if "deliver" in status.lower():
        return ShippingState.DELIVERED
    return ShippingState.AT_SENDER


def shipping_state_for(order) -> ShippingState:
    """Current shipping state derived from the order's shipment record."""
    if not order.pack_no:
        return ShippingState.NOT_SHIPPED
    if order.shipping_delivered_at is not None:
        return ShippingState.DELIVERED
    if order.status == OrderStatus.SHIPPED.value:
        return ShippingState.IN_TRANSIT
    return classify_carrier_status(order.shipping_status)


@dataclass
class ReconcileResult:
    """What a reconciliation pass did to the order."""
    state: ShippingState
    order_status: str
    updated_fields: List[str] = field(default_factory=list)
    # True when the snapshot was ignored (delivered orders never regress)
    ignored: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.updated_fields)


def _set(order, name: str, value, updated: List[str]) -> None:
    if getattr(order, name) != value:
        setattr(order, name, value)
        updated.append(name)


def reconcile(order, snapshot: TrackingSnapshot, now: Optional[datetime] = None) -> ReconcileResult:
    """
    Apply one tracking snapshot to an order in place.

    Args:
        order: Order with a pack number
        snapshot: Latest carrier tracking event
        now: Clock override for tests

    Returns:
        ReconcileResult listing the fields that changed
    """
    now = now or datetime.now(timezone.utc)
    status = snapshot.status
    if status is not None:
        status = status[:SHIPPING_STATUS_MAX_LENGTH]
    state = classify_carrier_status(status)
    updated: List[str] = []

    if order.shipping_delivered_at is not None and state is not ShippingState.DELIVERED:
        logger.info(
            f"Ignoring tracking status {status!r} for delivered order {order.order_number}"
        )
        return ReconcileResult(
            state=ShippingState.DELIVERED,
            order_status=order.status,
            ignored=True,
        )

    # An event without status text keeps the last known status
    if status is not None:
        if status != order.shipping_status:
            _set(order, "shipping_status", status, updated)
            _set(order, "shipping_status_updated_at", snapshot.occurred_at or now, updated)
        elif snapshot.occurred_at is not None:
            _set(order, "shipping_status_updated_at", snapshot.occurred_at, updated)

    if state is ShippingState.DELIVERED:
        if order.shipping_delivered_at is None:
            _set(order, "shipping_delivered_at", now, updated)

        if order.status not in FINAL_ORDER_STATUSES:
            _set(order, "status", OrderStatus.COMPLETED.value, updated)
            if order.delivered_at is None:
                _set(order, "delivered_at", now, updated)

    elif state is ShippingState.IN_TRANSIT:
        if order.status == OrderStatus.PROCESSING.value:
            _set(order, "status", OrderStatus.SHIPPED.value, updated)
            if order.shipped_at is None:
                _set(order, "shipped_at", now, updated)

    if updated:
        logger.info(
            f"Tracking reconciled for {order.order_number} ({order.pack_no}): "
            f"status={status!r} state={state.value} fields={updated}"
        )

    return ReconcileResult(
        state=shipping_state_for(order) if order.pack_no else state,
        order_status=order.status,
        updated_fields=updated,
    )
