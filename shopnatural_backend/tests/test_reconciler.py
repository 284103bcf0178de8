"""
Tests for mapping carrier tracking status onto the order lifecycle.
"""
from datetime import datetime, timedelta, timezone

import pytest

from app.modules.shipping.reconciler import (
    ShippingState,
    classify_carrier_status,
    is_delivered_status,
    is_in_transit_status,
    reconcile,
    shipping_state_for,
)
from app.modules.shipping.responses import TrackingSnapshot

PACK_NO = "V10281E1000050"
NOW = datetime(2025, 1, 7, 15, 0, tzinfo=timezone.utc)
EVENT_AT = datetime(2025, 1, 7, 14, 5, tzinfo=timezone.utc)


@pytest.fixture
def shipped_order(make_order):
    """Order the carrier has accepted but not yet scanned."""
    return make_order(
        pack_no=PACK_NO,
        shipping_status="At sender",
        shipping_created_at=NOW - timedelta(days=1),
        shipping_status_updated_at=NOW - timedelta(days=1),
    )


class TestClassification:

    @pytest.mark.parametrize("status", ["Delivered", "Pristatyta", "Piegādāts", "Kohale toimetatud"])
    def test_localized_delivered(self, status):
        assert classify_carrier_status(status) is ShippingState.DELIVERED
        assert is_delivered_status(status)

    def test_delivered_substring(self):
        assert classify_carrier_status("Parcel delivered to recipient") is ShippingState.DELIVERED

    @pytest.mark.parametrize("status", ["In transit", "Out for delivery", "At terminal Kaunas", "Sorting"])
    def test_in_transit(self, status):
        assert classify_carrier_status(status) is ShippingState.IN_TRANSIT
        assert is_in_transit_status(status)

    def test_out_for_delivery_is_not_delivered(self):
        assert not is_delivered_status("Out for delivery")

    def test_unknown_and_empty(self):
        assert classify_carrier_status("Label printed") is ShippingState.AT_SENDER
        assert classify_carrier_status(None) is ShippingState.AT_SENDER
        assert not is_in_transit_status("")

    def test_state_for_order(self, make_order, shipped_order):
        assert shipping_state_for(make_order()) is ShippingState.NOT_SHIPPED
        assert shipping_state_for(shipped_order) is ShippingState.AT_SENDER

        shipped_order.status = "shipped"
        assert shipping_state_for(shipped_order) is ShippingState.IN_TRANSIT

        shipped_order.shipping_delivered_at = NOW
        assert shipping_state_for(shipped_order) is ShippingState.DELIVERED


class TestInTransit:

    def test_out_for_delivery_ships_processing_order(self, shipped_order):
        result = reconcile(shipped_order, TrackingSnapshot(status="Out for delivery", occurred_at=EVENT_AT), now=NOW)

        assert result.state is ShippingState.IN_TRANSIT
        assert shipped_order.status == "shipped"
        assert shipped_order.shipped_at == NOW
        assert shipped_order.shipping_status == "Out for delivery"
        assert shipped_order.shipping_status_updated_at == EVENT_AT
        assert shipped_order.shipping_delivered_at is None
        assert shipped_order.delivered_at is None
        assert result.order_status == "shipped"

    def test_shipped_at_is_set_once(self, shipped_order):
        reconcile(shipped_order, TrackingSnapshot(status="In transit"), now=NOW)
        later = NOW + timedelta(hours=3)
        result = reconcile(shipped_order, TrackingSnapshot(status="At terminal Riga"), now=later)

        assert shipped_order.shipped_at == NOW
        assert shipped_order.shipping_status == "At terminal Riga"
        assert shipped_order.shipping_status_updated_at == later
        assert "status" not in result.updated_fields

    def test_cancelled_order_is_not_shipped(self, shipped_order):
        shipped_order.status = "cancelled"
        reconcile(shipped_order, TrackingSnapshot(status="In transit"), now=NOW)

        assert shipped_order.status == "cancelled"
        assert shipped_order.shipped_at is None
        assert shipped_order.shipping_status == "In transit"


class TestDelivered:

    def test_delivered_completes_order(self, shipped_order):
        result = reconcile(shipped_order, TrackingSnapshot(status="Delivered", occurred_at=EVENT_AT), now=NOW)

        assert result.state is ShippingState.DELIVERED
        assert shipped_order.status == "completed"
        assert shipped_order.shipping_delivered_at == NOW
        assert shipped_order.delivered_at == NOW
        assert shipped_order.shipping_status_updated_at == EVENT_AT

    def test_applying_twice_is_a_no_op(self, shipped_order):
        snapshot = TrackingSnapshot(status="Delivered", occurred_at=EVENT_AT)
        reconcile(shipped_order, snapshot, now=NOW)

        result = reconcile(shipped_order, snapshot, now=NOW + timedelta(hours=2))

        assert not result.changed
        assert shipped_order.shipping_delivered_at == NOW
        assert shipped_order.delivered_at == NOW

    def test_localized_text(self, shipped_order):
        reconcile(shipped_order, TrackingSnapshot(status="Pristatyta"), now=NOW)
        assert shipped_order.status == "completed"

    def test_cancelled_order_stays_cancelled(self, shipped_order):
        shipped_order.status = "cancelled"
        result = reconcile(shipped_order, TrackingSnapshot(status="Delivered"), now=NOW)

        assert shipped_order.status == "cancelled"
        assert shipped_order.shipping_delivered_at == NOW
        assert shipped_order.delivered_at is None
        assert result.order_status == "cancelled"

    def test_existing_delivered_at_is_kept(self, shipped_order):
        earlier = NOW - timedelta(hours=5)
        shipped_order.status = "shipped"
        shipped_order.delivered_at = earlier

        reconcile(shipped_order, TrackingSnapshot(status="Delivered"), now=NOW)

        assert shipped_order.status == "completed"
        assert shipped_order.delivered_at == earlier

    def test_later_non_delivered_status_is_ignored(self, shipped_order):
        reconcile(shipped_order, TrackingSnapshot(status="Delivered"), now=NOW)

        result = reconcile(shipped_order, TrackingSnapshot(status="In transit"), now=NOW + timedelta(hours=1))

        assert result.ignored
        assert not result.changed
        assert result.state is ShippingState.DELIVERED
        assert shipped_order.shipping_status == "Delivered"
        assert shipped_order.status == "completed"


class TestUnknownStatus:

    def test_status_recorded_only(self, shipped_order):
        result = reconcile(shipped_order, TrackingSnapshot(status="Customs hold"), now=NOW)

        assert result.updated_fields == ["shipping_status", "shipping_status_updated_at"]
        assert shipped_order.shipping_status == "Customs hold"
        assert shipped_order.shipping_status_updated_at == NOW
        assert shipped_order.status == "processing"

    def test_same_status_without_event_time_keeps_timestamp(self, shipped_order):
        before = shipped_order.shipping_status_updated_at
        result = reconcile(shipped_order, TrackingSnapshot(status="At sender"), now=NOW)

        assert not result.changed
        assert shipped_order.shipping_status_updated_at == before

    def test_same_status_with_new_event_time(self, shipped_order):
        result = reconcile(shipped_order, TrackingSnapshot(status="At sender", occurred_at=EVENT_AT), now=NOW)

        assert result.updated_fields == ["shipping_status_updated_at"]
        assert shipped_order.shipping_status_updated_at == EVENT_AT

    def test_event_without_status_keeps_last_known(self, shipped_order):
        before = shipped_order.shipping_status_updated_at
        result = reconcile(shipped_order, TrackingSnapshot(status=None, occurred_at=EVENT_AT), now=NOW)

        assert not result.changed
        assert shipped_order.shipping_status == "At sender"
        assert shipped_order.shipping_status_updated_at == before
        assert shipped_order.status == "processing"

    def test_long_status_is_cut_to_column_length(self, shipped_order):
        long_status = "Customs hold: " + "x" * 400

        reconcile(shipped_order, TrackingSnapshot(status=long_status), now=NOW)

        assert shipped_order.shipping_status == long_status[:255]
        # Re-applying the same long text is recognised as unchanged
        assert not reconcile(shipped_order, TrackingSnapshot(status=long_status), now=NOW).changed
