"""
Shipping Service for the Venipak integration

High-level service that coordinates:
- Destination routing and checkout quotes
- Pack number claims and shipment creation
- Label download and storage
- Tracking updates
- Pickup point lists

Public methods never raise: failures come back as outcome objects carrying
a ShippingError, and the order is only mutated once the carrier confirmed.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import Settings, settings as app_settings
from app.core.exceptions import (
    CarrierNotConfiguredError,
    CarrierParseError,
    DataQualityWarning,
    PackNumberUnavailableError,
    ShippingError,
)
from app.core.ttl_cache import TTLCache, pickup_points_cache
from app.models.order import Order
from app.modules.shipping.carriers import CarrierFactory
from app.modules.shipping.carriers.base import BaseCarrier, CarrierCode
from app.modules.shipping.carriers.venipak import VenipakCredentials
from app.modules.shipping.destinations import Destination, classify
from app.modules.shipping.pack_numbers import PackNumberGenerator, manifest_title
from app.modules.shipping.reconciler import AT_SENDER_STATUS, ReconcileResult, reconcile
from app.modules.shipping.responses import parse_create_response, parse_tracking_response
from app.modules.shipping.xml_builder import build_shipment_xml, is_pickup_point_delivery, missing_pickup_code
from app.services.storage import StorageService, label_key

logger = logging.getLogger(__name__)

# Countries whose pickup point lists are cached (Venipak operates lockers only here)
PICKUP_POINT_COUNTRIES = ("LT", "LV", "EE")


@dataclass
class ShipmentOutcome:
    """Result of create_shipment."""
    success: bool
    order_number: str
    pack_no: Optional[str] = None
    tracking_number: Optional[str] = None
    manifest_id: Optional[str] = None
    label_path: Optional[str] = None
    # Shipment exists at the carrier but the label still has to be fetched
    label_pending: bool = False
    already_shipped: bool = False
    error: Optional[ShippingError] = None

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None


@dataclass
class LabelOutcome:
    success: bool
    label_path: Optional[str] = None
    # PDF as returned by the carrier, kept even when storing it failed
    pdf: Optional[bytes] = None
    error: Optional[ShippingError] = None


@dataclass
class TrackingOutcome:
    success: bool
    status: Optional[str] = None
    reconcile: Optional[ReconcileResult] = None
    error: Optional[ShippingError] = None

    @property
    def changed(self) -> bool:
        return bool(self.reconcile and self.reconcile.changed)


class ShippingService:
    """
    Central service for all Venipak shipping operations.

    Args:
        db: Request/job session; order changes are flushed, the owner commits
        carrier: Carrier adapter (VenipakClient)
        pack_numbers: Process-wide PackNumberGenerator
        label_store: StorageService for label PDFs
        settings: Settings (store name, label prefix, pickup code policy)
        pickup_cache: TTLCache for pickup point lists
    """

    def __init__(
        self,
        db: AsyncSession,
        carrier: BaseCarrier,
        pack_numbers: PackNumberGenerator,
        label_store: StorageService,
        settings: Settings = app_settings,
        pickup_cache: TTLCache = pickup_points_cache,
    ):
        self.db = db
        self.carrier = carrier
        self.pack_numbers = pack_numbers
        self.label_store = label_store
        self.settings = settings
        self.pickup_cache = pickup_cache

    async def close(self):
        """Clean up resources."""
        await self.carrier.close()

    # ==================== Orders and quotes ====================

    async def get_order(self, order_number: str) -> Optional[Order]:
        result = await self.db.execute(
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.order_number == order_number)
        )
        return result.scalar_one_or_none()

    def quote(self, country: Optional[str]) -> Destination:
        """Checkout shipping fee; same table used when the shipment is created."""
        return classify(country)

    # ==================== Shipment creation ====================

    def _failed(self, order: Order, error: ShippingError, pack_no: Optional[str] = None) -> ShipmentOutcome:
        logger.error(
            f"Venipak shipment failed for {order.order_number}: [{error.code}] {error.message}"
        )
        return ShipmentOutcome(
            success=False,
            order_number=order.order_number,
            pack_no=pack_no,
            error=error,
        )

    async def create_shipment(self, order: Order) -> ShipmentOutcome:
        """
        Create a Venipak shipment for an order and store its label.

        Orders that already carry a pack number are returned unchanged so a
        repeated operator click or job retry never creates a second parcel.

        Args:
            order: Order with items loaded

        Returns:
            ShipmentOutcome; on failure error.message is the carrier's text
        """
        if order.pack_no:
            logger.info(f"Order {order.order_number} already shipped as {order.pack_no}")
            return ShipmentOutcome(
                success=True,
                order_number=order.order_number,
                pack_no=order.pack_no,
                tracking_number=order.carrier_tracking_number,
                manifest_id=order.manifest_id,
                label_path=order.label_path,
                label_pending=not order.label_path,
                already_shipped=True,
            )

        if not self.carrier.is_configured:
            return self._failed(order, CarrierNotConfiguredError(
                "Venipak not configured. Missing username or password."
            ))

        destination = classify(order.shipping_country)
        pickup = is_pickup_point_delivery(order)

        if missing_pickup_code(order):
            warning = DataQualityWarning(
                "Pickup point has no Venipak code",
                details={"order_number": order.order_number, "pickup_point": order.pickup_point},
            )
            if self.settings.VENIPAK_REQUIRE_PICKUP_CODE:
                return self._failed(order, warning)
            logger.warning(
                f"Submitting {order.order_number} with empty company_code: {warning.to_dict()}"
            )

        try:
            pack_no = await self.pack_numbers.next_pack_number(order.order_number)
        except PackNumberUnavailableError as e:
            return self._failed(order, e)
        except SQLAlchemyError as e:
            return self._failed(order, PackNumberUnavailableError(
                f"Pack number claim failed: {e.__class__.__name__}",
                details={"order_number": order.order_number},
            ))

        manifest = manifest_title(self.pack_numbers.account_id, tz=ZoneInfo(self.settings.STORE_TIMEZONE))

        logger.info(
            f"Creating Venipak shipment: order={order.order_number} pack_no={pack_no} "
            f"manifest={manifest} country={order.shipping_country!r} code={destination.code} "
            f"class={destination.shipment_class.value} pickup_point={pickup} "
            f"method={order.shipping_method}"
        )

        xml = build_shipment_xml(
            order,
            pack_no,
            manifest,
            store_name=self.settings.APP_NAME,
            goods_description=self.settings.VENIPAK_GOODS_DESCRIPTION,
            destination=destination,
        )
        logger.debug(f"Venipak XML request: {xml}")

        response = await self.carrier.create_shipment(xml)
        if not response.ok:
            return self._failed(order, response.error, pack_no)

        parsed = parse_create_response(response.body)
        if not parsed.ok:
            return self._failed(order, parsed.error, pack_no)

        # Logged before touching the database: if persistence fails below,
        # this line is what lets an operator match the carrier's parcel.
        logger.info(
            f"Venipak accepted shipment: order={order.order_number} pack_no={pack_no} "
            f"external_tracking={parsed.external_tracking} carrier={parsed.carrier_code} "
            f"shipment_id={parsed.shipment_id} recognized={parsed.recognized}"
        )
        if parsed.pack_no and parsed.pack_no != pack_no:
            logger.warning(
                f"Venipak echoed pack number {parsed.pack_no} for {order.order_number}, expected {pack_no}"
            )

        now = datetime.now(timezone.utc)
        tracking_number = parsed.external_tracking or pack_no

        try:
            order.pack_no = pack_no
            order.carrier_tracking_number = tracking_number
            order.manifest_id = manifest
            order.shipping_created_at = now
            order.shipping_status = AT_SENDER_STATUS
            order.shipping_status_updated_at = now
            order.secondary_carrier_code = parsed.carrier_code
            order.secondary_carrier_tracking = parsed.external_tracking
            order.carrier_shipment_id = parsed.shipment_id
            order.shipping_error = None
            await self.pack_numbers.confirm_claim(self.db, pack_no)
            await self.db.flush()
        except SQLAlchemyError as e:
            return self._failed(order, ShippingError(
                f"Shipment {pack_no} accepted by Venipak but not saved: {e.__class__.__name__}",
                code="SHIPMENT_PERSIST_FAILED",
                severity="P0",
                details={"order_number": order.order_number, "pack_no": pack_no},
            ), pack_no)

        label = await self.fetch_and_store_label(order)

        logger.info(
            f"Venipak shipment created: order={order.order_number} pack_no={pack_no} "
            f"label_path={label.label_path}"
        )

        return ShipmentOutcome(
            success=True,
            order_number=order.order_number,
            pack_no=pack_no,
            tracking_number=tracking_number,
            manifest_id=manifest,
            label_path=label.label_path,
            label_pending=not label.success,
        )

    # ==================== Labels ====================

    async def fetch_and_store_label(self, order: Order) -> LabelOutcome:
        """Download the label PDF and store it; failures leave the shipment intact."""
        if not order.pack_no:
            return LabelOutcome(success=False, error=ShippingError(
                f"Order {order.order_number} has no pack number",
                code="NO_PACK_NUMBER",
            ))

        label = await self.carrier.fetch_label(order.pack_no)
        if not label.ok:
            logger.warning(
                f"Label pending for {order.order_number} ({order.pack_no}): {label.error.message}"
            )
            return LabelOutcome(success=False, error=label.error)

        key = label_key(self.settings.VENIPAK_LABEL_PREFIX, order.order_number, order.pack_no)
        upload = await self.label_store.put_object(key, label.pdf)
        if not upload.success:
            return LabelOutcome(success=False, pdf=label.pdf, error=ShippingError(
                upload.error or "Label upload failed",
                code="LABEL_STORE_FAILED",
                details={"key": key},
            ))

        try:
            order.label_path = key
            await self.db.flush()
        except SQLAlchemyError as e:
            return LabelOutcome(success=False, pdf=label.pdf, error=ShippingError(
                f"Label stored at {key} but not saved on order: {e.__class__.__name__}",
                code="LABEL_STORE_FAILED",
            ))

        logger.info(f"Venipak label stored: {key}")
        return LabelOutcome(success=True, label_path=key, pdf=label.pdf)

    # ==================== Tracking ====================

    async def update_order_tracking(self, order: Order) -> TrackingOutcome:
        """
        Refresh tracking for one order.

        Best effort: a failed fetch leaves the last known status untouched.
        """
        if not order.pack_no:
            return TrackingOutcome(success=False, error=ShippingError(
                f"Order {order.order_number} has no pack number",
                code="NO_PACK_NUMBER",
            ))

        response = await self.carrier.fetch_tracking(order.pack_no)
        if not response.ok:
            logger.debug(f"Tracking fetch failed for {order.pack_no}: {response.error.message}")
            return TrackingOutcome(success=False, error=response.error)

        snapshot = parse_tracking_response(response.body)
        if not snapshot.ok:
            logger.debug(f"No tracking for {order.pack_no}: {snapshot.reason}")
            return TrackingOutcome(success=False, error=snapshot.error)

        # A failed write only rolls back to the savepoint; the caller's
        # transaction stays usable for the other orders it tracks.
        try:
            async with self.db.begin_nested():
                result = reconcile(order, snapshot)
                if result.changed:
                    await self.db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Tracking update for {order.order_number} ({order.pack_no}) not saved: {e}")
            await self.db.refresh(order)
            return TrackingOutcome(success=False, status=snapshot.status, error=ShippingError(
                f"Tracking update for {order.pack_no} not saved: {e.__class__.__name__}",
                code="TRACKING_PERSIST_FAILED",
            ))

        if result.changed:
            logger.info(f"Venipak tracking updated: order={order.order_number} status={snapshot.status!r}")

        return TrackingOutcome(success=True, status=snapshot.status, reconcile=result)

    def tracking_url(self, order: Order) -> Optional[str]:
        return self.carrier.tracking_url(order.pack_no) if order.pack_no else None

    # ==================== Pickup points ====================

    async def _fetch_pickup_points(self, country: str) -> List[Dict[str, Any]]:
        response = await self.carrier.fetch_pickup_points()
        if not response.ok:
            return []

        try:
            points = json.loads(response.body or "[]")
        except ValueError as e:
            error = CarrierParseError(f"Pickup point list is not JSON: {e}", body=response.body)
            logger.error(f"Failed to fetch Venipak pickup points: {error.to_dict()}")
            return []

        filtered = [
            point for point in points
            if isinstance(point, dict) and str(point.get("country") or "").upper() == country
        ]
        filtered.sort(key=lambda p: (
            p.get("city") or "",
            p.get("display_name") or p.get("name") or "",
        ))
        return filtered

    async def get_pickup_points(self, country: str = "LT") -> List[Dict[str, Any]]:
        """Pickup points of one country, sorted by city then name, cached 24h."""
        country = (country or "LT").strip().upper()
        return await self.pickup_cache.get_or_fetch(country, self._fetch_pickup_points)

    def clear_pickup_points_cache(self) -> int:
        return self.pickup_cache.clear()


# ==================== Composition root ====================

_carrier: Optional[BaseCarrier] = None
_pack_numbers: Optional[PackNumberGenerator] = None
_storage: Optional[StorageService] = None


def get_venipak_carrier() -> BaseCarrier:
    """Process-wide Venipak client (one httpx connection pool)."""
    global _carrier
    if _carrier is None:
        _carrier = CarrierFactory.get_carrier(
            CarrierCode.VENIPAK,
            VenipakCredentials.from_settings(app_settings),
            timeout=app_settings.VENIPAK_TIMEOUT_SECONDS,
            label_format=app_settings.VENIPAK_LABEL_FORMAT,
        )
    return _carrier


def get_pack_number_generator() -> PackNumberGenerator:
    """Process-wide generator; its lock must be shared by every caller."""
    global _pack_numbers
    if _pack_numbers is None:
        from app.core.database import AsyncSessionLocal

        _pack_numbers = PackNumberGenerator(
            AsyncSessionLocal,
            account_id=app_settings.VENIPAK_ACCOUNT_ID,
            first_sequence_number=app_settings.VENIPAK_FIRST_PACK_NUMBER,
            max_attempts=app_settings.VENIPAK_PACK_NUMBER_ATTEMPTS,
        )
    return _pack_numbers


def get_label_storage() -> StorageService:
    global _storage
    if _storage is None:
        _storage = StorageService()
    return _storage


async def get_shipping_service(db: AsyncSession) -> ShippingService:
    """Factory function for ShippingService."""
    return ShippingService(
        db,
        carrier=get_venipak_carrier(),
        pack_numbers=get_pack_number_generator(),
        label_store=get_label_storage(),
    )


async def shutdown_shipping() -> None:
    """Close the shared carrier client on application shutdown."""
    global _carrier
    if _carrier is not None:
        await _carrier.close()
        _carrier = None
