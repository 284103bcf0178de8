"""
Shipping Routes

Public checkout endpoints (quotes, pickup points) and operator endpoints for
Venipak shipments. Operator routes are mounted behind the host
application's admin authentication.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.order import Order
from app.modules.shipping.reconciler import shipping_state_for
from app.schemas.shipping import (
    CacheClearResponse,
    LabelResponse,
    PickupPointsResponse,
    ShipmentCreateResponse,
    ShipmentRecordResponse,
    ShippingQuoteResponse,
    TrackingRefreshResponse,
)
from app.services.shipping_service import ShippingService, get_shipping_service

router = APIRouter(prefix="/shipping", tags=["shipping"])
admin_router = APIRouter(prefix="/admin/orders", tags=["admin-shipping"])


async def get_service(db: AsyncSession = Depends(get_db)) -> ShippingService:
    return await get_shipping_service(db)


async def _load_order(service: ShippingService, order_number: str) -> Order:
    order = await service.get_order(order_number)
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


def _shipment_record(service: ShippingService, order: Order) -> ShipmentRecordResponse:
    record = ShipmentRecordResponse.model_validate(order)
    record.tracking_url = service.tracking_url(order)
    return record


# ==================== Checkout ====================

@router.get("/quote", response_model=ShippingQuoteResponse)
async def shipping_quote(
    country: str = Query(..., min_length=1, description="Country name or ISO code"),
    service: ShippingService = Depends(get_service),
):
    """Flat Venipak fee for a destination."""
    destination = service.quote(country)
    return ShippingQuoteResponse(
        country=country,
        country_code=destination.code,
        shipment_class=destination.shipment_class.value,
        fee=destination.fee,
        defaulted=destination.defaulted,
    )


@router.get("/pickup-points", response_model=PickupPointsResponse)
async def pickup_points(
    country: str = Query("LT", min_length=2, max_length=2),
    service: ShippingService = Depends(get_service),
):
    """Venipak pickup points for a country, sorted by city and name."""
    points = await service.get_pickup_points(country)
    return PickupPointsResponse(country=country.upper(), count=len(points), data=points)


@router.post("/pickup-points/cache/clear", response_model=CacheClearResponse)
async def clear_pickup_points_cache(service: ShippingService = Depends(get_service)):
    return CacheClearResponse(cleared=service.clear_pickup_points_cache())


# ==================== Operator ====================

@admin_router.get("/{order_number}/shipment", response_model=ShipmentRecordResponse)
async def get_shipment(order_number: str, service: ShippingService = Depends(get_service)):
    order = await _load_order(service, order_number)
    return _shipment_record(service, order)


@admin_router.post("/{order_number}/shipment", response_model=ShipmentCreateResponse)
async def create_shipment(order_number: str, service: ShippingService = Depends(get_service)):
    """
    Create the Venipak shipment ("mark as shipped").

    A carrier refusal blocks the action with the carrier's own error text.
    """
    order = await _load_order(service, order_number)
    outcome = await service.create_shipment(order)

    if not outcome.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=outcome.error_message)

    return ShipmentCreateResponse(
        success=True,
        order_number=outcome.order_number,
        pack_no=outcome.pack_no,
        tracking_number=outcome.tracking_number,
        manifest_id=outcome.manifest_id,
        label_path=outcome.label_path,
        label_pending=outcome.label_pending,
        already_shipped=outcome.already_shipped,
    )


@admin_router.post("/{order_number}/label", response_model=LabelResponse)
async def refetch_label(order_number: str, service: ShippingService = Depends(get_service)):
    """Retry the label download for a shipment whose label is pending."""
    order = await _load_order(service, order_number)
    if not order.pack_no:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order has no Venipak shipment")

    outcome = await service.fetch_and_store_label(order)
    if not outcome.success:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=outcome.error.message)

    return LabelResponse(success=True, label_path=outcome.label_path)


@admin_router.get("/{order_number}/label")
async def download_label(order_number: str, service: ShippingService = Depends(get_service)):
    """
    Download the label PDF.

    Always fetched fresh so global shipments include the secondary
    carrier's pages. The copy in storage is refreshed on the way.
    """
    order = await _load_order(service, order_number)
    if not order.pack_no:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order has no Venipak shipment")

    outcome = await service.fetch_and_store_label(order)
    if not outcome.pdf:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=outcome.error.message)

    return Response(
        content=outcome.pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="venipak-label-{order.order_number}.pdf"'},
    )


@admin_router.post("/{order_number}/tracking", response_model=TrackingRefreshResponse)
async def refresh_tracking(order_number: str, service: ShippingService = Depends(get_service)):
    """Refresh tracking now; failures keep the last known status."""
    order = await _load_order(service, order_number)
    if not order.pack_no:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order has no Venipak shipment")

    outcome = await service.update_order_tracking(order)
    return TrackingRefreshResponse(
        success=outcome.success,
        status=outcome.status,
        order_status=order.status,
        shipping_state=shipping_state_for(order).value,
        updated_fields=outcome.reconcile.updated_fields if outcome.reconcile else [],
        error=outcome.error.message if outcome.error else None,
    )
