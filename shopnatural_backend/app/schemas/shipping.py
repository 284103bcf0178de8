"""
Shipping schemas
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class ShippingQuoteResponse(BaseModel):
    country: str
    country_code: str
    shipment_class: str
    fee: Decimal
    # Country was not recognised and the home country was assumed
    defaulted: bool = False


class PickupPointsResponse(BaseModel):
    success: bool = True
    country: str
    count: int
    data: List[Dict[str, Any]]


class CacheClearResponse(BaseModel):
    success: bool = True
    cleared: int
    message: str = "Venipak pickup points cache cleared"


class ShipmentRecordResponse(BaseModel):
    """Shipment fields of an order, as stored."""
    model_config = ConfigDict(from_attributes=True)

    order_number: str
    status: str
    pack_no: Optional[str] = None
    carrier_tracking_number: Optional[str] = None
    manifest_id: Optional[str] = None
    label_path: Optional[str] = None
    shipping_status: Optional[str] = None
    shipping_status_updated_at: Optional[datetime] = None
    shipping_created_at: Optional[datetime] = None
    shipping_delivered_at: Optional[datetime] = None
    secondary_carrier_code: Optional[str] = None
    secondary_carrier_tracking: Optional[str] = None
    carrier_shipment_id: Optional[str] = None
    # Why the last shipment attempt failed, until one succeeds
    shipping_error: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    tracking_url: Optional[str] = None


class ShipmentCreateResponse(BaseModel):
    success: bool
    order_number: str
    pack_no: Optional[str] = None
    tracking_number: Optional[str] = None
    manifest_id: Optional[str] = None
    label_path: Optional[str] = None
    label_pending: bool = False
    already_shipped: bool = False


class LabelResponse(BaseModel):
    success: bool
    label_path: Optional[str] = None
    error: Optional[str] = None


class TrackingRefreshResponse(BaseModel):
    success: bool
    status: Optional[str] = None
    order_status: Optional[str] = None
    shipping_state: Optional[str] = None
    updated_fields: List[str] = []
    error: Optional[str] = None
