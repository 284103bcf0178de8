"""
Order models

Only the columns the carrier integration reads or writes are modelled here;
catalog, cart and payment columns live with their own modules.

Shipment record columns (pack_no .. carrier_shipment_id) are written by the
shipping service and the tracking reconciler and are never deleted: they are
part of the order's audit trail.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, JSON, Numeric, Index
from sqlalchemy.orm import relationship

from app.core.database import Base


class OrderStatus(str, enum.Enum):
    """Order lifecycle status, owned by the order module."""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Terminal lifecycle states - tracking never moves an order out of these
FINAL_ORDER_STATUSES = (OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value)

# Carrier status text longer than this is cut before it is stored
SHIPPING_STATUS_MAX_LENGTH = 255


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)

    # Order details
    order_number = Column(String(32), unique=True, index=True, nullable=False)  # ORD-XXXXXXXX
    status = Column(String(20), default=OrderStatus.PENDING.value, index=True)
    customer_email = Column(String(255))

    # Pricing
    total = Column(Numeric(12, 2), nullable=False)
    shipping_cost = Column(Numeric(12, 2), default=0)

    # Shipping destination
    shipping_name = Column(String(255))
    shipping_country = Column(String(100))  # free text or ISO alpha-2
    shipping_address = Column(String(255))
    shipping_city = Column(String(100))
    shipping_postal_code = Column(String(20))
    shipping_phone = Column(String(50))
    shipping_method = Column(String(50))
    # {code, name, address, city, postal_code, country}; code is the carrier id
    pickup_point = Column(JSON, nullable=True)

    # Carrier shipment record
    pack_no = Column(String(32), unique=True, nullable=True)  # V<account>E<7 digits>
    carrier_tracking_number = Column(String(100), nullable=True)
    manifest_id = Column(String(32), nullable=True)
    label_path = Column(String(255), nullable=True)
    shipping_status = Column(String(SHIPPING_STATUS_MAX_LENGTH), nullable=True)
    shipping_status_updated_at = Column(DateTime(timezone=True), nullable=True)
    shipping_created_at = Column(DateTime(timezone=True), nullable=True)
    shipping_delivered_at = Column(DateTime(timezone=True), nullable=True)
    # Last shipment creation failure, cleared once a shipment exists
    shipping_error = Column(Text, nullable=True)

    # Secondary carrier (global shipments handed over to TNT/GLS)
    secondary_carrier_code = Column(String(50), nullable=True)
    secondary_carrier_tracking = Column(String(100), nullable=True)
    carrier_shipment_id = Column(String(100), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    shipped_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))

    # Relationships
    items = relationship("OrderItem", back_populates="order")

    __table_args__ = (
        Index("ix_orders_shipping_delivered_at", "shipping_delivered_at"),
    )

    @property
    def total_quantity(self) -> int:
        """Number of ordered units across all lines."""
        return sum(item.quantity or 0 for item in self.items)

    def __repr__(self):
        return f"<Order(number={self.order_number}, status={self.status}, pack_no={self.pack_no})>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    # Snapshot of product at time of order
    product_name = Column(String(500), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
