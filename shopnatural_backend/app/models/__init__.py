from app.models.order import Order, OrderItem, OrderStatus
from app.models.pack_number import PackNumberClaim

__all__ = [
    "Order",
    "OrderItem",
    "OrderStatus",
    "PackNumberClaim",
]
