"""
Pack number claims

Every Venipak pack number handed out is recorded here inside the same
serializable transaction that computed it. The unique constraint on
pack_no is the cross-process guard against double issuance; confirmed_at
is set once the carrier accepted a shipment under that number.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Index

from app.core.database import Base


class PackNumberClaim(Base):
    __tablename__ = "pack_number_claims"
    __table_args__ = (
        Index("ix_pack_number_claims_order_number", "order_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    pack_no = Column(String(32), unique=True, nullable=False)
    account_id = Column(String(20), nullable=False)
    order_number = Column(String(32), nullable=False)
    claimed_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<PackNumberClaim(pack_no={self.pack_no}, order={self.order_number})>"
