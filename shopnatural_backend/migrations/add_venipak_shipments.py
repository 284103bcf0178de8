"""
Migration: Venipak shipment columns and pack number claims

Adds the carrier shipment record columns to orders and creates the
pack_number_claims table used to issue pack numbers without collisions.
Safe to run more than once.
"""
import asyncio
import logging
import os
import sys

from sqlalchemy import text

# Ensure app modules are importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.database import AsyncSessionLocal  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ORDER_COLUMNS = (
    ("pack_no", "VARCHAR(32) UNIQUE"),
    ("carrier_tracking_number", "VARCHAR(100)"),
    ("manifest_id", "VARCHAR(32)"),
    ("label_path", "VARCHAR(255)"),
    ("shipping_status", "VARCHAR(255)"),
    ("shipping_status_updated_at", "TIMESTAMP WITH TIME ZONE"),
    ("shipping_created_at", "TIMESTAMP WITH TIME ZONE"),
    ("shipping_delivered_at", "TIMESTAMP WITH TIME ZONE"),
    ("secondary_carrier_code", "VARCHAR(50)"),
    ("secondary_carrier_tracking", "VARCHAR(100)"),
    ("carrier_shipment_id", "VARCHAR(100)"),
    ("shipping_error", "TEXT"),
    ("pickup_point", "JSONB"),
)


async def add_order_columns(db) -> None:
    for name, column_type in ORDER_COLUMNS:
        logger.info(f"Adding orders.{name}")
        await db.execute(text(f"ALTER TABLE orders ADD COLUMN IF NOT EXISTS {name} {column_type}"))

    await db.execute(text(
        "CREATE INDEX IF NOT EXISTS ix_orders_shipping_delivered_at ON orders(shipping_delivered_at)"
    ))


async def create_pack_number_claims(db) -> None:
    logger.info("Creating pack_number_claims table")
    await db.execute(text("""
        CREATE TABLE IF NOT EXISTS pack_number_claims (
            id SERIAL PRIMARY KEY,
            pack_no VARCHAR(32) NOT NULL UNIQUE,
            account_id VARCHAR(20) NOT NULL,
            order_number VARCHAR(32) NOT NULL,
            claimed_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
            confirmed_at TIMESTAMP WITH TIME ZONE
        )
    """))
    await db.execute(text(
        "CREATE INDEX IF NOT EXISTS ix_pack_number_claims_order_number ON pack_number_claims(order_number)"
    ))


async def migrate() -> None:
    async with AsyncSessionLocal() as db:
        try:
            await add_order_columns(db)
            await create_pack_number_claims(db)
            await db.commit()
            logger.info("Venipak shipment schema ready")
        except Exception:
            await db.rollback()
            logger.exception("Venipak shipment migration failed")
            raise


async def main():
    logger.info("Starting migration: Venipak shipments")
    await migrate()
    logger.info("Migration complete")


if __name__ == "__main__":
    asyncio.run(main())
