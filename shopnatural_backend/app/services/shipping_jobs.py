"""
Background Jobs for the Venipak integration

Provides:
- Tracking sync: every 2 hours between 08:00 and 20:00, never overlapping,
  over orders with a pack number that are not delivered, completed or
  cancelled. Requests are spaced 200ms apart.
- Shipment creation with caller-side retries (3 tries, 60s backoff). The
  carrier client itself never retries.

Background jobs are idempotent: already shipped orders are skipped and
tracking reconciliation can be re-applied safely.
"""
import asyncio
import logging
from datetime import datetime, time
from typing import Any, Awaitable, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import Settings, settings as app_settings
from app.core.database import AsyncSessionLocal
from app.core.exceptions import OrderNotFoundError
from app.models.order import FINAL_ORDER_STATUSES, Order
from app.services.shipping_service import ShipmentOutcome, ShippingService, get_shipping_service

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[AsyncSession], Awaitable[ShippingService]]


def in_tracking_window(now: datetime, start_hour: int, end_hour: int) -> bool:
    """True between start_hour:00 and end_hour:00, both inclusive."""
    return time(start_hour) <= now.time() <= time(end_hour)


class ShippingJobRunner:
    """
    Manages and runs shipping background jobs.

    Args:
        session_factory: async_sessionmaker for job sessions
        service_factory: builds a ShippingService for a session
        settings: job intervals and window
        clock: returns the store's wall-clock time (tests pin it)
        sleep: awaitable sleep (tests replace it)
    """

    def __init__(
        self,
        session_factory=AsyncSessionLocal,
        service_factory: ServiceFactory = get_shipping_service,
        settings: Settings = app_settings,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.service_factory = service_factory
        self.settings = settings
        self.clock = clock or (lambda: datetime.now(ZoneInfo(settings.STORE_TIMEZONE)))
        self.sleep = sleep
        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._sync_lock = asyncio.Lock()

    async def start(self):
        """Start all background jobs."""
        if self._running:
            logger.warning("Shipping jobs already running")
            return

        self._running = True
        logger.info("Starting shipping background jobs")

        self._tasks = [
            asyncio.create_task(self._tracking_sync_loop()),
        ]

    async def stop(self):
        """Stop all background jobs."""
        self._running = False

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []

        logger.info("Shipping background jobs stopped")

    # ==================== Tracking Sync Job ====================

    def in_window(self) -> bool:
        return in_tracking_window(
            self.clock(),
            self.settings.SHIPPING_TRACKING_WINDOW_START_HOUR,
            self.settings.SHIPPING_TRACKING_WINDOW_END_HOUR,
        )

    async def _tracking_sync_loop(self):
        """Main loop for tracking sync job."""
        while self._running:
            if self.in_window():
                try:
                    await self.run_tracking_sync()
                except Exception as e:
                    logger.error(f"Tracking sync job error: {e}")
            else:
                logger.debug("Outside tracking window, skipping sync")

            await self.sleep(self.settings.SHIPPING_TRACKING_SYNC_INTERVAL_SECONDS)

    async def run_tracking_sync(self) -> Optional[Dict[str, int]]:
        """
        Run a single tracking sync cycle.

        Returns:
            {"total", "updated", "failed"} or None when a cycle was
            already running
        """
        if self._sync_lock.locked():
            logger.info("Tracking sync already running, skipping")
            return None

        async with self._sync_lock:
            async with self.session_factory() as db:
                orders = await self._get_orders_for_tracking(db)
                logger.info(f"Starting Venipak tracking update for {len(orders)} orders")

                service = await self.service_factory(db)
                updated = 0
                failed = 0

                for index, order in enumerate(orders):
                    try:
                        outcome = await service.update_order_tracking(order)
                    except SQLAlchemyError as e:
                        logger.error(f"Tracking update failed for {order.order_number}: {e}")
                        failed += 1
                    else:
                        if outcome.success:
                            updated += 1
                        else:
                            failed += 1

                    if index < len(orders) - 1:
                        await self.sleep(self.settings.SHIPPING_TRACKING_REQUEST_DELAY_SECONDS)

                await db.commit()

        summary = {"total": len(orders), "updated": updated, "failed": failed}
        logger.info(f"Tracking sync complete: {summary}")
        return summary

    async def _get_orders_for_tracking(self, db: AsyncSession) -> List[Order]:
        """Orders with a Venipak shipment still on its way."""
        result = await db.execute(
            select(Order)
            .where(
                Order.pack_no.isnot(None),
                Order.shipping_delivered_at.is_(None),
                Order.status.notin_(FINAL_ORDER_STATUSES),
            )
            .order_by(Order.shipping_status_updated_at.asc().nullsfirst())
        )
        return list(result.scalars().all())


# ==================== One-off Job Functions ====================


async def create_shipment_with_retries(
    order_number: str,
    session_factory=AsyncSessionLocal,
    service_factory: ServiceFactory = get_shipping_service,
    attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> ShipmentOutcome:
    """
    Create a shipment, retrying failed attempts after a fixed backoff.

    Each attempt reloads the order in a fresh session. An order that already
    has a pack number is skipped, so a retry after a late success is safe.
    """
    attempts = attempts or app_settings.SHIPPING_CREATE_ATTEMPTS
    if backoff_seconds is None:
        backoff_seconds = app_settings.SHIPPING_CREATE_BACKOFF_SECONDS

    outcome = None
    for attempt in range(1, attempts + 1):
        async with session_factory() as db:
            result = await db.execute(
                select(Order)
                .options(selectinload(Order.items))
                .where(Order.order_number == order_number)
            )
            order = result.scalar_one_or_none()

            if order is None:
                logger.error(f"Shipment job: order {order_number} not found")
                return ShipmentOutcome(
                    success=False,
                    order_number=order_number,
                    error=OrderNotFoundError(f"Order {order_number} not found"),
                )

            if order.pack_no:
                logger.info(f"Venipak shipment already exists for {order_number}: {order.pack_no}")
                return ShipmentOutcome(
                    success=True,
                    order_number=order_number,
                    pack_no=order.pack_no,
                    tracking_number=order.carrier_tracking_number,
                    manifest_id=order.manifest_id,
                    label_path=order.label_path,
                    already_shipped=True,
                )

            service = await service_factory(db)
            outcome = await service.create_shipment(order)

            if outcome.success:
                await db.commit()
                logger.info(f"Shipment job completed for {order_number}: {outcome.pack_no}")
                return outcome

            await db.rollback()

        if outcome.error is not None and outcome.error.code == "SHIPMENT_PERSIST_FAILED":
            # Parcel exists at the carrier; needs manual reconciliation
            break

        logger.warning(
            f"Shipment attempt {attempt}/{attempts} failed for {order_number}: {outcome.error_message}"
        )
        if attempt < attempts:
            await sleep(backoff_seconds)

    logger.error(f"Shipment job failed permanently for {order_number}: {outcome.error_message}")
    await record_shipment_error(order_number, outcome.error_message or "Unknown error", session_factory)
    return outcome


async def record_shipment_error(order_number: str, message: str, session_factory=AsyncSessionLocal) -> None:
    """Store the last shipment failure on the order for the operator view."""
    async with session_factory() as db:
        try:
            await db.execute(
                update(Order)
                .where(Order.order_number == order_number)
                .values(shipping_error=message)
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Could not record shipment error for {order_number}: {e}")


# ==================== Job Scheduler Integration ====================


# Global job runner instance
_job_runner: Optional[ShippingJobRunner] = None


async def start_shipping_jobs():
    """Start the shipping background jobs."""
    global _job_runner

    if _job_runner is None:
        _job_runner = ShippingJobRunner()

    await _job_runner.start()


async def stop_shipping_jobs():
    """Stop the shipping background jobs."""
    global _job_runner

    if _job_runner:
        await _job_runner.stop()
        _job_runner = None


# CLI entry point
if __name__ == "__main__":
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    parser = argparse.ArgumentParser(description="Venipak shipping jobs")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("sync-tracking", help="Run one tracking sync cycle now")
    create_parser = subparsers.add_parser("create", help="Create a shipment with retries")
    create_parser.add_argument("order_number")
    args = parser.parse_args()

    if args.command == "sync-tracking":
        print(asyncio.run(ShippingJobRunner().run_tracking_sync()))
    else:
        result = asyncio.run(create_shipment_with_retries(args.order_number))
        print(f"success={result.success} pack_no={result.pack_no} error={result.error_message}")
