"""
Venipak pack numbers and manifest titles

Pack number format: V{account_id}E{7-digit sequence}, e.g. V10281E1000050.
The sequence continues from the highest number ever issued (claims table
plus any pack_no already stored on orders); the very first number comes
from VENIPAK_FIRST_PACK_NUMBER.

"Read max, compute next, persist claim" runs inside one SERIALIZABLE
transaction. Inside a worker an asyncio.Lock queues callers so they do not
fight over the same snapshot; across workers the database aborts the
loser (serialization failure or unique violation on pack_no) and the whole
operation is retried.
"""
import asyncio
import logging
import re
from datetime import date, datetime, timezone, tzinfo
from typing import Callable, Optional

from sqlalchemy import Integer, cast, func, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PackNumberUnavailableError
from app.models.order import Order
from app.models.pack_number import PackNumberClaim

logger = logging.getLogger(__name__)

PACK_SEQUENCE_DIGITS = 7


def pack_number_prefix(account_id: str) -> str:
    return f"V{account_id}E"


def format_pack_number(account_id: str, sequence: int) -> str:
    """Format V{account}E followed by the zero-padded sequence."""
    return f"{pack_number_prefix(account_id)}{sequence:0{PACK_SEQUENCE_DIGITS}d}"


def parse_pack_sequence(pack_no: Optional[str], account_id: str) -> Optional[int]:
    """Numeric suffix of a pack number issued for this account, else None."""
    if not pack_no:
        return None
    match = re.fullmatch(rf"{re.escape(pack_number_prefix(account_id))}(\d+)", pack_no)
    return int(match.group(1)) if match else None


def manifest_title(
    account_id: str,
    day: Optional[date] = None,
    tz: Optional[tzinfo] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Daily manifest title: {account_id}{YYMMDD}001.

    One manifest per day; every shipment created that day is filed under it.
    The day is taken in the store's timezone (tz), UTC when not given.
    """
    if day is None:
        now = now or datetime.now(timezone.utc)
        day = now.astimezone(tz or timezone.utc).date()
    return f"{account_id}{day:%y%m%d}001"


class PackNumberGenerator:
    """
    Issues collision-free pack numbers under concurrent callers.

    Args:
        session_factory: async_sessionmaker; each attempt uses its own
            session so the claim commits independently of the caller's
            transaction.
        account_id: Venipak user id embedded in every pack number
        first_sequence_number: floor used when nothing was issued yet
        max_attempts: retries of the whole transaction on conflicts
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        account_id: str,
        first_sequence_number: int,
        max_attempts: int = 3,
    ):
        self.session_factory = session_factory
        self.account_id = account_id
        self.first_sequence_number = first_sequence_number
        self.max_attempts = max_attempts
        self._lock = asyncio.Lock()

    async def next_pack_number(self, order_number: str) -> str:
        """
        Claim the next pack number for an order.

        An unconfirmed claim already held by the same order is handed back
        so a retried shipment creation does not burn a second number.

        Raises:
            PackNumberUnavailableError: all attempts hit a conflict
        """
        async with self._lock:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    return await self._claim(order_number)
                except DBAPIError as e:
                    logger.warning(
                        f"Pack number claim conflict for {order_number} "
                        f"(attempt {attempt}/{self.max_attempts}): {e.__class__.__name__}"
                    )

        raise PackNumberUnavailableError(
            message=f"Could not claim a pack number for order {order_number}",
            attempts=self.max_attempts,
            details={"order_number": order_number, "account_id": self.account_id},
        )

    async def _claim(self, order_number: str) -> str:
        async with self.session_factory() as db:
            async with db.begin():
                await db.connection(execution_options={"isolation_level": "SERIALIZABLE"})

                existing = await self._find_open_claim(db, order_number)
                if existing:
                    logger.info(f"Reusing unconfirmed pack number {existing} for {order_number}")
                    return existing

                last_sequence = await self._max_issued_sequence(db)
                if last_sequence is None:
                    next_sequence = self.first_sequence_number
                else:
                    next_sequence = last_sequence + 1

                pack_no = format_pack_number(self.account_id, next_sequence)
                await self._record_claim(db, pack_no, order_number)

        logger.info(f"Pack number {pack_no} claimed for {order_number}")
        return pack_no

    async def _find_open_claim(self, db: AsyncSession, order_number: str) -> Optional[str]:
        result = await db.execute(
            select(PackNumberClaim.pack_no)
            .where(
                PackNumberClaim.order_number == order_number,
                PackNumberClaim.account_id == self.account_id,
                PackNumberClaim.confirmed_at.is_(None),
            )
            .order_by(PackNumberClaim.claimed_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _max_issued_sequence(self, db: AsyncSession) -> Optional[int]:
        """Highest sequence across claims and orders for this account."""
        prefix = pack_number_prefix(self.account_id)
        suffix_start = len(prefix) + 1

        highest = None
        for column in (PackNumberClaim.pack_no, Order.pack_no):
            value = await db.scalar(
                select(func.max(cast(func.substr(column, suffix_start), Integer)))
                .where(column.like(f"{prefix}%"))
            )
            if value is not None and (highest is None or value > highest):
                highest = int(value)
        return highest

    async def _record_claim(self, db: AsyncSession, pack_no: str, order_number: str) -> None:
        db.add(PackNumberClaim(
            pack_no=pack_no,
            account_id=self.account_id,
            order_number=order_number,
        ))

    async def confirm_claim(self, db: AsyncSession, pack_no: str) -> None:
        """Mark a claim as accepted by the carrier (in the caller's session)."""
        await db.execute(
            update(PackNumberClaim)
            .where(PackNumberClaim.pack_no == pack_no)
            .values(confirmed_at=datetime.now(timezone.utc))
        )
