"""
Tests for pack number issuance and manifest titles.

Most generator tests replace its database hooks with an in-memory claims
table that yields to the event loop between steps, so concurrent callers
interleave the way separate requests would. TestPackNumberQueries runs the
real queries against SQLite.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core.exceptions import PackNumberUnavailableError
from app.models.order import Order
from app.models.pack_number import PackNumberClaim
from app.modules.shipping.pack_numbers import (
    PackNumberGenerator,
    format_pack_number,
    manifest_title,
    pack_number_prefix,
    parse_pack_sequence,
)

ACCOUNT = "10281"
FLOOR = 1000050


class FakeSession:
    """Records the isolation level each transaction asked for."""

    def __init__(self, log: List[str]):
        self._log = log

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    @asynccontextmanager
    async def begin(self):
        yield self

    async def connection(self, execution_options=None):
        self._log.append((execution_options or {}).get("isolation_level"))


class InMemoryPackNumbers(PackNumberGenerator):
    """Generator whose claims table is a dict shared by every instance."""

    def __init__(self, claims: Dict[str, dict], isolation_log: Optional[List[str]] = None, **kwargs):
        self.isolation_log = isolation_log if isolation_log is not None else []
        super().__init__(
            lambda: FakeSession(self.isolation_log),
            account_id=kwargs.pop("account_id", ACCOUNT),
            first_sequence_number=kwargs.pop("first_sequence_number", FLOOR),
            **kwargs,
        )
        self.claims = claims
        self.record_calls = 0

    async def _find_open_claim(self, db, order_number):
        await asyncio.sleep(0)
        for pack_no, claim in self.claims.items():
            if claim["order_number"] == order_number and not claim["confirmed"]:
                return pack_no
        return None

    async def _max_issued_sequence(self, db):
        await asyncio.sleep(0)
        sequences = [parse_pack_sequence(p, self.account_id) for p in self.claims]
        sequences = [s for s in sequences if s is not None]
        return max(sequences) if sequences else None

    async def _record_claim(self, db, pack_no, order_number):
        self.record_calls += 1
        await asyncio.sleep(0)
        if pack_no in self.claims:
            raise IntegrityError("INSERT INTO pack_number_claims", {}, Exception("duplicate key value"))
        self.claims[pack_no] = {"order_number": order_number, "confirmed": False}


class TestFormatting:

    def test_format_pack_number(self):
        assert format_pack_number(ACCOUNT, FLOOR) == "V10281E1000050"
        assert format_pack_number(ACCOUNT, 7) == "V10281E0000007"

    def test_prefix(self):
        assert pack_number_prefix(ACCOUNT) == "V10281E"

    def test_parse_pack_sequence(self):
        assert parse_pack_sequence("V10281E1000050", ACCOUNT) == 1000050
        assert parse_pack_sequence("V99999E1000050", ACCOUNT) is None
        assert parse_pack_sequence("garbage", ACCOUNT) is None
        assert parse_pack_sequence(None, ACCOUNT) is None

    def test_manifest_title(self):
        assert manifest_title(ACCOUNT, date(2025, 1, 5)) == "10281250105001"

    def test_manifest_title_defaults_to_today(self):
        title = manifest_title(ACCOUNT)
        assert title.startswith(ACCOUNT)
        assert title.endswith("001")
        assert len(title) == len(ACCOUNT) + 9

    def test_manifest_title_uses_store_timezone(self):
        # 01:30 in Vilnius is still the previous day in UTC
        late_evening_utc = datetime(2025, 1, 6, 23, 30, tzinfo=timezone.utc)

        assert manifest_title(ACCOUNT, now=late_evening_utc) == "10281250106001"
        assert manifest_title(ACCOUNT, tz=ZoneInfo("Europe/Vilnius"), now=late_evening_utc) == "10281250107001"


class TestPackNumberGenerator:

    @pytest.mark.asyncio
    async def test_first_number_is_configured_floor(self):
        generator = InMemoryPackNumbers({})
        assert await generator.next_pack_number("ORD-1") == "V10281E1000050"

    @pytest.mark.asyncio
    async def test_continues_from_highest_issued(self):
        claims = {
            "V10281E1000099": {"order_number": "ORD-OLD", "confirmed": True},
            "V10281E1000070": {"order_number": "ORD-OLDER", "confirmed": True},
            # Other accounts never influence the sequence
            "V55555E9000000": {"order_number": "ORD-OTHER", "confirmed": True},
        }
        generator = InMemoryPackNumbers(claims)
        assert await generator.next_pack_number("ORD-NEW") == "V10281E1000100"

    @pytest.mark.asyncio
    async def test_claims_run_serializable(self):
        generator = InMemoryPackNumbers({})
        await generator.next_pack_number("ORD-1")
        assert generator.isolation_log == ["SERIALIZABLE"]

    @pytest.mark.asyncio
    async def test_concurrent_callers_get_distinct_increasing_numbers(self):
        generator = InMemoryPackNumbers({})

        results = await asyncio.gather(*[
            generator.next_pack_number(f"ORD-{i:04d}") for i in range(20)
        ])

        sequences = sorted(parse_pack_sequence(p, ACCOUNT) for p in results)
        assert len(set(results)) == 20
        assert sequences == list(range(FLOOR, FLOOR + 20))

    @pytest.mark.asyncio
    async def test_concurrent_workers_retry_on_conflict(self):
        claims: Dict[str, dict] = {}
        worker_a = InMemoryPackNumbers(claims, max_attempts=5)
        worker_b = InMemoryPackNumbers(claims, max_attempts=5)

        results = await asyncio.gather(
            *[worker_a.next_pack_number(f"ORD-A{i}") for i in range(3)],
            *[worker_b.next_pack_number(f"ORD-B{i}") for i in range(3)],
        )

        assert len(set(results)) == 6
        sequences = sorted(parse_pack_sequence(p, ACCOUNT) for p in results)
        assert sequences == list(range(FLOOR, FLOOR + 6))
        # The two workers raced for the same snapshot at least once
        assert worker_a.record_calls + worker_b.record_calls > 6

    @pytest.mark.asyncio
    async def test_unconfirmed_claim_is_reused_for_same_order(self):
        generator = InMemoryPackNumbers({})
        first = await generator.next_pack_number("ORD-1")
        again = await generator.next_pack_number("ORD-1")
        other = await generator.next_pack_number("ORD-2")

        assert again == first
        assert other == format_pack_number(ACCOUNT, FLOOR + 1)

    @pytest.mark.asyncio
    async def test_confirmed_claim_is_not_reused(self):
        claims = {"V10281E1000050": {"order_number": "ORD-1", "confirmed": True}}
        generator = InMemoryPackNumbers(claims)
        assert await generator.next_pack_number("ORD-1") == "V10281E1000051"

    @pytest.mark.asyncio
    async def test_serialization_failure_is_retried(self):
        class FlakyOnce(InMemoryPackNumbers):
            failed = False

            async def _max_issued_sequence(self, db):
                if not self.failed:
                    self.failed = True
                    raise OperationalError("SELECT max(...)", {}, Exception("could not serialize access"))
                return await super()._max_issued_sequence(db)

        generator = FlakyOnce({})
        assert await generator.next_pack_number("ORD-1") == "V10281E1000050"
        assert generator.isolation_log == ["SERIALIZABLE", "SERIALIZABLE"]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self):
        class AlwaysConflicting(InMemoryPackNumbers):
            async def _record_claim(self, db, pack_no, order_number):
                self.record_calls += 1
                raise IntegrityError("INSERT", {}, Exception("duplicate key value"))

        generator = AlwaysConflicting({}, max_attempts=3)

        with pytest.raises(PackNumberUnavailableError) as exc_info:
            await generator.next_pack_number("ORD-1")

        assert generator.record_calls == 3
        assert exc_info.value.code == "PACK_NUMBER_UNAVAILABLE"
        assert exc_info.value.details["attempts"] == 3
        assert exc_info.value.details["order_number"] == "ORD-1"


class TestPackNumberQueries:

    @pytest.mark.asyncio
    async def test_empty_database_starts_at_floor(self, sqlite_db):
        engine, sessions = await sqlite_db()
        try:
            generator = PackNumberGenerator(sessions, account_id=ACCOUNT, first_sequence_number=FLOOR)

            assert await generator.next_pack_number("ORD-1") == "V10281E1000050"
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_continues_from_orders_and_claims(self, sqlite_db):
        engine, sessions = await sqlite_db()
        try:
            async with sessions() as db:
                db.add_all([
                    Order(order_number="ORD-OLD", status="completed", total=10, pack_no="V10281E1000099"),
                    Order(order_number="ORD-OLDER", status="completed", total=10, pack_no="V10281E0999999"),
                    # Another account's numbers never count
                    Order(order_number="ORD-OTHER", status="completed", total=10, pack_no="V99999E5000000"),
                ])
                await db.commit()

            generator = PackNumberGenerator(sessions, account_id=ACCOUNT, first_sequence_number=FLOOR)

            assert await generator.next_pack_number("ORD-NEW-1") == "V10281E1000100"
            assert await generator.next_pack_number("ORD-NEW-2") == "V10281E1000101"
            # A retry for the same order gets its open claim back
            assert await generator.next_pack_number("ORD-NEW-1") == "V10281E1000100"

            async with sessions() as db:
                await generator.confirm_claim(db, "V10281E1000100")
                await db.commit()

            # Confirmed claims are used numbers, never handed out again
            assert await generator.next_pack_number("ORD-NEW-1") == "V10281E1000102"

            async with sessions() as db:
                result = await db.execute(select(PackNumberClaim).order_by(PackNumberClaim.pack_no))
                claims = list(result.scalars())
            assert [claim.pack_no for claim in claims] == [
                "V10281E1000100", "V10281E1000101", "V10281E1000102",
            ]
            assert claims[0].confirmed_at is not None
            assert claims[1].confirmed_at is None
            assert {claim.account_id for claim in claims} == {ACCOUNT}
        finally:
            await engine.dispose()
