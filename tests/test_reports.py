from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from conftest import approved_member, open_loan
from zariya.core.timezones import day_bounds
from zariya.services import repayments, reports


async def _post(factory, loan_id, amount, when, **kwargs):
    kwargs.setdefault("payment_method", "cash")
    async with factory() as db:
        await repayments.post_repayment(
            db, loan_id, amount=amount, recorded_by="agent-1", payment_date=when, **kwargs
        )
        await db.commit()


def test_day_bounds_follow_reporting_zone() -> None:
    start, end = day_bounds(date(2026, 3, 1))

    assert start == datetime(2026, 2, 28, 18, 30, tzinfo=timezone.utc)
    assert end == datetime(2026, 3, 1, 18, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_daily_collections_totals_match_the_postings(session_factory, db) -> None:
    loan_a = await open_loan(session_factory, amount="5000.00")
    loan_b = await open_loan(session_factory, amount="5000.00")
    utc = timezone.utc

    # 00:00 and 23:59 IST on 1 March are in; the instants either side are out.
    await _post(session_factory, loan_a.id, "500", datetime(2026, 2, 28, 18, 30, tzinfo=utc))
    await _post(session_factory, loan_a.id, "40", datetime(2026, 3, 1, 9, 0, tzinfo=utc), is_late_fee=True)
    await _post(session_factory, loan_b.id, "250.50", datetime(2026, 3, 1, 18, 29, tzinfo=utc), payment_method="upi")
    await _post(session_factory, loan_b.id, "100", datetime(2026, 3, 1, 12, 0, tzinfo=utc), payment_method="cheque")
    await _post(session_factory, loan_a.id, "999", datetime(2026, 2, 28, 18, 29, tzinfo=utc))
    await _post(session_factory, loan_b.id, "999", datetime(2026, 3, 1, 18, 30, tzinfo=utc))

    report = await reports.daily_collections(db, date(2026, 3, 1))

    assert report.timezone == "Asia/Kolkata"
    assert report.total_count == 4
    assert report.total_collection == Decimal("850.50")
    assert report.total_late_fee == Decimal("40.00")
    assert report.grand_total == Decimal("890.50")
    assert report.grand_total == sum(p.amount for p in report.postings)
    assert report.by_method == {
        "cash": Decimal("540.00"),
        "bank_transfer": Decimal("0.00"),
        "upi": Decimal("250.50"),
        "cheque": Decimal("100.00"),
        "other": Decimal("0.00"),
    }
    assert sum(report.by_method.values()) == report.grand_total
    assert [p.payment_date for p in report.postings] == sorted(p.payment_date for p in report.postings)
    assert {p.loan_account_number for p in report.postings} == {loan_a.loan_account_number, loan_b.loan_account_number}


@pytest.mark.asyncio
async def test_daily_collections_empty_day(db) -> None:
    report = await reports.daily_collections(db, date(2026, 1, 1))

    assert report.postings == []
    assert report.grand_total == Decimal("0.00")
    assert set(report.by_method) == {"cash", "bank_transfer", "upi", "cheque", "other"}


@pytest.mark.asyncio
async def test_dashboard_stats(session_factory, db) -> None:
    await approved_member(session_factory)
    loan = await open_loan(session_factory, amount="2000.00")
    await _post(session_factory, loan.id, "500", datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc))

    stats = await reports.dashboard_stats(db)

    assert stats.approved_members == 2
    assert stats.total_loans == 1
    assert stats.pending_applications == 0
    assert stats.pending_approvals == 0
    assert stats.total_disbursed == Decimal("2000.00")
    assert stats.outstanding_balance == Decimal("1500.00")


@pytest.mark.asyncio
async def test_recent_activity_merges_members_and_loans(session_factory, db) -> None:
    first_member = await approved_member(session_factory)
    loan = await open_loan(session_factory, amount="1500.00")

    feed = await reports.recent_activity(db, limit=10)

    assert [item.type for item in feed.items] == ["loan", "membership", "membership"]
    assert feed.items[0].reference == loan.loan_account_number
    assert feed.items[0].status == "approved"
    assert feed.items[-1].reference == first_member.display_id
    assert feed.items[-1].description == first_member.full_name
    created = [item.created_at for item in feed.items]
    assert created == sorted(created, reverse=True)

    latest = await reports.recent_activity(db, limit=2)
    assert [item.reference for item in latest.items] == [item.reference for item in feed.items[:2]]


@pytest.mark.asyncio
async def test_recent_activity_on_empty_store(db) -> None:
    assert (await reports.recent_activity(db)).items == []
