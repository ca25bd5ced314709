from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from zariya.api import deps
from zariya.core.timezones import local_date
from zariya.models.types import utcnow
from zariya.schemas.reports import DailyCollectionReport, DashboardStats, RecentActivity
from zariya.services import reports

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/daily-collections", response_model=DailyCollectionReport)
async def daily_collections(
    day: date | None = Query(default=None, alias="date", description="Calendar day in the reporting timezone"),
    db: AsyncSession = Depends(deps.get_db_session),
) -> DailyCollectionReport:
    return await reports.daily_collections(db, day or local_date(utcnow()))


@router.get("/dashboard", response_model=DashboardStats)
async def dashboard(db: AsyncSession = Depends(deps.get_db_session)) -> DashboardStats:
    return await reports.dashboard_stats(db)


@router.get("/recent-activity", response_model=RecentActivity)
async def recent_activity(
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(deps.get_db_session),
) -> RecentActivity:
    return await reports.recent_activity(db, limit)
