"""
性能数据路由模块 (Performance Data Router)

功能说明：仪表盘读取接口，只读访问快照、小时/日汇总和统计结果
核心职责：
  - 时间区间快照查询、区间统计、最近 24 小时
  - 最近 N 天的小时汇总和日汇总、单日摘要
  - 两个时间段对比
存储不可用时返回空结果并记录警告，仪表盘不会因此报错。
API端点：GET /performance/range, /statistics, /last-24h, /hourly, /daily, /days/{day}, /compare

Read-only dashboard endpoints over snapshots and rollups. When the store is unavailable
they degrade to an empty result and log a warning.
"""
import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vendmon.core.clock import Clock
from vendmon.core.database import get_db
from vendmon.core.deps import get_clock
from vendmon.schemas.performance import (
    DailyRollupResponse,
    DaySummary,
    HourlyRollupResponse,
    PerformanceStatistics,
    PeriodComparison,
    SnapshotResponse,
)
from vendmon.services.snapshot_store import MAX_RANGE_LIMIT, SnapshotStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/performance", tags=["performance"])


def _degraded(operation: str, exc: SQLAlchemyError) -> None:
    logger.warning("Performance query %s failed, returning empty result: %s", operation, exc)


@router.get("/range", response_model=List[SnapshotResponse])
async def get_range(
    start: datetime,
    end: datetime,
    limit: int = Query(1000, ge=1, le=MAX_RANGE_LIMIT),
    db: AsyncSession = Depends(get_db),
):
    """区间 [start, end] 内的快照，按时间升序 (Snapshots in range, ascending)"""
    try:
        return await SnapshotStore(db).get_range(start, end, limit)
    except SQLAlchemyError as e:
        _degraded("range", e)
        return []


@router.get("/statistics", response_model=Optional[PerformanceStatistics])
async def get_statistics(start: datetime, end: datetime, db: AsyncSession = Depends(get_db)):
    """区间统计，无数据时返回 null (Range statistics, null when there is no data)"""
    try:
        return await SnapshotStore(db).get_statistics(start, end)
    except SQLAlchemyError as e:
        _degraded("statistics", e)
        return None


@router.get("/last-24h", response_model=List[SnapshotResponse])
async def get_last_24_hours(db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)):
    try:
        return await SnapshotStore(db).get_last_24_hours(clock.now())
    except SQLAlchemyError as e:
        _degraded("last-24h", e)
        return []


@router.get("/hourly", response_model=List[HourlyRollupResponse])
async def get_hourly(
    days: int = Query(7, ge=1, le=90),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return await SnapshotStore(db).get_hourly(days, clock.now())
    except SQLAlchemyError as e:
        _degraded("hourly", e)
        return []


@router.get("/daily", response_model=List[DailyRollupResponse])
async def get_daily(
    days: int = Query(30, ge=1, le=3650),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return await SnapshotStore(db).get_daily(days, clock.now())
    except SQLAlchemyError as e:
        _degraded("daily", e)
        return []


@router.get("/days/{day}", response_model=DaySummary)
async def get_day_summary(day: date, db: AsyncSession = Depends(get_db)):
    """
    单日摘要 (Single-day summary)

    包含日汇总、该日全部小时汇总以及内存/CPU 峰值小时。
    """
    try:
        return await SnapshotStore(db).get_day_summary(day)
    except SQLAlchemyError as e:
        _degraded("day summary", e)
        return DaySummary(day=day, daily=None, hourly=[])


@router.get("/compare", response_model=PeriodComparison)
async def compare_periods(
    period1_start: datetime,
    period1_end: datetime,
    period2_start: datetime,
    period2_end: datetime,
    db: AsyncSession = Depends(get_db),
):
    """对比两个时间段的平均值，差值为 period2 - period1 (Compare two periods)"""
    try:
        return await SnapshotStore(db).compare_periods(period1_start, period1_end, period2_start, period2_end)
    except SQLAlchemyError as e:
        _degraded("compare", e)
        return PeriodComparison(period1=None, period2=None)
