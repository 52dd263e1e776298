"""
性能快照存储服务 (Performance Snapshot Store Service)

负责写入采样快照，以及面向仪表盘的查询：时间区间查询、区间统计、最近 24 小时、
最近 N 天的小时/日汇总、单日摘要和两个时间段的对比。

Appends sampler snapshots and serves the dashboard queries: range queries, range
statistics, last 24 hours, hourly/daily rollups for the last N days, single-day summary
and period comparison.
"""
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vendmon.core.clock import truncate_to_hour
from vendmon.core.exceptions import ValidationError
from vendmon.models.rollup import DailyRollup, HourlyRollup
from vendmon.models.snapshot import PerformanceSnapshot
from vendmon.schemas.performance import (
    DailyRollupResponse,
    DaySummary,
    HourlyRollupResponse,
    MetricStats,
    PerformanceStatistics,
    PeriodComparison,
    SnapshotReading,
)

logger = logging.getLogger(__name__)

MAX_RANGE_LIMIT = 10000


def _round(value) -> float:
    return round(float(value or 0), 2)


class SnapshotStore:
    """性能快照存储 (Performance snapshot store)"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, reading: SnapshotReading) -> PerformanceSnapshot:
        """
        写入一条快照 (Append one snapshot)

        只 flush 不提交，由调用方的事务作用域决定提交。
        """
        snapshot = PerformanceSnapshot(
            timestamp=reading.timestamp,
            hour_bucket=truncate_to_hour(reading.timestamp),
            memory_percent=reading.memory.percent,
            memory_used_mb=reading.memory.used_mb,
            memory_total_mb=reading.memory.total_mb,
            cpu_percent=reading.cpu.percent,
            cpu_cores=reading.cpu.cores,
            cpu_load_avg=reading.cpu.load_avg,
            disk_percent=reading.disk.percent,
            disk_used_gb=reading.disk.used_gb,
            disk_total_gb=reading.disk.total_gb,
            process_count=reading.process_count,
            stale_process_count=reading.stale_process_count,
            health_status=reading.health_status,
            issues=list(reading.issues),
            uptime_seconds=reading.uptime_seconds,
        )
        self.db.add(snapshot)
        await self.db.flush()
        return snapshot

    async def get_range(
        self, start: datetime, end: datetime, limit: int = 1000
    ) -> List[PerformanceSnapshot]:
        """区间内的快照，按时间升序 (Snapshots in [start, end], ascending)"""
        if limit < 1 or limit > MAX_RANGE_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_RANGE_LIMIT}")
        if end < start:
            raise ValidationError("end must not be earlier than start")
        result = await self.db.execute(
            select(PerformanceSnapshot)
            .where(PerformanceSnapshot.timestamp >= start, PerformanceSnapshot.timestamp <= end)
            .order_by(PerformanceSnapshot.timestamp)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_statistics(self, start: datetime, end: datetime) -> Optional[PerformanceStatistics]:
        """区间统计，区间内没有数据时返回 None (Range statistics, None when empty)"""
        S = PerformanceSnapshot
        row = (await self.db.execute(
            select(
                func.count(S.id),
                func.avg(S.memory_percent), func.max(S.memory_percent), func.min(S.memory_percent),
                func.avg(S.cpu_percent), func.max(S.cpu_percent), func.min(S.cpu_percent),
                func.avg(S.disk_percent), func.max(S.disk_percent), func.min(S.disk_percent),
            ).where(S.timestamp >= start, S.timestamp <= end)
        )).one()
        count = row[0] or 0
        if count == 0:
            return None
        return PerformanceStatistics(
            start=start,
            end=end,
            memory=MetricStats(avg=_round(row[1]), max=_round(row[2]), min=_round(row[3])),
            cpu=MetricStats(avg=_round(row[4]), max=_round(row[5]), min=_round(row[6])),
            disk=MetricStats(avg=_round(row[7]), max=_round(row[8]), min=_round(row[9])),
            data_points=count,
        )

    async def get_last_24_hours(self, now: datetime) -> List[PerformanceSnapshot]:
        return await self.get_range(now - timedelta(hours=24), now, limit=MAX_RANGE_LIMIT)

    async def get_hourly(self, days: int, now: datetime) -> List[HourlyRollup]:
        """最近 N 天的小时汇总 (Hourly rollups of the last N days)"""
        if days < 1:
            raise ValidationError("days must be at least 1")
        result = await self.db.execute(
            select(HourlyRollup)
            .where(HourlyRollup.hour >= now - timedelta(days=days))
            .order_by(HourlyRollup.hour)
        )
        return list(result.scalars().all())

    async def get_daily(self, days: int, now: datetime) -> List[DailyRollup]:
        """最近 N 天的日汇总 (Daily rollups of the last N days)"""
        if days < 1:
            raise ValidationError("days must be at least 1")
        since = (now - timedelta(days=days)).date()
        result = await self.db.execute(
            select(DailyRollup).where(DailyRollup.day >= since).order_by(DailyRollup.day)
        )
        return list(result.scalars().all())

    async def get_day_summary(self, day: date) -> DaySummary:
        """单日摘要：日汇总、该日全部小时汇总和峰值小时 (Daily row, hourly rows, peak hours)"""
        daily = (await self.db.execute(
            select(DailyRollup).where(DailyRollup.day == day)
        )).scalar_one_or_none()
        hourly = list((await self.db.execute(
            select(HourlyRollup).where(HourlyRollup.day == day).order_by(HourlyRollup.hour)
        )).scalars().all())

        peak_memory = max(hourly, key=lambda h: h.memory_max, default=None)
        peak_cpu = max(hourly, key=lambda h: h.cpu_max, default=None)
        return DaySummary(
            day=day,
            daily=DailyRollupResponse.model_validate(daily) if daily else None,
            hourly=[HourlyRollupResponse.model_validate(h) for h in hourly],
            peak_memory_hour=peak_memory.hour if peak_memory else None,
            peak_cpu_hour=peak_cpu.hour if peak_cpu else None,
        )

    async def compare_periods(
        self,
        period1_start: datetime,
        period1_end: datetime,
        period2_start: datetime,
        period2_end: datetime,
    ) -> PeriodComparison:
        """对比两个时间段，差值为 period2 - period1 (Compare two periods, diff = period2 - period1)"""
        p1 = await self.get_statistics(period1_start, period1_end)
        p2 = await self.get_statistics(period2_start, period2_end)
        comparison = PeriodComparison(period1=p1, period2=p2)
        if p1 and p2:
            comparison.memory_diff = round(p2.memory.avg - p1.memory.avg, 2)
            comparison.cpu_diff = round(p2.cpu.avg - p1.cpu.avg, 2)
            comparison.disk_diff = round(p2.disk.avg - p1.disk.avg, 2)
        return comparison
