"""
性能汇总服务 (Performance Rollup Service)

按层级把原始快照汇总为小时汇总、再把小时汇总汇总为日汇总，并执行受保护的过期清理：
原始快照只有在所属小时的汇总已经写入后才会被删除，小时汇总只有在所属日汇总写入后才会被删除。

Folds raw snapshots into hourly rollups and hourly rollups into daily rollups, strictly
level by level, and runs guarded retention: a snapshot is deleted only once its hour has a
rollup, an hourly row only once its day has a rollup.

小时/日任务都是自愈的：每次运行处理所有已结束但尚未汇总的窗口，错过的触发点会在下一次补上。
唯一约束冲突（另一个写入者已完成）视为已完成。
"""
import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vendmon.core.clock import Clock, truncate_to_hour
from vendmon.core.database import session_scope
from vendmon.models.enums import HealthStatus
from vendmon.models.rollup import DailyRollup, HourlyRollup
from vendmon.models.snapshot import PerformanceSnapshot

logger = logging.getLogger(__name__)


def _avg(values: List[float]) -> float:
    return round(sum(values) / len(values), 2)


def summarize_snapshots(hour: datetime, snapshots: List[PerformanceSnapshot]) -> HourlyRollup:
    """由一个小时内的快照计算小时汇总 (Build the hourly rollup for one hour's snapshots)"""
    memory = [s.memory_percent for s in snapshots]
    cpu = [s.cpu_percent for s in snapshots]
    disk = [s.disk_percent for s in snapshots]
    return HourlyRollup(
        hour=hour,
        day=hour.date(),
        memory_avg=_avg(memory),
        memory_max=round(max(memory), 2),
        memory_min=round(min(memory), 2),
        cpu_avg=_avg(cpu),
        cpu_max=round(max(cpu), 2),
        cpu_min=round(min(cpu), 2),
        disk_avg=_avg(disk),
        disk_max=round(max(disk), 2),
        stale_process_avg=_avg([s.stale_process_count for s in snapshots]),
        critical_events_count=sum(1 for s in snapshots if s.health_status == HealthStatus.CRITICAL),
        warning_events_count=sum(1 for s in snapshots if s.health_status == HealthStatus.WARNING),
        record_count=len(snapshots),
    )


def summarize_hours(day: date, hours: List[HourlyRollup]) -> DailyRollup:
    """由一天的小时汇总计算日汇总：平均值取小时平均值的均值 (Mean of hourly averages)"""
    return DailyRollup(
        day=day,
        memory_avg=_avg([h.memory_avg for h in hours]),
        memory_max=max(h.memory_max for h in hours),
        memory_min=min(h.memory_min for h in hours),
        cpu_avg=_avg([h.cpu_avg for h in hours]),
        cpu_max=max(h.cpu_max for h in hours),
        cpu_min=min(h.cpu_min for h in hours),
        disk_avg=_avg([h.disk_avg for h in hours]),
        disk_max=max(h.disk_max for h in hours),
        stale_process_avg=_avg([h.stale_process_avg for h in hours]),
        critical_events_count=sum(h.critical_events_count for h in hours),
        warning_events_count=sum(h.warning_events_count for h in hours),
        record_count=len(hours),
    )


class RollupAggregator:
    """
    汇总与清理 (Rollups and retention)

    每个时间窗口在独立事务中写入，一个窗口失败不会影响已经写入的其他窗口。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Clock,
        raw_retention_days: int = 7,
        hourly_retention_days: int = 90,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.raw_retention_days = raw_retention_days
        self.hourly_retention_days = hourly_retention_days

    # ── Hourly ──

    async def pending_hours(self) -> List[datetime]:
        """已结束、有快照、尚无汇总的小时 (Completed hours with snapshots and no rollup)"""
        current_hour = truncate_to_hour(self.clock.now())
        async with session_scope(self.session_factory, "list pending hours") as session:
            result = await session.execute(
                select(PerformanceSnapshot.hour_bucket)
                .where(
                    PerformanceSnapshot.hour_bucket < current_hour,
                    PerformanceSnapshot.hour_bucket.not_in(select(HourlyRollup.hour)),
                )
                .distinct()
                .order_by(PerformanceSnapshot.hour_bucket)
            )
            return list(result.scalars().all())

    async def aggregate_hour(self, hour: datetime) -> Optional[HourlyRollup]:
        """
        汇总一个小时 (Aggregate one hour)

        区间 [hour, hour+1h) 内没有快照时不写入任何行。

        Returns:
            新写入的小时汇总；无数据或已被其他写入者完成时返回 None
        """
        hour = truncate_to_hour(hour)
        async with session_scope(self.session_factory, f"hourly rollup {hour.isoformat()}") as session:
            result = await session.execute(
                select(PerformanceSnapshot).where(
                    PerformanceSnapshot.timestamp >= hour,
                    PerformanceSnapshot.timestamp < hour + timedelta(hours=1),
                )
            )
            snapshots = list(result.scalars().all())
            if not snapshots:
                return None
            rollup = summarize_snapshots(hour, snapshots)
            if await self._insert_once(session, rollup):
                logger.info("Hourly rollup written for %s (%d snapshots)", hour.isoformat(), rollup.record_count)
                return rollup
            return None

    async def run_hourly(self) -> List[datetime]:
        """处理所有待汇总的小时，返回实际写入的小时 (Process every pending hour)"""
        written = []
        for hour in await self.pending_hours():
            if await self.aggregate_hour(hour) is not None:
                written.append(hour)
        return written

    # ── Daily ──

    async def pending_days(self) -> List[date]:
        today = self.clock.now().date()
        async with session_scope(self.session_factory, "list pending days") as session:
            result = await session.execute(
                select(HourlyRollup.day)
                .where(HourlyRollup.day < today, HourlyRollup.day.not_in(select(DailyRollup.day)))
                .distinct()
                .order_by(HourlyRollup.day)
            )
            return list(result.scalars().all())

    async def aggregate_day(self, day: date) -> Optional[DailyRollup]:
        """汇总一天，只读取该日的小时汇总 (Aggregate one day from its hourly rows only)"""
        async with session_scope(self.session_factory, f"daily rollup {day.isoformat()}") as session:
            result = await session.execute(
                select(HourlyRollup).where(HourlyRollup.day == day).order_by(HourlyRollup.hour)
            )
            hours = list(result.scalars().all())
            if not hours:
                return None
            rollup = summarize_hours(day, hours)
            if await self._insert_once(session, rollup):
                logger.info("Daily rollup written for %s (%d hourly rows)", day.isoformat(), rollup.record_count)
                return rollup
            return None

    async def run_daily(self) -> Dict[str, object]:
        """处理所有待汇总的日期，然后执行清理 (Process pending days, then purge)"""
        written = []
        for day in await self.pending_days():
            if await self.aggregate_day(day) is not None:
                written.append(day)
        purged = await self.purge()
        return {"days": written, **purged}

    # ── Retention ──

    async def purge(self) -> Dict[str, int]:
        """
        受保护的过期清理 (Guarded retention purge)

        原始快照：早于保留期且所属小时已有汇总；小时汇总：早于保留期且所属日期已有日汇总。
        """
        now = self.clock.now()
        raw_cutoff = now - timedelta(days=self.raw_retention_days)
        hourly_cutoff = now - timedelta(days=self.hourly_retention_days)
        async with session_scope(self.session_factory, "retention purge") as session:
            snapshots = await session.execute(
                delete(PerformanceSnapshot).where(
                    PerformanceSnapshot.timestamp < raw_cutoff,
                    PerformanceSnapshot.hour_bucket.in_(select(HourlyRollup.hour)),
                ).execution_options(synchronize_session=False)
            )
            hourly = await session.execute(
                delete(HourlyRollup).where(
                    HourlyRollup.hour < hourly_cutoff,
                    HourlyRollup.day.in_(select(DailyRollup.day)),
                ).execution_options(synchronize_session=False)
            )
        stats = {"snapshots_deleted": snapshots.rowcount or 0, "hourly_deleted": hourly.rowcount or 0}
        logger.info("Retention purge completed: %s", stats)
        return stats

    @staticmethod
    async def _insert_once(session: AsyncSession, row) -> bool:
        """写入一行；唯一约束冲突视为已完成 (Insert; a unique conflict means already done)"""
        session.add(row)
        try:
            await session.flush()
        except IntegrityError:
            await session.rollback()
            logger.info("%s already written by another writer", type(row).__name__)
            return False
        return True
