"""
性能汇总模型 (Performance Rollup Models)

小时汇总由该小时的原始快照计算，日汇总只由前一日的小时汇总计算，层级严格、不跨级。
hour / date 上的唯一约束保证每个时间窗口最多写入一次。

Hourly rollups are computed from that hour's raw snapshots; daily rollups only from the
day's hourly rollups, never skipping a level. Unique constraints on hour / date make each
window written at most once.
"""
from datetime import date, datetime

from sqlalchemy import Integer, Float, Date
from sqlalchemy.orm import Mapped, mapped_column

from vendmon.core.database import Base, UTCDateTime


class HourlyRollup(Base):
    """
    小时汇总表 (Hourly Rollup Table)

    保留 90 天，仅在对应日汇总存在后才会被清理。
    """
    __tablename__ = "performance_rollups_hourly"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    hour: Mapped[datetime] = mapped_column(UTCDateTime, unique=True, index=True, nullable=False)  # 整点时间 (Hour Start)
    day: Mapped[date] = mapped_column(Date, index=True, nullable=False)  # 所属日期，清理守卫使用 (Owning Day)
    memory_avg: Mapped[float] = mapped_column(Float, nullable=False)
    memory_max: Mapped[float] = mapped_column(Float, nullable=False)
    memory_min: Mapped[float] = mapped_column(Float, nullable=False)
    cpu_avg: Mapped[float] = mapped_column(Float, nullable=False)
    cpu_max: Mapped[float] = mapped_column(Float, nullable=False)
    cpu_min: Mapped[float] = mapped_column(Float, nullable=False)
    disk_avg: Mapped[float] = mapped_column(Float, nullable=False)
    disk_max: Mapped[float] = mapped_column(Float, nullable=False)
    stale_process_avg: Mapped[float] = mapped_column(Float, nullable=False)  # 平均残留进程数 (Average Stale Processes)
    critical_events_count: Mapped[int] = mapped_column(Integer, nullable=False)  # critical 快照数 (Critical Snapshots)
    warning_events_count: Mapped[int] = mapped_column(Integer, nullable=False)  # warning 快照数 (Warning Snapshots)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False)  # 参与汇总的快照数 (Snapshots Folded In)


class DailyRollup(Base):
    """
    日汇总表 (Daily Rollup Table)

    永久保留。record_count 为参与汇总的小时汇总行数。
    """
    __tablename__ = "performance_rollups_daily"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    day: Mapped[date] = mapped_column(Date, unique=True, index=True, nullable=False)  # 日期 (Calendar Date)
    memory_avg: Mapped[float] = mapped_column(Float, nullable=False)
    memory_max: Mapped[float] = mapped_column(Float, nullable=False)
    memory_min: Mapped[float] = mapped_column(Float, nullable=False)
    cpu_avg: Mapped[float] = mapped_column(Float, nullable=False)
    cpu_max: Mapped[float] = mapped_column(Float, nullable=False)
    cpu_min: Mapped[float] = mapped_column(Float, nullable=False)
    disk_avg: Mapped[float] = mapped_column(Float, nullable=False)
    disk_max: Mapped[float] = mapped_column(Float, nullable=False)
    stale_process_avg: Mapped[float] = mapped_column(Float, nullable=False)
    critical_events_count: Mapped[int] = mapped_column(Integer, nullable=False)
    warning_events_count: Mapped[int] = mapped_column(Integer, nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False)  # 参与汇总的小时行数 (Hourly Rows Folded In)
