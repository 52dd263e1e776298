"""
性能快照模型 (Performance Snapshot Model)

定义主机性能原始快照的表结构，包括内存、CPU、磁盘、进程数、残留进程数、健康状态和问题列表。
采样任务每个周期写入一行，数据不可变；保留 7 天，且仅在所属小时的汇总已存在时才会被清理。

Defines the table structure for raw host performance snapshots: memory, CPU, disk,
process counts, health status and issues. The sampling job writes one immutable row per
tick; rows are kept for 7 days and purged only once their hour's rollup exists.
"""
from datetime import datetime

from sqlalchemy import Integer, Float, JSON
from sqlalchemy.orm import Mapped, mapped_column

from vendmon.core.database import Base, UTCDateTime
from vendmon.models.enums import HealthStatus, enum_column


class PerformanceSnapshot(Base):
    """
    性能快照表 (Performance Snapshot Table)

    每个采样周期一行，为小时汇总、区间查询和统计提供基础数据。

    One row per sampling tick; the source for hourly rollups, range queries and statistics.
    """
    __tablename__ = "performance_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, index=True, nullable=False)  # 采样时间 (Sample Time)
    hour_bucket: Mapped[datetime] = mapped_column(UTCDateTime, index=True, nullable=False)  # 所属整点，清理守卫使用 (Owning hour, used by the purge guard)
    # 内存指标 (Memory Metrics)
    memory_percent: Mapped[float] = mapped_column(Float, nullable=False)  # 内存使用率百分比 (Memory Usage Percentage)
    memory_used_mb: Mapped[int] = mapped_column(Integer, nullable=False)  # 已使用内存 MB (Used Memory in MB)
    memory_total_mb: Mapped[int] = mapped_column(Integer, nullable=False)  # 总内存 MB (Total Memory in MB)
    # CPU 指标 (CPU Metrics)
    cpu_percent: Mapped[float] = mapped_column(Float, nullable=False)  # CPU 使用率百分比 (CPU Usage Percentage)
    cpu_cores: Mapped[int] = mapped_column(Integer, nullable=False)  # 逻辑核数 (Logical Cores)
    cpu_load_avg: Mapped[float] = mapped_column(Float, nullable=False)  # 1分钟负载平均值 (1-minute Load Average)
    # 磁盘指标 (Disk Metrics)
    disk_percent: Mapped[float] = mapped_column(Float, nullable=False)  # 磁盘使用率百分比 (Disk Usage Percentage)
    disk_used_gb: Mapped[float] = mapped_column(Float, nullable=False)  # 磁盘已用空间 GB (Used Disk Space in GB)
    disk_total_gb: Mapped[float] = mapped_column(Float, nullable=False)  # 磁盘总空间 GB (Total Disk Space in GB)
    # 进程与健康状态 (Processes and Health)
    process_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 进程总数 (Process Count)
    stale_process_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 残留进程数 (Stale Process Count)
    health_status: Mapped[HealthStatus] = mapped_column(enum_column(HealthStatus), nullable=False)  # 健康状态 (Health Status)
    issues: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # 问题描述列表，有序 (Ordered Issue List)
    uptime_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 进程运行秒数 (Uptime Seconds)
