"""
性能数据模式定义 (Performance Schema Definitions)

采样读数、快照、汇总以及统计查询的请求/响应模式。

Schemas for sampler readings, snapshots, rollups and statistics queries.
"""
from datetime import date, datetime

from pydantic import BaseModel, Field

from vendmon.models.enums import HealthStatus, Metric


# ── Sampler reading ──

class MemoryReading(BaseModel):
    percent: float = 0.0
    used_mb: int = 0
    total_mb: int = 0


class CpuReading(BaseModel):
    percent: float = 0.0
    cores: int = 0
    load_avg: float = 0.0


class DiskReading(BaseModel):
    percent: float = 0.0
    used_gb: float = 0.0
    total_gb: float = 0.0


class SnapshotReading(BaseModel):
    """
    一次采样的完整读数 (One complete sampler reading)

    degraded_metrics 列出探测失败、当前为占位值的指标，规则引擎不会基于它们判断。
    """
    timestamp: datetime
    memory: MemoryReading = Field(default_factory=MemoryReading)
    cpu: CpuReading = Field(default_factory=CpuReading)
    disk: DiskReading = Field(default_factory=DiskReading)
    process_count: int = 0
    stale_process_count: int = 0
    health_status: HealthStatus = HealthStatus.HEALTHY
    issues: list[str] = Field(default_factory=list)
    uptime_seconds: int = 0
    degraded_metrics: list[Metric] = Field(default_factory=list)

    def metric_value(self, metric: Metric) -> float:
        """按指标取使用率百分比 (Usage percent for a metric)"""
        if metric == Metric.MEMORY:
            return self.memory.percent
        if metric == Metric.CPU:
            return self.cpu.percent
        return self.disk.percent

    def is_degraded(self, metric: Metric) -> bool:
        return metric in self.degraded_metrics


# ── Stored rows ──

class SnapshotResponse(BaseModel):
    id: int
    timestamp: datetime
    memory_percent: float
    memory_used_mb: int
    memory_total_mb: int
    cpu_percent: float
    cpu_cores: int
    cpu_load_avg: float
    disk_percent: float
    disk_used_gb: float
    disk_total_gb: float
    process_count: int
    stale_process_count: int
    health_status: HealthStatus
    issues: list[str]
    uptime_seconds: int

    model_config = {"from_attributes": True}


class HourlyRollupResponse(BaseModel):
    id: int
    hour: datetime
    memory_avg: float
    memory_max: float
    memory_min: float
    cpu_avg: float
    cpu_max: float
    cpu_min: float
    disk_avg: float
    disk_max: float
    stale_process_avg: float
    critical_events_count: int
    warning_events_count: int
    record_count: int

    model_config = {"from_attributes": True}


class DailyRollupResponse(BaseModel):
    id: int
    day: date
    memory_avg: float
    memory_max: float
    memory_min: float
    cpu_avg: float
    cpu_max: float
    cpu_min: float
    disk_avg: float
    disk_max: float
    stale_process_avg: float
    critical_events_count: int
    warning_events_count: int
    record_count: int

    model_config = {"from_attributes": True}


# ── Statistics ──

class MetricStats(BaseModel):
    """单个指标的 avg/max/min (avg/max/min of one metric)"""
    avg: float
    max: float
    min: float


class PerformanceStatistics(BaseModel):
    start: datetime
    end: datetime
    memory: MetricStats
    cpu: MetricStats
    disk: MetricStats
    data_points: int


class PeriodComparison(BaseModel):
    """两个时间段的平均值差异，difference = period2 - period1 (Average differences)"""
    period1: PerformanceStatistics | None
    period2: PerformanceStatistics | None
    memory_diff: float | None = None
    cpu_diff: float | None = None
    disk_diff: float | None = None


class DaySummary(BaseModel):
    day: date
    daily: DailyRollupResponse | None
    hourly: list[HourlyRollupResponse]
    peak_memory_hour: datetime | None = None
    peak_cpu_hour: datetime | None = None
