"""
性能建议模式定义 (Performance Recommendation Schema Definitions)
"""
import enum
from datetime import datetime

from pydantic import BaseModel, Field

from vendmon.models.enums import Metric


class RecommendationType(str, enum.Enum):
    PEAK_USAGE = "peak_usage"
    TREND = "trend"
    COST_OPTIMIZATION = "cost_optimization"
    CAPACITY_PLANNING = "capacity_planning"


class RecommendationSeverity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class MetricAnalysis(BaseModel):
    """单个指标在分析窗口内的统计 (Statistics of one metric over the analysis window)"""
    metric: Metric
    average: float
    max: float
    min: float
    trend: str  # increasing / decreasing / stable
    trend_percentage: float
    peak_hour: int | None = None
    peak_value: float | None = None


class Recommendation(BaseModel):
    id: str
    type: RecommendationType
    severity: RecommendationSeverity
    title: str
    description: str
    metric: Metric
    estimated_impact: str
    suggested_action: str
    generated_at: datetime


class RecommendationStats(BaseModel):
    total: int = 0
    critical: int = 0
    warning: int = 0
    info: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
