"""
性能建议服务 (Performance Recommendations Service)

分析最近 N 天的日汇总，针对每个指标计算平均值、最大值、最小值、趋势（±5% 为平稳）
以及小时汇总中的峰值小时，生成四类建议：
  - peak_usage：峰值小时平均 > 75（> 85 为 critical）
  - trend：上升趋势，按增长率估算到达 90% 的天数
  - cost_optimization：平均 < 40 且最大 < 60，资源过剩
  - capacity_planning：平均 > 70（> 85 为 critical）

建议结果通过 ComputedValueCache 缓存 24 小时；force_refresh 跳过缓存，重新生成失败时返回旧结果。

Analyses the last N days of daily rollups per metric and produces peak-usage, trend,
cost-optimisation and capacity-planning recommendations, cached for 24 hours.
"""
import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from vendmon.core.cache import ComputedValueCache
from vendmon.core.clock import Clock
from vendmon.core.database import session_scope
from vendmon.models.enums import Metric
from vendmon.models.rollup import DailyRollup, HourlyRollup
from vendmon.schemas.recommendation import (
    MetricAnalysis,
    Recommendation,
    RecommendationSeverity,
    RecommendationStats,
    RecommendationType,
)

logger = logging.getLogger(__name__)

TREND_BAND_PERCENT = 5.0
CRITICAL_LEVEL = 90.0


def days_to_threshold(current: float, daily_growth_percent: float, threshold: float = CRITICAL_LEVEL) -> float:
    """按每日增长率估算到达阈值的天数，最多 365 天 (Days until threshold, capped at 365)"""
    if daily_growth_percent <= 0 or current <= 0:
        return math.inf
    factor = 1 + daily_growth_percent / 100
    days = 0
    value = current
    while value < threshold and days < 365:
        value *= factor
        days += 1
    return days


def trend_of(values: List[float]) -> tuple:
    """前后两半均值比较，返回 (趋势, 百分比) (Compare first and second half averages)"""
    half = len(values) // 2
    first = values[:half] or values
    second = values[half:]
    first_avg = sum(first) / len(first)
    second_avg = sum(second) / len(second)
    percentage = (second_avg - first_avg) / first_avg * 100 if first_avg else 0.0
    if percentage > TREND_BAND_PERCENT:
        return "increasing", percentage
    if percentage < -TREND_BAND_PERCENT:
        return "decreasing", percentage
    return "stable", percentage


def peak_hour_of(metric: Metric, hourly: List[HourlyRollup]) -> Optional[tuple]:
    """按一天中的小时平均各小时的最大值，取最高的小时 (Hour of day with the highest mean maximum)"""
    buckets: Dict[int, List[float]] = defaultdict(list)
    for row in hourly:
        buckets[row.hour.hour].append(getattr(row, f"{metric.value}_max"))
    peak_hour, peak_value = 0, 0.0
    for hour, values in sorted(buckets.items()):
        avg = sum(values) / len(values)
        if avg > peak_value:
            peak_hour, peak_value = hour, avg
    return (peak_hour, peak_value) if peak_value > 0 else None


def analyze(daily: List[DailyRollup], hourly: List[HourlyRollup]) -> List[MetricAnalysis]:
    analyses = []
    for metric in Metric:
        values = [getattr(d, f"{metric.value}_avg") for d in daily]
        values = [v for v in values if v > 0]
        if not values:
            continue
        trend, percentage = trend_of(values)
        peak = peak_hour_of(metric, hourly)
        analyses.append(MetricAnalysis(
            metric=metric,
            average=round(sum(values) / len(values), 2),
            max=max(values),
            min=min(values),
            trend=trend,
            trend_percentage=round(percentage, 2),
            peak_hour=peak[0] if peak else None,
            peak_value=round(peak[1], 2) if peak else None,
        ))
    return analyses


def build_recommendations(analyses: List[MetricAnalysis], now: datetime) -> List[Recommendation]:
    recommendations = []
    for a in analyses:
        name = a.metric.value
        upper = name.upper()

        if a.peak_hour is not None and a.peak_value is not None and a.peak_value > 75:
            recommendations.append(Recommendation(
                id=f"peak_{name}",
                type=RecommendationType.PEAK_USAGE,
                severity=RecommendationSeverity.CRITICAL if a.peak_value > 85 else RecommendationSeverity.WARNING,
                title=f"Peak {upper} Usage Detected",
                description=(
                    f"Peak {name} usage occurs at {a.peak_hour}:00 with average {a.peak_value:.1f}%. "
                    f"This is the busiest hour for your system."
                ),
                metric=a.metric,
                estimated_impact=f"{a.peak_value:.1f}% {name} usage",
                suggested_action=(
                    f"Consider scaling up resources or scheduling maintenance during off-peak hours "
                    f"({(a.peak_hour + 1) % 24}:00 - {(a.peak_hour + 4) % 24}:00)"
                ),
                generated_at=now,
            ))

        if a.trend == "increasing":
            days = days_to_threshold(a.average, a.trend_percentage)
            if days < 7:
                severity = RecommendationSeverity.CRITICAL
            elif days < 14:
                severity = RecommendationSeverity.WARNING
            else:
                severity = RecommendationSeverity.INFO
            days_text = "more than a year" if math.isinf(days) else f"{int(days)} days"
            recommendations.append(Recommendation(
                id=f"trend_{name}",
                type=RecommendationType.TREND,
                severity=severity,
                title=f"{upper} Usage Increasing",
                description=(
                    f"{name} usage is increasing by {a.trend_percentage:.1f}% per day. "
                    f"At current growth rate, it will reach critical levels in {days_text}."
                ),
                metric=a.metric,
                estimated_impact=f"{a.trend_percentage:.1f}% daily increase",
                suggested_action=f"Plan capacity expansion or optimize {name} usage to prevent performance degradation.",
                generated_at=now,
            ))

        if a.average < 40 and a.max < 60:
            recommendations.append(Recommendation(
                id=f"cost_{name}",
                type=RecommendationType.COST_OPTIMIZATION,
                severity=RecommendationSeverity.INFO,
                title=f"{upper} Underutilized",
                description=(
                    f"Average {name} usage is only {a.average:.1f}% with peak at {a.max:.1f}%. "
                    f"Your system is overprovisioned."
                ),
                metric=a.metric,
                estimated_impact="Potential 20-30% cost reduction",
                suggested_action="Consider downsizing your infrastructure to reduce costs while maintaining performance.",
                generated_at=now,
            ))

        if a.average > 70:
            recommendations.append(Recommendation(
                id=f"capacity_{name}",
                type=RecommendationType.CAPACITY_PLANNING,
                severity=RecommendationSeverity.CRITICAL if a.average > 85 else RecommendationSeverity.WARNING,
                title=f"{upper} Capacity Planning Needed",
                description=(
                    f"Average {name} usage is {a.average:.1f}%, which is approaching capacity limits. "
                    f"Peak usage reaches {a.max:.1f}%."
                ),
                metric=a.metric,
                estimated_impact="Risk of performance degradation",
                suggested_action="Plan infrastructure upgrade to handle future growth and maintain service quality.",
                generated_at=now,
            ))
    return recommendations


class RecommendationService:
    """性能建议服务 (Performance recommendation service)"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Clock,
        window_days: int = 7,
        ttl: timedelta = timedelta(hours=24),
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.window_days = window_days
        self.cache: ComputedValueCache[List[Recommendation]] = ComputedValueCache(clock, ttl)

    async def analyze_metrics(self) -> List[MetricAnalysis]:
        now = self.clock.now()
        start = now - timedelta(days=self.window_days)
        async with session_scope(self.session_factory, "load rollups for recommendations") as session:
            daily = list((await session.execute(
                select(DailyRollup)
                .where(DailyRollup.day >= start.date(), DailyRollup.day <= now.date())
                .order_by(DailyRollup.day)
            )).scalars().all())
            hourly = list((await session.execute(
                select(HourlyRollup).where(HourlyRollup.hour >= start).order_by(HourlyRollup.hour)
            )).scalars().all())
        return analyze(daily, hourly)

    async def generate(self) -> List[Recommendation]:
        recommendations = build_recommendations(await self.analyze_metrics(), self.clock.now())
        logger.info("Generated %d performance recommendations", len(recommendations))
        return recommendations

    async def get_recommendations(self, force_refresh: bool = False) -> List[Recommendation]:
        return await self.cache.get_or_compute(self.generate, force_refresh=force_refresh)

    async def get_by_type(self, rec_type: RecommendationType) -> List[Recommendation]:
        return [r for r in await self.get_recommendations() if r.type == rec_type]

    async def get_critical(self) -> List[Recommendation]:
        return [r for r in await self.get_recommendations() if r.severity == RecommendationSeverity.CRITICAL]

    async def get_stats(self) -> RecommendationStats:
        recommendations = await self.get_recommendations()
        stats = RecommendationStats(total=len(recommendations))
        for rec in recommendations:
            setattr(stats, rec.severity.value, getattr(stats, rec.severity.value) + 1)
            stats.by_type[rec.type.value] = stats.by_type.get(rec.type.value, 0) + 1
        return stats
