"""
汇总与数据保留任务 (Rollup and Retention Task)

整点执行小时汇总，UTC 零点执行日汇总并清理过期数据。汇总器会补齐所有遗漏的小时和日期，
因此错过的触发点在下一次执行时自动补上。

Hourly rollup at minute 0, daily rollup plus purge at midnight UTC. The aggregator
back-fills every missing hour and day, so a missed tick heals on the next one.
"""
import logging
from typing import Dict

from vendmon.core.deps import Pipeline

logger = logging.getLogger(__name__)


async def run_hourly_rollup(pipeline: Pipeline) -> int:
    hours = await pipeline.aggregator.run_hourly()
    if hours:
        logger.info("Hourly rollup wrote %d hours (%s .. %s)", len(hours), hours[0], hours[-1])
    return len(hours)


async def run_daily_rollup(pipeline: Pipeline) -> Dict[str, object]:
    # 日汇总依赖前一天完整的小时汇总，先补齐小时汇总
    await pipeline.aggregator.run_hourly()
    result = await pipeline.aggregator.run_daily()
    logger.info(
        "Daily rollup wrote %d days, purged %d snapshots and %d hourly rollups",
        len(result["days"]), result["snapshots_deleted"], result["hourly_deleted"],
    )
    return result
