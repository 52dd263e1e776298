"""
告警规则检查任务 (Alert Rule Check Task)

按 rule_check_interval_seconds 周期检查全部已启用规则。与手动 check-all 并发执行时，
冷却门控保证同一冷却窗口内只产生一条告警。

Checks every enabled rule on its own cadence; the cooldown gate keeps occurrences unique
when a manual check-all runs at the same time.
"""
import logging
from typing import Any, Dict

from vendmon.core.deps import Pipeline

logger = logging.getLogger(__name__)


async def run_rule_check(pipeline: Pipeline) -> Dict[str, Any]:
    summary = await pipeline.rule_engine.check_all()
    if summary["errors"]:
        logger.warning("Rule check finished with %d errors", summary["errors"])
    return summary
