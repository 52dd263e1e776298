"""
延迟升级扫描任务 (Delayed Escalation Sweep Task)

每分钟执行一次，把到期的延迟升级步骤交给升级分发器执行。

Runs the due delayed escalation steps once a minute.
"""
import logging
from typing import Dict

from vendmon.core.deps import Pipeline

logger = logging.getLogger(__name__)


async def run_escalation_sweep(pipeline: Pipeline) -> Dict[str, int]:
    stats = await pipeline.dispatcher.sweep()
    if stats["cancelled"]:
        logger.info("%d delayed escalations cancelled (alert no longer active)", stats["cancelled"])
    return stats
