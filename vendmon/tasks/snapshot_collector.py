"""
快照采集任务 (Snapshot Collector Task)

每个采样周期读取一次主机指标并写入快照表。采样在线程池中执行，不阻塞事件循环；
写入失败时整条快照回滚，由调度器记录日志，下一个周期继续采集。

Reads one host sample per sampling tick and appends it to the snapshot table. Sampling
runs in the default executor; a failed write is rolled back and logged by the scheduler.
"""
import logging

from vendmon.core.database import session_scope
from vendmon.core.deps import Pipeline
from vendmon.schemas.performance import SnapshotReading
from vendmon.services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


async def collect_snapshot(pipeline: Pipeline) -> SnapshotReading:
    reading = await pipeline.sampler.sample_async()
    async with session_scope(pipeline.session_factory, "append snapshot") as session:
        await SnapshotStore(session).append(reading)
    if reading.issues:
        logger.warning("Snapshot %s is %s: %s", reading.timestamp, reading.health_status.value, "; ".join(reading.issues))
    else:
        logger.debug("Snapshot %s recorded", reading.timestamp)
    return reading
