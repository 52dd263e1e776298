"""
任务调度器模块 (Job Scheduler Module)

替代隐式 cron 表达式的显式调度器：每个后台任务以固定间隔注册，触发时间对齐到间隔边界
（60 秒任务在整分钟、1 小时任务在整点、1 天任务在 UTC 零点触发）。当前时间由注入的时钟提供，
测试中推进时钟后调用 run_pending() 即可模拟时间流逝。

Explicit replacement for implicit cron expressions: each background job is registered with
a fixed interval and fires on interval boundaries (a 60 s job on the minute, a 1 h job at
minute 0, a 1 day job at midnight UTC). "Now" comes from the injected clock, so tests
advance the clock and call run_pending() instead of waiting.

任务之间相互隔离：一个任务抛出异常只会被记录日志，不影响其他任务，也不会终止调度循环。
错过的触发点不会补跑多次，下一次触发时由任务自身处理遗留数据（自愈）。
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from vendmon.core.clock import Clock

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class ScheduledJob:
    """已注册的任务及其运行状态 (A registered job and its run state)"""
    name: str
    interval: timedelta
    task: Callable[[], Awaitable[Any]]
    next_run_at: datetime
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    run_count: int = 0
    running: bool = False


def next_boundary(after: datetime, interval: timedelta) -> datetime:
    """返回严格晚于 after 的下一个间隔边界 (Next interval boundary strictly after `after`)"""
    elapsed = after - EPOCH
    periods = elapsed // interval
    return EPOCH + (periods + 1) * interval


class Scheduler:
    """
    显式任务调度器 (Explicit Job Scheduler)

    register(name, interval, task) 注册任务；run_pending() 执行所有到期任务一次；
    run_forever() 在两次到期之间休眠，直到 stop() 被调用。
    """

    def __init__(self, clock: Clock, max_sleep_seconds: float = 30.0):
        self.clock = clock
        self.max_sleep_seconds = max_sleep_seconds
        self.jobs: Dict[str, ScheduledJob] = {}
        self._stop_event: Optional[asyncio.Event] = None

    def register(
        self,
        name: str,
        interval: timedelta,
        task: Callable[[], Awaitable[Any]],
        run_immediately: bool = False,
    ) -> ScheduledJob:
        """
        注册周期任务 (Register a periodic job)

        Args:
            name: 任务名称，唯一 (unique job name)
            interval: 触发间隔 (firing interval)
            task: 无参协程函数 (zero-argument coroutine function)
            run_immediately: 为 True 时下一次 run_pending() 立即执行 (fire on the next run_pending())
        """
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        if name in self.jobs:
            raise ValueError(f"job {name!r} already registered")
        now = self.clock.now()
        job = ScheduledJob(
            name=name,
            interval=interval,
            task=task,
            next_run_at=now if run_immediately else next_boundary(now, interval),
        )
        self.jobs[name] = job
        logger.info("Scheduled job %s every %s, first run at %s", name, interval, job.next_run_at)
        return job

    def due_jobs(self) -> List[ScheduledJob]:
        now = self.clock.now()
        return [job for job in self.jobs.values() if job.next_run_at <= now and not job.running]

    async def run_pending(self) -> List[str]:
        """执行所有到期任务一次，返回执行过的任务名 (Run every due job once)"""
        due = self.due_jobs()
        if not due:
            return []
        now = self.clock.now()
        await asyncio.gather(*(self._run_job(job, now) for job in due))
        return [job.name for job in due]

    async def run_job(self, name: str) -> None:
        """立即执行指定任务，不影响其下一次触发时间 (Run a job now, keep its schedule)"""
        job = self.jobs[name]
        await self._execute(job)

    async def _run_job(self, job: ScheduledJob, now: datetime) -> None:
        job.next_run_at = next_boundary(now, job.interval)
        job.last_run_at = now
        await self._execute(job)

    async def _execute(self, job: ScheduledJob) -> None:
        job.running = True
        try:
            await job.task()
            job.last_error = None
        except Exception as e:
            # 任务失败只记录，下一次触发自动重试 (Failures are logged, the next tick retries)
            job.last_error = str(e)
            logger.exception("Scheduled job %s failed", job.name)
        finally:
            job.running = False
            job.run_count += 1

    def seconds_until_next(self) -> float:
        if not self.jobs:
            return self.max_sleep_seconds
        now = self.clock.now()
        soonest = min(job.next_run_at for job in self.jobs.values())
        wait = (soonest - now).total_seconds()
        return max(0.0, min(wait, self.max_sleep_seconds))

    async def run_forever(self) -> None:
        """调度主循环 (Scheduler main loop)"""
        self._stop_event = asyncio.Event()
        logger.info("Scheduler started with %d jobs", len(self.jobs))
        while not self._stop_event.is_set():
            try:
                await self.run_pending()
            except asyncio.CancelledError:
                logger.info("Scheduler cancelled")
                raise
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.seconds_until_next())
            except asyncio.TimeoutError:
                pass  # 到达下一个触发点 (next firing point reached)
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
