"""
后台任务注册 (Background Job Registration)

把所有周期任务注册到调度器：
  - collect_snapshot：每 sampling_interval_seconds（默认 60 秒）
  - hourly_rollup：每小时整点
  - daily_rollup：每天 UTC 零点
  - rule_check：每 rule_check_interval_seconds
  - escalation_sweep：每 escalation_sweep_interval_seconds

Registers every periodic job of the pipeline with the scheduler.
"""
from datetime import timedelta
from functools import partial

from vendmon.core.config import Settings
from vendmon.core.deps import Pipeline
from vendmon.core.scheduler import Scheduler
from vendmon.tasks.alert_checker import run_rule_check
from vendmon.tasks.escalation_sweep import run_escalation_sweep
from vendmon.tasks.rollup_task import run_daily_rollup, run_hourly_rollup
from vendmon.tasks.snapshot_collector import collect_snapshot

COLLECT_SNAPSHOT = "collect_snapshot"
HOURLY_ROLLUP = "hourly_rollup"
DAILY_ROLLUP = "daily_rollup"
RULE_CHECK = "rule_check"
ESCALATION_SWEEP = "escalation_sweep"


def register_jobs(scheduler: Scheduler, pipeline: Pipeline, settings: Settings) -> Scheduler:
    scheduler.register(
        COLLECT_SNAPSHOT,
        timedelta(seconds=settings.sampling_interval_seconds),
        partial(collect_snapshot, pipeline),
    )
    scheduler.register(HOURLY_ROLLUP, timedelta(hours=1), partial(run_hourly_rollup, pipeline))
    scheduler.register(DAILY_ROLLUP, timedelta(days=1), partial(run_daily_rollup, pipeline))
    scheduler.register(
        RULE_CHECK,
        timedelta(seconds=settings.rule_check_interval_seconds),
        partial(run_rule_check, pipeline),
    )
    scheduler.register(
        ESCALATION_SWEEP,
        timedelta(seconds=settings.escalation_sweep_interval_seconds),
        partial(run_escalation_sweep, pipeline),
    )
    return scheduler


def build_scheduler(pipeline: Pipeline, settings: Settings) -> Scheduler:
    return register_jobs(Scheduler(pipeline.clock), pipeline, settings)
