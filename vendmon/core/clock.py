"""
时钟抽象模块 (Clock Abstraction Module)

所有与时间相关的逻辑（采样时间戳、冷却窗口、汇总窗口、调度）都通过注入的时钟获取当前时间，
测试中可以替换为可手动推进的时钟，无需真实等待。

Every time-dependent decision (snapshot timestamps, cooldown windows, rollup windows,
scheduling) reads "now" from an injected clock, so tests can substitute a clock that is
advanced by hand instead of waiting in real time.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """时钟协议，只返回 UTC 时间 (Clock protocol, UTC only)"""

    def now(self) -> datetime:
        ...


class SystemClock:
    """生产环境时钟 (Production clock)"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """
    手动推进的时钟 (Manually advanced clock)

    用于测试和回放：时间只在调用 advance()/set() 时变化。
    """

    def __init__(self, start: datetime):
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta = timedelta(), **kwargs) -> datetime:
        self._now = self._now + delta + timedelta(**kwargs)
        return self._now

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        self._now = value


def truncate_to_hour(value: datetime) -> datetime:
    """截断到整点 (Truncate to the hour boundary)"""
    return value.replace(minute=0, second=0, microsecond=0)


def start_of_day(day: date) -> datetime:
    """某个 UTC 日期的零点 (Midnight UTC of a date)"""
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
