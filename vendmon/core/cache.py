"""
带有效期的单值缓存 (Single-value TTL cache)

保存 (value, computed_at)，通过注入的时钟判断是否过期，替代模块级全局缓存变量。
"""
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from vendmon.core.clock import Clock

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ComputedValueCache(Generic[T]):
    """Caches one computed value until ``ttl`` has elapsed on ``clock``."""

    def __init__(self, clock: Clock, ttl: timedelta):
        self.clock = clock
        self.ttl = ttl
        self.value: Optional[T] = None
        self.computed_at: Optional[datetime] = None

    def is_fresh(self) -> bool:
        if self.computed_at is None:
            return False
        return self.clock.now() - self.computed_at < self.ttl

    def put(self, value: T) -> T:
        self.value = value
        self.computed_at = self.clock.now()
        return value

    def invalidate(self) -> None:
        self.value = None
        self.computed_at = None

    async def get_or_compute(
        self, compute: Callable[[], Awaitable[T]], force_refresh: bool = False
    ) -> T:
        """返回缓存值；过期或强制刷新时重新计算。重新计算失败且有旧值时返回旧值。"""
        if not force_refresh and self.is_fresh():
            return self.value
        try:
            return self.put(await compute())
        except Exception:
            if self.computed_at is None:
                raise
            logger.exception("Cache refresh failed, serving value computed at %s", self.computed_at)
            return self.value
