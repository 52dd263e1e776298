"""
FastAPI 依赖项与组件装配模块 (FastAPI Dependencies and Component Wiring Module)

按配置创建监控管道的全部组件（时钟、采样器、通知网关、升级分发器、规则引擎、汇总器、建议服务），
挂在 app.state.pipeline 上，路由通过依赖函数取用。测试中可传入假时钟、假探针和记录型适配器。

Builds every pipeline component from settings and exposes them to routers through
dependency functions reading app.state.pipeline. Tests inject a manual clock, a fake
probe and recording adapters instead.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from vendmon.core.clock import Clock, SystemClock
from vendmon.core.config import Settings
from vendmon.models.enums import Channel
from vendmon.services.channels import ChannelAdapter, build_default_adapters
from vendmon.services.escalation_dispatcher import EscalationDispatcher
from vendmon.services.maintenance import DefaultMaintenanceHooks, MaintenanceHooks
from vendmon.services.notification_gateway import NotificationGateway
from vendmon.services.recommendations import RecommendationService
from vendmon.services.rollup_aggregator import RollupAggregator
from vendmon.services.rule_engine import RuleEngine
from vendmon.services.sampler import HostProbe, PsutilProbe, Sampler


@dataclass
class Pipeline:
    """监控管道组件集合 (The wired pipeline components)"""
    engine: AsyncEngine
    session_factory: async_sessionmaker
    clock: Clock
    sampler: Sampler
    gateway: NotificationGateway
    dispatcher: EscalationDispatcher
    rule_engine: RuleEngine
    aggregator: RollupAggregator
    recommendations: RecommendationService


def build_pipeline(
    settings: Settings,
    engine: AsyncEngine,
    session_factory: async_sessionmaker,
    clock: Optional[Clock] = None,
    probe: Optional[HostProbe] = None,
    adapters: Optional[Dict[Channel, ChannelAdapter]] = None,
    hooks: Optional[MaintenanceHooks] = None,
) -> Pipeline:
    """
    按配置装配管道 (Wire the pipeline from settings)

    未传入的依赖使用生产实现：系统时钟、psutil 探针、SMTP/Telegram/站内信适配器和默认维护钩子。
    """
    clock = clock or SystemClock()
    sampler = Sampler(
        probe or PsutilProbe(cpu_interval=settings.sampler_cpu_interval_seconds),
        clock,
        stale_age_seconds=settings.stale_process_age_seconds,
    )
    gateway = NotificationGateway(
        session_factory, clock, adapters if adapters is not None else build_default_adapters(settings)
    )
    dispatcher = EscalationDispatcher(
        session_factory,
        clock,
        gateway,
        hooks or DefaultMaintenanceHooks(
            sampler, settings.scale_up_webhook_url, timeout=settings.notification_timeout_seconds
        ),
        honor_delays=settings.escalation_honor_delays,
    )
    return Pipeline(
        engine=engine,
        session_factory=session_factory,
        clock=clock,
        sampler=sampler,
        gateway=gateway,
        dispatcher=dispatcher,
        rule_engine=RuleEngine(session_factory, sampler, clock, dispatcher),
        aggregator=RollupAggregator(
            session_factory,
            clock,
            raw_retention_days=settings.raw_retention_days,
            hourly_retention_days=settings.hourly_retention_days,
        ),
        recommendations=RecommendationService(
            session_factory,
            clock,
            window_days=settings.recommendations_window_days,
            ttl=timedelta(hours=settings.recommendations_ttl_hours),
        ),
    )


def get_pipeline(request: Request) -> Pipeline:
    """FastAPI 依赖项：当前应用的管道 (FastAPI dependency: the app's pipeline)"""
    return request.app.state.pipeline


def get_clock(request: Request) -> Clock:
    return request.app.state.pipeline.clock
