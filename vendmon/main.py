"""
vendmon 应用入口模块 (vendmon Application Entry Module)

性能监控与告警管道的主应用入口，负责 FastAPI 应用的完整生命周期管理。
包含数据库表创建、管道组件装配、后台调度器启动、路由注册和健康检查。

Main application entry point for the performance monitoring and alerting pipeline,
responsible for FastAPI application lifecycle management: table creation, component
wiring, background scheduler startup, route registration and health checks.

主要功能 (Main Features):
- 数据库表自动创建 (Automatic database table creation)
- 后台任务：采样、小时/日汇总与数据清理、规则检查、延迟升级扫描 (Background jobs)
- 仪表盘查询、告警规则、告警处理和性能建议接口 (Dashboard, rule, alert and recommendation APIs)
- 健康检查 (Health checks)
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from vendmon.core.config import settings
from vendmon.core.database import Base, async_session, engine
from vendmon.core.deps import Pipeline, build_pipeline
from vendmon.core.exceptions import register_exception_handlers
# 导入所有模型以确保 SQLAlchemy 表注册 (Import all models to ensure table registration)
import vendmon.models  # noqa: F401
from vendmon.routers import alert_rules, alerts, performance, recommendations
from vendmon.tasks.registry import build_scheduler

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(pipeline: Optional[Pipeline] = None, start_scheduler: bool = True) -> FastAPI:
    """
    创建 FastAPI 应用 (Create the FastAPI application)

    Args:
        pipeline: 预先装配的管道，测试中传入假时钟和假探针；为空时按配置装配 (pre-wired pipeline)
        start_scheduler: 是否在启动时运行后台调度器 (run the background scheduler on startup)
    """
    pipeline = pipeline or build_pipeline(settings, engine, async_session)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        应用生命周期管理 (Application Lifecycle Management)

        启动时创建数据库表并启动调度器；关闭时停止调度器并释放连接池。
        """
        async with pipeline.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        scheduler = build_scheduler(pipeline, settings)
        app.state.scheduler = scheduler
        scheduler_task = None
        if start_scheduler:
            scheduler_task = asyncio.create_task(scheduler.run_forever())
            logger.info("vendmon started with jobs: %s", ", ".join(scheduler.jobs))

        yield

        scheduler.stop()
        if scheduler_task is not None:
            scheduler_task.cancel()
            try:
                await scheduler_task
            except asyncio.CancelledError:
                pass
        await pipeline.engine.dispose()

    app = FastAPI(
        title="vendmon",
        description="VendHub performance monitoring and alerting | VendHub 性能监控与告警",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    # 注册全局异常处理器 (Register global exception handlers)
    register_exception_handlers(app)

    # 配置 CORS 中间件；接口本身不做认证，由宿主应用负责 (CORS; authentication is left to the host application)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment != "production" else [],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(performance.router)  # 性能数据 (Performance data)
    app.include_router(alert_rules.router)  # 告警规则 (Alert rules)
    app.include_router(alerts.router)  # 告警管理 (Alert management)
    app.include_router(recommendations.router)  # 性能建议 (Recommendations)

    @app.get("/health")
    @app.get("/api/v1/health")
    async def health(request: Request):
        """
        健康检查接口 (Health Check Endpoint)

        检查数据库连通性，并列出最近一次执行失败的后台任务。

        Returns:
            dict: 各组件状态和时间戳 (component status and timestamp)
        """
        checks = {"api": "ok"}

        # 数据库连通性检查 (Database connectivity check)
        try:
            async with pipeline.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            checks["database"] = "error"

        scheduler = getattr(request.app.state, "scheduler", None)
        failing = [job.name for job in scheduler.jobs.values() if job.last_error] if scheduler else []
        checks["jobs"] = "ok" if not failing else "error"

        status = "ok" if all(v == "ok" for v in checks.values()) else "degraded"
        return {
            "status": status,
            "checks": checks,
            "failing_jobs": failing,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


app = create_app()
