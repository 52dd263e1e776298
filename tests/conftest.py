"""
vendmon 测试基础配置

提供每个测试独立的 SQLite 文件数据库、手动推进的时钟、假主机探针、记录型通知适配器、
假维护钩子，以及装配好的管道和 FastAPI 异步测试客户端。
所有测试不依赖外部 PostgreSQL / SMTP / Telegram。
"""
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict, List, Optional, Set

# 必须在导入 vendmon 之前设置环境变量，避免真实连接
os.environ["VENDMON_DATABASE_URL_OVERRIDE"] = "sqlite+aiosqlite:///:memory:"
os.environ["VENDMON_ENVIRONMENT"] = "test"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from vendmon.core.clock import ManualClock
from vendmon.core.config import settings
from vendmon.core.database import Base, get_db
from vendmon.core.deps import Pipeline, build_pipeline
from vendmon.models.alert import AlertOccurrence, AlertRule
from vendmon.models.enums import Channel, Metric, Operator, UserRole
from vendmon.models.user import User
from vendmon.schemas.alert import AlertRuleCreate
from vendmon.schemas.performance import CpuReading, DiskReading, MemoryReading
from vendmon.services.channels import ChannelResult, NotificationPayload
from vendmon.services.rule_store import RuleStore
from vendmon.services.sampler import ProcessInfo

START = datetime(2024, 3, 4, 10, 0, tzinfo=timezone.utc)


# ── Fakes ─────────────────────────────────────────────────────────────

class FakeProbe:
    """可设置读数的主机探针；fail 中的探针会抛出异常。"""

    def __init__(self, memory: float = 50.0, cpu: float = 20.0, disk: float = 40.0):
        self.memory_percent = memory
        self.cpu_percent = cpu
        self.disk_percent = disk
        self.process_list: List[ProcessInfo] = []
        self.fail: Set[str] = set()
        self.terminated: List[int] = []

    def _check(self, name: str) -> None:
        if name in self.fail:
            raise RuntimeError(f"{name} unavailable")

    def memory(self) -> MemoryReading:
        self._check("memory")
        return MemoryReading(percent=self.memory_percent, used_mb=int(self.memory_percent * 80), total_mb=8000)

    def cpu(self) -> CpuReading:
        self._check("cpu")
        return CpuReading(percent=self.cpu_percent, cores=4, load_avg=1.5)

    def disk(self) -> DiskReading:
        self._check("disk")
        return DiskReading(percent=self.disk_percent, used_gb=self.disk_percent, total_gb=100.0)

    def processes(self) -> List[ProcessInfo]:
        self._check("process")
        return list(self.process_list)

    def terminate(self, pid: int) -> None:
        self._check("terminate")
        self.terminated.append(pid)


@dataclass
class SentMessage:
    target: str
    payload: NotificationPayload


class RecordingAdapter:
    """记录每次发送的渠道适配器；error 非空时 send 抛出异常。"""

    def __init__(self, channel: Channel, attribute: Optional[str], missing_target_reason: str):
        self.channel = channel
        self.attribute = attribute
        self.missing_target_reason = missing_target_reason
        self.sent: List[SentMessage] = []
        self.error: Optional[Exception] = None

    def resolve_target(self, user: User) -> Optional[str]:
        if self.attribute is None:
            return str(user.id)
        return getattr(user, self.attribute)

    async def send(self, target: str, payload: NotificationPayload) -> ChannelResult:
        if self.error is not None:
            raise self.error
        self.sent.append(SentMessage(target, payload))
        return ChannelResult(success=True)


@dataclass
class FakeHooks:
    """记录调用的维护钩子；fail 中的动作会抛出异常。"""
    calls: List[tuple] = field(default_factory=list)
    fail: Set[str] = field(default_factory=set)

    async def _call(self, action: str, occurrence: AlertOccurrence) -> Dict[str, int]:
        self.calls.append((action, occurrence.id))
        if action in self.fail:
            raise RuntimeError(f"{action} failed")
        return {}

    async def auto_cleanup(self, occurrence: AlertOccurrence) -> Dict[str, int]:
        return await self._call("auto_cleanup", occurrence)

    async def scale_up(self, occurrence: AlertOccurrence) -> Dict[str, int]:
        return await self._call("scale_up", occurrence)


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine(tmp_path):
    """每个测试一个 SQLite 文件数据库，多个会话可以并发访问。"""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'vendmon.db'}", echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """提供一个干净的数据库会话。"""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def adapters() -> Dict[Channel, RecordingAdapter]:
    return {
        Channel.EMAIL: RecordingAdapter(Channel.EMAIL, "email", "User email not found"),
        Channel.CHAT: RecordingAdapter(Channel.CHAT, "telegram_chat_id", "User Telegram ID not found"),
        Channel.IN_APP: RecordingAdapter(Channel.IN_APP, None, "User not found"),
    }


@pytest.fixture
def hooks() -> FakeHooks:
    return FakeHooks()


@pytest.fixture
def pipeline(engine, session_factory, clock, probe, adapters, hooks) -> Pipeline:
    return build_pipeline(settings, engine, session_factory, clock=clock, probe=probe, adapters=adapters, hooks=hooks)


@pytest_asyncio.fixture
async def client(pipeline: Pipeline) -> AsyncGenerator[AsyncClient, None]:
    """提供配置好依赖覆盖的异步 HTTP 测试客户端。"""
    from vendmon.main import create_app

    app = create_app(pipeline, start_scheduler=False)

    async def override_get_db():
        async with pipeline.session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Data helpers ──────────────────────────────────────────────────────

async def _create_user(session_factory, **kwargs) -> User:
    values = {"name": "Operator", "role": UserRole.USER, "is_active": True}
    values.update(kwargs)
    async with session_factory() as session:
        user = User(**values)
        session.add(user)
        await session.commit()
        return user


async def _create_rule(session_factory, clock, **kwargs) -> AlertRule:
    values = {
        "name": "High memory",
        "metric": Metric.MEMORY,
        "threshold": 90,
        "operator": Operator.GT,
        "cooldown_minutes": 5,
    }
    values.update(kwargs)
    async with session_factory() as session:
        return await RuleStore(session, clock).create_rule(AlertRuleCreate(**values))


@pytest_asyncio.fixture
async def admin_user(session_factory) -> User:
    return await _create_user(
        session_factory, name="Admin", email="admin@vendhub.test", telegram_chat_id="1001", role=UserRole.ADMIN
    )


@pytest_asyncio.fixture
async def operator_user(session_factory) -> User:
    return await _create_user(session_factory, name="Operator", email="ops@vendhub.test", telegram_chat_id="2002")


@pytest.fixture
def make_rule(session_factory, clock):
    """创建告警规则的工厂，默认 memory > 90，冷却 5 分钟。"""
    async def _make(**kwargs) -> AlertRule:
        return await _create_rule(session_factory, clock, **kwargs)
    return _make


@pytest.fixture
def make_user(session_factory):
    async def _make(**kwargs) -> User:
        return await _create_user(session_factory, **kwargs)
    return _make
