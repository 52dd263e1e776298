"""
告警规则引擎 (Alert Rule Engine)

对每条已启用的规则，用同一次采样读数中的对应指标与阈值比较；规则触发且冷却期已过时，
创建告警事件（复制规则的指标、阈值、运算符，严重程度取规则升级级别），然后交给升级分发器。

For every enabled rule, compares the metric from one fresh sampler reading against the
threshold. When a rule trips outside its cooldown window an occurrence is created (rule
fields copied, severity taken from the rule's escalation level) and handed to the
escalation dispatcher.

冷却门控是单条 INSERT ... SELECT ... WHERE NOT EXISTS 语句，之前先对规则行加锁
（SELECT ... FOR UPDATE，SQLite 上为空操作，单条语句本身即原子）。因此手动 check-all
与定时检查并发执行时，同一冷却窗口内也最多只有一条 active 告警。

每条规则使用独立的事务，一条规则出错只记录 RuleEvaluationError，不影响其他规则。
"""
import logging
import operator as op
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import insert, literal, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased, lazyload

from vendmon.core.clock import Clock
from vendmon.core.database import session_scope
from vendmon.core.exceptions import ConflictError, NotFoundError, RuleEvaluationError
from vendmon.models.alert import AlertOccurrence, AlertRule
from vendmon.models.enums import OccurrenceStatus, Operator
from vendmon.schemas.performance import SnapshotReading
from vendmon.services.escalation_dispatcher import EscalationDispatcher
from vendmon.services.sampler import Sampler

logger = logging.getLogger(__name__)

# 支持的比较运算符映射
OPERATORS = {
    Operator.GT: op.gt,
    Operator.GE: op.ge,
    Operator.LT: op.lt,
    Operator.LE: op.le,
    Operator.EQ: op.eq,
}

TRIGGERED = "triggered"
SUPPRESSED = "suppressed"
SKIPPED = "skipped"
NOT_TRIPPED = "not_tripped"


def evaluate(operator, value: float, threshold: float) -> bool:
    """
    比较指标值与阈值 (Compare a metric value against a threshold)

    两边都先四舍五入到 2 位小数，对所有运算符一致，因此 80.001 == 80 成立。

    Args:
        operator: Operator 或其字符串值，如 ">" (Operator or its string value)
    """
    compare = OPERATORS[Operator(operator)]
    return compare(round(float(value), 2), round(float(threshold), 2))


def format_message(rule: AlertRule, value: float) -> str:
    return (
        f"{rule.name}: {rule.metric.value} reached {value:.2f}% "
        f"(threshold: {rule.operator.value} {rule.threshold:g}%)"
    )


async def lock_rule(session: AsyncSession, rule_id: int) -> Optional[AlertRule]:
    """对规则行加锁并返回 (Lock the rule row and return it)"""
    result = await session.execute(
        select(AlertRule)
        .where(AlertRule.id == rule_id)
        .options(lazyload(AlertRule.steps))
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def insert_if_cooled_down(
    session: AsyncSession,
    rule: AlertRule,
    value: float,
    now: datetime,
    message: str,
    is_test: bool = False,
) -> Optional[AlertOccurrence]:
    """
    冷却门控 (Cooldown gate)

    单条语句：当该规则在 [now - cooldown, now] 内没有 active 告警时插入新告警。

    Returns:
        新建的告警事件；仍在冷却期内时返回 None
    """
    recent = aliased(AlertOccurrence)
    in_cooldown = (
        select(recent.id)
        .where(
            recent.rule_id == rule.id,
            recent.status == OccurrenceStatus.ACTIVE,
            recent.created_at >= now - timedelta(minutes=rule.cooldown_minutes),
        )
        .exists()
    )
    T = AlertOccurrence
    values = [
        (T.rule_id, rule.id),
        (T.metric, rule.metric),
        (T.value, round(float(value), 2)),
        (T.threshold, rule.threshold),
        (T.operator, rule.operator),
        (T.status, OccurrenceStatus.ACTIVE),
        (T.severity, rule.escalation_level),
        (T.message, message),
        (T.is_test, is_test),
        (T.created_at, now),
    ]
    source = select(*[literal(v, col.type).label(col.key) for col, v in values]).where(~in_cooldown)
    result = await session.execute(
        insert(AlertOccurrence).from_select([col.key for col, _ in values], source)
    )
    if not result.rowcount:
        return None
    created = await session.execute(
        select(AlertOccurrence)
        .where(AlertOccurrence.rule_id == rule.id)
        .order_by(AlertOccurrence.id.desc())
        .limit(1)
    )
    return created.scalar_one()


class RuleEngine:
    """告警规则引擎 (Alert rule engine)"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        sampler: Sampler,
        clock: Clock,
        dispatcher: EscalationDispatcher,
    ):
        self.session_factory = session_factory
        self.sampler = sampler
        self.clock = clock
        self.dispatcher = dispatcher

    async def _enabled_rule_ids(self) -> List[int]:
        async with session_scope(self.session_factory, "load enabled rules") as session:
            result = await session.execute(
                select(AlertRule.id).where(AlertRule.is_enabled.is_(True)).order_by(AlertRule.id)
            )
            return list(result.scalars().all())

    async def _check(self, rule_id: int, reading: SnapshotReading) -> Tuple[str, Optional[int]]:
        async with session_scope(self.session_factory, f"check rule {rule_id}") as session:
            rule = await lock_rule(session, rule_id)
            if rule is None or not rule.is_enabled:
                return SKIPPED, None
            if reading.is_degraded(rule.metric):
                logger.warning("Rule %d skipped: %s reading is degraded", rule_id, rule.metric.value)
                return SKIPPED, None

            value = reading.metric_value(rule.metric)
            if not evaluate(rule.operator, value, rule.threshold):
                return NOT_TRIPPED, None

            occurrence = await insert_if_cooled_down(
                session, rule, value, self.clock.now(), format_message(rule, value)
            )
            if occurrence is None:
                logger.debug("Rule %d tripped at %.2f but is in cooldown", rule_id, value)
                return SUPPRESSED, None
            logger.warning("Alert %d triggered: %s", occurrence.id, occurrence.message)
            return TRIGGERED, occurrence.id

    async def _escalate(self, occurrence_id: int) -> bool:
        try:
            await self.dispatcher.dispatch(occurrence_id)
            return True
        except Exception:
            logger.exception("Escalation failed for alert %d", occurrence_id)
            return False

    async def check_all(self, reading: Optional[SnapshotReading] = None) -> Dict[str, Any]:
        """
        检查所有已启用的规则 (Check every enabled rule)

        一次检查只采样一次；读取规则列表失败时抛出 PersistenceFailure。

        Returns:
            dict: evaluated / triggered / suppressed / skipped / errors / occurrence_ids
        """
        summary: Dict[str, Any] = {
            "evaluated": 0,
            TRIGGERED: 0,
            SUPPRESSED: 0,
            SKIPPED: 0,
            "errors": 0,
            "occurrence_ids": [],
        }
        rule_ids = await self._enabled_rule_ids()
        if not rule_ids:
            return summary
        if reading is None:
            reading = await self.sampler.sample_async()

        for rule_id in rule_ids:
            try:
                status, occurrence_id = await self._check(rule_id, reading)
            except Exception as e:
                logger.exception("%s", RuleEvaluationError(rule_id, str(e)))
                summary["errors"] += 1
                continue
            if status != SKIPPED:
                summary["evaluated"] += 1
            if status != NOT_TRIPPED:
                summary[status] += 1
            if occurrence_id is not None:
                summary["occurrence_ids"].append(occurrence_id)
                if not await self._escalate(occurrence_id):
                    summary["errors"] += 1

        if summary[TRIGGERED] or summary["errors"]:
            logger.info("Rule check completed: %s", summary)
        return summary

    async def check_rule(self, rule_id: int, reading: Optional[SnapshotReading] = None) -> Dict[str, Any]:
        """
        按需检查单条规则 (Check one rule on demand)

        Raises:
            NotFoundError: 规则不存在
        """
        async with session_scope(self.session_factory, "load rule") as session:
            if await session.get(AlertRule, rule_id) is None:
                raise NotFoundError("Alert rule not found", f"rule_id={rule_id}")
        if reading is None:
            reading = await self.sampler.sample_async()
        status, occurrence_id = await self._check(rule_id, reading)
        if occurrence_id is not None:
            await self._escalate(occurrence_id)
        return {"rule_id": rule_id, "status": status, "occurrence_id": occurrence_id}

    async def test_rule(self, rule_id: int, value: Optional[float] = None) -> AlertOccurrence:
        """
        手动测试规则，产生一条 is_test 告警事件 (Manually trigger a test occurrence)

        经过同一个冷却门控；value 为空时使用阈值本身。

        Raises:
            NotFoundError: 规则不存在
            ConflictError: 规则仍在冷却期内
        """
        async with session_scope(self.session_factory, f"test rule {rule_id}") as session:
            rule = await lock_rule(session, rule_id)
            if rule is None:
                raise NotFoundError("Alert rule not found", f"rule_id={rule_id}")
            test_value = rule.threshold if value is None else value
            occurrence = await insert_if_cooled_down(
                session,
                rule,
                test_value,
                self.clock.now(),
                f"[TEST] {format_message(rule, test_value)}",
                is_test=True,
            )
            if occurrence is None:
                raise ConflictError(
                    "Rule is in its cooldown window",
                    f"rule_id={rule_id}, cooldown_minutes={rule.cooldown_minutes}",
                )
        logger.info("Test alert %d triggered for rule %d", occurrence.id, rule_id)
        await self._escalate(occurrence.id)
        return occurrence
