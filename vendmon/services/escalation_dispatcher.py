"""
告警升级分发器 (Alert Escalation Dispatcher)

新告警事件产生后，按 level 升序执行其规则的升级步骤（与存储顺序无关）：
  - notify_user / notify_admin：为每个目标用户 × 步骤渠道创建通知记录并交给通知网关；
    规则关闭 notify_user / notify_admin 时跳过对应步骤；notify_admin 未指定目标时通知所有启用的管理员
  - auto_cleanup / scale_up：调用维护钩子，钩子失败只记录日志，不影响后续步骤
  - 规则的可选自动动作在全部步骤之后执行一次

After a new occurrence is created, runs its rule's escalation steps in ascending level
order regardless of storage order. notify_* steps create one intent per target user and
step channel and hand them to the gateway; maintenance steps call the hooks, and a hook
failure is logged without stopping later steps. The rule's optional auto action runs once
after the steps.

延迟升级：delay_minutes 尚未到期的步骤写入待执行队列，due_at = max(触发时间 + 延迟, 上一级的 due_at)，
保证按级别顺序执行。升级扫描任务在告警仍为 active 时执行到期步骤，告警被确认或解决后取消。
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vendmon.core.clock import Clock
from vendmon.core.database import session_scope
from vendmon.core.exceptions import NotFoundError
from vendmon.models.alert import AlertOccurrence, AlertRule
from vendmon.models.enums import AutoAction, OccurrenceStatus, StepAction, UserRole
from vendmon.models.escalation import EscalationStep, PendingEscalation
from vendmon.models.notification import NotificationIntent
from vendmon.models.user import User
from vendmon.services.maintenance import MaintenanceHooks
from vendmon.services.notification_gateway import NotificationGateway

logger = logging.getLogger(__name__)


def order_steps(steps: List[EscalationStep]) -> List[EscalationStep]:
    """按 level 升序排列升级步骤 (Steps ascending by level)"""
    return sorted(steps, key=lambda s: s.level)


def schedule_due_times(created_at: datetime, steps: List[EscalationStep]) -> List[Tuple[EscalationStep, datetime]]:
    """
    计算每个步骤的到期时间 (Due time of every step)

    due_at 单调不减，后面的级别不会早于前面的级别执行。
    """
    due_times = []
    previous = created_at
    for step in order_steps(steps):
        due = max(created_at + timedelta(minutes=step.delay_minutes), previous)
        due_times.append((step, due))
        previous = due
    return due_times


class EscalationDispatcher:
    """告警升级分发器 (Escalation dispatcher)"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Clock,
        gateway: NotificationGateway,
        hooks: MaintenanceHooks,
        honor_delays: bool = True,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.gateway = gateway
        self.hooks = hooks
        self.honor_delays = honor_delays

    async def _load(self, occurrence_id: int) -> Tuple[AlertOccurrence, Optional[AlertRule]]:
        async with session_scope(self.session_factory, "load occurrence for escalation") as session:
            occurrence = await session.get(AlertOccurrence, occurrence_id)
            if occurrence is None:
                raise NotFoundError("Alert not found", f"alert_id={occurrence_id}")
            rule = (await session.execute(
                select(AlertRule).where(AlertRule.id == occurrence.rule_id)
            )).scalar_one_or_none()
            return occurrence, rule

    async def dispatch(self, occurrence_id: int) -> Dict[str, Any]:
        """
        执行新告警事件的升级流程 (Run the escalation of a new occurrence)

        Returns:
            dict: executed / scheduled 级别列表、创建的通知记录、钩子失败数、自动动作
        """
        occurrence, rule = await self._load(occurrence_id)
        result: Dict[str, Any] = {
            "occurrence_id": occurrence_id,
            "executed": [],
            "scheduled": [],
            "intents": [],
            "hook_failures": 0,
            "auto_action": None,
        }
        if rule is None:
            logger.warning("Alert %d has no rule anymore, nothing to escalate", occurrence_id)
            return result

        now = self.clock.now()
        deferred: List[PendingEscalation] = []
        for step, due_at in schedule_due_times(occurrence.created_at, rule.steps):
            if self.honor_delays and (deferred or due_at > now):
                deferred.append(PendingEscalation(
                    occurrence_id=occurrence.id,
                    step_id=step.id,
                    level=step.level,
                    due_at=due_at,
                    cancelled=False,
                ))
                result["scheduled"].append(step.level)
                continue
            outcome = await self.execute_step(occurrence, rule, step)
            result["executed"].append(step.level)
            result["intents"].extend(outcome["intents"])
            result["hook_failures"] += outcome["hook_failures"]

        if deferred:
            async with session_scope(self.session_factory, "schedule delayed escalation") as session:
                session.add_all(deferred)
            logger.info("Alert %d: escalation levels %s scheduled", occurrence.id, result["scheduled"])

        if rule.auto_action is not None:
            result["auto_action"] = rule.auto_action.value
            if not await self._run_hook(rule.auto_action.value, occurrence):
                result["hook_failures"] += 1

        logger.info(
            "Alert %d escalated: executed=%s scheduled=%s intents=%d",
            occurrence.id, result["executed"], result["scheduled"], len(result["intents"]),
        )
        return result

    async def execute_step(
        self, occurrence: AlertOccurrence, rule: AlertRule, step: EscalationStep
    ) -> Dict[str, Any]:
        """执行单个升级步骤 (Execute one escalation step)"""
        outcome: Dict[str, Any] = {"intents": [], "hook_failures": 0}
        if step.action == StepAction.NOTIFY_USER:
            if not rule.notify_user:
                logger.info("Alert %d level %d: notify_user disabled on rule", occurrence.id, step.level)
                return outcome
            targets = list(step.target_users or [])
        elif step.action == StepAction.NOTIFY_ADMIN:
            if not rule.notify_admin:
                logger.info("Alert %d level %d: notify_admin disabled on rule", occurrence.id, step.level)
                return outcome
            targets = list(step.target_users or []) or await self._active_admin_ids()
        else:
            if not await self._run_hook(step.action.value, occurrence):
                outcome["hook_failures"] = 1
            return outcome

        intent_ids = await self._create_intents(occurrence.id, targets, step)
        outcome["intents"] = intent_ids
        await self.gateway.deliver_many(intent_ids)
        return outcome

    async def _run_hook(self, action: str, occurrence: AlertOccurrence) -> bool:
        hook = self.hooks.auto_cleanup if action == AutoAction.AUTO_CLEANUP.value else self.hooks.scale_up
        try:
            await hook(occurrence)
            return True
        except Exception:
            logger.exception("Maintenance hook %s failed for alert %d", action, occurrence.id)
            return False

    async def _active_admin_ids(self) -> List[int]:
        async with session_scope(self.session_factory, "list admins") as session:
            result = await session.execute(
                select(User.id)
                .where(User.role == UserRole.ADMIN, User.is_active.is_(True))
                .order_by(User.id)
            )
            return list(result.scalars().all())

    async def _create_intents(self, alert_id: int, user_ids: List[int], step: EscalationStep) -> List[int]:
        """
        为目标用户创建通知记录，同一 (告警, 用户, 渠道) 只创建一次 (Deduplicated per alert, user, channel)

        Returns:
            新建记录的 ID 列表 (ids of newly created intents)
        """
        unique_ids = list(dict.fromkeys(user_ids))
        if not unique_ids:
            return []
        async with session_scope(self.session_factory, "create notification intents") as session:
            existing = set((await session.execute(
                select(NotificationIntent.user_id).where(
                    NotificationIntent.alert_id == alert_id,
                    NotificationIntent.channel == step.notification_channel,
                    NotificationIntent.user_id.in_(unique_ids),
                )
            )).scalars().all())
            now = self.clock.now()
            intents = [
                NotificationIntent(
                    alert_id=alert_id,
                    user_id=user_id,
                    channel=step.notification_channel,
                    created_at=now,
                )
                for user_id in unique_ids if user_id not in existing
            ]
            session.add_all(intents)
            await session.flush()
            return [intent.id for intent in intents]

    # ── Delayed escalation ──

    async def sweep(self) -> Dict[str, int]:
        """
        执行到期的延迟升级步骤 (Run due delayed escalation steps)

        告警已不是 active 或步骤已被删除时取消该条记录。
        """
        now = self.clock.now()
        async with session_scope(self.session_factory, "list due escalations") as session:
            pending = list((await session.execute(
                select(PendingEscalation)
                .where(
                    PendingEscalation.dispatched_at.is_(None),
                    PendingEscalation.cancelled.is_(False),
                    PendingEscalation.due_at <= now,
                )
                .order_by(PendingEscalation.occurrence_id, PendingEscalation.due_at, PendingEscalation.level)
            )).scalars().all())

        stats = {"due": len(pending), "dispatched": 0, "cancelled": 0}
        for item in pending:
            async with session_scope(self.session_factory, "load delayed escalation") as session:
                occurrence = await session.get(AlertOccurrence, item.occurrence_id)
                step = await session.get(EscalationStep, item.step_id)
                rule = None
                if occurrence is not None:
                    rule = (await session.execute(
                        select(AlertRule).where(AlertRule.id == occurrence.rule_id)
                    )).scalar_one_or_none()

            if occurrence is None or occurrence.status != OccurrenceStatus.ACTIVE or step is None or rule is None:
                await self._mark(item.id, cancelled=True)
                stats["cancelled"] += 1
                continue

            await self.execute_step(occurrence, rule, step)
            await self._mark(item.id, dispatched_at=self.clock.now())
            stats["dispatched"] += 1

        if pending:
            logger.info("Escalation sweep: %s", stats)
        return stats

    async def _mark(self, pending_id: int, **values) -> None:
        async with session_scope(self.session_factory, "update delayed escalation") as session:
            await session.execute(
                update(PendingEscalation).where(PendingEscalation.id == pending_id).values(**values)
            )


async def cancel_pending_escalations(db: AsyncSession, occurrence_id: int) -> int:
    """取消告警事件尚未执行的延迟升级 (Cancel an occurrence's undispatched escalations)"""
    result = await db.execute(
        update(PendingEscalation)
        .where(
            PendingEscalation.occurrence_id == occurrence_id,
            PendingEscalation.dispatched_at.is_(None),
            PendingEscalation.cancelled.is_(False),
        )
        .values(cancelled=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
