"""
通知网关 (Notification Gateway)

把通知记录（NotificationIntent）投递到对应渠道，并把结果写回同一行：
  - 从用户记录解析目标地址，缺失时直接记为 failed（如 "User email not found"）
  - 适配器抛出的异常转换为 failed，并记录失败原因
  - 每个 (用户, 渠道) 相互独立，一个失败不影响其他记录
  - 尽力而为，不自动重试；运维人员可对 failed 记录手动 resend

Delivers notification intents through their channel adapter and writes the outcome back to
the same row. Missing targets and adapter exceptions become failed rows with a reason; each
(user, channel) attempt is isolated; there is no automatic retry, only an operator-initiated
resend of failed rows.

网络请求期间不持有数据库事务：先读取记录、发送，再在新事务中更新状态。
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from vendmon.core.clock import Clock
from vendmon.core.database import session_scope
from vendmon.core.exceptions import ConflictError, NotFoundError, NotificationDeliveryError
from vendmon.models.alert import AlertOccurrence
from vendmon.models.enums import Channel, IntentStatus
from vendmon.models.notification import NotificationIntent
from vendmon.models.user import User
from vendmon.services.channels import ChannelAdapter, ChannelResult, NotificationPayload

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    intent_id: int
    channel: Channel
    status: IntentStatus
    failure_reason: Optional[str] = None


def build_payload(occurrence: AlertOccurrence) -> NotificationPayload:
    """由告警事件构建通知内容 (Build the notification payload of an occurrence)"""
    title = f"{occurrence.metric.value.upper()} alert #{occurrence.id}"
    if occurrence.is_test:
        title = f"[TEST] {title}"
    return NotificationPayload(
        alert_id=occurrence.id,
        severity=occurrence.severity.value,
        title=title,
        message=occurrence.message or "",
        metric=occurrence.metric.value,
        value=occurrence.value,
        threshold=occurrence.threshold,
        created_at=occurrence.created_at,
    )


class NotificationGateway:
    """通知网关 (Notification gateway)"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Clock,
        adapters: Dict[Channel, ChannelAdapter],
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.adapters = adapters

    async def _attempt(
        self, intent: NotificationIntent, user: Optional[User], payload: NotificationPayload
    ) -> ChannelResult:
        adapter = self.adapters.get(intent.channel)
        if adapter is None:
            return ChannelResult(success=False, error=f"No adapter for channel {intent.channel.value}")
        if user is None or not user.is_active:
            return ChannelResult(success=False, error="User not found")
        target = adapter.resolve_target(user)
        if not target:
            return ChannelResult(success=False, error=adapter.missing_target_reason)
        try:
            return await adapter.send(target, payload)
        except Exception as e:
            failure = NotificationDeliveryError(intent.channel.value, str(e) or type(e).__name__)
            logger.warning("Notification %d failed: %s", intent.id, failure)
            return ChannelResult(success=False, error=failure.reason[:500])

    async def deliver(self, intent_id: int) -> DeliveryResult:
        """
        投递一条通知记录并更新其状态 (Deliver one intent and record the outcome)

        Raises:
            NotFoundError: 记录不存在
            PersistenceFailure: 存储不可用
        """
        async with session_scope(self.session_factory, "load notification intent") as session:
            intent = await session.get(NotificationIntent, intent_id)
            if intent is None:
                raise NotFoundError("Notification not found", f"intent_id={intent_id}")
            occurrence = await session.get(AlertOccurrence, intent.alert_id)
            user = await session.get(User, intent.user_id)
        if occurrence is None:
            result = ChannelResult(success=False, error="Alert not found")
        else:
            result = await self._attempt(intent, user, build_payload(occurrence))

        status = IntentStatus.SENT if result.success else IntentStatus.FAILED
        async with session_scope(self.session_factory, "record notification outcome") as session:
            row = await session.get(NotificationIntent, intent_id)
            row.status = status
            row.failure_reason = None if result.success else result.error
            if result.success:
                row.sent_at = self.clock.now()

        if result.success:
            logger.info("Notification %d sent via %s to user %d", intent_id, intent.channel.value, intent.user_id)
        else:
            logger.warning(
                "Notification %d via %s to user %d failed: %s",
                intent_id, intent.channel.value, intent.user_id, result.error,
            )
        return DeliveryResult(
            intent_id=intent_id,
            channel=intent.channel,
            status=status,
            failure_reason=None if result.success else result.error,
        )

    async def deliver_many(self, intent_ids: Iterable[int]) -> List[DeliveryResult]:
        """依次投递多条记录，单条渠道失败不影响其余 (Deliver each intent in turn)"""
        return [await self.deliver(intent_id) for intent_id in intent_ids]

    async def deliver_pending(self, alert_id: Optional[int] = None) -> List[DeliveryResult]:
        """投递所有仍为 pending 的记录 (Deliver every intent still pending)"""
        async with session_scope(self.session_factory, "list pending notifications") as session:
            q = select(NotificationIntent.id).where(NotificationIntent.status == IntentStatus.PENDING)
            if alert_id is not None:
                q = q.where(NotificationIntent.alert_id == alert_id)
            ids = list((await session.execute(q.order_by(NotificationIntent.id))).scalars().all())
        return await self.deliver_many(ids)

    async def resend(self, intent_id: int) -> DeliveryResult:
        """
        手动重发失败的通知 (Operator-initiated resend of a failed intent)

        Raises:
            NotFoundError: 记录不存在
            ConflictError: 记录不是 failed 状态
        """
        async with session_scope(self.session_factory, "reset notification intent") as session:
            intent = await session.get(NotificationIntent, intent_id)
            if intent is None:
                raise NotFoundError("Notification not found", f"intent_id={intent_id}")
            if intent.status != IntentStatus.FAILED:
                raise ConflictError(
                    "Only failed notifications can be resent",
                    f"status={intent.status.value}",
                )
            intent.status = IntentStatus.PENDING
            intent.failure_reason = None
        logger.info("Resending notification %d", intent_id)
        return await self.deliver(intent_id)
