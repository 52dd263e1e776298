"""
告警历史服务 (Alert History Service)

告警事件的查询、确认和解决，以及告警的通知记录查询。

状态机：
  active → acknowledged
  active → resolved
  acknowledged → resolved
resolved 为终态，其他转换一律抛出 ConflictError。确认或解决后，尚未执行的延迟升级会被取消。

Queries, acknowledges and resolves alert occurrences and lists their notification intents.
Any transition outside the state machine above raises ConflictError; acknowledging or
resolving cancels the occurrence's pending delayed escalations.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vendmon.core.clock import Clock
from vendmon.core.exceptions import ConflictError, NotFoundError, ValidationError
from vendmon.models.alert import AlertOccurrence
from vendmon.models.enums import EscalationLevel, OccurrenceStatus
from vendmon.models.notification import NotificationIntent
from vendmon.services.escalation_dispatcher import cancel_pending_escalations

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    OccurrenceStatus.ACTIVE: {OccurrenceStatus.ACKNOWLEDGED, OccurrenceStatus.RESOLVED},
    OccurrenceStatus.ACKNOWLEDGED: {OccurrenceStatus.RESOLVED},
    OccurrenceStatus.RESOLVED: set(),
}

MAX_LIST_LIMIT = 1000


class AlertHistory:
    """告警历史存储 (Alert history store)"""

    def __init__(self, db: AsyncSession, clock: Clock):
        self.db = db
        self.clock = clock

    async def list_occurrences(
        self,
        rule_id: Optional[int] = None,
        status: Optional[OccurrenceStatus] = None,
        severity: Optional[EscalationLevel] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AlertOccurrence]:
        """按条件查询告警事件，最新的在前 (Filtered occurrences, newest first)"""
        if limit < 1 or limit > MAX_LIST_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_LIST_LIMIT}")
        q = select(AlertOccurrence)
        if rule_id is not None:
            q = q.where(AlertOccurrence.rule_id == rule_id)
        if status is not None:
            q = q.where(AlertOccurrence.status == status)
        if severity is not None:
            q = q.where(AlertOccurrence.severity == severity)
        if start is not None:
            q = q.where(AlertOccurrence.created_at >= start)
        if end is not None:
            q = q.where(AlertOccurrence.created_at <= end)
        q = q.order_by(AlertOccurrence.created_at.desc(), AlertOccurrence.id.desc()).limit(limit)
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def list_active(self) -> List[AlertOccurrence]:
        result = await self.db.execute(
            select(AlertOccurrence)
            .where(AlertOccurrence.status == OccurrenceStatus.ACTIVE)
            .order_by(AlertOccurrence.created_at.desc(), AlertOccurrence.id.desc())
        )
        return list(result.scalars().all())

    async def get(self, occurrence_id: int) -> AlertOccurrence:
        occurrence = await self.db.get(AlertOccurrence, occurrence_id)
        if occurrence is None:
            raise NotFoundError("Alert not found", f"alert_id={occurrence_id}")
        return occurrence

    async def _transition(
        self, occurrence_id: int, target: OccurrenceStatus, user_id: int
    ) -> AlertOccurrence:
        occurrence = await self.get(occurrence_id)
        if target not in ALLOWED_TRANSITIONS[occurrence.status]:
            raise ConflictError(
                f"Cannot change alert from {occurrence.status.value} to {target.value}",
                f"alert_id={occurrence_id}",
            )
        now = self.clock.now()
        occurrence.status = target
        if target == OccurrenceStatus.ACKNOWLEDGED:
            occurrence.acknowledged_by = user_id
            occurrence.acknowledged_at = now
        else:
            occurrence.resolved_by = user_id
            occurrence.resolved_at = now
        cancelled = await cancel_pending_escalations(self.db, occurrence_id)
        await self.db.commit()
        logger.info(
            "Alert %d %s by user %d (%d delayed escalations cancelled)",
            occurrence_id, target.value, user_id, cancelled,
        )
        return occurrence

    async def acknowledge(self, occurrence_id: int, user_id: int) -> AlertOccurrence:
        return await self._transition(occurrence_id, OccurrenceStatus.ACKNOWLEDGED, user_id)

    async def resolve(self, occurrence_id: int, user_id: int) -> AlertOccurrence:
        return await self._transition(occurrence_id, OccurrenceStatus.RESOLVED, user_id)

    async def list_intents(self, occurrence_id: int) -> List[NotificationIntent]:
        await self.get(occurrence_id)
        result = await self.db.execute(
            select(NotificationIntent)
            .where(NotificationIntent.alert_id == occurrence_id)
            .order_by(NotificationIntent.id)
        )
        return list(result.scalars().all())

    async def get_intent(self, intent_id: int) -> NotificationIntent:
        intent = await self.db.get(NotificationIntent, intent_id, populate_existing=True)
        if intent is None:
            raise NotFoundError("Notification not found", f"intent_id={intent_id}")
        return intent
