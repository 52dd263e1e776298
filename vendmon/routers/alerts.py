"""
告警事件路由模块 (Alerts Router)

功能说明：告警事件的查询与处理
核心职责：
  - 告警列表查询（按规则、状态、严重程度、时间范围过滤）
  - 当前活跃告警
  - 告警确认 / 解决（状态机之外的转换返回 409）
  - 告警的通知记录查询与失败通知重发
  - 手动检查全部规则
API端点：GET /alerts, GET /alerts/active, GET /alerts/{id}, POST /alerts/{id}/acknowledge,
         POST /alerts/{id}/resolve, GET /alerts/{id}/notifications,
         POST /alerts/notifications/{intent_id}/resend, POST /alerts/check-all
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from vendmon.core.clock import Clock
from vendmon.core.database import get_db
from vendmon.core.deps import Pipeline, get_clock, get_pipeline
from vendmon.models.enums import EscalationLevel, OccurrenceStatus
from vendmon.schemas.alert import (
    AlertActionRequest,
    AlertOccurrenceResponse,
    CheckSummary,
    NotificationIntentResponse,
)
from vendmon.services.alert_history import MAX_LIST_LIMIT, AlertHistory

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.get("", response_model=List[AlertOccurrenceResponse])
async def list_alerts(
    rule_id: Optional[int] = None,
    status: Optional[OccurrenceStatus] = None,
    severity: Optional[EscalationLevel] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=MAX_LIST_LIMIT),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """
    告警列表查询接口 (Alert List Query)

    最新的在前；所有过滤条件可组合使用。
    """
    return await AlertHistory(db, clock).list_occurrences(
        rule_id=rule_id, status=status, severity=severity, start=start, end=end, limit=limit
    )


@router.get("/active", response_model=List[AlertOccurrenceResponse])
async def list_active_alerts(db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)):
    return await AlertHistory(db, clock).list_active()


@router.post("/check-all", response_model=CheckSummary)
async def check_all_rules(pipeline: Pipeline = Depends(get_pipeline)):
    """
    手动检查全部已启用规则 (Check every enabled rule now)

    可与定时检查并发执行，冷却门控保证不会产生重复告警。
    """
    return await pipeline.rule_engine.check_all()


@router.post("/notifications/{intent_id}/resend", response_model=NotificationIntentResponse)
async def resend_notification(
    intent_id: int,
    db: AsyncSession = Depends(get_db),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """重发一条失败的通知，非 failed 状态返回 409 (Resend a failed notification)"""
    await pipeline.gateway.resend(intent_id)
    return await AlertHistory(db, pipeline.clock).get_intent(intent_id)


@router.get("/{alert_id}", response_model=AlertOccurrenceResponse)
async def get_alert(alert_id: int, db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)):
    return await AlertHistory(db, clock).get(alert_id)


@router.post("/{alert_id}/acknowledge", response_model=AlertOccurrenceResponse)
async def acknowledge_alert(
    alert_id: int,
    data: AlertActionRequest,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """确认告警，仅 active 告警可确认 (Acknowledge an active alert)"""
    return await AlertHistory(db, clock).acknowledge(alert_id, data.user_id)


@router.post("/{alert_id}/resolve", response_model=AlertOccurrenceResponse)
async def resolve_alert(
    alert_id: int,
    data: AlertActionRequest,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """解决告警，active 或 acknowledged 告警可解决 (Resolve an alert)"""
    return await AlertHistory(db, clock).resolve(alert_id, data.user_id)


@router.get("/{alert_id}/notifications", response_model=List[NotificationIntentResponse])
async def list_alert_notifications(alert_id: int, db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)):
    return await AlertHistory(db, clock).list_intents(alert_id)
