"""
告警规则管理路由模块 (Alert Rules Management Router)

功能说明：告警规则及其升级步骤的管理，以及按需检查与测试
核心职责：
  - 告警规则CRUD操作（创建、查询、更新、删除）
  - 升级步骤CRUD，同一规则内级别唯一
  - 手动测试规则（产生 [TEST] 告警，受冷却期限制）
  - 按需检查单条规则
API端点：GET/POST /alert-rules, GET/PUT/DELETE /alert-rules/{id},
         GET/POST /alert-rules/{id}/steps, PUT/DELETE /alert-rules/{id}/steps/{step_id},
         POST /alert-rules/{id}/test, POST /alert-rules/{id}/check
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from vendmon.core.clock import Clock
from vendmon.core.database import get_db
from vendmon.core.deps import Pipeline, get_clock, get_pipeline
from vendmon.schemas.alert import (
    AlertOccurrenceResponse,
    AlertRuleCreate,
    AlertRuleResponse,
    AlertRuleUpdate,
    EscalationStepCreate,
    EscalationStepResponse,
    EscalationStepUpdate,
    RuleTestRequest,
)
from vendmon.services.rule_store import RuleStore

router = APIRouter(prefix="/api/v1/alert-rules", tags=["alert-rules"])


@router.get("", response_model=List[AlertRuleResponse])
async def list_alert_rules(
    is_enabled: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """
    告警规则列表查询接口 (Alert Rules List Query)

    Args:
        is_enabled: 是否启用状态筛选（True/False，None返回全部）
    """
    return await RuleStore(db, clock).list_rules(is_enabled)


@router.post("", response_model=AlertRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_alert_rule(
    data: AlertRuleCreate,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """创建告警规则，可同时提交升级步骤 (Create a rule, optionally with its steps)"""
    return await RuleStore(db, clock).create_rule(data)


@router.get("/{rule_id}", response_model=AlertRuleResponse)
async def get_alert_rule(rule_id: int, db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)):
    return await RuleStore(db, clock).get_rule(rule_id)


@router.put("/{rule_id}", response_model=AlertRuleResponse)
async def update_alert_rule(
    rule_id: int,
    data: AlertRuleUpdate,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """部分更新告警规则，只修改请求中出现的字段 (Partial update)"""
    return await RuleStore(db, clock).update_rule(rule_id, data)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_alert_rule(rule_id: int, db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)):
    """删除告警规则及其升级步骤，历史告警保留 (Delete a rule, keep its history)"""
    await RuleStore(db, clock).delete_rule(rule_id)


# ── Escalation steps ──

@router.get("/{rule_id}/steps", response_model=List[EscalationStepResponse])
async def list_escalation_steps(rule_id: int, db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)):
    return await RuleStore(db, clock).list_steps(rule_id)


@router.post("/{rule_id}/steps", response_model=EscalationStepResponse, status_code=status.HTTP_201_CREATED)
async def add_escalation_step(
    rule_id: int,
    data: EscalationStepCreate,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await RuleStore(db, clock).add_step(rule_id, data)


@router.put("/{rule_id}/steps/{step_id}", response_model=EscalationStepResponse)
async def update_escalation_step(
    rule_id: int,
    step_id: int,
    data: EscalationStepUpdate,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await RuleStore(db, clock).update_step(rule_id, step_id, data)


@router.delete("/{rule_id}/steps/{step_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_escalation_step(
    rule_id: int,
    step_id: int,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    await RuleStore(db, clock).delete_step(rule_id, step_id)


# ── On-demand evaluation ──

@router.post("/{rule_id}/test", response_model=AlertOccurrenceResponse, status_code=status.HTTP_201_CREATED)
async def test_alert_rule(
    rule_id: int,
    data: Optional[RuleTestRequest] = None,
    pipeline: Pipeline = Depends(get_pipeline),
):
    """
    测试告警规则 (Test Alert Rule)

    产生一条 is_test 告警并执行升级流程；规则仍在冷却期内时返回 409。
    """
    value = data.value if data is not None else None
    return await pipeline.rule_engine.test_rule(rule_id, value)


@router.post("/{rule_id}/check")
async def check_alert_rule(rule_id: int, pipeline: Pipeline = Depends(get_pipeline)):
    """使用一次新的采样检查单条规则 (Check one rule against a fresh sample)"""
    return await pipeline.rule_engine.check_rule(rule_id)
