"""
告警规则存储服务 (Alert Rule Store Service)

告警规则及其升级步骤的增删改查。规则的指标、运算符、阈值范围由请求模式校验，
本模块额外保证同一规则内升级级别唯一；删除规则时级联删除其升级步骤，历史告警事件保留。

CRUD for alert rules and their escalation steps. Metric, operator and threshold range are
validated by the request schemas; this module additionally keeps escalation levels unique
per rule. Deleting a rule deletes its steps; historical occurrences are kept.
"""
import logging
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from vendmon.core.clock import Clock
from vendmon.core.exceptions import ConflictError, NotFoundError, ValidationError
from vendmon.models.alert import AlertRule
from vendmon.models.escalation import EscalationStep
from vendmon.schemas.alert import (
    AlertRuleCreate,
    AlertRuleUpdate,
    EscalationStepCreate,
    EscalationStepUpdate,
)

logger = logging.getLogger(__name__)


class RuleStore:
    """告警规则存储 (Alert rule store)"""

    def __init__(self, db: AsyncSession, clock: Clock):
        self.db = db
        self.clock = clock

    async def list_rules(self, is_enabled: Optional[bool] = None) -> List[AlertRule]:
        q = select(AlertRule).order_by(AlertRule.id)
        if is_enabled is not None:
            q = q.where(AlertRule.is_enabled == is_enabled)
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def get_rule(self, rule_id: int) -> AlertRule:
        """按 ID 获取规则，每次都重新加载升级步骤 (Load a rule with fresh steps)"""
        result = await self.db.execute(
            select(AlertRule)
            .where(AlertRule.id == rule_id)
            .execution_options(populate_existing=True)
        )
        rule = result.scalar_one_or_none()
        if rule is None:
            raise NotFoundError("Alert rule not found", f"rule_id={rule_id}")
        return rule

    async def create_rule(self, data: AlertRuleCreate) -> AlertRule:
        """
        创建规则，可同时创建升级步骤 (Create a rule, optionally with its steps)

        Raises:
            ValidationError: 升级级别重复 (duplicate escalation levels)
        """
        levels = [s.level for s in data.steps]
        if len(levels) != len(set(levels)):
            raise ValidationError("Escalation step levels must be unique per rule")

        now = self.clock.now()
        rule = AlertRule(
            **data.model_dump(exclude={"steps"}),
            created_at=now,
            updated_at=now,
        )
        rule.steps = [EscalationStep(**s.model_dump()) for s in data.steps]
        self.db.add(rule)
        await self.db.commit()
        logger.info("Alert rule %d created: %s", rule.id, rule.name)
        return await self.get_rule(rule.id)

    async def update_rule(self, rule_id: int, data: AlertRuleUpdate) -> AlertRule:
        rule = await self.get_rule(rule_id)
        updates = data.model_dump(exclude_unset=True)
        for field, value in updates.items():
            setattr(rule, field, value)
        rule.updated_at = self.clock.now()
        await self.db.commit()
        logger.info("Alert rule %d updated: %s", rule_id, sorted(updates))
        return await self.get_rule(rule_id)

    async def delete_rule(self, rule_id: int) -> None:
        """删除规则及其升级步骤 (Delete a rule and its steps)"""
        await self.get_rule(rule_id)
        await self.db.execute(
            delete(EscalationStep).where(EscalationStep.rule_id == rule_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            delete(AlertRule).where(AlertRule.id == rule_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        self.db.expunge_all()
        logger.info("Alert rule %d deleted", rule_id)

    # ── Escalation steps ──

    async def list_steps(self, rule_id: int) -> List[EscalationStep]:
        await self.get_rule(rule_id)
        result = await self.db.execute(
            select(EscalationStep)
            .where(EscalationStep.rule_id == rule_id)
            .order_by(EscalationStep.level)
        )
        return list(result.scalars().all())

    async def _get_step(self, rule_id: int, step_id: int) -> EscalationStep:
        result = await self.db.execute(
            select(EscalationStep).where(
                EscalationStep.id == step_id, EscalationStep.rule_id == rule_id
            )
        )
        step = result.scalar_one_or_none()
        if step is None:
            raise NotFoundError("Escalation step not found", f"rule_id={rule_id}, step_id={step_id}")
        return step

    async def _ensure_level_free(self, rule_id: int, level: int, exclude_step_id: Optional[int] = None) -> None:
        q = select(EscalationStep.id).where(
            EscalationStep.rule_id == rule_id, EscalationStep.level == level
        )
        if exclude_step_id is not None:
            q = q.where(EscalationStep.id != exclude_step_id)
        if (await self.db.execute(q)).first() is not None:
            raise ConflictError(f"Escalation level {level} already exists for this rule")

    async def add_step(self, rule_id: int, data: EscalationStepCreate) -> EscalationStep:
        await self.get_rule(rule_id)
        await self._ensure_level_free(rule_id, data.level)
        step = EscalationStep(rule_id=rule_id, **data.model_dump())
        self.db.add(step)
        await self.db.commit()
        return step

    async def update_step(self, rule_id: int, step_id: int, data: EscalationStepUpdate) -> EscalationStep:
        step = await self._get_step(rule_id, step_id)
        updates = data.model_dump(exclude_unset=True)
        if "level" in updates and updates["level"] is not None:
            await self._ensure_level_free(rule_id, updates["level"], exclude_step_id=step_id)
        for field, value in updates.items():
            if value is not None:
                setattr(step, field, value)
        await self.db.commit()
        return step

    async def delete_step(self, rule_id: int, step_id: int) -> None:
        step = await self._get_step(rule_id, step_id)
        await self.db.delete(step)
        await self.db.commit()
