from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from vendmon.models.enums import (
    AutoAction,
    Channel,
    EscalationLevel,
    IntentStatus,
    Metric,
    OccurrenceStatus,
    Operator,
    StepAction,
)


# ── EscalationStep ──

class EscalationStepCreate(BaseModel):
    level: int = Field(..., ge=1)
    delay_minutes: int = Field(0, ge=0)
    action: StepAction
    notification_channel: Channel = Channel.IN_APP
    target_users: list[int] = Field(default_factory=list)


class EscalationStepUpdate(BaseModel):
    level: int | None = Field(None, ge=1)
    delay_minutes: int | None = Field(None, ge=0)
    action: StepAction | None = None
    notification_channel: Channel | None = None
    target_users: list[int] | None = None


class EscalationStepResponse(BaseModel):
    id: int
    rule_id: int
    level: int
    delay_minutes: int
    action: StepAction
    notification_channel: Channel
    target_users: list[int]

    model_config = {"from_attributes": True}


# ── AlertRule ──

# 规则表中不可为空的字段，部分更新时不允许显式置空 (Columns that a partial update may not null out)
RULE_REQUIRED_FIELDS = (
    "name", "metric", "threshold", "operator", "escalation_level",
    "cooldown_minutes", "is_enabled", "notify_user", "notify_admin",
)


class AlertRuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    metric: Metric
    threshold: float = Field(..., ge=0, le=100)
    operator: Operator = Operator.GT
    escalation_level: EscalationLevel = EscalationLevel.MEDIUM
    cooldown_minutes: int = Field(5, ge=1)
    is_enabled: bool = True
    notify_user: bool = True
    notify_admin: bool = True
    auto_action: AutoAction | None = None
    created_by: int | None = None
    steps: list[EscalationStepCreate] = Field(default_factory=list)


class AlertRuleUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    metric: Metric | None = None
    threshold: float | None = Field(None, ge=0, le=100)
    operator: Operator | None = None
    escalation_level: EscalationLevel | None = None
    cooldown_minutes: int | None = Field(None, ge=1)
    is_enabled: bool | None = None
    notify_user: bool | None = None
    notify_admin: bool | None = None
    auto_action: AutoAction | None = None

    @model_validator(mode="after")
    def reject_null_required_fields(self):
        """显式传入 null 的必填字段视为参数错误 (Explicit null on a required column is rejected)"""
        nulls = [f for f in RULE_REQUIRED_FIELDS if f in self.model_fields_set and getattr(self, f) is None]
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
        return self


class AlertRuleResponse(BaseModel):
    id: int
    name: str
    description: str | None
    metric: Metric
    threshold: float
    operator: Operator
    escalation_level: EscalationLevel
    cooldown_minutes: int
    is_enabled: bool
    notify_user: bool
    notify_admin: bool
    auto_action: AutoAction | None
    created_by: int | None
    created_at: datetime
    updated_at: datetime
    steps: list[EscalationStepResponse] = []

    model_config = {"from_attributes": True}


class RuleTestRequest(BaseModel):
    """手动测试规则，value 为空时使用阈值本身 (Manual rule test; defaults to the threshold)"""
    value: float | None = None


# ── AlertOccurrence ──

class AlertOccurrenceResponse(BaseModel):
    id: int
    rule_id: int
    metric: Metric
    value: float
    threshold: float
    operator: Operator
    status: OccurrenceStatus
    severity: EscalationLevel
    message: str | None
    is_test: bool
    acknowledged_by: int | None
    acknowledged_at: datetime | None
    resolved_by: int | None
    resolved_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AlertActionRequest(BaseModel):
    """确认/解决操作的执行人 (Operator performing acknowledge/resolve)"""
    user_id: int


class NotificationIntentResponse(BaseModel):
    id: int
    alert_id: int
    user_id: int
    channel: Channel
    status: IntentStatus
    sent_at: datetime | None
    failure_reason: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class CheckSummary(BaseModel):
    """一次规则检查的汇总 (Summary of one rule-check pass)"""
    evaluated: int = 0
    triggered: int = 0
    suppressed: int = 0
    skipped: int = 0
    errors: int = 0
    occurrence_ids: list[int] = Field(default_factory=list)
