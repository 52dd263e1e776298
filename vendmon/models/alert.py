"""
告警模型 (Alert Model)

定义告警规则和告警事件的表结构。规则由管理员创建和编辑，删除规则时级联删除其升级步骤；
告警事件在规则触发且冷却期已过时创建，触发时复制规则的指标、阈值和运算符，
之后规则的修改不会影响历史记录。告警事件只会被确认/解决修改，永不物理删除。

Defines table structures for alert rules and alert occurrences. Rules are created and
edited by admins; deleting a rule cascades its escalation steps. An occurrence is created
when a rule trips outside its cooldown window and copies the rule's metric, threshold and
operator at trigger time, so later rule edits never rewrite history. Occurrences are only
mutated by acknowledge/resolve and are never hard-deleted.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import String, Integer, Float, Boolean, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vendmon.core.database import Base, UTCDateTime
from vendmon.models.enums import (
    AutoAction,
    EscalationLevel,
    Metric,
    OccurrenceStatus,
    Operator,
    enum_column,
)


class AlertRule(Base):
    """
    告警规则表 (Alert Rule Table)

    固定词汇表：指标 memory/cpu/disk，运算符 >, <, >=, <=, ==，阈值 0-100。

    Fixed vocabulary: metric memory/cpu/disk, operator >, <, >=, <=, ==, threshold 0-100.
    """
    __tablename__ = "alert_rules"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # 告警规则名称 (Alert Rule Name)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # 告警规则描述 (Alert Rule Description)
    metric: Mapped[Metric] = mapped_column(enum_column(Metric), nullable=False, index=True)  # 监控指标 (Metric)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)  # 触发阈值 (Trigger Threshold)
    operator: Mapped[Operator] = mapped_column(enum_column(Operator, 10), nullable=False, default=Operator.GT)  # 比较运算符 (Comparison Operator)
    escalation_level: Mapped[EscalationLevel] = mapped_column(
        enum_column(EscalationLevel), nullable=False, default=EscalationLevel.MEDIUM
    )  # 升级级别 (Escalation Level)
    cooldown_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=5)  # 冷却期分钟数 (Cooldown Minutes)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)  # 是否启用该规则 (Is Rule Enabled)
    notify_user: Mapped[bool] = mapped_column(Boolean, default=True)  # 是否通知用户 (Notify Users)
    notify_admin: Mapped[bool] = mapped_column(Boolean, default=True)  # 是否通知管理员 (Notify Admins)
    auto_action: Mapped[Optional[AutoAction]] = mapped_column(enum_column(AutoAction), nullable=True)  # 可选自动动作 (Optional Auto Action)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 创建人用户 ID (Creator User ID)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now()
    )  # 创建时间 (Creation Time)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now()
    )  # 更新时间，由规则存储按时钟写入 (Update Time, written from the clock)

    # 升级步骤，按级别升序 (Escalation steps, ascending by level)
    steps: Mapped[List["EscalationStep"]] = relationship(
        "EscalationStep",
        back_populates="rule",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="EscalationStep.level",
    )


class AlertOccurrence(Base):
    """
    告警事件表 (Alert Occurrence Table)

    状态机：active → acknowledged → resolved，或 active → resolved；resolved 为终态。

    State machine: active → acknowledged → resolved, or active → resolved; resolved is final.
    """
    __tablename__ = "alert_occurrences"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    rule_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 告警规则 ID (Alert Rule ID)
    metric: Mapped[Metric] = mapped_column(enum_column(Metric), nullable=False)  # 触发时的指标 (Metric at Trigger)
    value: Mapped[float] = mapped_column(Float, nullable=False)  # 触发时的指标值 (Metric Value at Trigger)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)  # 触发时的阈值 (Threshold at Trigger)
    operator: Mapped[Operator] = mapped_column(enum_column(Operator, 10), nullable=False)  # 触发时的运算符 (Operator at Trigger)
    status: Mapped[OccurrenceStatus] = mapped_column(
        enum_column(OccurrenceStatus), nullable=False, default=OccurrenceStatus.ACTIVE, index=True
    )  # 状态 (Status)
    severity: Mapped[EscalationLevel] = mapped_column(enum_column(EscalationLevel), nullable=False, index=True)  # 严重程度 (Severity)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # 告警消息 (Alert Message)
    is_test: Mapped[bool] = mapped_column(Boolean, default=False)  # 是否为手动测试触发 (Manually Test-Triggered)
    acknowledged_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 确认人用户 ID (Acknowledged by User ID)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)  # 确认时间 (Acknowledged Time)
    resolved_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 解决人用户 ID (Resolved by User ID)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)  # 解决时间 (Resolved Time)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)  # 触发时间，由时钟写入 (Trigger Time, from the clock)
