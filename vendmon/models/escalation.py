"""
告警升级模型 (Alert Escalation Model)

定义告警规则的升级步骤和延迟升级队列。升级步骤按 level 升序执行；设置了 delay_minutes
的步骤在触发时写入待执行队列，由升级扫描任务在到期后执行，告警被确认或解决后自动取消。

Defines escalation steps of alert rules and the delayed escalation queue. Steps run in
ascending level order; a step with delay_minutes is queued when the rule trips and is
dispatched by the escalation sweep once due, or cancelled once the occurrence is
acknowledged or resolved.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vendmon.core.database import Base, UTCDateTime
from vendmon.models.enums import Channel, StepAction, enum_column


class EscalationStep(Base):
    """
    升级步骤表 (Escalation Step Table)

    每条规则内 level 唯一，删除规则时级联删除。

    level is unique per rule; steps are deleted together with their rule.
    """
    __tablename__ = "alert_escalation_steps"
    __table_args__ = (UniqueConstraint("rule_id", "level", name="uq_escalation_step_rule_level"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    rule_id: Mapped[int] = mapped_column(
        ForeignKey("alert_rules.id", ondelete="CASCADE"), nullable=False, index=True
    )  # 告警规则 ID (Alert Rule ID)
    level: Mapped[int] = mapped_column(Integer, nullable=False)  # 升级级别序号，从 1 开始 (Ordinal Level, from 1)
    delay_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 延迟分钟数 (Delay Minutes)
    action: Mapped[StepAction] = mapped_column(enum_column(StepAction), nullable=False)  # 步骤动作 (Step Action)
    notification_channel: Mapped[Channel] = mapped_column(
        enum_column(Channel), nullable=False, default=Channel.IN_APP
    )  # 通知渠道 (Notification Channel)
    target_users: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # 目标用户 ID 列表 (Target User IDs)

    rule = relationship("AlertRule", back_populates="steps")


class PendingEscalation(Base):
    """
    延迟升级队列表 (Pending Escalation Table)

    due_at 不早于前一级别的 due_at，保证延迟执行时仍然按级别顺序。

    due_at never precedes the previous level's due_at, so delayed steps keep level order.
    """
    __tablename__ = "alert_pending_escalations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    occurrence_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # 告警事件 ID (Occurrence ID)
    step_id: Mapped[int] = mapped_column(Integer, nullable=False)  # 升级步骤 ID (Step ID)
    level: Mapped[int] = mapped_column(Integer, nullable=False)  # 升级级别 (Level)
    due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)  # 到期时间 (Due Time)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)  # 执行时间 (Dispatch Time)
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)  # 是否已取消 (Cancelled)
