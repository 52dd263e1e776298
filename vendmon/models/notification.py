"""
通知意图模型 (Notification Intent Model)

每个 (告警, 用户, 渠道) 组合对应一行通知记录，创建时为 pending，每次投递尝试后更新为
sent 或 failed。in_app 渠道的记录本身即站内信收件箱条目。

One row per (alert, user, channel), created pending and updated to sent or failed after
each delivery attempt. For the in_app channel the row itself is the inbox entry.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from vendmon.core.database import Base, UTCDateTime
from vendmon.models.enums import Channel, IntentStatus, enum_column


class NotificationIntent(Base):
    """
    通知记录表 (Notification Intent Table)
    """
    __tablename__ = "alert_notifications"
    __table_args__ = (
        UniqueConstraint("alert_id", "user_id", "channel", name="uq_alert_notification_target"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    alert_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 告警事件 ID (Occurrence ID)
    user_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 接收用户 ID (Recipient User ID)
    channel: Mapped[Channel] = mapped_column(enum_column(Channel), nullable=False)  # 通知渠道 (Channel)
    status: Mapped[IntentStatus] = mapped_column(
        enum_column(IntentStatus), nullable=False, default=IntentStatus.PENDING
    )  # 投递状态 (Delivery Status)
    sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)  # 发送成功时间 (Sent Time)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # 失败原因 (Failure Reason)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)  # 创建时间 (Creation Time)
