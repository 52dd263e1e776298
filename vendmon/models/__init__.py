"""
数据模型包 (Data Models Package)

集中导出所有 SQLAlchemy ORM 模型：性能快照、小时/日汇总、告警规则与升级步骤、告警事件、
通知记录和只读的用户表。导入本包即可在 Base.metadata 中注册全部表。

Centrally exports all SQLAlchemy ORM models: performance snapshots, hourly/daily rollups,
alert rules and escalation steps, alert occurrences, notification intents and the
read-only user table. Importing this package registers every table on Base.metadata.
"""
from vendmon.models.user import User
from vendmon.models.snapshot import PerformanceSnapshot
from vendmon.models.rollup import HourlyRollup, DailyRollup
from vendmon.models.alert import AlertRule, AlertOccurrence
from vendmon.models.escalation import EscalationStep, PendingEscalation
from vendmon.models.notification import NotificationIntent

# 导出所有模型类供外部模块使用 (Export all model classes for external modules)
__all__ = [
    "User", "PerformanceSnapshot", "HourlyRollup", "DailyRollup",
    "AlertRule", "AlertOccurrence", "EscalationStep", "PendingEscalation",
    "NotificationIntent",
]
