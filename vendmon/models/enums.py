"""
枚举类型 (Enumerations)

所有状态、运算符、渠道字段的穷举类型，替代字符串比较。
"""
import enum

from sqlalchemy import Enum as SAEnum


class HealthStatus(str, enum.Enum):
    """主机健康状态 (Host health status)"""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class Metric(str, enum.Enum):
    """可告警的指标 (Alertable metrics)"""
    MEMORY = "memory"
    CPU = "cpu"
    DISK = "disk"


class Operator(str, enum.Enum):
    """阈值比较运算符 (Threshold comparison operators)"""
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    EQ = "=="


class EscalationLevel(str, enum.Enum):
    """规则升级级别，同时作为告警严重程度 (Rule escalation level, copied as occurrence severity)"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class StepAction(str, enum.Enum):
    """升级步骤动作 (Escalation step actions)"""
    NOTIFY_USER = "notify_user"
    NOTIFY_ADMIN = "notify_admin"
    AUTO_CLEANUP = "auto_cleanup"
    SCALE_UP = "scale_up"


class AutoAction(str, enum.Enum):
    """规则可选的自动动作 (Optional rule auto action)"""
    AUTO_CLEANUP = "auto_cleanup"
    SCALE_UP = "scale_up"


class Channel(str, enum.Enum):
    """通知渠道 (Notification channels)"""
    EMAIL = "email"
    CHAT = "chat"
    IN_APP = "in_app"


class OccurrenceStatus(str, enum.Enum):
    """告警事件状态 (Alert occurrence status)"""
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class IntentStatus(str, enum.Enum):
    """通知意图状态 (Notification intent status)"""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    USER = "user"


def enum_column(enum_cls: type[enum.Enum], length: int = 20):
    """以枚举值（而非名称）存储的非原生枚举列类型 (Non-native enum column storing values)"""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
