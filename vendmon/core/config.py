"""
应用配置模块 (Application Configuration Module)

使用 Pydantic Settings 管理 vendmon 性能监控与告警管道的所有配置项，支持从 .env 文件和环境变量读取。
涵盖数据库连接、采样与规则检查周期、数据保留期、通知渠道（SMTP / Telegram）等配置。

Uses Pydantic Settings to manage all configuration items for the vendmon performance
monitoring and alerting pipeline, supporting reading from .env files and environment variables.
Covers database connections, sampling and rule-check cadence, retention periods and
notification channels (SMTP / Telegram).
"""
import logging

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    应用全局配置类 (Application Global Configuration Class)

    字段名自动映射同名环境变量（不区分大小写），支持 .env 文件加载。

    Field names automatically map to same-named environment variables (case insensitive),
    supporting .env file loading.
    """

    # 数据库配置 (Database Configuration)
    postgres_host: str = "localhost"  # PostgreSQL 主机地址 (PostgreSQL Host)
    postgres_port: int = 5432  # PostgreSQL 端口号 (PostgreSQL Port)
    postgres_db: str = "vendhub"  # 数据库名称 (Database Name)
    postgres_user: str = "vendhub"  # 数据库用户名 (Database Username)
    postgres_password: str = "vendhub_dev_password"  # 数据库密码 (Database Password)
    database_url_override: str = ""  # 完整连接串，非空时优先使用，如 sqlite+aiosqlite:///./vendmon.db (Full URL override)

    # 采样与调度配置 (Sampling and Scheduling Configuration)
    sampling_interval_seconds: int = 60  # 主机采样间隔 (Host sampling interval)
    sampler_cpu_interval_seconds: float = 0.5  # CPU 使用率测量窗口，保证采样不会无限阻塞 (CPU measurement window)
    rule_check_interval_seconds: int = 60  # 告警规则检查间隔 (Alert rule check interval)
    escalation_sweep_interval_seconds: int = 60  # 延迟升级扫描间隔 (Delayed escalation sweep interval)
    stale_process_age_seconds: int = 300  # 进程存活超过该时长才视为残留进程 (Stale process age threshold)

    # 数据保留配置 (Retention Configuration)
    raw_retention_days: int = 7  # 原始快照保留天数 (Raw snapshot retention days)
    hourly_retention_days: int = 90  # 小时汇总保留天数 (Hourly rollup retention days)

    # 告警升级配置 (Escalation Configuration)
    escalation_honor_delays: bool = True  # 是否按 delay_minutes 延迟执行升级步骤 (Honor step delays)
    scale_up_webhook_url: str = ""  # 扩容钩子 Webhook 地址，为空时仅记录日志 (Scale-up hook webhook URL)

    # 性能建议缓存 (Recommendations Cache)
    recommendations_ttl_hours: int = 24  # 建议缓存有效期（小时） (Recommendation cache TTL hours)
    recommendations_window_days: int = 7  # 分析窗口天数 (Analysis window days)

    # 邮件通知配置 (Email Notification Configuration)
    smtp_host: str = "localhost"  # SMTP 主机 (SMTP Host)
    smtp_port: int = 587  # SMTP 端口 (SMTP Port)
    smtp_user: str = ""  # SMTP 用户名 (SMTP Username)
    smtp_password: str = ""  # SMTP 密码 (SMTP Password)
    smtp_ssl: bool = False  # 是否使用 SSL 直连，否则 STARTTLS (Use implicit TLS instead of STARTTLS)
    smtp_from: str = "noreply@vendhub.local"  # 发件人地址 (Sender Address)

    # Telegram 通知配置 (Telegram Notification Configuration)
    telegram_bot_token: str = ""  # Telegram 机器人令牌 (Telegram Bot Token)
    telegram_api_base: str = "https://api.telegram.org"  # Telegram API 基础 URL (Telegram API Base URL)
    notification_timeout_seconds: float = 10.0  # 外部通知请求超时 (Outbound notification timeout)

    environment: str = "development"  # 运行环境：development/production (Runtime Environment)
    log_level: str = "INFO"  # 日志级别 (Log Level)

    @property
    def database_url(self) -> str:
        """
        构造异步数据库连接 URL (Build Async Database Connection URL)

        优先使用 database_url_override；否则根据 PostgreSQL 参数生成适用于 asyncpg 驱动的连接字符串。

        Prefers database_url_override; otherwise builds an asyncpg connection string from
        the configured PostgreSQL parameters.
        """
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "VENDMON_"}  # Pydantic 配置：自动加载 .env 文件 (Pydantic Config: Auto-load .env file)


# 全局配置实例 (Global Configuration Instance)
settings = Settings()

if settings.environment == "production" and not settings.telegram_bot_token:
    logger.warning(
        "TELEGRAM_BOT_TOKEN 未设置，chat 渠道的通知将全部记录为失败。"
        " | VENDMON_TELEGRAM_BOT_TOKEN not set, every chat-channel notification will be recorded as failed."
    )
