"""
通知渠道适配器 (Notification Channel Adapters)

每个渠道一个适配器，统一实现 send(target, payload) -> ChannelResult：
  - email：通过 aiosmtplib 发送 HTML 邮件
  - chat：通过 Telegram Bot API（httpx）发送 HTML 消息
  - in_app：通知记录本身就是站内信，直接成功

适配器只负责发送，不读写数据库；目标地址（邮箱、chat id）由通知网关从用户记录解析后传入。

One adapter per channel, all implementing send(target, payload) -> ChannelResult. Adapters
only deliver and never touch the database; the gateway resolves the target (email, chat id)
from the user record and passes it in.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Optional, Protocol

import aiosmtplib
import httpx

from vendmon.core.config import Settings
from vendmon.models.enums import Channel
from vendmon.models.user import User

logger = logging.getLogger(__name__)

SEVERITY_COLORS = {
    "critical": "#dc2626",
    "high": "#ea580c",
    "medium": "#f59e0b",
    "low": "#3b82f6",
}

SEVERITY_EMOJI = {
    "critical": "🚨",
    "high": "⚠️",
    "medium": "⚠️",
    "low": "ℹ️",
}


@dataclass
class NotificationPayload:
    """渠道无关的通知内容 (Channel-independent notification content)"""
    alert_id: int
    severity: str
    title: str
    message: str
    metric: Optional[str] = None
    value: Optional[float] = None
    threshold: Optional[float] = None
    created_at: Optional[datetime] = None


@dataclass
class ChannelResult:
    success: bool
    error: Optional[str] = None


class ChannelAdapter(Protocol):
    channel: Channel
    missing_target_reason: str

    def resolve_target(self, user: User) -> Optional[str]: ...

    async def send(self, target: str, payload: NotificationPayload) -> ChannelResult: ...


# ---------------------------------------------------------------------------
# 邮件 (Email)
# ---------------------------------------------------------------------------

def build_email_html(payload: NotificationPayload) -> str:
    """生成告警邮件 HTML 正文。"""
    color = SEVERITY_COLORS.get(payload.severity, "#6b7280")
    details = ""
    if payload.metric:
        details = f"""
            <div style="background-color:#f3f4f6;padding:15px;border-radius:4px;margin-bottom:20px;">
              <p style="margin:0 0 10px 0;font-weight:bold;">Metric Details</p>
              <p style="margin:0;"><strong>{payload.metric}:</strong> {payload.value}</p>
              <p style="margin:5px 0 0 0;"><strong>Threshold:</strong> {payload.threshold}</p>
            </div>"""
    fired_at = payload.created_at.isoformat() if payload.created_at else ""
    return f"""
    <html>
      <body style="font-family:Arial,sans-serif;color:#333;">
        <div style="max-width:600px;margin:0 auto;">
          <div style="border-left:4px solid {color};padding:20px;background-color:#f9fafb;margin-bottom:20px;">
            <h2 style="margin:0 0 10px 0;color:{color};">{payload.severity.upper()}: {payload.title}</h2>
            <p style="margin:0;color:#666;">{payload.message}</p>
          </div>{details}
          <div style="color:#999;font-size:12px;border-top:1px solid #e5e7eb;padding-top:20px;">
            <p style="margin:0;">VendHub Alert System</p>
            <p style="margin:5px 0 0 0;">{fired_at}</p>
          </div>
        </div>
      </body>
    </html>
    """


class EmailAdapter:
    """SMTP 邮件渠道 (SMTP email channel)"""
    channel = Channel.EMAIL
    missing_target_reason = "User email not found"

    def __init__(
        self,
        hostname: str,
        port: int,
        username: str = "",
        password: str = "",
        use_ssl: bool = False,
        sender: str = "noreply@vendhub.local",
        timeout: float = 10.0,
    ):
        self.hostname = hostname
        self.port = port
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.sender = sender
        self.timeout = timeout

    def resolve_target(self, user: User) -> Optional[str]:
        return user.email or None

    async def send(self, target: str, payload: NotificationPayload) -> ChannelResult:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.sender
        msg["To"] = target
        msg["Subject"] = f"[{payload.severity.upper()}] {payload.title}"
        msg.attach(MIMEText(build_email_html(payload), "html", "utf-8"))

        kwargs = {
            "hostname": self.hostname,
            "port": self.port,
            "timeout": self.timeout,
        }
        if self.username:
            kwargs["username"] = self.username
            kwargs["password"] = self.password
        if self.use_ssl:
            kwargs["use_tls"] = True
        else:
            kwargs["start_tls"] = True

        await aiosmtplib.send(msg, **kwargs)
        logger.info("Email sent to %s for alert %d", target, payload.alert_id)
        return ChannelResult(success=True)


# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------

def build_telegram_message(payload: NotificationPayload) -> str:
    emoji = SEVERITY_EMOJI.get(payload.severity, "📢")
    message = f"{emoji} <b>{payload.title}</b>\n\n{payload.message}"
    if payload.metric:
        message += f"\n\n<b>Metric:</b> {payload.metric}"
        if payload.value is not None:
            message += f"\n<b>Value:</b> {payload.value}"
        if payload.threshold is not None:
            message += f"\n<b>Threshold:</b> {payload.threshold}"
    return message


class ChatAdapter:
    """Telegram 机器人渠道 (Telegram bot channel)"""
    channel = Channel.CHAT
    missing_target_reason = "User Telegram ID not found"

    def __init__(self, bot_token: str, api_base: str = "https://api.telegram.org", timeout: float = 10.0):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    def resolve_target(self, user: User) -> Optional[str]:
        return user.telegram_chat_id or None

    async def send(self, target: str, payload: NotificationPayload) -> ChannelResult:
        if not self.bot_token:
            return ChannelResult(success=False, error="Telegram bot token not configured")
        url = f"{self.api_base}/bot{self.bot_token}/sendMessage"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(url, json={
                "chat_id": target,
                "text": build_telegram_message(payload),
                "parse_mode": "HTML",
            })
        if 200 <= resp.status_code < 300:
            logger.info("Telegram message sent to %s for alert %d", target, payload.alert_id)
            return ChannelResult(success=True)
        return ChannelResult(success=False, error=f"HTTP {resp.status_code}")


# ---------------------------------------------------------------------------
# 站内信 (In-app)
# ---------------------------------------------------------------------------

class InAppAdapter:
    """站内信渠道：通知记录即收件箱条目 (The intent row is the inbox entry)"""
    channel = Channel.IN_APP
    missing_target_reason = "User not found"

    def resolve_target(self, user: User) -> Optional[str]:
        return str(user.id)

    async def send(self, target: str, payload: NotificationPayload) -> ChannelResult:
        return ChannelResult(success=True)


def build_default_adapters(settings: Settings) -> Dict[Channel, ChannelAdapter]:
    """根据配置构建三个默认渠道适配器 (Build the default adapter for each channel)"""
    return {
        Channel.EMAIL: EmailAdapter(
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            use_ssl=settings.smtp_ssl,
            sender=settings.smtp_from,
            timeout=settings.notification_timeout_seconds,
        ),
        Channel.CHAT: ChatAdapter(
            bot_token=settings.telegram_bot_token,
            api_base=settings.telegram_api_base,
            timeout=settings.notification_timeout_seconds,
        ),
        Channel.IN_APP: InAppAdapter(),
    }
