"""通知网关与渠道适配器测试（mock 外部渠道）。"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from sqlalchemy import select

from vendmon.core.exceptions import ConflictError, NotFoundError
from vendmon.models.enums import Channel, IntentStatus, StepAction
from vendmon.models.notification import NotificationIntent
from vendmon.services.channels import (
    ChatAdapter,
    EmailAdapter,
    NotificationPayload,
    build_email_html,
    build_telegram_message,
)


def payload() -> NotificationPayload:
    return NotificationPayload(
        alert_id=7,
        severity="critical",
        title="MEMORY alert #7",
        message="High memory: memory reached 95.00% (threshold: > 90%)",
        metric="memory",
        value=95.0,
        threshold=90.0,
        created_at=datetime(2024, 3, 4, 10, 0, tzinfo=timezone.utc),
    )


async def all_intents(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(NotificationIntent).order_by(NotificationIntent.id))
        return list(result.scalars().all())


async def trigger(pipeline, probe):
    probe.memory_percent = 95
    summary = await pipeline.rule_engine.check_all()
    return summary["occurrence_ids"][0]


class TestGateway:
    async def test_email_failure_does_not_block_chat_for_other_user(
        self, pipeline, probe, adapters, session_factory, make_rule, admin_user, operator_user
    ):
        adapters[Channel.EMAIL].error = RuntimeError("SMTP connection refused")
        await make_rule(steps=[
            {"level": 1, "action": StepAction.NOTIFY_USER, "notification_channel": Channel.EMAIL,
             "target_users": [admin_user.id]},
            {"level": 2, "action": StepAction.NOTIFY_USER, "notification_channel": Channel.CHAT,
             "target_users": [operator_user.id]},
        ])
        await trigger(pipeline, probe)

        email, chat = await all_intents(session_factory)
        assert email.status == IntentStatus.FAILED
        assert "SMTP connection refused" in email.failure_reason
        assert email.sent_at is None
        assert chat.status == IntentStatus.SENT
        assert chat.sent_at is not None
        assert [m.target for m in adapters[Channel.CHAT].sent] == ["2002"]

    async def test_missing_contact_is_recorded_as_failed(
        self, pipeline, probe, adapters, session_factory, make_rule, make_user
    ):
        user = await make_user(name="No email")
        await make_rule(steps=[
            {"level": 1, "action": StepAction.NOTIFY_USER, "notification_channel": Channel.EMAIL,
             "target_users": [user.id]},
        ])
        await trigger(pipeline, probe)
        [intent] = await all_intents(session_factory)
        assert intent.status == IntentStatus.FAILED
        assert intent.failure_reason == "User email not found"
        assert adapters[Channel.EMAIL].sent == []

    async def test_unknown_or_inactive_user(self, pipeline, probe, session_factory, make_rule, make_user):
        inactive = await make_user(name="Gone", email="gone@vendhub.test", is_active=False)
        await make_rule(steps=[
            {"level": 1, "action": StepAction.NOTIFY_USER, "target_users": [inactive.id, 4242]},
        ])
        await trigger(pipeline, probe)
        rows = await all_intents(session_factory)
        assert [r.failure_reason for r in rows] == ["User not found", "User not found"]

    async def test_resend_failed_notification(
        self, pipeline, probe, adapters, session_factory, make_rule, operator_user
    ):
        adapters[Channel.EMAIL].error = RuntimeError("timeout")
        await make_rule(steps=[
            {"level": 1, "action": StepAction.NOTIFY_USER, "notification_channel": Channel.EMAIL,
             "target_users": [operator_user.id]},
        ])
        await trigger(pipeline, probe)
        [intent] = await all_intents(session_factory)
        assert intent.status == IntentStatus.FAILED

        adapters[Channel.EMAIL].error = None
        result = await pipeline.gateway.resend(intent.id)
        assert result.status == IntentStatus.SENT
        [intent] = await all_intents(session_factory)
        assert intent.status == IntentStatus.SENT
        assert intent.failure_reason is None
        assert adapters[Channel.EMAIL].sent[0].target == "ops@vendhub.test"

        with pytest.raises(ConflictError):
            await pipeline.gateway.resend(intent.id)

    async def test_resend_unknown_intent(self, pipeline):
        with pytest.raises(NotFoundError):
            await pipeline.gateway.resend(12345)

    async def test_deliver_pending(self, pipeline, probe, clock, session_factory, make_rule, operator_user):
        await make_rule()
        alert_id = await trigger(pipeline, probe)
        async with session_factory() as session:
            session.add(NotificationIntent(
                alert_id=alert_id, user_id=operator_user.id, channel=Channel.IN_APP, created_at=clock.now()
            ))
            await session.commit()
        results = await pipeline.gateway.deliver_pending(alert_id)
        assert [r.status for r in results] == [IntentStatus.SENT]


class TestEmailAdapter:
    async def test_send_builds_message(self):
        adapter = EmailAdapter(hostname="smtp.test", port=587, username="u", password="p")
        with patch("vendmon.services.channels.aiosmtplib.send", new_callable=AsyncMock) as send:
            result = await adapter.send("ops@vendhub.test", payload())
        assert result.success
        msg = send.call_args.args[0]
        assert msg["To"] == "ops@vendhub.test"
        assert msg["Subject"] == "[CRITICAL] MEMORY alert #7"
        assert send.call_args.kwargs["start_tls"] is True
        assert send.call_args.kwargs["username"] == "u"

    async def test_smtp_error_propagates_to_gateway(self):
        adapter = EmailAdapter(hostname="smtp.test", port=587)
        with patch("vendmon.services.channels.aiosmtplib.send", new_callable=AsyncMock) as send:
            send.side_effect = OSError("connection refused")
            with pytest.raises(OSError):
                await adapter.send("ops@vendhub.test", payload())

    def test_email_html(self):
        html = build_email_html(payload())
        assert "CRITICAL: MEMORY alert #7" in html
        assert "Threshold:</strong> 90.0" in html


class TestChatAdapter:
    async def test_missing_token(self):
        result = await ChatAdapter(bot_token="").send("1001", payload())
        assert not result.success
        assert result.error == "Telegram bot token not configured"

    async def test_send(self):
        adapter = ChatAdapter(bot_token="abc", api_base="https://telegram.test/")
        response = httpx.Response(200, request=httpx.Request("POST", "https://telegram.test"))
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=response) as post:
            result = await adapter.send("1001", payload())
        assert result.success
        assert post.call_args.args[0] == "https://telegram.test/botabc/sendMessage"
        assert post.call_args.kwargs["json"]["chat_id"] == "1001"

    async def test_http_error(self):
        adapter = ChatAdapter(bot_token="abc")
        response = httpx.Response(403, request=httpx.Request("POST", "https://api.telegram.org"))
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=response):
            result = await adapter.send("1001", payload())
        assert result.error == "HTTP 403"

    def test_message_text(self):
        text = build_telegram_message(payload())
        assert text.startswith("🚨 <b>MEMORY alert #7</b>")
        assert "<b>Value:</b> 95.0" in text
