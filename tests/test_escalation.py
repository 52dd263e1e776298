"""告警升级分发测试：执行顺序、规则开关、钩子失败与延迟升级。"""
from datetime import timedelta

import pytest
from sqlalchemy import select

from vendmon.models.alert import AlertOccurrence
from vendmon.models.enums import AutoAction, Channel, OccurrenceStatus, StepAction, UserRole
from vendmon.models.escalation import EscalationStep, PendingEscalation
from vendmon.models.notification import NotificationIntent
from vendmon.schemas.alert import EscalationStepCreate
from vendmon.services.alert_history import AlertHistory
from vendmon.services.escalation_dispatcher import schedule_due_times
from vendmon.services.rule_store import RuleStore
from vendmon.tasks.escalation_sweep import run_escalation_sweep


def step(level, action, delay=0, channel=Channel.IN_APP, targets=None):
    return {
        "level": level,
        "action": action,
        "delay_minutes": delay,
        "notification_channel": channel,
        "target_users": targets or [],
    }


@pytest.fixture
def raise_alert(session_factory, clock):
    """直接写入一条 active 告警事件，返回其 ID。"""
    async def _raise(rule) -> int:
        async with session_factory() as session:
            occurrence = AlertOccurrence(
                rule_id=rule.id,
                metric=rule.metric,
                value=95.0,
                threshold=rule.threshold,
                operator=rule.operator,
                status=OccurrenceStatus.ACTIVE,
                severity=rule.escalation_level,
                message="memory high",
                is_test=False,
                created_at=clock.now(),
            )
            session.add(occurrence)
            await session.commit()
            return occurrence.id
    return _raise


async def intents(session_factory, alert_id):
    async with session_factory() as session:
        result = await session.execute(
            select(NotificationIntent).where(NotificationIntent.alert_id == alert_id).order_by(NotificationIntent.id)
        )
        return list(result.scalars().all())


class TestScheduleDueTimes:
    def test_due_times_never_go_backwards(self, clock):
        steps = [
            EscalationStep(level=3, delay_minutes=5, action=StepAction.SCALE_UP),
            EscalationStep(level=1, delay_minutes=0, action=StepAction.NOTIFY_USER),
            EscalationStep(level=2, delay_minutes=10, action=StepAction.NOTIFY_ADMIN),
        ]
        start = clock.now()
        due = [(s.level, d) for s, d in schedule_due_times(start, steps)]
        assert due == [
            (1, start),
            (2, start + timedelta(minutes=10)),
            (3, start + timedelta(minutes=10)),
        ]


class TestDispatch:
    async def test_steps_run_in_level_order(self, pipeline, hooks, make_rule, raise_alert, operator_user):
        rule = await make_rule(steps=[
            step(3, StepAction.SCALE_UP),
            step(1, StepAction.NOTIFY_USER, targets=[operator_user.id]),
            step(2, StepAction.AUTO_CLEANUP),
        ])
        alert_id = await raise_alert(rule)

        result = await pipeline.dispatcher.dispatch(alert_id)
        assert result["executed"] == [1, 2, 3]
        assert result["scheduled"] == []
        assert len(result["intents"]) == 1
        assert hooks.calls == [("auto_cleanup", alert_id), ("scale_up", alert_id)]

    async def test_steps_added_later_still_run_in_order(self, pipeline, hooks, make_rule, raise_alert, db_session, clock):
        rule = await make_rule()
        store = RuleStore(db_session, clock)
        await store.add_step(rule.id, EscalationStepCreate(level=2, action=StepAction.SCALE_UP))
        await store.add_step(rule.id, EscalationStepCreate(level=1, action=StepAction.AUTO_CLEANUP))
        alert_id = await raise_alert(rule)

        await pipeline.dispatcher.dispatch(alert_id)
        assert [action for action, _ in hooks.calls] == ["auto_cleanup", "scale_up"]

    async def test_notify_user_flag_disables_user_steps(
        self, pipeline, session_factory, make_rule, raise_alert, operator_user
    ):
        rule = await make_rule(
            notify_user=False,
            steps=[step(1, StepAction.NOTIFY_USER, targets=[operator_user.id])],
        )
        alert_id = await raise_alert(rule)
        result = await pipeline.dispatcher.dispatch(alert_id)
        assert result["intents"] == []
        assert await intents(session_factory, alert_id) == []

    async def test_notify_admin_without_targets_goes_to_active_admins(
        self, pipeline, session_factory, make_rule, make_user, raise_alert, admin_user, operator_user
    ):
        await make_user(name="Former admin", role=UserRole.ADMIN, is_active=False)
        rule = await make_rule(steps=[step(1, StepAction.NOTIFY_ADMIN, channel=Channel.EMAIL)])
        alert_id = await raise_alert(rule)

        await pipeline.dispatcher.dispatch(alert_id)
        rows = await intents(session_factory, alert_id)
        assert [(r.user_id, r.channel) for r in rows] == [(admin_user.id, Channel.EMAIL)]

    async def test_notify_admin_flag(self, pipeline, session_factory, make_rule, raise_alert, admin_user):
        rule = await make_rule(notify_admin=False, steps=[step(1, StepAction.NOTIFY_ADMIN)])
        alert_id = await raise_alert(rule)
        await pipeline.dispatcher.dispatch(alert_id)
        assert await intents(session_factory, alert_id) == []

    async def test_hook_failure_does_not_stop_later_steps(
        self, pipeline, hooks, session_factory, make_rule, raise_alert, operator_user
    ):
        hooks.fail.add("auto_cleanup")
        rule = await make_rule(steps=[
            step(1, StepAction.AUTO_CLEANUP),
            step(2, StepAction.NOTIFY_USER, targets=[operator_user.id]),
        ])
        alert_id = await raise_alert(rule)

        result = await pipeline.dispatcher.dispatch(alert_id)
        assert result["hook_failures"] == 1
        assert result["executed"] == [1, 2]
        assert len(await intents(session_factory, alert_id)) == 1

    async def test_auto_action_runs_after_steps(self, pipeline, hooks, make_rule, raise_alert):
        rule = await make_rule(auto_action=AutoAction.SCALE_UP, steps=[step(1, StepAction.AUTO_CLEANUP)])
        alert_id = await raise_alert(rule)
        result = await pipeline.dispatcher.dispatch(alert_id)
        assert result["auto_action"] == "scale_up"
        assert hooks.calls == [("auto_cleanup", alert_id), ("scale_up", alert_id)]

    async def test_intents_are_deduplicated(self, pipeline, session_factory, make_rule, raise_alert, operator_user):
        rule = await make_rule(steps=[
            step(1, StepAction.NOTIFY_USER, targets=[operator_user.id, operator_user.id]),
            step(2, StepAction.NOTIFY_USER, targets=[operator_user.id]),
            step(3, StepAction.NOTIFY_USER, channel=Channel.CHAT, targets=[operator_user.id]),
        ])
        alert_id = await raise_alert(rule)
        await pipeline.dispatcher.dispatch(alert_id)
        rows = await intents(session_factory, alert_id)
        assert sorted(r.channel.value for r in rows) == ["chat", "in_app"]

    async def test_trip_escalates_through_rule_engine(self, pipeline, probe, adapters, make_rule, operator_user):
        await make_rule(steps=[step(1, StepAction.NOTIFY_USER, channel=Channel.CHAT, targets=[operator_user.id])])
        probe.memory_percent = 96
        await pipeline.rule_engine.check_all()
        [message] = adapters[Channel.CHAT].sent
        assert message.target == "2002"
        assert "memory reached 96.00%" in message.payload.message


class TestDelayedEscalation:
    async def _rule_with_delays(self, make_rule, operator_user, admin_user):
        return await make_rule(steps=[
            step(1, StepAction.NOTIFY_USER, targets=[operator_user.id]),
            step(2, StepAction.NOTIFY_ADMIN, delay=10, targets=[admin_user.id]),
            step(3, StepAction.SCALE_UP, delay=5),
        ])

    async def test_delayed_steps_run_when_due(
        self, pipeline, clock, hooks, session_factory, make_rule, raise_alert, operator_user, admin_user
    ):
        rule = await self._rule_with_delays(make_rule, operator_user, admin_user)
        alert_id = await raise_alert(rule)

        result = await pipeline.dispatcher.dispatch(alert_id)
        assert result["executed"] == [1]
        assert result["scheduled"] == [2, 3]
        assert hooks.calls == []

        clock.advance(minutes=5)
        assert (await run_escalation_sweep(pipeline))["dispatched"] == 0

        clock.advance(minutes=5)
        stats = await run_escalation_sweep(pipeline)
        assert stats == {"due": 2, "dispatched": 2, "cancelled": 0}
        assert hooks.calls == [("scale_up", alert_id)]
        assert [r.user_id for r in await intents(session_factory, alert_id)] == [operator_user.id, admin_user.id]

        # 已执行的步骤不会重复执行
        clock.advance(minutes=1)
        assert (await run_escalation_sweep(pipeline))["due"] == 0

    async def test_acknowledge_cancels_pending_steps(
        self, pipeline, clock, hooks, session_factory, make_rule, raise_alert, operator_user, admin_user
    ):
        rule = await self._rule_with_delays(make_rule, operator_user, admin_user)
        alert_id = await raise_alert(rule)
        await pipeline.dispatcher.dispatch(alert_id)

        async with session_factory() as session:
            await AlertHistory(session, clock).acknowledge(alert_id, operator_user.id)
            pending = (await session.execute(select(PendingEscalation))).scalars().all()
        assert all(p.cancelled for p in pending)

        clock.advance(minutes=15)
        assert (await pipeline.dispatcher.sweep())["due"] == 0
        assert hooks.calls == []

    async def test_sweep_cancels_steps_of_inactive_alerts(
        self, pipeline, clock, hooks, session_factory, make_rule, raise_alert, operator_user, admin_user
    ):
        rule = await self._rule_with_delays(make_rule, operator_user, admin_user)
        alert_id = await raise_alert(rule)
        await pipeline.dispatcher.dispatch(alert_id)

        async with session_factory() as session:
            occurrence = await session.get(AlertOccurrence, alert_id)
            occurrence.status = OccurrenceStatus.RESOLVED
            await session.commit()

        clock.advance(minutes=15)
        stats = await pipeline.dispatcher.sweep()
        assert stats["cancelled"] == 2
        assert hooks.calls == []
