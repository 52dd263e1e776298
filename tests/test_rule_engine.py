"""告警规则引擎测试：运算符、冷却门控、降级读数与并发检查。"""
import asyncio
import warnings

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.exc import SADeprecationWarning

from vendmon.core.exceptions import ConflictError, NotFoundError
from vendmon.models.alert import AlertOccurrence
from vendmon.models.enums import EscalationLevel, Metric, OccurrenceStatus, Operator
from vendmon.services.rule_engine import (
    NOT_TRIPPED,
    SUPPRESSED,
    TRIGGERED,
    evaluate,
    format_message,
    lock_rule,
)
from vendmon.tasks.alert_checker import run_rule_check


async def occurrences(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(AlertOccurrence).order_by(AlertOccurrence.id))
        return list(result.scalars().all())


class TestEvaluate:
    def test_operators(self):
        assert evaluate(">", 85, 80)
        assert not evaluate(">", 80, 80)
        assert evaluate(">=", 80, 80)
        assert evaluate("<", 79, 80)
        assert evaluate("<=", 80, 80)
        assert evaluate("==", 80.00, 80)

    def test_values_are_rounded_to_two_decimals(self):
        assert evaluate(Operator.EQ, 80.001, 80)
        assert not evaluate(Operator.GT, 80.004, 80)
        assert evaluate(Operator.GT, 80.006, 80)

    def test_unknown_operator_is_rejected(self):
        with pytest.raises(ValueError):
            evaluate("!=", 1, 2)


class TestLockRule:
    async def test_locks_rule_without_loading_steps(self, session_factory, make_rule):
        rule = await make_rule(steps=[{"level": 1, "action": "notify_admin"}])
        with warnings.catch_warnings():
            warnings.simplefilter("error", SADeprecationWarning)
            async with session_factory() as session:
                locked = await lock_rule(session, rule.id)
                assert locked.threshold == 90
                assert "steps" not in inspect(locked).dict
                assert await lock_rule(session, 99999) is None


class TestCheckAll:
    async def test_trip_creates_occurrence_copying_rule(self, pipeline, probe, clock, session_factory, make_rule):
        rule = await make_rule(escalation_level=EscalationLevel.HIGH)
        probe.memory_percent = 95.5

        summary = await pipeline.rule_engine.check_all()
        assert summary[TRIGGERED] == 1
        assert summary["evaluated"] == 1

        [occurrence] = await occurrences(session_factory)
        assert occurrence.rule_id == rule.id
        assert occurrence.metric == Metric.MEMORY
        assert occurrence.value == 95.5
        assert occurrence.threshold == 90
        assert occurrence.operator == Operator.GT
        assert occurrence.severity == EscalationLevel.HIGH
        assert occurrence.status == OccurrenceStatus.ACTIVE
        assert occurrence.created_at == clock.now()
        assert occurrence.message == "High memory: memory reached 95.50% (threshold: > 90%)"
        assert not occurrence.is_test

    async def test_below_threshold_does_nothing(self, pipeline, probe, clock, session_factory, make_rule):
        await make_rule()
        probe.memory_percent = 90.0
        summary = await pipeline.rule_engine.check_all()
        assert summary[TRIGGERED] == 0
        assert summary["evaluated"] == 1
        assert await occurrences(session_factory) == []

    async def test_cooldown_window(self, pipeline, probe, clock, session_factory, make_rule):
        await make_rule(cooldown_minutes=5)
        probe.memory_percent = 95

        assert (await pipeline.rule_engine.check_all())[TRIGGERED] == 1
        clock.advance(minutes=3)
        summary = await pipeline.rule_engine.check_all()
        assert summary[TRIGGERED] == 0
        assert summary[SUPPRESSED] == 1
        assert len(await occurrences(session_factory)) == 1

        clock.advance(minutes=3)
        assert (await pipeline.rule_engine.check_all())[TRIGGERED] == 1
        assert len(await occurrences(session_factory)) == 2

    async def test_resolved_occurrence_does_not_hold_cooldown(self, pipeline, probe, clock, session_factory, make_rule):
        await make_rule(cooldown_minutes=30)
        probe.memory_percent = 95
        await pipeline.rule_engine.check_all()
        async with session_factory() as session:
            occurrence = (await session.execute(select(AlertOccurrence))).scalar_one()
            occurrence.status = OccurrenceStatus.RESOLVED
            await session.commit()
        clock.advance(minutes=1)
        assert (await pipeline.rule_engine.check_all())[TRIGGERED] == 1

    async def test_end_to_end_readings(self, pipeline, probe, clock, session_factory, make_rule):
        await make_rule(threshold=90, cooldown_minutes=5)
        for value in (70, 92, 93, 94):
            probe.memory_percent = value
            await run_rule_check(pipeline)
            clock.advance(minutes=1)

        [occurrence] = await occurrences(session_factory)
        assert occurrence.value == 92

    async def test_degraded_metric_is_skipped(self, pipeline, probe, clock, session_factory, make_rule):
        await make_rule()
        cpu_rule = await make_rule(name="High CPU", metric=Metric.CPU, threshold=50)
        probe.memory_percent = 99
        probe.cpu_percent = 80
        probe.fail.add("memory")

        summary = await pipeline.rule_engine.check_all()
        assert summary["skipped"] == 1
        assert summary[TRIGGERED] == 1
        [occurrence] = await occurrences(session_factory)
        assert occurrence.rule_id == cpu_rule.id

    async def test_disabled_rules_are_ignored(self, pipeline, probe, clock, session_factory, make_rule):
        await make_rule(is_enabled=False)
        probe.memory_percent = 99
        summary = await pipeline.rule_engine.check_all()
        assert summary["evaluated"] == 0
        assert await occurrences(session_factory) == []

    async def test_concurrent_checks_create_one_occurrence(self, pipeline, probe, clock, session_factory, make_rule):
        await make_rule()
        probe.memory_percent = 97
        await asyncio.gather(pipeline.rule_engine.check_all(), pipeline.rule_engine.check_all())
        assert len(await occurrences(session_factory)) == 1

    async def test_one_failing_rule_does_not_stop_the_others(self, pipeline, probe, clock, session_factory, make_rule):
        bad = await make_rule(name="Broken")
        good = await make_rule(name="Healthy")
        probe.memory_percent = 99

        engine = pipeline.rule_engine
        original = engine._check

        async def flaky(rule_id, reading):
            if rule_id == bad.id:
                raise RuntimeError("boom")
            return await original(rule_id, reading)

        engine._check = flaky
        summary = await engine.check_all()
        assert summary["errors"] == 1
        assert summary[TRIGGERED] == 1
        [occurrence] = await occurrences(session_factory)
        assert occurrence.rule_id == good.id


class TestCheckRule:
    async def test_check_single_rule(self, pipeline, probe, clock, session_factory, make_rule):
        rule = await make_rule()
        probe.memory_percent = 50
        result = await pipeline.rule_engine.check_rule(rule.id)
        assert result == {"rule_id": rule.id, "status": NOT_TRIPPED, "occurrence_id": None}

        probe.memory_percent = 91
        result = await pipeline.rule_engine.check_rule(rule.id)
        assert result["status"] == TRIGGERED
        assert result["occurrence_id"] is not None

    async def test_missing_rule(self, pipeline):
        with pytest.raises(NotFoundError):
            await pipeline.rule_engine.check_rule(999)


class TestTestRule:
    async def test_creates_test_occurrence(self, pipeline, clock, session_factory, make_rule):
        rule = await make_rule()
        occurrence = await pipeline.rule_engine.test_rule(rule.id)
        assert occurrence.is_test
        assert occurrence.value == 90
        assert occurrence.message.startswith("[TEST] High memory")

    async def test_respects_cooldown(self, pipeline, clock, session_factory, make_rule):
        rule = await make_rule()
        await pipeline.rule_engine.test_rule(rule.id, 95)
        with pytest.raises(ConflictError):
            await pipeline.rule_engine.test_rule(rule.id, 95)
        clock.advance(minutes=6)
        await pipeline.rule_engine.test_rule(rule.id, 95)
        assert len(await occurrences(session_factory)) == 2

    async def test_message_format(self, make_rule):
        rule = await make_rule(threshold=85.5, operator=Operator.GE)
        assert format_message(rule, 86) == "High memory: memory reached 86.00% (threshold: >= 85.5%)"
