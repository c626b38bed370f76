"""Tests for RequirementEvaluator."""

from reactroles.core.event_bus import MISSING_REQUIREMENT, EventBus
from reactroles.core.requirements import RequirementEvaluator
from reactroles.models.binding import Requirements, RequirementType
from helpers import MESSAGE, make_binding


def _evaluator(platform):
    bus = EventBus()
    events = []
    bus.add_listener(MISSING_REQUIREMENT, events.append)
    return RequirementEvaluator(platform, bus), events


class TestEvaluate:
    async def test_no_requirements(self, platform):
        evaluator, events = _evaluator(platform)
        member = platform.add_member(1)

        assert await evaluator.evaluate(make_binding(), member) is None
        assert events == []
        assert platform.calls == []

    async def test_missing_boost(self, platform):
        evaluator, events = _evaluator(platform)
        member = platform.add_member(1)
        platform.react(1, "👍")
        binding = make_binding(requirements=Requirements(boost=True))

        result = await evaluator.evaluate(binding, member)

        assert result is RequirementType.BOOST
        assert events[0]["requirement"] is RequirementType.BOOST
        assert events[0]["member"] is member
        assert platform.calls == [("remove_reaction", MESSAGE, "👍", 1)]

    async def test_missing_verified_developer(self, platform):
        evaluator, events = _evaluator(platform)
        member = platform.add_member(1, boosting=True)
        binding = make_binding(requirements=Requirements(boost=True, verified_developer=True))

        result = await evaluator.evaluate(binding, member)

        assert result is RequirementType.VERIFIED_DEVELOPER
        assert len(events) == 1

    async def test_only_first_failure_reported(self, platform):
        evaluator, events = _evaluator(platform)
        member = platform.add_member(1)
        binding = make_binding(requirements=Requirements(boost=True, verified_developer=True))

        result = await evaluator.evaluate(binding, member)

        assert result is RequirementType.BOOST
        assert len(events) == 1
        assert len(platform.calls_named("remove_reaction")) == 1

    async def test_all_met(self, platform):
        evaluator, events = _evaluator(platform)
        member = platform.add_member(1, boosting=True, verified_developer=True)
        binding = make_binding(requirements=Requirements(boost=True, verified_developer=True))

        assert await evaluator.evaluate(binding, member) is None
        assert events == []
