import asyncio
import itertools

from src.instrumentator.client.conversation import (
    REFINEMENT_ERROR_MESSAGE,
    SCREENSHOT_PLACEHOLDER,
    STOPPED_MESSAGE,
    ConversationSession,
    generation_summary,
)
from src.instrumentator.client.generation import GenerationFailed
from src.instrumentator.client.refinement import RefinementFailed, RefinementResult
from src.instrumentator.domain.chat_models import SessionState

from .utils import make_event


class Gated:
    """Outcome that resolves only once ``gate`` is set."""

    def __init__(self, value):
        self.gate = asyncio.Event()
        self.value = value


async def _resolve(outcome):
    if isinstance(outcome, Gated):
        await outcome.gate.wait()
        outcome = outcome.value
    if isinstance(outcome, BaseException):
        raise outcome
    return outcome


class ScriptedGenerator:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self.started = asyncio.Event()

    async def generate(self, description, image=None):
        self.calls.append((description, image))
        outcome = self.outcomes.pop(0)
        self.started.set()
        return await _resolve(outcome)


class ScriptedRefiner:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self.started = asyncio.Event()

    async def refine(self, events, instruction):
        self.calls.append((list(events), instruction))
        outcome = self.outcomes.pop(0)
        self.started.set()
        return await _resolve(outcome)


def _session(generator=None, refiner=None):
    ids = itertools.count(1)
    ticks = itertools.count(1000)
    return ConversationSession(
        generator or ScriptedGenerator(),
        refiner or ScriptedRefiner(),
        clock=lambda: next(ticks),
        id_factory=lambda: f"m{next(ids)}",
    )


def _texts(session):
    return [(m.role, m.text) for m in session.messages]


def test_generate_replaces_events_and_logs_exchange():
    events = [make_event("a", name="view:a"), make_event("b", name="view:b")]
    gen = ScriptedGenerator(events)
    session = _session(gen)

    assert asyncio.run(session.generate("Pricing page")) is True
    assert session.state is SessionState.IDLE
    assert session.events == events
    assert _texts(session) == [("user", "Pricing page"), ("model", generation_summary(2))]
    assert [m.id for m in session.messages] == ["m1", "m2"]
    assert [m.timestamp for m in session.messages] == [1000, 1001]
    assert session.has_generated
    assert gen.calls == [("Pricing page", None)]


def test_generate_with_screenshot_only_uses_placeholder():
    gen = ScriptedGenerator([])
    session = _session(gen)
    asyncio.run(session.generate("", "data:image/png;base64,AAAA"))

    first = session.messages[0]
    assert first.text == SCREENSHOT_PLACEHOLDER
    assert first.image_data == "data:image/png;base64,AAAA"
    assert session.messages[1].text == generation_summary(0)
    assert session.draft_image == "data:image/png;base64,AAAA"


def test_generate_refuses_empty_input():
    gen = ScriptedGenerator()
    session = _session(gen)
    assert asyncio.run(session.generate("   ")) is False
    assert session.messages == []
    assert gen.calls == []
    assert not session.has_generated


def test_generate_refuses_screenshot_header_without_data():
    gen = ScriptedGenerator()
    session = _session(gen)
    assert asyncio.run(session.generate("", "data:image/png;base64,")) is False
    assert session.state is SessionState.IDLE
    assert session.messages == []
    assert gen.calls == []


def test_generate_drops_empty_screenshot_but_keeps_description():
    gen = ScriptedGenerator([])
    session = _session(gen)
    assert asyncio.run(session.generate("Pricing", "data:image/png;base64,")) is True
    assert gen.calls == [("Pricing", None)]
    assert session.messages[0].image_data is None


def test_generate_failure_keeps_events_and_shows_backend_message():
    previous = [make_event("a")]
    gen = ScriptedGenerator(previous, GenerationFailed("API key not configured", detail="HTTP 500"))
    session = _session(gen)

    async def scenario():
        await session.generate("first")
        await session.generate("second")

    asyncio.run(scenario())
    assert session.events == previous
    assert session.state is SessionState.IDLE
    assert session.messages[-1].role == "model"
    assert session.messages[-1].text == "API key not configured"
    assert session.last_error == "HTTP 500"


def test_generate_unexpected_error_uses_fallback_text():
    session = _session(ScriptedGenerator(RuntimeError("boom")))
    asyncio.run(session.generate("x"))
    assert session.messages[-1].text == GenerationFailed.fallback_message
    assert session.state is SessionState.IDLE
    assert session.events == []


def test_send_message_applies_refinement_and_sends_snapshot():
    initial = [make_event("a", name="view:a")]
    refined = [make_event("a", name="view:a"), make_event("c", name="view:c")]
    refiner = ScriptedRefiner(RefinementResult(events=refined, message="Added view c."))
    session = _session(ScriptedGenerator(initial), refiner)

    async def scenario():
        await session.generate("Pricing")
        return await session.send_message("add a view for c")

    assert asyncio.run(scenario()) is True
    assert refiner.calls == [(initial, "add a view for c")]
    assert session.events == refined
    assert _texts(session)[-2:] == [("user", "add a view for c"), ("model", "Added view c.")]


def test_send_message_failure_keeps_events():
    initial = [make_event("a")]
    refiner = ScriptedRefiner(RefinementFailed("Model returned invalid JSON"))
    session = _session(ScriptedGenerator(initial), refiner)

    async def scenario():
        await session.generate("Pricing")
        await session.send_message("rename")

    asyncio.run(scenario())
    assert session.events == initial
    assert session.messages[-1].text == REFINEMENT_ERROR_MESSAGE
    assert session.last_error == "Model returned invalid JSON"


def test_send_message_refuses_blank_text():
    refiner = ScriptedRefiner()
    session = _session(refiner=refiner)
    assert asyncio.run(session.send_message("  ")) is False
    assert refiner.calls == []


def test_only_one_request_in_flight():
    gated = Gated([make_event("a")])
    gen = ScriptedGenerator(gated)
    refiner = ScriptedRefiner()
    session = _session(gen, refiner)

    async def scenario():
        first = asyncio.create_task(session.generate("Pricing"))
        await gen.started.wait()
        assert session.busy
        assert session.state is SessionState.GENERATING
        assert await session.generate("again") is False
        assert await session.send_message("rename") is False
        gated.gate.set()
        assert await first is True

    asyncio.run(scenario())
    assert len(gen.calls) == 1
    assert refiner.calls == []
    assert [m.text for m in session.messages if m.role == "user"] == ["Pricing"]


def test_stop_during_generation_discards_late_result():
    gated = Gated([make_event("late")])
    gen = ScriptedGenerator(gated)
    session = _session(gen)

    async def scenario():
        task = asyncio.create_task(session.generate("Pricing"))
        await gen.started.wait()
        assert session.stop() is True
        assert session.state is SessionState.IDLE
        assert await task is True
        gated.gate.set()
        await session.drain()

    asyncio.run(scenario())
    assert session.events == []
    assert _texts(session) == [("user", "Pricing"), ("model", STOPPED_MESSAGE)]


def test_stop_during_refinement_keeps_previous_events():
    initial = [make_event("a")]
    gated = Gated(RefinementResult(events=[], message="Removed all."))
    refiner = ScriptedRefiner(gated)
    session = _session(ScriptedGenerator(initial), refiner)

    async def scenario():
        await session.generate("Pricing")
        task = asyncio.create_task(session.send_message("remove everything"))
        await refiner.started.wait()
        assert session.state is SessionState.REFINING
        session.stop()
        await task
        gated.gate.set()
        await session.drain()

    asyncio.run(scenario())
    assert session.events == initial
    assert session.messages[-1].text == STOPPED_MESSAGE
    assert session.state is SessionState.IDLE


def test_new_request_after_stop_is_not_overwritten_by_stale_result():
    stale = Gated([make_event("stale", name="view:stale")])
    fresh = [make_event("fresh", name="view:fresh")]
    gen = ScriptedGenerator(stale, fresh)
    session = _session(gen)

    async def scenario():
        task = asyncio.create_task(session.generate("first"))
        await gen.started.wait()
        session.stop()
        await task
        assert await session.generate("second") is True
        stale.gate.set()
        await session.drain()

    asyncio.run(scenario())
    assert [e.id for e in session.events] == ["fresh"]
    assert session.messages[-1].text == generation_summary(1)


def test_stale_failure_after_stop_is_silent():
    gated = Gated(GenerationFailed("late failure"))
    gen = ScriptedGenerator(gated)
    session = _session(gen)

    async def scenario():
        task = asyncio.create_task(session.generate("Pricing"))
        await gen.started.wait()
        session.stop()
        await task
        gated.gate.set()
        await session.drain()

    asyncio.run(scenario())
    assert session.last_error is None
    assert session.messages[-1].text == STOPPED_MESSAGE


def test_stop_when_idle_is_a_no_op():
    session = _session()
    assert session.stop() is False
    assert session.messages == []


def test_reset_while_busy_drops_everything():
    gated = Gated([make_event("late")])
    gen = ScriptedGenerator(gated)
    session = _session(gen)

    async def scenario():
        task = asyncio.create_task(session.generate("Pricing", "data:image/png;base64,AAAA"))
        await gen.started.wait()
        session.reset()
        await task
        gated.gate.set()
        await session.drain()

    asyncio.run(scenario())
    assert session.state is SessionState.IDLE
    assert session.events == []
    assert session.messages == []
    assert session.draft_description == ""
    assert session.draft_image is None
    assert not session.has_generated


def test_delete_event_removes_only_matching_id():
    events = [make_event("a", name="view:a"), make_event("b", name="view:b")]
    session = _session(ScriptedGenerator(events))
    asyncio.run(session.generate("Pricing"))
    message_count = len(session.messages)

    assert session.delete_event("a") is True
    assert [e.id for e in session.events] == ["b"]
    assert session.delete_event("missing") is False
    assert len(session.messages) == message_count


def test_events_view_is_a_copy():
    session = _session(ScriptedGenerator([make_event("a")]))
    asyncio.run(session.generate("Pricing"))
    session.events.clear()
    session.messages.clear()
    assert len(session.events) == 1
    assert len(session.messages) == 2


def test_stale_refinement_failure_after_stop_is_silent():
    initial = [make_event("a")]
    gated = Gated(RefinementFailed("late failure"))
    refiner = ScriptedRefiner(gated)
    session = _session(ScriptedGenerator(initial), refiner)

    async def scenario():
        await session.generate("Pricing")
        task = asyncio.create_task(session.send_message("rename"))
        await refiner.started.wait()
        session.stop()
        await task
        gated.gate.set()
        await session.drain()

    asyncio.run(scenario())
    assert session.events == initial
    assert session.last_error is None
    assert _texts(session)[-2:] == [("user", "rename"), ("model", STOPPED_MESSAGE)]
    assert REFINEMENT_ERROR_MESSAGE not in [m.text for m in session.messages]


def test_reset_while_refining_drops_late_result():
    gated = Gated(RefinementResult(events=[make_event("late", name="view:late")], message="Done."))
    refiner = ScriptedRefiner(gated)
    session = _session(ScriptedGenerator([make_event("a")]), refiner)

    async def scenario():
        await session.generate("Pricing")
        task = asyncio.create_task(session.send_message("add a late view"))
        await refiner.started.wait()
        session.reset()
        await task
        gated.gate.set()
        await session.drain()

    asyncio.run(scenario())
    assert session.state is SessionState.IDLE
    assert session.events == []
    assert session.messages == []
    assert not session.busy
