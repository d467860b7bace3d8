import asyncio
import json

import pytest

from app.core.exceptions import ConfigurationError
from app.core.exceptions import GenerationCancelledError
from app.core.exceptions import TransportError
from app.generation_logic.stream_events import create_stream_event
from app.generation_logic.stream_events import stream_batch_generation
from app.generation_logic.stream_events import stream_section_generation
from app.models.generation_models import GenerationProgress


class FakeGenerator:
    """Stands in for SectionGenerator: replays *deltas* through the callbacks, then returns or raises."""

    def __init__(self, deltas=(), error=None):
        self.deltas = deltas
        self.error = error

    async def generate_section(self, section_id, context, template, on_progress=None, on_chunk=None):
        on_progress(GenerationProgress(section_id=section_id, status="generating", progress=0))
        text = ""
        for delta in self.deltas:
            await asyncio.sleep(0)
            text += delta
            on_chunk(delta)
        if self.error is not None:
            on_progress(GenerationProgress(section_id=section_id, status="error", progress=0, error=str(self.error)))
            raise self.error
        on_progress(GenerationProgress(section_id=section_id, status="completed", progress=100, content=text))
        return text


class FakeOrchestrator:
    async def generate_multiple(self, sections, context, on_progress=None, on_chunk=None):
        results = {}
        for section_id, _template in sections:
            on_chunk(section_id, f"{section_id} text")
            results[section_id] = f"{section_id} text"
        return results


async def _events(stream):
    return [json.loads(line) async for line in stream]


def test_create_stream_event_omits_empty_fields():
    line = create_stream_event("finished")
    assert line == '{"type": "finished"}\n'
    assert json.loads(create_stream_event("chunk", payload="x", section_id="s")) == {
        "type": "chunk",
        "section_id": "s",
        "payload": "x",
    }


@pytest.mark.asyncio
async def test_single_section_stream(context, template):
    events = await _events(stream_section_generation(FakeGenerator(["Hel", "lo"]), "s1", template, context))

    types = [e["type"] for e in events]
    assert types == ["progress", "chunk", "chunk", "progress", "data", "finished"]
    assert [e["payload"] for e in events if e["type"] == "chunk"] == ["Hel", "lo"]
    assert events[1]["section_id"] == "s1"
    assert events[3]["payload"]["status"] == "completed"
    assert events[4]["payload"] == {"s1": "Hello"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, message",
    [
        (TransportError("OpenAI API error: 500 Internal Server Error", 500), "Language model request error: OpenAI API error: 500 Internal Server Error"),
        (ConfigurationError("AI generation is disabled in configuration"), "Configuration error: AI generation is disabled in configuration"),
        (GenerationCancelledError("Generation cancelled"), "Generation cancelled"),
        (RuntimeError("boom"), "An unexpected server error occurred: boom"),
    ],
)
async def test_failures_end_with_error_then_finished(context, template, error, message):
    events = await _events(stream_section_generation(FakeGenerator(["a"], error=error), "s1", template, context))

    assert [e["type"] for e in events][-2:] == ["error", "finished"]
    assert events[-2]["message"] == message
    assert "data" not in [e["type"] for e in events]


@pytest.mark.asyncio
async def test_batch_stream(context, template):
    sections = [("one", template), ("two", template)]
    events = await _events(stream_batch_generation(FakeOrchestrator(), sections, context))

    assert [(e["type"], e.get("section_id")) for e in events] == [
        ("chunk", "one"),
        ("chunk", "two"),
        ("data", None),
        ("finished", None),
    ]
    assert events[2]["payload"] == {"one": "one text", "two": "two text"}


@pytest.mark.asyncio
async def test_closing_stream_early_cancels_generation(context, template):
    started = asyncio.Event()
    cancelled = asyncio.Event()

    class SlowGenerator:
        async def generate_section(self, section_id, context, template, on_progress=None, on_chunk=None):
            on_chunk("first")
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

    stream = stream_section_generation(SlowGenerator(), "s1", template, context)
    first = await stream.__anext__()
    assert json.loads(first)["type"] == "chunk"

    await stream.aclose()
    await asyncio.wait_for(cancelled.wait(), timeout=5)
