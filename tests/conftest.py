import io
import json

import httpx
import pytest

from app.core.config import Settings
from app.models.generation_models import GenerationContext
from app.models.generation_models import SectionTemplate


# Fixture factory to create dummy upload files with filename and content
@pytest.fixture
def make_dummy_upload():
    def _make_dummy_upload(filename: str, content: bytes):
        class DummyFile:
            def __init__(self):
                self.filename = filename
                self._content = content
                self.file = io.BytesIO(content)

            async def read(self):
                return self._content

        return DummyFile()

    return _make_dummy_upload


@pytest.fixture
def test_settings():
    """Isolated settings: never read from the environment or a local .env file."""
    return Settings(
        _env_file=None,
        openai_api_key="sk-test",
        openai_base_url="https://llm.test/v1",
        model_id="test-model",
        api_key="server-key",
    )


@pytest.fixture
def context():
    return GenerationContext(
        rfp_content="The agency needs a cloud migration partner for its records system.",
        company_profile="Acme Consulting, 200 engineers.",
        requirements=("FedRAMP Moderate", "24/7 support"),
    )


@pytest.fixture
def template():
    return SectionTemplate(
        id="technical-approach",
        name="Technical Approach",
        description="Detailed technical solution",
        prompt_template="Write the {templateName} section for {sectionType}.",
        max_tokens=300,
    )


def _sse_frame(content: str) -> bytes:
    payload = {"choices": [{"delta": {"content": content}}]}
    return f"data: {json.dumps(payload)}\n\n".encode()


@pytest.fixture
def sse_body():
    """Build a chat-completion event-stream body carrying *contents* as deltas."""

    def _sse_body(*contents: str, done: bool = True) -> bytes:
        body = b"".join(_sse_frame(c) for c in contents)
        if done:
            body += b"data: [DONE]\n\n"
        return body

    return _sse_body


@pytest.fixture
def make_stream_client():
    """Build an httpx.AsyncClient whose every request is answered by *handler*.

    Requests are recorded on the returned client's ``requests`` list.
    """

    def _make(handler):
        requests: list[httpx.Request] = []

        def _record(request: httpx.Request):
            requests.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
        client.requests = requests
        return client

    return _make
