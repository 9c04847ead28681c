import base64
import json
from datetime import date

import httpx
import pytest

from app.ratelimit import limiter
from app.receipt.base import ProviderConfig

IMAGE_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-receipt"


@pytest.fixture(autouse=True)
def _no_rate_limit():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def image_b64() -> str:
    return base64.b64encode(IMAGE_BYTES).decode("ascii")


@pytest.fixture
def today() -> str:
    return date.today().isoformat()


@pytest.fixture
def openrouter_config() -> ProviderConfig:
    return ProviderConfig(api_key="or-key", endpoint="https://moneyflow.example")


@pytest.fixture
def veryfi_config() -> ProviderConfig:
    return ProviderConfig(api_key="vf-key", client_id="vf-client", client_name="alice")


class VendorStub:
    """httpx transport that answers every request with the same handler and records calls."""

    def __init__(self, handler):
        self.handler = handler
        self.calls: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        return self.handler(request)

    @property
    def last_json(self) -> dict:
        return json.loads(self.calls[-1].content)


@pytest.fixture
def vendor():
    def make(handler=None, *, status=200, json_body=None, text=None):
        if handler is None:
            def handler(request):
                if text is not None:
                    return httpx.Response(status, text=text)
                return httpx.Response(status, json=json_body)
        return VendorStub(handler)
    return make


def _chat_completion(content, usage=None) -> dict:
    """OpenRouter chat-completion body carrying `content` as the message text."""
    if not isinstance(content, str):
        content = json.dumps(content)
    return {
        "id": "gen-123",
        "object": "chat.completion",
        "created": 1714550400,
        "model": "anthropic/claude-3.5-sonnet",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
        "usage": usage or {"prompt_tokens": 1200, "completion_tokens": 80, "total_tokens": 1280},
    }


@pytest.fixture
def chat_completion():
    return _chat_completion
