"""Thin client for the OpenRouter chat-completion endpoint.

Shared by the receipt OCR provider and the expense classifier. One request per
call, no retries: a failed call surfaces to the caller immediately.
"""
import json
import logging

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI
from openai.types.chat import ChatCompletion

from app.errors import MalformedResponseError, UpstreamError

logger = logging.getLogger("moneyflow")

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_API_URL = f"{OPENROUTER_BASE_URL}/chat/completions"
APP_TITLE = "MoneyFlowTracker"
PROVIDER = "OpenRouter"
DEFAULT_TIMEOUT = 60.0


async def call_openrouter(
    payload: dict,
    api_key: str,
    referer: str,
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ChatCompletion:
    """Send one chat-completion request and return the completion."""
    timeout = timeout or DEFAULT_TIMEOUT
    http_client = httpx.AsyncClient(transport=transport) if transport is not None else None
    client = AsyncOpenAI(
        api_key=api_key,
        base_url=OPENROUTER_BASE_URL,
        # OpenRouter usage policy asks for the calling site
        default_headers={"HTTP-Referer": referer, "X-Title": APP_TITLE},
        max_retries=0,
        timeout=timeout,
        http_client=http_client,
    )

    try:
        async with client:
            completion = await client.chat.completions.create(**payload)
    except APITimeoutError as e:
        logger.warning(
            "OpenRouter request timed out",
            extra={"extra_data": {"provider": PROVIDER, "timeout_s": timeout}},
        )
        raise UpstreamError(PROVIDER, None, "request timed out") from e
    except APIConnectionError as e:
        logger.warning(
            "OpenRouter request failed",
            extra={"extra_data": {"provider": PROVIDER, "error": type(e.__cause__ or e).__name__}},
        )
        raise UpstreamError(PROVIDER, None, str(e)) from e
    except APIStatusError as e:
        error_text = e.response.text
        logger.error(
            "OpenRouter API error",
            extra={"extra_data": {"status": e.status_code, "body": error_text[:500]}},
        )
        raise UpstreamError(PROVIDER, e.status_code, error_text) from e
    except ValueError as e:
        raise MalformedResponseError(PROVIDER, "response body is not JSON") from e

    # the SDK hands back the raw text when the body is not JSON
    if not isinstance(completion, ChatCompletion):
        raise MalformedResponseError(PROVIDER, "response body is not JSON")
    return completion


def first_choice(completion: ChatCompletion):
    choices = getattr(completion, "choices", None)
    if not choices or getattr(choices[0], "message", None) is None:
        raise MalformedResponseError(PROVIDER, "response has no choices")
    return choices[0]


def completion_log_data(completion: ChatCompletion) -> dict:
    """Token usage, model and finish reason for the structured log."""
    usage = getattr(completion, "usage", None)
    choices = getattr(completion, "choices", None) or []
    return {
        "tokens": usage.model_dump() if usage is not None else None,
        "model": getattr(completion, "model", None),
        "finish_reason": getattr(choices[0], "finish_reason", None) if choices else None,
    }


def extract_json_content(completion: ChatCompletion):
    """Return the parsed JSON carried in the first choice's message content."""
    content = first_choice(completion).message.content
    if not isinstance(content, str) or not content.strip():
        raise MalformedResponseError(PROVIDER, "message content is empty")
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(PROVIDER, f"message content is not valid JSON ({e.msg})") from e
