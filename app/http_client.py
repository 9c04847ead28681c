import logging

import httpx

from app.errors import UpstreamError

logger = logging.getLogger("moneyflow")


async def post_json(
    provider: str,
    url: str,
    payload: dict,
    headers: dict[str, str],
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.Response:
    """POST a JSON body once and return the response, whatever its status.

    Timeouts and connection failures surface as UpstreamError without a status code.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            return await client.post(url, json=payload, headers=headers)
    except httpx.TimeoutException as e:
        logger.warning(
            f"{provider} request timed out",
            extra={"extra_data": {"provider": provider, "timeout_s": timeout}},
        )
        raise UpstreamError(provider, None, "request timed out") from e
    except httpx.TransportError as e:
        logger.warning(
            f"{provider} request failed",
            extra={"extra_data": {"provider": provider, "error": type(e).__name__}},
        )
        raise UpstreamError(provider, None, str(e) or type(e).__name__) from e
