class ServiceError(Exception):
    """Base class for errors raised by the receipt and classification layers."""


class ConfigurationError(ServiceError):
    """Unknown provider or missing credential. Operator problem, never retried."""


class InvalidInputError(ServiceError):
    """The caller sent a missing or malformed payload."""


class UpstreamError(ServiceError):
    """The vendor call failed (non-2xx, timeout or transport error)."""

    def __init__(self, provider: str, status_code: int | None, message: str):
        self.provider = provider
        self.status_code = status_code
        self.message = message
        status = status_code if status_code is not None else "no response"
        super().__init__(f"{provider} API error: {status} - {message}")


class MalformedResponseError(ServiceError):
    """The vendor answered 2xx but the content does not match the expected schema."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"{provider} returned a malformed response: {message}")
