"""
Error kinds raised by the lower layers of chatborg.

These carry no chat-facing prose; the handlers in `chatborg.handlers` own the
user-visible "❌ ..." formatting. Cancellation is plain `asyncio.CancelledError`
and is never wrapped.
"""


class BotError(Exception):
    pass


class NotFoundError(BotError):
    """The requested record does not exist."""


class UnauthorizedError(BotError):
    pass


class UnsupportedModelError(BotError):
    def __init__(self, model: str):
        super().__init__(f"unsupported model: {model!r}")
        self.model = model


class UnsupportedTTLError(BotError):
    def __init__(self, ttl: str):
        super().__init__(f"unsupported ttl: {ttl!r}")
        self.ttl = ttl


class MalformedCallbackError(BotError):
    pass


##
class ProviderError(BotError):
    """Base class for failures of a remote model provider."""


class ProviderRejectedError(ProviderError):
    """The provider refused the request (4xx)."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ProviderTransientError(ProviderError):
    """The provider failed on its side or could not be reached (5xx, network)."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(ProviderError):
    pass


class PollingTimeoutError(ProviderError):
    pass


class PredictionFailedError(ProviderError):
    def __init__(self, status: str, provider_error=None):
        super().__init__(
            f"prediction failed with status {status}: {provider_error}"
        )
        self.status = status
        self.provider_error = provider_error


class EmptyOutputError(ProviderError):
    def __init__(self, message="no output returned"):
        super().__init__(message)


##
class PersistenceError(BotError):
    pass


class IngestError(BotError):
    """Downloading or normalizing an attachment failed."""


class TranscodeError(IngestError):
    pass
