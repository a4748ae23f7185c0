# magistral: Exception taxonomy for failures that end a turn. Resolution misses and parse recoveries are not errors and never raise.

from typing import Optional


class MagistralError(RuntimeError):
    """Base class for failures surfaced to the user by the orchestrator."""


class ConfigurationError(MagistralError):
    """Required configuration (API key, model, endpoint) is missing."""


class TransportError(MagistralError):
    """The chat completion request could not be completed."""


class RateLimitExceeded(TransportError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Rate limit exceeded (max retries: {attempts})")
        self.attempts = attempts


class UpstreamError(TransportError):
    """Non-success HTTP status or connection failure; carries the response body verbatim."""

    def __init__(self, status_code: Optional[int], body: str) -> None:
        prefix = f"HTTP {status_code}" if status_code is not None else "Connection error"
        super().__init__(f"{prefix}: {body}")
        self.status_code = status_code
        self.body = body


class TurnInProgress(MagistralError):
    """A send was attempted while another turn is still active."""
