from typing import Optional


class AgentRuntimeError(Exception):
    """Base class for errors raised by the orchestration core"""
    pass


class ConfigurationError(AgentRuntimeError):
    """Runtime was constructed with missing or invalid configuration"""
    pass


class UnsupportedProviderError(AgentRuntimeError):
    """Provider or capability tier has no backend in the provider table"""
    pass


class EmptyMemoryContentError(AgentRuntimeError):
    """Memory has no text to embed"""
    pass


class ServiceNotFoundError(AgentRuntimeError):
    """A required service is not registered on the runtime"""
    pass


class EmbeddingError(AgentRuntimeError):
    """Embedding backend returned an error or an unusable payload"""
    pass


class ProviderRequestError(AgentRuntimeError):
    """Remote model provider answered with a non-success status"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RetryExhaustedError(AgentRuntimeError):
    """A capped retry policy ran out of attempts"""

    def __init__(self, label: str, attempts: int):
        super().__init__(f"{label} failed after {attempts} attempts")
        self.label = label
        self.attempts = attempts
