"""
Exception hierarchy for analysis runs.
"""

from typing import Dict, List, Optional


class AnalysisError(Exception):
    """Base class for every error raised by the analysis engine."""


class ConfigurationError(AnalysisError):
    """Missing or invalid runtime configuration (credentials, endpoint)."""


class TemplateConfigurationError(AnalysisError):
    """Malformed template; raised before any generation call."""


class CircularDependencyError(TemplateConfigurationError):
    """The section dependency graph contains at least one cycle."""

    def __init__(self, unprocessed: List[str], chains: Dict[str, List[str]]):
        self.unprocessed = list(unprocessed)
        self.chains = {k: list(v) for k, v in chains.items()}
        details = "; ".join(
            f"{node} → {', '.join(deps)}" for node, deps in self.chains.items()
        )
        super().__init__(
            "Circular dependency detected among sections: "
            f"{', '.join(self.unprocessed)}. Dependency chains: {details}"
        )


class AnalysisCancelledError(AnalysisError):
    """The caller cancelled the run; no further calls were issued."""


class GenerationError(AnalysisError):
    """A generation call failed for the named section or batch."""

    def __init__(self, message: str, label: Optional[str] = None):
        self.label = label
        super().__init__(message)


class RetryableGenerationError(GenerationError):
    """Transient failure worth another attempt."""


class EmptyCompletionError(RetryableGenerationError):
    pass


class ContentFilteredError(RetryableGenerationError):
    """Content-filter rejection; usually a false positive on meeting text."""


class TransportError(RetryableGenerationError):
    """Network, rate-limit or server-side failure talking to the service."""


class ResponseTruncatedError(GenerationError):
    """Output hit the length limit; retrying would truncate again."""


class RetriesExhaustedError(GenerationError):
    def __init__(self, message: str, label: Optional[str] = None,
                 attempts: int = 0, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message, label)


class TokenBudgetExceededError(GenerationError):
    def __init__(self, message: str, label: Optional[str] = None,
                 estimated_tokens: int = 0, limit: int = 0):
        self.estimated_tokens = estimated_tokens
        self.limit = limit
        super().__init__(message, label)


class ResponseFormatError(AnalysisError):
    """The model answered, but not in the shape that was asked for."""

    def __init__(self, message: str, label: Optional[str] = None):
        self.label = label
        super().__init__(message)


class InvalidJSONError(ResponseFormatError):
    pass


class ResponseShapeError(ResponseFormatError):
    pass


def with_section_context(error: AnalysisError, section_name: str) -> AnalysisError:
    """Rebuild an error with a `Failed to analyze section` prefix, keeping its class."""
    message = f'Failed to analyze section "{section_name}": {error}'
    if isinstance(error, RetriesExhaustedError):
        return RetriesExhaustedError(message, section_name, error.attempts, error.last_error)
    if isinstance(error, TokenBudgetExceededError):
        return TokenBudgetExceededError(message, section_name, error.estimated_tokens, error.limit)
    if isinstance(error, (GenerationError, ResponseFormatError)):
        return type(error)(message, section_name)
    return type(error)(message)
