class QuillError(Exception):
    """Base error for all user-facing Quill exceptions."""


class ConfigurationError(QuillError):
    """Raised when configuration or provider credentials are missing."""


class ProjectNotInitializedError(QuillError):
    """Raised when .quill metadata is missing."""


class ValidationError(QuillError):
    """Raised when a request or model invariant fails."""


class NotFoundError(QuillError):
    """Raised when a referenced context record does not exist."""


class ProviderError(QuillError):
    """Raised when an LLM, image or embedding provider call fails."""


class PersistenceError(QuillError):
    """Raised when the document or vector store rejects an operation."""


class GenerationTimeoutError(QuillError, TimeoutError):
    """Raised when a generation job exceeds its wall-clock ceiling."""
