"""Exception taxonomy for provenance metadata handling."""

from typing import Optional


class ProvenanceError(Exception):
    """Base class for all content provenance errors."""
    pass


class SchemaViolation(ProvenanceError):
    """Raised when a metadata record fails validation."""
    def __init__(self, result):
        self.result = result
        super().__init__(f"Invalid metadata: {result}")


class IntegrityMismatch(ProvenanceError):
    """Raised when content bytes no longer match the recorded hash."""
    def __init__(self, item: str, expected: str, actual: str):
        self.item = item
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Content integrity check failed: expected {expected}, got {actual}"
        )


class ExtractionFailure(ProvenanceError):
    """Raised when a metadata source exists but cannot be parsed."""
    def __init__(self, source: str, message: str, original_error: Optional[Exception] = None):
        self.source = source
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source}: {message}")


class IOFailure(ProvenanceError):
    """Raised when an item, sidecar or content root cannot be read or written."""
    def __init__(self, path: str, message: str, original_error: Optional[Exception] = None):
        self.path = path
        self.message = message
        self.original_error = original_error
        super().__init__(message)


class ConfigurationError(ProvenanceError):
    """Raised when a configuration option has an invalid value."""
    pass
