"""Core custom exceptions for the application."""


class ProposalEngineError(Exception):
    """Base exception for generation and analysis errors."""


class ConfigurationError(ProposalEngineError):
    """Exception for configuration-related errors (e.g., AI generation disabled, unknown template)."""


class TransportError(ProposalEngineError):
    """Raised when the chat-completion request fails or returns a non-success status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(ProposalEngineError):
    """Raised when a response arrives but lacks the body or content we need."""


class JSONParsingError(ProtocolError):
    """Raised when no JSON object can be recovered from a model reply."""


class GenerationCancelledError(ProposalEngineError):
    """Raised to the awaiting caller when its in-flight call was cancelled."""


class DocumentValidationError(ProposalEngineError):
    """Raised when document content is empty or too short to analyze."""


class ExtractorError(ProposalEngineError):
    """Base exception for extraction-related errors."""


class DocumentIndexError(ProposalEngineError):
    """Raised when a company document cannot be found in the index."""
