"""Exception types raised by the pipeline stages."""

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """User-facing failure categories, one per pipeline stage."""
    INPUT = "input_validation"
    FETCH = "fetch"
    EXTRACTION = "extraction"
    GENERATION = "generation"
    PARSE = "parse"


class EmailGeneratorError(Exception):
    """Base class for every pipeline failure."""
    category: ErrorCategory = ErrorCategory.GENERATION
    http_status: int = 500

    def user_message(self) -> str:
        return f"Failed to generate emails: {self}"


class InputValidationError(EmailGeneratorError):
    """The inbound request is missing fields or carries malformed ones."""
    category = ErrorCategory.INPUT
    http_status = 400

    def user_message(self) -> str:
        return f"Invalid request: {self}"


class FetchError(EmailGeneratorError):
    """The product page could not be retrieved."""
    category = ErrorCategory.FETCH
    http_status = 400

    def user_message(self) -> str:
        return f"Failed to fetch product page: {self}"


class HttpStatusError(FetchError):
    """The product page answered with a non-success status."""

    def __init__(self, status_code: int, url: str = ""):
        self.status_code = status_code
        self.url = url
        super().__init__(f"HTTP {status_code}")

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500


class NetworkError(FetchError):
    """DNS, connection or timeout failure while fetching the page."""


class ExtractionError(EmailGeneratorError):
    """The extraction call did not produce a usable product/design document."""
    category = ErrorCategory.EXTRACTION

    def __init__(self, message: str, raw_text: Optional[str] = None):
        super().__init__(message)
        # Kept for diagnostics only; never shown to the user.
        self.raw_text = raw_text

    def user_message(self) -> str:
        return f"Failed to analyze brand: {self}"


class MalformedJsonError(ExtractionError):
    """The extraction response is not valid JSON."""


class GenerationError(EmailGeneratorError):
    """The model service failed while producing email HTML."""
    category = ErrorCategory.GENERATION


class ParseError(EmailGeneratorError):
    """Generation succeeded but no valid email could be parsed out of it."""
    category = ErrorCategory.PARSE

    def __init__(self, message: str = "Could not parse emails from response"):
        super().__init__(message)

    def user_message(self) -> str:
        return str(self)


class ModelServiceError(EmailGeneratorError):
    """The model service call failed after any retries."""
