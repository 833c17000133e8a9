"""Error taxonomy for invoice drafting, correction and delivery."""

from typing import Any


class InvoiceError(Exception):
    """Base exception for invoicing errors.

    Every error carries a message that is safe to show to the user and a
    flag telling the caller whether the same request may simply be retried.
    """

    retryable: bool = False
    default_user_message = "Something went wrong"

    def __init__(
        self,
        message: str,
        user_message: str | None = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.user_message = user_message or self.default_user_message
        self.details = details


class InvoiceValidationError(InvoiceError):
    """A required field is missing or malformed. Never sent upstream."""

    default_user_message = "Please check the invoice details"

    def __init__(self, message: str, user_message: str | None = None, details: Any = None):
        # Validation messages are written for the user already
        super().__init__(message, user_message or message, details)


class NotFoundError(InvoiceError):
    """A referenced profile, customer, invoice or draft does not exist."""

    default_user_message = "Not found"

    def __init__(self, message: str, user_message: str | None = None, details: Any = None):
        super().__init__(message, user_message or message, details)


class SchemaViolationError(InvoiceError):
    """The LLM returned output that does not match the invoice schema."""

    retryable = True
    default_user_message = "Failed to generate invoice. Please try again."


class CorrectionRejectedError(SchemaViolationError):
    """The LLM changed fields the correction did not ask to change."""

    default_user_message = "Failed to apply corrections. Please try again."


class UpstreamError(InvoiceError):
    """Network or service failure from the LLM, backend or email provider."""

    retryable = True
    default_user_message = "A service is temporarily unavailable. Please try again."


class CorrectionInProgressError(InvoiceError):
    """A correction is already being applied to this draft."""

    retryable = True
    default_user_message = "A correction is already being applied. Please wait."
