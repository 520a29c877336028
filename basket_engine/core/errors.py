"""
Error taxonomy for the signing pipeline and basket manager.

ValidationError and SignatureIntegrityError are raised synchronously to the
caller. SubmissionError is recorded on the basket that produced it. Operations
on unknown or terminal baskets return False/None instead of raising.
"""

from typing import Any, List, Optional


class BasketEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(BasketEngineError):
    """Malformed order, action or basket config. Never retried automatically."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "validation failed")


class EncodingError(BasketEngineError):
    """Internal invariant violated while building wire bytes (e.g. unknown asset)."""


class SignatureIntegrityError(BasketEngineError):
    """Recovered signer does not match the signing key. Submission must be aborted."""

    def __init__(self, expected: str, recovered: str):
        self.expected = expected
        self.recovered = recovered
        super().__init__(f"signature recovers to {recovered}, expected {expected}")


class SubmissionError(BasketEngineError):
    """Transport failure or exchange rejection."""

    def __init__(self, message: str, response: Optional[Any] = None, retryable: bool = True):
        self.response = response
        self.retryable = retryable
        super().__init__(message)
