"""Core system components: config, errors, nonces."""

from basket_engine.core.config import Config
from basket_engine.core.errors import (
    BasketEngineError,
    EncodingError,
    SignatureIntegrityError,
    SubmissionError,
    ValidationError,
)
from basket_engine.core.nonce import NonceManager, get_nonce_manager

__all__ = [
    "Config",
    "BasketEngineError",
    "EncodingError",
    "SignatureIntegrityError",
    "SubmissionError",
    "ValidationError",
    "NonceManager",
    "get_nonce_manager",
]
