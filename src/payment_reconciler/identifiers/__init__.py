"""Identifier normalization and candidate generation."""

from .normalizer import (
    PAYMENT_ID_PREFIX,
    PAYMENT_ID_BODY_LENGTH,
    PAYMENT_ID_LENGTH,
    FILLER,
    is_normalized,
    clean,
    normalize,
    fallback_payment_id,
)
from .candidates import (
    generate_candidates,
    uuid_derivation,
    is_uuid_shaped,
)

__all__ = [
    "PAYMENT_ID_PREFIX",
    "PAYMENT_ID_BODY_LENGTH",
    "PAYMENT_ID_LENGTH",
    "FILLER",
    "is_normalized",
    "clean",
    "normalize",
    "fallback_payment_id",
    "generate_candidates",
    "uuid_derivation",
    "is_uuid_shaped",
]
