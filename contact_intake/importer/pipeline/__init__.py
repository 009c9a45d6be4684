"""
Bulk upload pipeline: phone normalization, field validation, identity
resolution, membership writes and the batch processor.

``uploads`` is imported directly by callers; it depends on the service layer.
"""

from .phone import PhoneNormalization, coerce_e164, is_e164, normalize, variations
from .validation import FieldSchemaError, ValidationResult, validate

__all__ = [
    "FieldSchemaError",
    "PhoneNormalization",
    "ValidationResult",
    "coerce_e164",
    "is_e164",
    "normalize",
    "validate",
    "variations",
]
