"""Record validation and the identity graph used for cycle checks."""

from specsync.validation.graph import CycleError, IdentityGraph
from specsync.validation.validator import (
    DocumentCheck,
    ReferenceIndex,
    ValidationResult,
    Validator,
    field_issues,
    reference_keys,
    validate_document,
)

__all__ = [
    "CycleError",
    "DocumentCheck",
    "IdentityGraph",
    "ReferenceIndex",
    "ValidationResult",
    "Validator",
    "field_issues",
    "reference_keys",
    "validate_document",
]
