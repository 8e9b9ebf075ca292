"""Fact normalization."""

from specsync.normalization.normalizer import (
    Candidate,
    NormalizationResult,
    Normalizer,
    coerce_value,
)

__all__ = ["Candidate", "NormalizationResult", "Normalizer", "coerce_value"]
