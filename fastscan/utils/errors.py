"""
Error taxonomy for the FastScan digitization pipeline.

Every error is a data-quality gate: the pipeline halts rather than guessing,
so a mislabeled electrode never propagates into a dataset. Each error keeps
the values that triggered it in ``diagnostics`` for operator debugging.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class FastscanError(ValueError):
    """Base class for all digitization errors."""

    def __init__(self, message: str, diagnostics: Optional[Dict[str, Any]] = None):
        self.diagnostics: Dict[str, Any] = dict(diagnostics or {})
        if self.diagnostics:
            details = ", ".join(f"{k}={_fmt(v)}" for k, v in self.diagnostics.items())
            message = f"{message} [{details}]"
        super().__init__(message)


def _fmt(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.4f}"
    return str(value)


class LandmarkOrderingError(FastscanError):
    """Neither the first three nor the last three markers are the landmarks."""


class OrthogonalityError(FastscanError):
    """Derived frame axes are not orthogonal within the angle tolerance."""


class HandednessError(FastscanError):
    """Derived frame is an improper rotation (left/right flipped)."""


class DistancePreservationError(FastscanError):
    """Preauricular distance changed beyond tolerance during the transform."""


class ChannelCountMismatchError(FastscanError):
    """Electrode count does not match the montage."""


class LabelMappingError(FastscanError):
    """Acquisition-order labels do not map one-to-one onto the template."""


class UnknownMontageError(FastscanError):
    """Montage name is not in the montage table."""
