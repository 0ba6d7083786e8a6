"""Data structures for fmrmatch

This module defines the core data classes used throughout the matching engine.
These classes are shared across all modules (decoder, comparator, matching, search).
Decoded structures are frozen: a decoded template is never mutated after construction.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntEnum
import math
from typing import Any, Dict, Optional, Tuple

from fmrmatch.config import (
    ANGLE_UNITS, SCORE_MAX, DEFAULT_THRESHOLD, MAX_GALLERY_SIZE,
    DEFAULT_WORKERS, PARALLEL_MIN_GALLERY, TEMPLATE_FIELD, KEY_FIELD,
    confidence_band,
)
from fmrmatch.errors import ConfigurationError, MatchingError


class MinutiaKind(IntEnum):
    """Minutia type as coded in the two high bits of the x field."""
    OTHER = 0
    RIDGE_ENDING = 1
    BIFURCATION = 2

    @classmethod
    def from_code(cls, code: int) -> "MinutiaKind":
        # Code 3 is reserved by the record format
        try:
            return cls(code)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class Minutia:
    """Fingerprint minutia (ridge ending or bifurcation).

    Attributes:
        x: X coordinate (sensor pixels)
        y: Y coordinate (sensor pixels, growing downwards)
        angle: Quantized ridge direction, 0-255 for 0-360 degrees counter-clockwise
        kind: Minutia type
        quality: Quality score [0, 100], 0 when not reported
        in_bounds: False when the position lies outside the declared image size;
            such minutiae are kept but never scored
    """
    x: int
    y: int
    angle: int
    kind: MinutiaKind = MinutiaKind.OTHER
    quality: int = 0
    in_bounds: bool = True

    @property
    def degrees(self) -> float:
        return self.angle * 360.0 / ANGLE_UNITS

    @property
    def radians(self) -> float:
        return self.angle * 2.0 * math.pi / ANGLE_UNITS


@dataclass(frozen=True)
class FingerView:
    """One captured finger inside a template.

    Attributes:
        finger_position: Finger position code (0 = unknown)
        view_number: View number for this finger
        impression_type: Impression type code (live-scan plain, rolled, ...)
        finger_quality: Overall finger quality [0, 100]
        minutiae: Minutiae in record order
    """
    finger_position: int
    view_number: int
    impression_type: int
    finger_quality: int
    minutiae: Tuple[Minutia, ...] = ()

    @property
    def usable_minutiae(self) -> Tuple[Minutia, ...]:
        """Minutiae that take part in scoring."""
        return tuple(m for m in self.minutiae if m.in_bounds)


@dataclass(frozen=True)
class TemplateHeader:
    """Fixed 24-byte record header.

    Attributes:
        version: Record version string (e.g. "20")
        record_length: Total record length in bytes
        device_id: Capture device identifier
        width: Image width in pixels (0 = not reported)
        height: Image height in pixels (0 = not reported)
        x_resolution: Horizontal resolution
        y_resolution: Vertical resolution
        view_count: Number of finger views
    """
    version: str
    record_length: int
    device_id: int
    width: int
    height: int
    x_resolution: int
    y_resolution: int
    view_count: int


@dataclass(frozen=True)
class DecodedTemplate:
    """Structured, immutable form of one encoded template."""
    header: TemplateHeader
    views: Tuple[FingerView, ...]

    @property
    def minutiae_count(self) -> int:
        return sum(len(view.minutiae) for view in self.views)

    @property
    def usable_minutiae_count(self) -> int:
        return sum(len(view.usable_minutiae) for view in self.views)


@dataclass(frozen=True)
class Alignment:
    """Rigid transform mapping probe minutiae onto candidate minutiae.

    The transform works in the Cartesian frame (x, -y): rotate about the origin
    by ``rotation`` radians (counter-clockwise), then translate by (dx, dy).

    Attributes:
        rotation: Rotation in radians
        dx: Translation along x (pixels)
        dy: Translation along the Cartesian y axis (pixels, upwards)
        probe_view: Index of the probe view the alignment was found on
        candidate_view: Index of the candidate view
        support: Number of corroborating minutiae
        residual: Summed distance of the assigned pairs (pixels)
    """
    rotation: float = 0.0
    dx: float = 0.0
    dy: float = 0.0
    probe_view: int = 0
    candidate_view: int = 0
    support: int = 0
    residual: float = 0.0

    @property
    def rotation_deg(self) -> float:
        return math.degrees(self.rotation)


IDENTITY_ALIGNMENT = Alignment()


@dataclass(frozen=True)
class MatchSettings:
    """Matcher configuration.

    Attributes:
        threshold: Minimum score [0, 255] accepted as a match
        position_aware: Only compare views with compatible finger positions
        max_gallery_size: Searches over larger galleries are rejected
        workers: Worker processes for gallery scoring (1 = sequential)
        parallel_min_gallery: Smallest gallery scored in parallel
        template_field: Record field holding the encoded template
        key_field: Record field holding the identity key
    """
    threshold: int = DEFAULT_THRESHOLD
    position_aware: bool = True
    max_gallery_size: int = MAX_GALLERY_SIZE
    workers: int = DEFAULT_WORKERS
    parallel_min_gallery: int = PARALLEL_MIN_GALLERY
    template_field: str = TEMPLATE_FIELD
    key_field: str = KEY_FIELD

    def __post_init__(self) -> None:
        """Validate settings after initialization."""
        if not _is_int(self.threshold) or not (0 <= self.threshold <= SCORE_MAX):
            raise ConfigurationError(f"Threshold must be an integer in [0, {SCORE_MAX}], got {self.threshold!r}")

        if not isinstance(self.position_aware, bool):
            raise ConfigurationError(f"position_aware must be a boolean, got {self.position_aware!r}")

        if not _is_int(self.max_gallery_size) or self.max_gallery_size < 1:
            raise ConfigurationError(f"max_gallery_size must be a positive integer, got {self.max_gallery_size!r}")

        if not _is_int(self.workers) or self.workers < 1:
            raise ConfigurationError(f"workers must be a positive integer, got {self.workers!r}")

        if not _is_int(self.parallel_min_gallery) or self.parallel_min_gallery < 1:
            raise ConfigurationError(
                f"parallel_min_gallery must be a positive integer, got {self.parallel_min_gallery!r}"
            )

        for name in ("template_field", "key_field"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ConfigurationError(f"{name} must be a non-empty string, got {value!r}")

    @classmethod
    def from_options(cls, **options: Any) -> "MatchSettings":
        """Build settings from keyword options, reporting unknown names as ConfigurationError."""
        try:
            return cls(**options)
        except TypeError as e:
            raise ConfigurationError(f"Unknown matcher option: {e}") from e


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of one gallery search or verification.

    Attributes:
        success: False when the search could not be carried out
        is_match: raw_score >= threshold
        best_key: Identity key of the best-scoring entry (reported even below threshold)
        record: The caller's own record for the best entry, set only on a match
        raw_score: Similarity score [0, 255]
        threshold: Threshold used
        loaded_templates: Gallery templates decoded successfully
        skipped_templates: Gallery entries skipped (missing or undecodable template)
        elapsed_ms: Wall time of the search
        concurrency: Worker processes used
        error: Failure message
        error_type: Failure class name
    """
    success: bool
    is_match: bool = False
    best_key: Any = None
    record: Any = field(default=None, compare=False)
    raw_score: int = 0
    threshold: int = DEFAULT_THRESHOLD
    loaded_templates: int = 0
    skipped_templates: int = 0
    elapsed_ms: float = field(default=0.0, compare=False)
    concurrency: int = 1
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def percentage(self) -> float:
        return self.raw_score / SCORE_MAX * 100.0

    @property
    def confidence(self) -> str:
        return confidence_band(self.raw_score)

    @classmethod
    def failure(
        cls,
        error: MatchingError,
        threshold: int = DEFAULT_THRESHOLD,
        loaded_templates: int = 0,
        skipped_templates: int = 0,
        elapsed_ms: float = 0.0,
    ) -> "MatchResult":
        return cls(
            success=False,
            threshold=threshold,
            loaded_templates=loaded_templates,
            skipped_templates=skipped_templates,
            elapsed_ms=elapsed_ms,
            error=str(error),
            error_type=type(error).__name__,
        )

    def to_dict(self, include_record: bool = True) -> Dict[str, Any]:
        data = {
            'success': self.success,
            'is_match': self.is_match,
            'best_key': self.best_key,
            'raw_score': self.raw_score,
            'percentage': round(self.percentage, 2),
            'confidence': self.confidence,
            'threshold': self.threshold,
            'loaded_templates': self.loaded_templates,
            'skipped_templates': self.skipped_templates,
            'elapsed_ms': round(self.elapsed_ms, 3),
            'concurrency': self.concurrency,
            'error': self.error,
            'error_type': self.error_type,
        }
        if include_record:
            data['record'] = self.record
        return data
