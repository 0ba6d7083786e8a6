"""Minutia comparator for fmrmatch

Scores how well two minutiae correspond under an alignment. Every weight is a
piecewise-linear function bounded to [0, 1]; the same formulas serve the scalar
score() and the vectorised score_matrix() used by the template matcher.

Coordinates are compared in the Cartesian frame (x, -y) so that the
counter-clockwise minutia angle and the alignment rotation share one convention.
"""

from __future__ import annotations
import math
from typing import NamedTuple, Optional, Sequence, Tuple

import numpy as np

from fmrmatch.config import (
    POSITION_TOLERANCE, POSITION_CUTOFF,
    ANGLE_TOLERANCE_RAD, ANGLE_CUTOFF_RAD,
    TYPE_WEIGHT_SAME, TYPE_WEIGHT_UNKNOWN, TYPE_WEIGHT_MISMATCH,
)
from fmrmatch.models import Alignment, IDENTITY_ALIGNMENT, Minutia, MinutiaKind


TWO_PI = 2.0 * math.pi
_OTHER = int(MinutiaKind.OTHER)


class MinutiaArrays(NamedTuple):
    """Column view of a minutiae list in the Cartesian frame."""
    x: np.ndarray
    y: np.ndarray
    angle: np.ndarray  # radians
    kind: np.ndarray

    @property
    def size(self) -> int:
        return len(self.x)


def to_arrays(minutiae: Sequence[Minutia]) -> MinutiaArrays:
    return MinutiaArrays(
        x=np.array([m.x for m in minutiae], dtype=np.float64),
        y=-np.array([m.y for m in minutiae], dtype=np.float64),
        angle=np.array([m.radians for m in minutiae], dtype=np.float64),
        kind=np.array([int(m.kind) for m in minutiae], dtype=np.int8),
    )


def wrap_angle(angle):
    """Wrap radians to [-pi, pi)."""
    return (angle + math.pi) % TWO_PI - math.pi


def angle_difference(a, b):
    """Circular distance between angles in radians, in [0, pi]."""
    return np.abs(wrap_angle(a - b))


def position_weight(distance):
    """1 inside POSITION_TOLERANCE, linear to 0 at POSITION_CUTOFF."""
    return np.clip(
        (POSITION_CUTOFF - distance) / (POSITION_CUTOFF - POSITION_TOLERANCE), 0.0, 1.0
    )


def angle_weight(difference):
    """1 inside ANGLE_TOLERANCE, linear to 0 at ANGLE_CUTOFF."""
    return np.clip(
        (ANGLE_CUTOFF_RAD - difference) / (ANGLE_CUTOFF_RAD - ANGLE_TOLERANCE_RAD), 0.0, 1.0
    )


def type_weight(kind_a, kind_b):
    """Same type: full weight; unknown on either side: reduced; ending vs bifurcation: lowest."""
    kind_a = np.asarray(kind_a)
    kind_b = np.asarray(kind_b)
    unknown = (kind_a == _OTHER) | (kind_b == _OTHER)
    return np.where(
        kind_a == kind_b,
        TYPE_WEIGHT_SAME,
        np.where(unknown, TYPE_WEIGHT_UNKNOWN, TYPE_WEIGHT_MISMATCH),
    )


def transform(x, y, angle, rotation: float, dx: float, dy: float):
    """Apply a rigid transform to Cartesian positions and angles."""
    cos_r = math.cos(rotation)
    sin_r = math.sin(rotation)
    return (
        cos_r * x - sin_r * y + dx,
        sin_r * x + cos_r * y + dy,
        angle + rotation,
    )


def score(a: Minutia, b: Minutia, alignment: Optional[Alignment] = None) -> float:
    """Correspondence score of minutia a (moved by alignment) against minutia b.

    Args:
        a: Probe minutia
        b: Candidate minutia
        alignment: Transform applied to a (identity if None)

    Returns:
        Score in [0, 1]; 1.0 for coincident minutiae of the same type
    """
    alignment = alignment or IDENTITY_ALIGNMENT
    ax, ay, aa = transform(
        float(a.x), -float(a.y), a.radians, alignment.rotation, alignment.dx, alignment.dy
    )
    distance = math.hypot(ax - b.x, ay + b.y)
    value = (
        position_weight(distance)
        * angle_weight(angle_difference(aa, b.radians))
        * type_weight(int(a.kind), int(b.kind))
    )
    return float(value)


def score_matrix(
    probe: MinutiaArrays,
    candidate: MinutiaArrays,
    rotation: float,
    dx: float,
    dy: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Pairwise scores of every probe minutia against every candidate minutia.

    Args:
        probe: Probe minutiae (n)
        candidate: Candidate minutiae (m)
        rotation, dx, dy: Alignment applied to the probe

    Returns:
        (scores, distances), both of shape (n, m)
    """
    px, py, pa = transform(probe.x, probe.y, probe.angle, rotation, dx, dy)
    distances = np.hypot(px[:, None] - candidate.x[None, :], py[:, None] - candidate.y[None, :])
    angles = angle_difference(pa[:, None], candidate.angle[None, :])
    scores = (
        position_weight(distances)
        * angle_weight(angles)
        * type_weight(probe.kind[:, None], candidate.kind[None, :])
    )
    return scores, distances
