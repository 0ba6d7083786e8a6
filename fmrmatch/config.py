"""Configuration file for fmrmatch

This module contains all calibration parameters of the template matching engine.

Modify these values to tune the system behavior without changing the core code.
"""

import math
from typing import Tuple

# ============================================================================
# RECORD LAYOUT (ISO/IEC 19794-2:2005)
# ============================================================================

FORMAT_IDENTIFIER: bytes = b"FMR\x00"
SUPPORTED_VERSIONS: Tuple[bytes, ...] = (b" 20\x00",)

HEADER_SIZE: int = 24  # Format id, version, length, device, size, resolution, views, reserved
VIEW_HEADER_SIZE: int = 4  # Position, view/impression, quality, minutiae count
MINUTIA_RECORD_SIZE: int = 6  # type|x, reserved|y, angle, quality
EXTENDED_LENGTH_SIZE: int = 2  # Extended data block length after each view

MAX_VIEWS: int = 16  # Finger views accepted per template
COORDINATE_MASK: int = 0x3FFF  # 14-bit x / y
ANGLE_UNITS: int = 256  # One angle unit = 360/256 degrees

# ============================================================================
# MINUTIA COMPARATOR
# ============================================================================

# Position: full weight inside the tolerance, linear decay to zero at the cutoff
POSITION_TOLERANCE: float = 10.0  # pixels
POSITION_CUTOFF: float = 20.0  # pixels

# Angle: same shape on the circular angle distance
ANGLE_TOLERANCE_DEG: float = 15.0
ANGLE_CUTOFF_DEG: float = 30.0
ANGLE_TOLERANCE_RAD: float = math.radians(ANGLE_TOLERANCE_DEG)
ANGLE_CUTOFF_RAD: float = math.radians(ANGLE_CUTOFF_DEG)

# Type compatibility weights (never negative)
TYPE_WEIGHT_SAME: float = 1.0  # Identical minutia types
TYPE_WEIGHT_UNKNOWN: float = 0.75  # One side reports "other"
TYPE_WEIGHT_MISMATCH: float = 0.5  # Ending vs bifurcation (common extractor confusion)

# ============================================================================
# TEMPLATE MATCHER
# ============================================================================

# Alignment hypotheses kept after the neighbourhood prefilter (bounds voting cost)
MAX_ALIGNMENT_HYPOTHESES: int = 256

# Nearest neighbours forming the rotation-invariant local descriptor of a minutia
NEIGHBOURHOOD_SIZE: int = 4

# Nearest neighbours checked per minutia when voting on a hypothesis
VOTE_NEIGHBOURS: int = 3

# Alignment hypotheses refined with a full bipartite assignment
MAX_REFINED_HYPOTHESES: int = 24

# View pairs compared per template pair (records may declare up to 16 views each)
MAX_VIEW_PAIRS: int = 64

# Rounding used to collapse duplicate alignment hypotheses
ALIGNMENT_DEDUP_DECIMALS: int = 1

# ============================================================================
# SCORE SCALE AND THRESHOLDS
# ============================================================================

SCORE_MAX: int = 255

# Default acceptance threshold on the 0-255 scale (start of the "medium" band)
DEFAULT_THRESHOLD: int = 100

# Calibration bands: (lower bound, label), highest first
CONFIDENCE_BANDS: Tuple[Tuple[int, str], ...] = (
    (200, "excellent"),
    (150, "good"),
    (100, "medium"),
    (0, "low"),
)

# ============================================================================
# GALLERY SEARCH
# ============================================================================

MAX_GALLERY_SIZE: int = 10000  # Searches above this size are rejected
DEFAULT_WORKERS: int = 1  # 1 = score sequentially in the calling process
PARALLEL_MIN_GALLERY: int = 20  # Below this size the pool overhead is not worth it

TEMPLATE_FIELD: str = "fingerprint"  # Record field holding the encoded template
KEY_FIELD: str = "id"  # Record field holding the identity key


def confidence_band(score: int) -> str:
    """Map a 0-255 similarity score to its calibration band label."""
    for lower, label in CONFIDENCE_BANDS:
        if score >= lower:
            return label
    return CONFIDENCE_BANDS[-1][1]


# ============================================================================
# VALIDATION
# ============================================================================

def validate_config():
    """Validate configuration consistency."""
    errors = []

    if not (0.0 < POSITION_TOLERANCE < POSITION_CUTOFF):
        errors.append(
            f"POSITION_TOLERANCE must be in (0, POSITION_CUTOFF) (got {POSITION_TOLERANCE}, {POSITION_CUTOFF})"
        )

    if not (0.0 < ANGLE_TOLERANCE_DEG < ANGLE_CUTOFF_DEG <= 180.0):
        errors.append(
            f"Angle tolerances must satisfy 0 < tolerance < cutoff <= 180 "
            f"(got {ANGLE_TOLERANCE_DEG}, {ANGLE_CUTOFF_DEG})"
        )

    for name, weight in (
        ("TYPE_WEIGHT_SAME", TYPE_WEIGHT_SAME),
        ("TYPE_WEIGHT_UNKNOWN", TYPE_WEIGHT_UNKNOWN),
        ("TYPE_WEIGHT_MISMATCH", TYPE_WEIGHT_MISMATCH),
    ):
        if not (0.0 <= weight <= 1.0):
            errors.append(f"{name} must be in [0.0, 1.0] (got {weight})")

    if not (0 <= DEFAULT_THRESHOLD <= SCORE_MAX):
        errors.append(f"DEFAULT_THRESHOLD must be in [0, {SCORE_MAX}] (got {DEFAULT_THRESHOLD})")

    if MAX_REFINED_HYPOTHESES <= 0:
        errors.append(f"MAX_REFINED_HYPOTHESES must be positive (got {MAX_REFINED_HYPOTHESES})")

    for name, value in (
        ("MAX_ALIGNMENT_HYPOTHESES", MAX_ALIGNMENT_HYPOTHESES),
        ("NEIGHBOURHOOD_SIZE", NEIGHBOURHOOD_SIZE),
        ("VOTE_NEIGHBOURS", VOTE_NEIGHBOURS),
        ("MAX_VIEW_PAIRS", MAX_VIEW_PAIRS),
    ):
        if value <= 0:
            errors.append(f"{name} must be positive (got {value})")

    if MAX_VIEWS <= 0:
        errors.append(f"MAX_VIEWS must be positive (got {MAX_VIEWS})")

    if errors:
        raise ValueError("Configuration validation failed:\n" + "\n".join(errors))


# Run validation on import
validate_config()
