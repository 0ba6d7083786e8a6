"""Matching module for fmrmatch

This module contains:
- compute_minutiae_score: consensus alignment + bipartite scoring of two minutiae sets
- match_templates: view pairing over two decoded templates

Alignment cost is bounded independently of the minutiae counts: hypotheses are
prefiltered by local neighbourhood similarity (at most MAX_ALIGNMENT_HYPOTHESES),
votes are counted through KDTree nearest-neighbour queries, and at most
MAX_VIEW_PAIRS view pairs are compared per template pair.
"""

from __future__ import annotations
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import linear_sum_assignment
from scipy.spatial import KDTree

from fmrmatch.comparator import (
    MinutiaArrays, to_arrays, wrap_angle, angle_difference,
    position_weight, angle_weight, type_weight, score_matrix,
)
from fmrmatch.config import (
    POSITION_TOLERANCE, POSITION_CUTOFF, ANGLE_TOLERANCE_RAD, SCORE_MAX,
    MAX_ALIGNMENT_HYPOTHESES, NEIGHBOURHOOD_SIZE, VOTE_NEIGHBOURS,
    MAX_REFINED_HYPOTHESES, MAX_VIEW_PAIRS, ALIGNMENT_DEDUP_DECIMALS,
)
from fmrmatch.logger import get_logger
from fmrmatch.models import Alignment, DecodedTemplate, FingerView, Minutia, MinutiaKind

logger = get_logger("matching")


# ---------------------------------------------------------------------------
# Alignment hypotheses


def _points(arrays: MinutiaArrays) -> np.ndarray:
    return np.column_stack((arrays.x, arrays.y))


def _neighbourhoods(points: np.ndarray, k: int) -> np.ndarray:
    """Sorted distances from each minutia to its k nearest neighbours (rotation invariant)."""
    distances, _ = KDTree(points).query(points, k=k + 1)
    return distances[:, 1:]


def _hypotheses(probe: MinutiaArrays, candidate: MinutiaArrays) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Rigid transforms proposed by the most similar (probe i, candidate j) pairs.

    Pairs are ranked by how well their neighbourhoods agree (mean difference of
    the sorted neighbour distances, plus a type penalty); only the best
    MAX_ALIGNMENT_HYPOTHESES become hypotheses, most similar first.
    """
    n, m = probe.size, candidate.size

    cost = (1.0 - type_weight(probe.kind[:, None], candidate.kind[None, :])) * POSITION_TOLERANCE
    k = min(NEIGHBOURHOOD_SIZE, n - 1, m - 1)
    if k > 0:
        probe_hood = _neighbourhoods(_points(probe), k)
        candidate_hood = _neighbourhoods(_points(candidate), k)
        cost = cost + np.abs(probe_hood[:, None, :] - candidate_hood[None, :, :]).mean(axis=2)

    selected = np.argsort(cost, axis=None, kind="stable")[:MAX_ALIGNMENT_HYPOTHESES]
    i, j = np.divmod(selected, m)

    rotation = wrap_angle(candidate.angle[j] - probe.angle[i])
    cos_r = np.cos(rotation)
    sin_r = np.sin(rotation)
    dx = candidate.x[j] - (cos_r * probe.x[i] - sin_r * probe.y[i])
    dy = candidate.y[j] - (sin_r * probe.x[i] + cos_r * probe.y[i])
    return rotation, dx, dy


# ---------------------------------------------------------------------------
# Alignment voting


def _side_votes(
    source: MinutiaArrays,
    target: MinutiaArrays,
    tree: KDTree,
    rotation: np.ndarray,
    dx: np.ndarray,
    dy: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """Corroborated source minutiae and summed best weights, per hypothesis.

    Each transformed source minutia is checked against its VOTE_NEIGHBOURS
    nearest target minutiae within POSITION_CUTOFF.
    """
    h, n = len(rotation), source.size
    k = min(VOTE_NEIGHBOURS, target.size)

    cos_r = np.cos(rotation)[:, None]
    sin_r = np.sin(rotation)[:, None]
    tx = cos_r * source.x[None, :] - sin_r * source.y[None, :] + dx[:, None]
    ty = sin_r * source.x[None, :] + cos_r * source.y[None, :] + dy[:, None]
    ta = source.angle[None, :] + rotation[:, None]

    distances, indices = tree.query(
        np.column_stack((tx.ravel(), ty.ravel())), k=k, distance_upper_bound=POSITION_CUTOFF
    )
    distances = distances.reshape(h, n, k)
    indices = indices.reshape(h, n, k)

    # Missing neighbours come back as index target.size with infinite distance
    target_angle = np.append(target.angle, 0.0)
    target_kind = np.append(target.kind, np.int8(MinutiaKind.OTHER))

    angles = angle_difference(ta[:, :, None], target_angle[indices])
    corroborating = (distances <= POSITION_TOLERANCE) & (angles <= ANGLE_TOLERANCE_RAD)
    weights = (
        position_weight(distances)
        * angle_weight(angles)
        * type_weight(source.kind[None, :, None], target_kind[indices])
    )
    return corroborating.any(axis=2).sum(axis=1), weights.max(axis=2).sum(axis=1)


def _vote(
    probe: MinutiaArrays,
    candidate: MinutiaArrays,
    rotation: np.ndarray,
    dx: np.ndarray,
    dy: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """Support and soft score of every hypothesis.

    Probe minutiae are moved onto the candidate and candidate minutiae are moved
    back by the inverse transform. Support keeps the smaller corroborated count
    of the two sides, so swapping probe and candidate leaves it unchanged; the
    soft score adds both sides' best weights.
    """
    probe_hits, probe_soft = _side_votes(probe, candidate, KDTree(_points(candidate)), rotation, dx, dy)

    cos_r = np.cos(rotation)
    sin_r = np.sin(rotation)
    inverse_dx = -(cos_r * dx + sin_r * dy)
    inverse_dy = -(cos_r * dy - sin_r * dx)
    candidate_hits, candidate_soft = _side_votes(
        candidate, probe, KDTree(_points(probe)), -rotation, inverse_dx, inverse_dy
    )

    return np.minimum(probe_hits, candidate_hits), probe_soft + candidate_soft


def _assignment(scores: np.ndarray, distances: np.ndarray) -> Tuple[float, float]:
    """One-to-one maximum-weight assignment; returns (total weight, residual distance).

    Rows and columns without any positive weight cannot contribute and are left
    out of the assignment problem.
    """
    rows = np.flatnonzero(scores.any(axis=1))
    cols = np.flatnonzero(scores.any(axis=0))
    if not len(rows):
        return 0.0, 0.0

    reduced = scores[np.ix_(rows, cols)]
    r, c = linear_sum_assignment(reduced, maximize=True)
    weights = reduced[r, c]
    matched = weights > 0.0
    return float(weights[matched].sum()), float(distances[rows[r], cols[c]][matched].sum())


def _normalise(total: float, n_probe: int, n_candidate: int) -> int:
    """Rescale an assignment total to the integer 0-255 range.

    The geometric mean of both minutiae counts keeps the score symmetric; a
    template compared with itself reaches exactly SCORE_MAX.
    """
    ratio = total / math.sqrt(n_probe * n_candidate)
    return int(round(SCORE_MAX * min(max(ratio, 0.0), 1.0)))


# ---------------------------------------------------------------------------
# Minutiae set scoring


def compute_minutiae_score(
    probe_minutiae: Sequence[Minutia],
    candidate_minutiae: Sequence[Minutia],
) -> Tuple[int, Optional[Alignment]]:
    """Compute similarity between two minutiae sets.

    Algorithm:
    1. The probe x candidate minutia pairs with the most similar neighbourhoods
       propose rigid transforms (rotation from the angle difference, translation
       mapping one onto the other)
    2. Each transform is voted on by the minutiae that corroborate it (KDTree
       nearest-neighbour lookups on both sides)
    3. The best-voted distinct transforms are refined with a one-to-one
       assignment (Hungarian algorithm) over the comparator matrix
    4. Winner: most support, then highest assignment total, then lowest residual
    5. The winning total is normalised to 0-255

    Args:
        probe_minutiae: Usable probe minutiae
        candidate_minutiae: Usable candidate minutiae

    Returns:
        (score, alignment); (0, None) when either side has no minutiae
    """
    if not probe_minutiae or not candidate_minutiae:
        return 0, None

    probe = to_arrays(probe_minutiae)
    candidate = to_arrays(candidate_minutiae)

    rotation, dx, dy = _hypotheses(probe, candidate)
    support, soft = _vote(probe, candidate, rotation, dx, dy)

    # Stable sort: equal keys keep the neighbourhood-similarity order
    order = np.lexsort((-soft, -support))

    best_key: Optional[Tuple[int, float, float]] = None
    best_alignment: Optional[Alignment] = None
    seen = set()

    for h in order:
        key = (
            round(math.degrees(rotation[h]), ALIGNMENT_DEDUP_DECIMALS),
            round(float(dx[h]), ALIGNMENT_DEDUP_DECIMALS),
            round(float(dy[h]), ALIGNMENT_DEDUP_DECIMALS),
        )
        if key in seen:
            continue
        seen.add(key)

        scores, distances = score_matrix(probe, candidate, rotation[h], dx[h], dy[h])
        total, residual = _assignment(scores, distances)

        candidate_key = (int(support[h]), total, -residual)
        if best_key is None or candidate_key > best_key:
            best_key = candidate_key
            best_alignment = Alignment(
                rotation=float(rotation[h]),
                dx=float(dx[h]),
                dy=float(dy[h]),
                support=int(support[h]),
                residual=residual,
            )

        if len(seen) >= MAX_REFINED_HYPOTHESES:
            break

    return _normalise(best_key[1], probe.size, candidate.size), best_alignment


# ---------------------------------------------------------------------------
# Template matching


def views_compatible(probe_view: FingerView, candidate_view: FingerView, position_aware: bool = True) -> bool:
    """Views are compared when their finger positions agree or either is unknown (0)."""
    if not position_aware:
        return True
    a, b = probe_view.finger_position, candidate_view.finger_position
    return a == 0 or b == 0 or a == b


def _view_pairs(probe: DecodedTemplate, candidate: DecodedTemplate, position_aware: bool):
    """Compatible (probe index, probe minutiae, candidate index, candidate minutiae), probe-major order."""
    candidate_views: List[Tuple[int, FingerView, Tuple[Minutia, ...]]] = [
        (index, view, view.usable_minutiae) for index, view in enumerate(candidate.views)
    ]
    for probe_index, probe_view in enumerate(probe.views):
        probe_minutiae = probe_view.usable_minutiae
        if not probe_minutiae:
            continue
        for candidate_index, candidate_view, candidate_minutiae in candidate_views:
            if candidate_minutiae and views_compatible(probe_view, candidate_view, position_aware):
                yield probe_index, probe_minutiae, candidate_index, candidate_minutiae


def match_templates(
    probe: DecodedTemplate,
    candidate: DecodedTemplate,
    position_aware: bool = True,
) -> Tuple[int, Optional[Alignment]]:
    """Score two decoded templates.

    Every compatible view pair is scored independently and the best pair wins
    (first pair on ties); views are never averaged together. At most
    MAX_VIEW_PAIRS pairs are compared, and comparison stops at a perfect score.

    Args:
        probe: Probe template
        candidate: Candidate template
        position_aware: Only pair views with compatible finger positions

    Returns:
        (score 0-255, alignment of the winning view pair or None)
    """
    best_score = 0
    best_alignment: Optional[Alignment] = None

    for compared, (probe_index, probe_minutiae, candidate_index, candidate_minutiae) in enumerate(
        _view_pairs(probe, candidate, position_aware)
    ):
        if compared >= MAX_VIEW_PAIRS:
            logger.debug(f"View pair limit reached ({MAX_VIEW_PAIRS}), remaining pairs not compared")
            break

        score, alignment = compute_minutiae_score(probe_minutiae, candidate_minutiae)
        if best_alignment is None or score > best_score:
            best_score = score
            best_alignment = Alignment(
                rotation=alignment.rotation,
                dx=alignment.dx,
                dy=alignment.dy,
                probe_view=probe_index,
                candidate_view=candidate_index,
                support=alignment.support,
                residual=alignment.residual,
            )

        if best_score >= SCORE_MAX:
            break

    return best_score, best_alignment
