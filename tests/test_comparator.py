import math

import numpy as np
import pytest

from fmrmatch.comparator import (
    angle_difference, angle_weight, position_weight, score, score_matrix, to_arrays, type_weight,
)
from fmrmatch.config import TYPE_WEIGHT_MISMATCH, TYPE_WEIGHT_SAME, TYPE_WEIGHT_UNKNOWN
from fmrmatch.models import Alignment, Minutia, MinutiaKind

from conftest import make_minutiae

ENDING = MinutiaKind.RIDGE_ENDING
BIFURCATION = MinutiaKind.BIFURCATION
OTHER = MinutiaKind.OTHER


def test_identical_minutiae_score_one():
    m = Minutia(100, 120, 40, ENDING)
    assert score(m, m) == 1.0


def test_position_decay():
    a = Minutia(100, 100, 0, ENDING)
    assert score(a, Minutia(108, 100, 0, ENDING)) == 1.0
    assert score(a, Minutia(115, 100, 0, ENDING)) == pytest.approx(0.5)
    assert score(a, Minutia(100, 125, 0, ENDING)) == 0.0


def test_angle_wraps_around():
    # 2 and 254 are 4 units (5.6 degrees) apart
    assert score(Minutia(50, 50, 2, ENDING), Minutia(50, 50, 254, ENDING)) == 1.0
    assert angle_difference(math.radians(359.0), math.radians(1.0)) == pytest.approx(math.radians(2.0))


def test_angle_decay():
    a = Minutia(50, 50, 0, ENDING)
    # 128 units = 180 degrees
    assert score(a, Minutia(50, 50, 128, ENDING)) == 0.0
    assert angle_weight(math.radians(22.5)) == pytest.approx(0.5)


def test_type_weights():
    assert type_weight(int(ENDING), int(ENDING)) == TYPE_WEIGHT_SAME
    assert type_weight(int(ENDING), int(BIFURCATION)) == TYPE_WEIGHT_MISMATCH
    assert type_weight(int(OTHER), int(BIFURCATION)) == TYPE_WEIGHT_UNKNOWN
    assert type_weight(int(OTHER), int(OTHER)) == TYPE_WEIGHT_SAME
    assert score(Minutia(10, 10, 0, ENDING), Minutia(10, 10, 0, BIFURCATION)) == TYPE_WEIGHT_MISMATCH
    assert score(Minutia(10, 10, 0, OTHER), Minutia(10, 10, 0, ENDING)) > 0.0


def test_translation_alignment():
    a = Minutia(100, 100, 20, ENDING)
    b = Minutia(110, 95, 20, ENDING)
    assert score(a, b) < 1.0
    # dy is measured upwards, image y downwards
    assert score(a, b, Alignment(dx=10.0, dy=5.0)) == pytest.approx(1.0)


def test_rotation_alignment():
    a = Minutia(0, 10, 0, ENDING)
    # A quarter turn counter-clockwise moves (0, 10) to (10, 0) and angle 0 to 64
    b = Minutia(10, 0, 64, ENDING)
    assert score(a, b, Alignment(rotation=math.pi / 2)) == pytest.approx(1.0)


def test_weights_are_bounded():
    distances = np.array([0.0, 5.0, 10.0, 15.0, 20.0, 1e6])
    weights = position_weight(distances)
    assert weights.min() >= 0.0 and weights.max() <= 1.0
    angles = np.linspace(0.0, math.pi, 50)
    weights = angle_weight(angles)
    assert weights.min() >= 0.0 and weights.max() <= 1.0


def test_score_matrix_matches_scalar_score():
    probe = make_minutiae(seed=11, count=8)
    candidate = make_minutiae(seed=12, count=6) + probe[:3]
    alignment = Alignment(rotation=0.1, dx=4.0, dy=-3.0)

    scores, distances = score_matrix(
        to_arrays(probe), to_arrays(candidate), alignment.rotation, alignment.dx, alignment.dy
    )
    assert scores.shape == distances.shape == (8, 9)
    assert np.all(np.isfinite(scores))
    for i, a in enumerate(probe):
        for j, b in enumerate(candidate):
            assert scores[i, j] == pytest.approx(score(a, b, alignment))


def test_to_arrays_uses_cartesian_frame():
    arrays = to_arrays([Minutia(3, 7, 64, BIFURCATION)])
    assert arrays.size == 1
    assert arrays.x[0] == 3.0
    assert arrays.y[0] == -7.0
    assert arrays.angle[0] == pytest.approx(math.pi / 2)
    assert arrays.kind[0] == int(BIFURCATION)
