import base64
import math
import os
import tempfile

# Webserver settings are read at import time
os.environ.setdefault("FMRMATCH_MAX_WORKERS", "0")
os.environ.setdefault("FMRMATCH_LOG_DIR", tempfile.mkdtemp(prefix="fmrmatch-logs-"))

import numpy as np
import pytest

from fmrmatch.models import DecodedTemplate, FingerView, Minutia, MinutiaKind, TemplateHeader
from fmrmatch.serialization import build_template, encode_base64, _record_length


# Single-view ISO/IEC 19794-2:2005 record captured by a live-scan reader:
# 256x360 image, 197 px/cm, 26 minutiae, no extended data.
SAMPLE_B64 = (
    "Rk1SACAyMAAAAAC6AAABAAFoAMUAxQEAAABkGkCJAC3qYEBDAECIYICRAFZoYIA/AGKGYEB/AHzqYEBz"
    "AIzoYEBSAIv1YEBpAJFzYIDHAJXdYIBKAKHxYIAvAK+VYIBaALTgYICGALfVYEBAANHkYEC1ANrRYIB7"
    "AOLJYEBEAOa5YECCAQHEYECXAQzKYIBfASKxYIB0ASO4YICOASzIYECBATi5YEBxAT41YECcAUTNYECS"
    "AU/CYAAA"
)
SAMPLE_BYTES = base64.b64decode(SAMPLE_B64)


def make_minutiae(seed, count=30, x_range=(40, 216), y_range=(40, 320)):
    """Random but reproducible minutiae inside the default 256x360 image."""
    rng = np.random.RandomState(seed)
    kinds = (MinutiaKind.RIDGE_ENDING, MinutiaKind.BIFURCATION)
    return [
        Minutia(
            x=int(rng.randint(*x_range)),
            y=int(rng.randint(*y_range)),
            angle=int(rng.randint(0, 256)),
            kind=kinds[rng.randint(0, 2)],
            quality=60,
        )
        for _ in range(count)
    ]


def perturb(minutiae, rotation_deg=8.0, shift=(10, -6), jitter=2, drop=4, seed=0, center=(128, 180)):
    """Second impression of the same finger: rotated, shifted, jittered, partial."""
    rng = np.random.RandomState(seed)
    theta = math.radians(rotation_deg)
    c, s = math.cos(theta), math.sin(theta)
    turn = int(round(rotation_deg * 256 / 360))

    moved = []
    for m in minutiae[drop:]:
        dx, dy = m.x - center[0], m.y - center[1]
        # Counter-clockwise on screen (y grows downwards)
        x = center[0] + c * dx + s * dy + shift[0] + rng.randint(-jitter, jitter + 1)
        y = center[1] - s * dx + c * dy + shift[1] + rng.randint(-jitter, jitter + 1)
        angle = (m.angle + turn + rng.randint(-jitter, jitter + 1)) % 256
        moved.append(Minutia(int(round(x)), int(round(y)), int(angle), m.kind, m.quality))
    return moved


def make_template(*views):
    """Multi-view template from (finger_position, minutiae) pairs."""
    finger_views = tuple(
        FingerView(
            finger_position=position,
            view_number=0,
            impression_type=0,
            finger_quality=80,
            minutiae=tuple(minutiae),
        )
        for position, minutiae in views
    )
    header = TemplateHeader(
        version="20",
        record_length=_record_length(finger_views),
        device_id=0,
        width=256,
        height=360,
        x_resolution=197,
        y_resolution=197,
        view_count=len(finger_views),
    )
    return DecodedTemplate(header=header, views=finger_views)


@pytest.fixture
def sample_b64():
    return SAMPLE_B64


@pytest.fixture
def sample_bytes():
    return SAMPLE_BYTES


@pytest.fixture
def genuine_pair():
    """(enrolled, probe) base64 templates of the same synthetic finger."""
    base = make_minutiae(seed=7, count=30, x_range=(60, 196), y_range=(80, 280))
    return encode_base64(build_template(base)), encode_base64(build_template(perturb(base)))


@pytest.fixture
def other_fingers():
    """Base64 templates of unrelated synthetic fingers."""
    return [encode_base64(build_template(make_minutiae(seed=100 + i))) for i in range(4)]


def patched(data, offset, value):
    """Copy of data with bytes replaced at offset."""
    return data[:offset] + value + data[offset + len(value):]
