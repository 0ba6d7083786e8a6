import pytest

from fmrmatch.decoder import decode, load_template
from fmrmatch.errors import InvalidEncoding
from fmrmatch.models import Minutia, MinutiaKind
from fmrmatch.serialization import (
    build_template, encode_base64, encode_template, template_from_dict, template_from_json,
    template_to_dict, template_to_json,
)

from conftest import SAMPLE_B64, SAMPLE_BYTES, make_minutiae, make_template


def test_real_sample_reencodes_byte_for_byte():
    assert encode_template(decode(SAMPLE_BYTES)) == SAMPLE_BYTES
    assert encode_base64(load_template(SAMPLE_B64)) == SAMPLE_B64


def test_built_template_decodes_to_itself():
    template = build_template(make_minutiae(seed=4, count=12), finger_position=3)
    data = encode_template(template)
    assert len(data) == template.header.record_length == 24 + 4 + 12 * 6 + 2
    assert decode(data) == template


def test_multi_view_record_length():
    template = make_template((1, make_minutiae(seed=1, count=5)), (2, make_minutiae(seed=2, count=7)))
    data = encode_template(template)
    decoded = decode(data)
    assert decoded.header.view_count == 2
    assert [len(v.minutiae) for v in decoded.views] == [5, 7]
    assert [v.finger_position for v in decoded.views] == [1, 2]


def test_encoder_rejects_oversized_fields():
    with pytest.raises(ValueError):
        encode_template(build_template([Minutia(x=0x4000, y=0, angle=0)]))
    with pytest.raises(ValueError):
        encode_template(build_template([Minutia(x=1, y=1, angle=0)] * 256))
    with pytest.raises(ValueError):
        encode_template(make_template())


def test_dict_form():
    data = template_to_dict(decode(SAMPLE_BYTES))
    assert data["width"] == 256
    assert data["view_count"] == 1
    first = data["views"][0]["minutiae"][0]
    assert first == {"x": 137, "y": 45, "angle": 234, "kind": "ridge_ending", "quality": 96, "in_bounds": True}
    assert template_from_dict(data) == decode(SAMPLE_BYTES)


def test_json_form():
    template = build_template([
        Minutia(10, 20, 30, MinutiaKind.BIFURCATION, 50),
        Minutia(400, 20, 30, MinutiaKind.OTHER, 0, in_bounds=False),
    ])
    assert template_from_json(template_to_json(template)) == template


@pytest.mark.parametrize("text", [
    "{not json",
    '{"views": []}',
    '{"width": 256, "height": 360, "views": [{"finger_position": 1, "minutiae": [{"x": 1}]}]}',
    '{"width": 256, "height": 360, "views": [{"finger_position": 1, '
    '"minutiae": [{"x": 1, "y": 2, "angle": 3, "kind": "loop"}]}]}',
])
def test_json_form_rejects_malformed_documents(text):
    with pytest.raises(InvalidEncoding):
        template_from_json(text)
