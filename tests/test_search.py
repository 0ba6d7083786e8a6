import logging
from types import SimpleNamespace

import pytest

from fmrmatch.config import SCORE_MAX
from fmrmatch.decoder import load_template
from fmrmatch.errors import ConfigurationError
from fmrmatch.matching import match_templates
from fmrmatch.models import MatchResult, MatchSettings
from fmrmatch.search import FingerprintMatcher, PreparedGallery, find_match, search, select_best, verify

from conftest import SAMPLE_B64, SAMPLE_BYTES


def _gallery(templates):
    return [{"id": f"user-{i}", "name": f"User {i}", "fingerprint": t} for i, t in enumerate(templates)]


def test_probe_equal_to_entry_two(other_fingers):
    templates = other_fingers[:2] + [SAMPLE_B64] + other_fingers[2:]
    gallery = _gallery(templates)

    result = search(SAMPLE_B64, gallery)
    assert result.success
    assert result.is_match
    assert result.best_key == "user-2"
    assert result.raw_score == SCORE_MAX
    assert result.percentage == 100.0
    assert result.record is gallery[2]
    assert result.loaded_templates == 5
    assert result.skipped_templates == 0
    assert result.error is None


def test_corrupted_entry_is_skipped(other_fingers, caplog):
    corrupted = SAMPLE_B64[:40]
    gallery = _gallery([other_fingers[0], corrupted, other_fingers[1], SAMPLE_B64])

    with caplog.at_level(logging.WARNING, logger="fmrmatch.search"):
        result = search(SAMPLE_B64, gallery)

    assert result.success
    assert result.loaded_templates == len(gallery) - 1
    assert result.skipped_templates == 1
    assert result.best_key == "user-3"
    assert result.is_match
    assert any("Gallery entry 1 skipped" in r.getMessage() for r in caplog.records)


def test_missing_template_field_is_skipped():
    gallery = [{"id": "no-template"}, {"id": "ok", "fingerprint": SAMPLE_B64}]
    result = search(SAMPLE_B64, gallery)
    assert result.loaded_templates == 1
    assert result.skipped_templates == 1
    assert result.best_key == "ok"


def test_no_match_still_reports_best(other_fingers):
    gallery = _gallery(other_fingers)
    probe = load_template(SAMPLE_B64)
    expected = max(match_templates(probe, load_template(t))[0] for t in other_fingers)

    result = search(SAMPLE_B64, gallery)
    assert result.success
    assert not result.is_match
    assert result.raw_score == expected
    assert result.best_key is not None
    assert result.record is None
    assert result.confidence == "low"


def test_tie_keeps_first_seen(other_fingers):
    gallery = _gallery([other_fingers[0], SAMPLE_B64, other_fingers[1], SAMPLE_B64])
    result = search(SAMPLE_B64, gallery)
    assert result.raw_score == SCORE_MAX
    assert result.best_key == "user-1"
    assert result.record is gallery[1]


def test_select_best_is_order_independent():
    scores = [(0, 40), (3, 90), (1, 90), (2, 10)]
    assert select_best(scores) == (1, 90)
    assert select_best(reversed(scores)) == (1, 90)
    assert select_best([]) is None


def test_probe_decode_failure(other_fingers):
    result = search(SAMPLE_B64[:20], _gallery(other_fingers))
    assert not result.success
    assert not result.is_match
    assert result.error_type in ("LengthMismatch", "Truncated", "InvalidEncoding")
    assert result.error


def test_probe_with_wrong_format(other_fingers):
    result = search(b"NOT A FINGER RECORD AT ALL", _gallery(other_fingers))
    assert not result.success
    assert result.error_type == "UnsupportedFormat"


def test_no_usable_templates():
    gallery = _gallery(["", "AAAA", SAMPLE_B64[:50]])
    result = search(SAMPLE_B64, gallery)
    assert not result.success
    assert result.error == "no usable templates"
    assert result.error_type == "NoUsableTemplates"
    assert result.skipped_templates == 3
    assert result.loaded_templates == 0


def test_empty_gallery():
    result = search(SAMPLE_B64, [])
    assert not result.success
    assert result.error == "no usable templates"


def test_gallery_too_large(other_fingers):
    result = search(SAMPLE_B64, _gallery(other_fingers), max_gallery_size=3)
    assert not result.success
    assert result.error_type == "GalleryTooLarge"


@pytest.mark.parametrize("options", [
    {"threshold": 256},
    {"threshold": -1},
    {"threshold": True},
    {"threshold": "100"},
    {"workers": 0},
    {"position_aware": "yes"},
    {"unknown_option": 1},
])
def test_configuration_errors_are_reported(options):
    result = search(SAMPLE_B64, [SAMPLE_B64], **options)
    assert not result.success
    assert result.error_type == "ConfigurationError"


def test_settings_raise_when_built_directly():
    with pytest.raises(ConfigurationError):
        MatchSettings(threshold=300)
    with pytest.raises(ConfigurationError):
        MatchSettings(template_field="")


def test_threshold_decides_match(genuine_pair):
    enrolled, probe = genuine_pair
    score = search(probe, [enrolled]).raw_score
    # Partial probe, so the score stays below the ceiling
    assert 0 < score < SCORE_MAX
    assert search(probe, [enrolled], threshold=score).is_match
    assert not search(probe, [enrolled], threshold=score + 1).is_match


def test_genuine_probe_finds_owner(genuine_pair, other_fingers):
    enrolled, probe = genuine_pair
    gallery = _gallery(other_fingers + [enrolled])
    record = find_match(probe, gallery)
    assert record is gallery[-1]


def test_find_match_returns_none(other_fingers):
    assert find_match(SAMPLE_B64, _gallery(other_fingers)) is None


def test_default_keys_and_record_shapes():
    pairs = [("alice", SAMPLE_B64)]
    assert search(SAMPLE_B64, pairs).best_key == "alice"

    bare = [SAMPLE_BYTES]
    assert search(SAMPLE_B64, bare).best_key == "template_0"

    keyless = [{"fingerprint": SAMPLE_B64}]
    assert search(SAMPLE_B64, keyless).best_key == "template_0"

    objects = [SimpleNamespace(id=42, fingerprint=SAMPLE_B64)]
    result = search(SAMPLE_B64, objects)
    assert result.best_key == 42
    assert result.record is objects[0]


def test_custom_fields_and_accessors():
    gallery = [{"uid": "u1", "fmr": SAMPLE_B64}]
    result = search(SAMPLE_B64, gallery, key_field="uid", template_field="fmr")
    assert result.best_key == "u1"

    matcher = FingerprintMatcher(key_of=lambda r: r["uid"].upper(), template_of=lambda r: r["fmr"])
    assert matcher.search(SAMPLE_B64, gallery).best_key == "U1"

    broken = FingerprintMatcher(template_of=lambda r: r["missing"])
    result = broken.search(SAMPLE_B64, gallery)
    assert result.error == "no usable templates"


def test_gallery_is_snapshotted(other_fingers):
    def generator():
        for record in _gallery(other_fingers + [SAMPLE_B64]):
            yield record

    result = search(SAMPLE_B64, generator())
    assert result.is_match
    assert result.best_key == "user-4"


def test_prepared_gallery_matches_raw_search(other_fingers):
    gallery = _gallery(other_fingers + ["AAAA", SAMPLE_B64])
    matcher = FingerprintMatcher()

    prepared = matcher.prepare(gallery)
    assert isinstance(prepared, PreparedGallery)
    assert len(prepared) == 6
    assert prepared.enrolled_count == 5
    assert prepared.skipped_count == 1
    assert prepared.encoded_bytes > 0
    assert prepared.keys[5] == "user-5"

    from_prepared = matcher.search(SAMPLE_B64, prepared)
    from_raw = matcher.search(SAMPLE_B64, gallery)
    assert from_prepared == from_raw
    assert from_prepared.record is gallery[5]


def test_parallel_scoring_equals_sequential(genuine_pair, other_fingers):
    enrolled, probe = genuine_pair
    templates = (other_fingers * 5) + [enrolled, "AAAA"]
    gallery = _gallery(templates)

    sequential = search(probe, gallery)
    parallel = search(probe, gallery, workers=2, parallel_min_gallery=2)

    assert sequential.concurrency == 1
    assert parallel.concurrency == 2
    for name in ("success", "is_match", "best_key", "raw_score", "loaded_templates", "skipped_templates"):
        assert getattr(parallel, name) == getattr(sequential, name)
    assert parallel.record is gallery[20]


def test_verify():
    result = verify(SAMPLE_B64, SAMPLE_BYTES)
    assert result.success and result.is_match
    assert result.raw_score == SCORE_MAX
    assert result.loaded_templates == 1


def test_verify_bad_candidate():
    result = verify(SAMPLE_B64, "AAAA")
    assert not result.success
    assert result.skipped_templates == 1


def test_matcher_match_and_decode(genuine_pair):
    matcher = FingerprintMatcher(MatchSettings(position_aware=False))
    template = matcher.decode(SAMPLE_B64)
    assert template.header.view_count == 1
    score, alignment = matcher.match(*genuine_pair)
    assert score > 0 and alignment is not None


def test_result_to_dict(other_fingers):
    result = search(SAMPLE_B64, _gallery([SAMPLE_B64]))
    data = result.to_dict()
    assert data["is_match"] is True
    assert data["best_key"] == "user-0"
    assert data["raw_score"] == 255
    assert data["percentage"] == 100.0
    assert data["confidence"] == "excellent"
    assert data["record"]["name"] == "User 0"
    assert "record" not in result.to_dict(include_record=False)


def test_failure_result_helper():
    result = MatchResult.failure(ConfigurationError("bad"), threshold=120)
    assert not result.success
    assert result.threshold == 120
    assert result.error == "bad"
    assert result.error_type == "ConfigurationError"


def test_failing_key_accessor_falls_back_to_index_key():
    gallery = [{"name": "a", "fingerprint": SAMPLE_B64}]
    result = search(SAMPLE_B64, gallery, key_of=lambda r: r["id"], template_of=lambda r: r["fingerprint"])
    assert result.success
    assert result.is_match
    assert result.best_key == "template_0"
    assert result.record is gallery[0]

    prepared = FingerprintMatcher(key_of=lambda r: r.id).prepare(gallery)
    assert prepared.keys == ("template_0",)
