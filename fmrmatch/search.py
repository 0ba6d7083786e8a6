"""Gallery search for fmrmatch

This module contains:
- FingerprintMatcher: stateless engine value (decode, match, verify, prepare, search)
- PreparedGallery: immutable, already-decoded gallery snapshot
- search / verify / find_match: one-shot helpers building settings from keyword options

A search never raises for bad input: probe failures, unusable galleries and
invalid options come back as a MatchResult with success=False.
"""

from __future__ import annotations
from collections.abc import Mapping
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
import time
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple, Union

from fmrmatch.decoder import EncodedTemplate, load_template, try_decode
from fmrmatch.errors import ConfigurationError, GalleryTooLarge, MatchingError, NoUsableTemplates
from fmrmatch.logger import get_logger, log_match
from fmrmatch.matching import match_templates
from fmrmatch.models import Alignment, DecodedTemplate, MatchResult, MatchSettings
from fmrmatch.worker import ChunkScore, worker_score_chunk

logger = get_logger("search")

_ENCODED_TYPES = (str, bytes, bytearray, memoryview, DecodedTemplate)

KeyAccessor = Callable[[Any], Any]
TemplateAccessor = Callable[[Any], Optional[EncodedTemplate]]


# ---------------------------------------------------------------------------
# Record accessors


def default_key(record: Any, key_field: str) -> Any:
    """Identity key of a gallery record: mapping key, (key, template) pair or attribute."""
    if isinstance(record, Mapping):
        return record.get(key_field)
    if isinstance(record, tuple) and len(record) == 2:
        return record[0]
    if isinstance(record, _ENCODED_TYPES):
        return None
    return getattr(record, key_field, None)


def default_template(record: Any, template_field: str) -> Optional[EncodedTemplate]:
    """Encoded template of a gallery record; bare templates are their own record."""
    if isinstance(record, _ENCODED_TYPES):
        return record
    if isinstance(record, Mapping):
        return record.get(template_field)
    if isinstance(record, tuple) and len(record) == 2:
        return record[1]
    return getattr(record, template_field, None)


def select_best(scores: Iterable[Tuple[int, int]]) -> Optional[Tuple[int, int]]:
    """Pick the (index, score) pair with the highest score, lowest index on ties.

    The ordering key (score, -index) is total, so the reduction gives the same
    answer whatever order chunk results arrive in.
    """
    return max(scores, key=lambda pair: (pair[1], -pair[0]), default=None)


def _split(entries: Sequence[Any], parts: int) -> List[Sequence[Any]]:
    size = -(-len(entries) // parts)
    return [entries[i:i + size] for i in range(0, len(entries), size)]


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


# ---------------------------------------------------------------------------
# Prepared gallery


@dataclass(frozen=True)
class PreparedGallery:
    """Gallery decoded once and reused across searches.

    Attributes:
        records: Caller records, in gallery order
        keys: Identity key of each record
        templates: Decoded template of each record (None when it was skipped)
        encoded_bytes: Total size of the decoded records in bytes
    """
    records: Tuple[Any, ...]
    keys: Tuple[Any, ...]
    templates: Tuple[Optional[DecodedTemplate], ...]
    encoded_bytes: int = 0

    def __len__(self) -> int:
        return len(self.records)

    @property
    def enrolled_count(self) -> int:
        return sum(1 for t in self.templates if t is not None)

    @property
    def skipped_count(self) -> int:
        return len(self.templates) - self.enrolled_count


# ---------------------------------------------------------------------------
# Engine


class FingerprintMatcher:
    """Template matching engine.

    Holds only its settings and record accessors, so one instance can serve
    any number of concurrent callers.

    Attributes:
        settings: MatchSettings in effect
    """

    def __init__(
        self,
        settings: Optional[MatchSettings] = None,
        key_of: Optional[KeyAccessor] = None,
        template_of: Optional[TemplateAccessor] = None
    ) -> None:
        """Initialize the engine.

        Args:
            settings: Matcher settings (defaults when None)
            key_of: Custom identity key accessor record -> key
            template_of: Custom template accessor record -> encoded template
        """
        self.settings = settings or MatchSettings()
        self._key_of = key_of
        self._template_of = template_of

    def __repr__(self) -> str:
        return f"FingerprintMatcher({self.settings!r})"

    # -- record access --------------------------------------------------

    def key_of(self, record: Any, index: int) -> Any:
        if self._key_of is None:
            key = default_key(record, self.settings.key_field)
        else:
            try:
                key = self._key_of(record)
            except (KeyError, AttributeError, IndexError, TypeError) as e:
                logger.debug(f"Key accessor failed on entry {index}: {type(e).__name__}: {e}")
                key = None
        return key if key is not None else f"template_{index}"

    def template_of(self, record: Any) -> Optional[EncodedTemplate]:
        if self._template_of is None:
            return default_template(record, self.settings.template_field)
        try:
            return self._template_of(record)
        except (KeyError, AttributeError, IndexError, TypeError) as e:
            logger.debug(f"Template accessor failed: {type(e).__name__}: {e}")
            return None

    # -- 1:1 --------------------------------------------------------------

    def decode(self, data: EncodedTemplate) -> DecodedTemplate:
        """Decode one template (raises FormatError)."""
        return load_template(data)

    def match(self, probe: EncodedTemplate, candidate: EncodedTemplate) -> Tuple[int, Optional[Alignment]]:
        """Raw 1:1 score of two templates.

        Raises:
            FormatError: If either template cannot be decoded
        """
        return match_templates(
            load_template(probe),
            load_template(candidate),
            position_aware=self.settings.position_aware,
        )

    def verify(self, probe: EncodedTemplate, candidate: EncodedTemplate) -> MatchResult:
        """1:1 verification of a probe against a single enrolled template."""
        start = time.perf_counter()
        threshold = self.settings.threshold

        probe_template, error = try_decode(probe)
        if probe_template is None:
            return self._fail("VERIFY", error, start)

        candidate_template, error = try_decode(candidate)
        if candidate_template is None:
            logger.warning(f"Candidate template skipped: {type(error).__name__}: {error}")
            return self._fail("VERIFY", error, start, skipped=1)

        score, _ = match_templates(
            probe_template, candidate_template, position_aware=self.settings.position_aware
        )
        result = MatchResult(
            success=True,
            is_match=score >= threshold,
            raw_score=score,
            threshold=threshold,
            loaded_templates=1,
            elapsed_ms=_elapsed_ms(start),
        )
        self._log("VERIFY", result)
        return result

    # -- 1:N --------------------------------------------------------------

    def prepare(self, gallery: Iterable[Any]) -> PreparedGallery:
        """Decode a gallery once for repeated searches.

        Entries without a template or failing to decode are kept as None and
        counted as skipped by every search over the prepared gallery.
        """
        records = tuple(gallery)
        keys = []
        templates: List[Optional[DecodedTemplate]] = []
        encoded_bytes = 0

        for index, record in enumerate(records):
            keys.append(self.key_of(record, index))
            decoded = self._decode_entry(index, record)
            if decoded is not None:
                encoded_bytes += decoded.header.record_length
            templates.append(decoded)

        prepared = PreparedGallery(
            records=records,
            keys=tuple(keys),
            templates=tuple(templates),
            encoded_bytes=encoded_bytes,
        )
        logger.info(
            f"Prepared gallery: {prepared.enrolled_count} enrolled, "
            f"{prepared.skipped_count} skipped, {encoded_bytes} bytes"
        )
        return prepared

    def search(self, probe: EncodedTemplate, gallery: Union[PreparedGallery, Iterable[Any]]) -> MatchResult:
        """Identify a probe against a gallery.

        Algorithm:
        1. Snapshot the gallery (or use a PreparedGallery as is)
        2. Decode the probe once; a failure ends the search
        3. Score every decodable entry, in parallel for large galleries
        4. Reduce to the best (score, lowest index) entry

        Args:
            probe: Encoded or decoded probe template
            gallery: Sequence of caller records, or a PreparedGallery

        Returns:
            MatchResult; record is set only when is_match is True
        """
        start = time.perf_counter()
        settings = self.settings

        prepared: Optional[PreparedGallery] = None
        if isinstance(gallery, PreparedGallery):
            prepared = gallery
            records = prepared.records
        else:
            try:
                records = tuple(gallery)
            except TypeError as e:
                return self._fail("IDENTIFY", ConfigurationError(f"Gallery is not iterable: {e}"), start)

        size = len(records)
        if size > settings.max_gallery_size:
            return self._fail("IDENTIFY", GalleryTooLarge(size, settings.max_gallery_size), start)

        probe_template, error = try_decode(probe)
        if probe_template is None:
            return self._fail("IDENTIFY", error, start)

        skipped = 0
        entries: List[Tuple[int, EncodedTemplate]] = []
        if prepared is not None:
            keys = prepared.keys
            skipped = prepared.skipped_count
            entries = [(i, t) for i, t in enumerate(prepared.templates) if t is not None]
        else:
            keys = None
            for index, record in enumerate(records):
                template = self.template_of(record)
                if template is None:
                    skipped += 1
                    logger.warning(f"Gallery entry {index} skipped: missing template field")
                    continue
                entries.append((index, template))

        scores, concurrency = self._score_entries(probe_template, entries)

        scored: List[Tuple[int, int]] = []
        for index, score, reason in scores:
            if score is None:
                skipped += 1
                logger.warning(f"Gallery entry {index} skipped: {reason}")
                continue
            scored.append((index, score))

        if not scored:
            return self._fail("IDENTIFY", NoUsableTemplates(), start, skipped=skipped, concurrency=concurrency)

        best_index, best_score = select_best(scored)
        is_match = best_score >= settings.threshold
        best_key = keys[best_index] if keys is not None else self.key_of(records[best_index], best_index)

        result = MatchResult(
            success=True,
            is_match=is_match,
            best_key=best_key,
            record=records[best_index] if is_match else None,
            raw_score=best_score,
            threshold=settings.threshold,
            loaded_templates=len(scored),
            skipped_templates=skipped,
            elapsed_ms=_elapsed_ms(start),
            concurrency=concurrency,
        )
        self._log("IDENTIFY", result)
        return result

    # -- internals --------------------------------------------------------

    def _decode_entry(self, index: int, record: Any) -> Optional[DecodedTemplate]:
        template = self.template_of(record)
        if template is None:
            logger.warning(f"Gallery entry {index} skipped: missing template field")
            return None
        decoded, error = try_decode(template)
        if decoded is None:
            logger.warning(f"Gallery entry {index} skipped: {type(error).__name__}: {error}")
        return decoded

    def _score_entries(
        self,
        probe: DecodedTemplate,
        entries: List[Tuple[int, EncodedTemplate]]
    ) -> Tuple[List[ChunkScore], int]:
        """Score entries sequentially, or across a process pool for large galleries."""
        settings = self.settings
        if settings.workers <= 1 or len(entries) < settings.parallel_min_gallery:
            return worker_score_chunk(probe, entries, settings.position_aware), 1

        chunks = _split(entries, settings.workers)
        logger.debug(f"Scoring {len(entries)} entries in {len(chunks)} chunks")

        scores: List[ChunkScore] = []
        with ProcessPoolExecutor(max_workers=len(chunks)) as pool:
            futures = [
                pool.submit(worker_score_chunk, probe, chunk, settings.position_aware)
                for chunk in chunks
            ]
            for future in futures:
                scores.extend(future.result())

        return scores, len(chunks)

    def _fail(
        self,
        operation: str,
        error: MatchingError,
        start: float,
        skipped: int = 0,
        concurrency: int = 1
    ) -> MatchResult:
        result = MatchResult(
            success=False,
            threshold=self.settings.threshold,
            skipped_templates=skipped,
            elapsed_ms=_elapsed_ms(start),
            concurrency=concurrency,
            error=str(error),
            error_type=type(error).__name__,
        )
        self._log(operation, result)
        return result

    def _log(self, operation: str, result: MatchResult) -> None:
        if not result.success:
            log_match(operation, None, "FAILURE", {'error_type': result.error_type, 'error': result.error})
            return
        log_match(
            operation,
            result.best_key,
            "MATCH" if result.is_match else "NO_MATCH",
            {
                'score': result.raw_score,
                'threshold': result.threshold,
                'loaded': result.loaded_templates,
                'skipped': result.skipped_templates,
                'elapsed_ms': f"{result.elapsed_ms:.1f}",
            }
        )


# ---------------------------------------------------------------------------
# One-shot helpers


def _matcher(options: dict) -> FingerprintMatcher:
    key_of = options.pop('key_of', None)
    template_of = options.pop('template_of', None)
    return FingerprintMatcher(MatchSettings.from_options(**options), key_of=key_of, template_of=template_of)


def search(probe: EncodedTemplate, gallery: Union[PreparedGallery, Iterable[Any]], **options: Any) -> MatchResult:
    """Identify a probe against a gallery with settings given as keyword options.

    Invalid options are reported as a failure result instead of being raised.
    """
    try:
        matcher = _matcher(dict(options))
    except ConfigurationError as e:
        return MatchResult.failure(e)
    return matcher.search(probe, gallery)


def verify(probe: EncodedTemplate, candidate: EncodedTemplate, **options: Any) -> MatchResult:
    """1:1 verification with settings given as keyword options."""
    try:
        matcher = _matcher(dict(options))
    except ConfigurationError as e:
        return MatchResult.failure(e)
    return matcher.verify(probe, candidate)


def find_match(probe: EncodedTemplate, gallery: Union[PreparedGallery, Iterable[Any]], **options: Any) -> Any:
    """Return the caller record matching the probe, or None."""
    result = search(probe, gallery, **options)
    return result.record if result.is_match else None
