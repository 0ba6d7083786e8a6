"""
Matching Worker Functions for ProcessPool
Isolated worker functions for CPU-bound matching operations.

These functions run in separate processes via ProcessPoolExecutor, so every
argument and return value is a plain picklable payload (bytes, decoded
templates, tuples and dicts). Caller records never cross the process boundary
during gallery scoring; only (index, template) pairs do.

MULTIPROCESSING STRATEGY:
=========================

1. VERIFY (1:1 matching): NO multiprocessing inside the call
   - Single comparison, pool overhead > benefit
   - Server-level parallelism: concurrent verify requests use different workers

2. IDENTIFY (1:N matching): ADAPTIVE multiprocessing
   - Small galleries (< parallel_min_gallery): sequential scoring
   - Large galleries: probe decoded once, gallery split into one chunk per
     worker, chunks scored in parallel, results merged by a single
     max-by-(score, -index) reduction
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from fmrmatch.decoder import EncodedTemplate, try_decode
from fmrmatch.matching import match_templates
from fmrmatch.models import DecodedTemplate


# (gallery index, score or None when skipped, error message or None)
ChunkScore = Tuple[int, Optional[int], Optional[str]]


def worker_score_chunk(
    probe: DecodedTemplate,
    chunk: Sequence[Tuple[int, EncodedTemplate]],
    position_aware: bool = True
) -> List[ChunkScore]:
    """
    Score a decoded probe against a chunk of gallery templates.
    Used for both sequential and parallel identification.

    Args:
        probe: Decoded probe template
        chunk: (gallery index, encoded or decoded template) pairs
        position_aware: Only pair views with compatible finger positions

    Returns:
        One (index, score, error) tuple per entry, in chunk order.
        Entries that fail to decode have score None and the error message.
    """
    scores: List[ChunkScore] = []

    for index, template in chunk:
        decoded, error = try_decode(template)
        if decoded is None:
            scores.append((index, None, f"{type(error).__name__}: {error}"))
            continue

        score, _ = match_templates(probe, decoded, position_aware=position_aware)
        scores.append((index, score, None))

    return scores


def worker_search(
    probe: EncodedTemplate,
    records: Sequence[Any],
    options: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Worker function for 1:N identification (runs in ProcessPool).

    Args:
        probe: Encoded probe template
        records: Gallery records (picklable mappings)
        options: MatchSettings keyword options

    Returns:
        MatchResult.to_dict() including the matched record
    """
    from fmrmatch.search import search

    return search(probe, records, **options).to_dict()


def worker_verify(
    probe: EncodedTemplate,
    candidate: EncodedTemplate,
    options: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Worker function for 1:1 verification (runs in ProcessPool).

    Args:
        probe: Encoded probe template
        candidate: Encoded candidate template
        options: MatchSettings keyword options

    Returns:
        MatchResult.to_dict() without a record
    """
    from fmrmatch.search import verify

    return verify(probe, candidate, **options).to_dict(include_record=False)
