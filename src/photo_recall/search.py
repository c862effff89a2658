"""Search stored OCR text.

Match modes:
    substring  Case-insensitive literal substring match (default). Any input
               is a valid query.
    fts        SQLite FTS5 query syntax: words, "phrases", prefix*, AND/OR/NOT.
               Malformed queries raise InvalidQuery.
    fuzzy      Approximate match: a span matches when some window of its text
               is at least FUZZY_THRESHOLD similar to the query.

Results hold one SearchHit per matching image, with only the matching spans.
Hits are ordered by score (descending), then by image path, so identical
queries over identical stores always return identical lists. Spans within a
hit are ordered by span_index.

Scores:
    substring  number of matching spans in the image
    fts        best (negated) bm25 rank among the image's spans
    fuzzy      best similarity ratio among the image's spans

Only images with status "done" are searched. An empty query returns no hits.
"""

import logging
from difflib import SequenceMatcher
from enum import Enum
from pathlib import Path

from .database import ResultStore
from .models import ImageRecord, SearchHit, TextSpan

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 0.75


class MatchMode(str, Enum):
    SUBSTRING = "substring"
    FTS = "fts"
    FUZZY = "fuzzy"


def fuzzy_ratio(query: str, text: str) -> float:
    """Best similarity between query and any same-length window of text.

    Both strings are case-folded. Returns 1.0 when the query occurs verbatim.
    """
    needle = query.casefold()
    haystack = text.casefold()
    if not needle or not haystack:
        return 0.0
    if needle in haystack:
        return 1.0
    if len(haystack) <= len(needle):
        return SequenceMatcher(None, needle, haystack).ratio()

    # SequenceMatcher caches details about seq2, so the needle goes there
    matcher = SequenceMatcher(None, b=needle)
    width = len(needle)
    best = 0.0
    for start in range(len(haystack) - width + 1):
        matcher.set_seq1(haystack[start : start + width])
        best = max(best, matcher.ratio())
        if best == 1.0:
            break
    return best


def _collect(
    hits: dict[int, SearchHit], image: ImageRecord, span: TextSpan, score: float, accumulate: bool
) -> None:
    hit = hits.get(image.id)
    if hit is None:
        hit = hits[image.id] = SearchHit(image=image, score=0.0 if accumulate else score)
    hit.spans.append(span)
    if accumulate:
        hit.score += score
    else:
        hit.score = max(hit.score, score)


def search(
    store: ResultStore,
    query: str,
    mode: MatchMode = MatchMode.SUBSTRING,
    directory: Path | str | None = None,
    recursive: bool = False,
    limit: int | None = None,
    min_confidence: float = 0.0,
) -> list[SearchHit]:
    """Search stored text spans.

    Args:
        store: Open result store (read-only use)
        query: Free-text query
        mode: Match mode (see module docstring)
        directory: Only return images directly inside this directory (None = all)
        recursive: With directory, also include images in its subdirectories
        limit: Maximum number of hits to return (None = all)
        min_confidence: Ignore spans below this confidence

    Returns:
        SearchHits ordered by score descending, then path ascending

    Raises:
        InvalidQuery: If mode is fts and the query syntax is malformed
    """
    query = query.strip()
    if not query:
        return []

    mode = MatchMode(mode)
    if directory is not None:
        directory = Path(directory).resolve()

    hits: dict[int, SearchHit] = {}

    if mode == MatchMode.SUBSTRING:
        needle = query.casefold()
        for image, span in store.iter_spans(directory, recursive, min_confidence):
            if needle in span.text.casefold():
                _collect(hits, image, span, 1.0, accumulate=True)

    elif mode == MatchMode.FTS:
        for image, span, rank in store.fts_match(query, directory, recursive, min_confidence):
            # bm25() is lower for better matches
            _collect(hits, image, span, -rank, accumulate=False)

    else:
        for image, span in store.iter_spans(directory, recursive, min_confidence):
            ratio = fuzzy_ratio(query, span.text)
            if ratio >= FUZZY_THRESHOLD:
                _collect(hits, image, span, ratio, accumulate=False)

    results = sorted(hits.values(), key=lambda hit: (-hit.score, hit.image.path))
    for hit in results:
        hit.spans.sort(key=lambda span: span.span_index)

    logger.debug(f"Search {query!r} ({mode.value}) matched {len(results)} images")

    if limit is not None:
        results = results[:limit]
    return results
