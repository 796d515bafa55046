"""Reconcile raw model corrections against the caller's original text.

The model's offsets are hints. Every suggestion that leaves this module
satisfies ``text[start:end] == before``, does not overlap any other
suggestion in the same response, and carries a known category.
"""
import math
import re
import time
from typing import Any, Iterable, List, Optional, Set, Tuple

from loguru import logger

from periksakata.models import CATEGORIES, SEVERITIES, Suggestion

MAX_SUGGESTIONS = 20
MESSAGE_MAX_LEN = 200
AFTER_MAX_LEN = 100

REQUIRED_FIELDS = ("category", "message", "before", "after", "start", "end")

# Control characters other than tab, newline and carriage return.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE_RUN = re.compile(r"\s+")


def sanitize_text(value: Any, max_len: int) -> str:
    s = "" if value is None else str(value)
    s = _CONTROL_CHARS.sub(" ", s)
    s = _WHITESPACE_RUN.sub(" ", s).strip()
    if max_len > 0 and len(s) > max_len:
        s = s[:max_len]
    return s


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def find_nearest(text: str, needle: str, approx: int, ignore_case: bool = False) -> Optional[Tuple[int, int]]:
    """Span of the occurrence of ``needle`` closest to ``approx``.

    Overlapping occurrences are considered. Ties go to the lowest index.
    """
    if not needle:
        return None
    flags = re.IGNORECASE if ignore_case else 0
    pattern = re.compile("(?=(" + re.escape(needle) + "))", flags)
    best = None
    best_dist = None
    for m in pattern.finditer(text):
        span = m.span(1)
        dist = abs(span[0] - approx)
        if best_dist is None or dist < best_dist:
            best, best_dist = span, dist
    return best


def _overlaps(start: int, end: int, taken: Iterable[Tuple[int, int]]) -> bool:
    return any(start < te and ts < end for ts, te in taken)


def _coerce_bounds(raw_start: Any, raw_end: Any, before: str, length: int) -> Tuple[int, int]:
    start = int(raw_start) if _is_number(raw_start) else 0
    end = int(raw_end) if _is_number(raw_end) else min(length, start + len(before))
    start = max(0, min(start, length))
    end = max(start, min(end, length))
    return start, end


def _confidence(value: Any) -> Optional[float]:
    if _is_number(value) and 0.0 <= value <= 1.0:
        return float(value)
    return None


def _assign_id(raw_id: Any, index: int, stamp: int, used: Set[str]) -> str:
    if isinstance(raw_id, str) and raw_id and raw_id not in used:
        return raw_id
    base = f"sg-{stamp}-{index}"
    candidate = base
    n = 1
    while candidate in used:
        candidate = f"{base}-{n}"
        n += 1
    return candidate


def reconcile(candidates: Any, text: str, max_suggestions: int = MAX_SUGGESTIONS) -> List[Suggestion]:
    """Turn untrusted candidates into a minimal, consistent suggestion list.

    Candidates are processed in order; order decides both overlap and cap
    precedence. Malformed candidates are logged and dropped, never raised.
    """
    if not isinstance(candidates, list):
        if candidates is not None:
            logger.warning(f"Suggestions payload is not a list: {type(candidates).__name__}")
        return []

    accepted: List[Suggestion] = []
    taken: List[Tuple[int, int]] = []
    used_ids: Set[str] = set()
    stamp = int(time.time() * 1000)
    length = len(text)

    for i, candidate in enumerate(candidates):
        if len(accepted) >= max_suggestions:
            break

        if not isinstance(candidate, dict) or any(f not in candidate for f in REQUIRED_FIELDS):
            logger.warning(f"Missing required field(s) on suggestion: {candidate!r}")
            continue

        category = candidate.get("category")
        if category not in CATEGORIES:
            logger.warning(f"Invalid category: {category!r}")
            continue
        severity = candidate.get("severity")
        if severity is not None and severity not in SEVERITIES:
            logger.warning(f"Invalid severity: {severity!r}")
            continue

        before = candidate.get("before")
        if not isinstance(before, str) or not before:
            logger.warning(f"Suggestion has no usable 'before' text: {before!r}")
            continue

        start, end = _coerce_bounds(candidate.get("start"), candidate.get("end"), before, length)

        if text[start:end] != before:
            span = find_nearest(text, before, start)
            if span is not None:
                logger.warning(f"Adjusted offsets (exact match) from {(start, end)} to {span}")
            else:
                span = find_nearest(text, before, start, ignore_case=True)
                if span is None:
                    logger.warning(
                        f"Before text mismatch and could not auto-correct: "
                        f"expected={before!r} actual={text[start:end]!r} start={start} end={end}"
                    )
                    continue
                logger.warning(
                    f"Adjusted offsets (case-insensitive) from {(start, end)} to {span}, "
                    f"before normalized to original text"
                )
            start, end = span
            before = text[start:end]

        if _overlaps(start, end, taken):
            logger.warning(f"Overlapping suggestion skipped: start={start} end={end} before={before!r}")
            continue

        suggestion_id = _assign_id(candidate.get("id"), i, stamp, used_ids)
        suggestion = Suggestion(
            id=suggestion_id,
            category=category,
            severity=severity,
            message=sanitize_text(candidate.get("message"), MESSAGE_MAX_LEN),
            before=before,
            after=sanitize_text(candidate.get("after"), AFTER_MAX_LEN),
            start=start,
            end=end,
            confidence=_confidence(candidate.get("confidence")),
        )
        used_ids.add(suggestion_id)
        taken.append((start, end))
        accepted.append(suggestion)

    return accepted
