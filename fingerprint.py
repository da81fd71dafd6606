"""
fingerprint.py

Failure signatures for composed stack traces.

normalize()   replaces volatile details with placeholders, line by line:
              - error lines:     durations -> <DURATION>, quoted literals -> <STR>
              - call-log lines:  locator(...) / getBy*(...) args and quoted strings -> <SELECTOR>
              - frame lines:     quoted literals -> <STR>, :line:col -> :<LINE>:<COL>, dirs -> <PATH>/
fingerprint() sha256 of the normalized text (exact duplicates)
similarity()  positional line score in [0, 1] (near duplicates)
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence, Set

from context_store import StoredContext

DEFAULT_SIMILARITY_THRESHOLD = 0.8
PARTIAL_MATCH_MIN = 0.7

_ERROR_LINE_RE = re.compile(r"^([\w.$]*(?:Error|Exception))\b")
_DURATION_RE = re.compile(r"\b\d+(?:\.\d+)?\s?(?:ms|s)\b")
_QUOTED_RE = re.compile(r"\"[^\"]*\"|'[^']*'|`[^`]*`")
_SELECTOR_CALL_RE = re.compile(r"\b(locator|frameLocator|getBy[A-Za-z]+)\((.*?)\)(?=[.\s]|$)")
_LINE_COL_RE = re.compile(r":\d+:\d+")
_PATH_RE = re.compile(r"(?:[A-Za-z]:)?[\\/]?(?:[\w.\-@~+]+[\\/])+")
_CALLEE_RE = re.compile(r"^at\s+(\S+)")


# -----------------------------------------------------------------------------
# Normalization
# -----------------------------------------------------------------------------
def _is_call_log_line(s: str) -> bool:
    return s == "Call log:" or s.startswith("- ") or "waiting for" in s


def normalize_line(s: str) -> str:
    if _ERROR_LINE_RE.match(s):
        s = _DURATION_RE.sub("<DURATION>", s)
        return _QUOTED_RE.sub("<STR>", s)
    if _is_call_log_line(s):
        s = _SELECTOR_CALL_RE.sub(r"\1(<SELECTOR>)", s)
        return _QUOTED_RE.sub("<SELECTOR>", s)
    if s.startswith("at "):
        s = _QUOTED_RE.sub("<STR>", s)
        s = _LINE_COL_RE.sub(":<LINE>:<COL>", s)
        return _PATH_RE.sub("<PATH>/", s)
    return s


def normalize(stack_trace: str) -> str:
    lines = [ln.strip() for ln in (stack_trace or "").split("\n")]
    return "\n".join(normalize_line(ln) for ln in lines if ln)


def _sha256(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8", errors="ignore")).hexdigest()


def fingerprint(stack_trace: str) -> str:
    return _sha256(normalize(stack_trace))


@dataclass
class Fingerprint:
    normalized: str
    digest: str


def compute_fingerprint(stack_trace: str) -> Fingerprint:
    norm = normalize(stack_trace)
    return Fingerprint(normalized=norm, digest=_sha256(norm))


# -----------------------------------------------------------------------------
# Similarity
# -----------------------------------------------------------------------------
def key_parts(line: str) -> Set[str]:
    parts: Set[str] = set()
    m = _ERROR_LINE_RE.match(line)
    if m:
        parts.add(f"error:{m.group(1)}")
    m = _CALLEE_RE.match(line)
    if m:
        parts.add(f"callee:{m.group(1)}")
    if "waiting for" in line:
        parts.add("waiting_for")
    return parts


def line_similarity(a: str, b: str) -> float:
    if a == b:
        return 1.0
    p1, p2 = key_parts(a), key_parts(b)
    denom = max(len(p1), len(p2))
    if denom == 0:
        return 0.0
    return len(p1 & p2) / denom


def _lines(text: str) -> List[str]:
    return [ln for ln in (text or "").split("\n") if ln.strip()]


def similarity(normalized_a: str, normalized_b: str) -> float:
    """
    Sum of per-index line scores over the shared prefix, divided by the longer
    line count. Partial (key-part) scores below PARTIAL_MATCH_MIN count as 0.
    """
    l1, l2 = _lines(normalized_a), _lines(normalized_b)
    if not l1 and not l2:
        return 1.0
    if not l1 or not l2:
        return 0.0

    total = 0.0
    for a, b in zip(l1, l2):
        if a == b:
            total += 1.0
            continue
        score = line_similarity(a, b)
        if score >= PARTIAL_MATCH_MIN:
            total += score
    return total / max(len(l1), len(l2))


# -----------------------------------------------------------------------------
# Lookup over stored contexts
# -----------------------------------------------------------------------------
@dataclass
class SimilarMatch:
    context: StoredContext
    index: int
    similarity: float
    kind: Literal["identical", "similar"]


def _stored_normalized(ctx: StoredContext) -> str:
    # Older records may lack the normalized form.
    return ctx.normalized_stack_trace or normalize(ctx.stack_trace)


def find_by_hash(digest: str, contexts: Sequence[StoredContext]) -> Optional[StoredContext]:
    for ctx in contexts:
        if ctx.stack_trace_hash == digest:
            return ctx
    return None


def find_similar(
    normalized: str,
    contexts: Sequence[StoredContext],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> Optional[SimilarMatch]:
    """
    First stored context (in log order) scoring >= threshold.

    This is first-match, not best-match: an earlier, merely similar context wins
    over a later identical one.
    """
    for i, ctx in enumerate(contexts):
        score = similarity(normalized, _stored_normalized(ctx))
        if score >= threshold:
            return SimilarMatch(
                context=ctx,
                index=i,
                similarity=score,
                kind="identical" if score == 1.0 else "similar",
            )
    return None
