"""
Overlap-aware stitching of per-chunk transcripts.

Design intent:
- Order strictly by chunk index so completion order never leaks into output text.
- Drop words repeated by the audio overlap with a bounded greedy suffix/prefix match.
- Prefer an occasional missed near-duplicate over aggressive, non-deterministic alignment.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

_WS_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"\S+")
_TOKEN_STRIP_RE = re.compile(r"[^\w']+")

DEFAULT_MAX_TOKENS = 30
DEFAULT_MIN_CHARS = 6


def _normalize_token(word: str) -> str:
    normalized = _TOKEN_STRIP_RE.sub("", word.lower())
    return normalized or word.lower()


def find_overlap_token_count(
    prev: str,
    nxt: str,
    *,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    min_chars: int = DEFAULT_MIN_CHARS,
) -> int:
    """Longest run of words ending ``prev`` that also starts ``nxt`` (case/punctuation-insensitive)."""
    prev_tokens = [_normalize_token(w) for w in prev.split()]
    next_tokens = [_normalize_token(w) for w in nxt.split()]
    limit = min(max_tokens, len(prev_tokens), len(next_tokens))
    for size in range(limit, 0, -1):
        tail = prev_tokens[-size:]
        head = next_tokens[:size]
        if tail == head and sum(len(tok) for tok in head) >= min_chars:
            return size
    return 0


def merge_texts(
    accumulated: str,
    incoming: str,
    *,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    min_chars: int = DEFAULT_MIN_CHARS,
) -> str:
    incoming = (incoming or "").strip()
    if not incoming:
        return accumulated
    if not accumulated:
        return incoming

    overlap = find_overlap_token_count(
        accumulated, incoming, max_tokens=max_tokens, min_chars=min_chars
    )
    if overlap:
        # Cut after the last duplicated word so the rest keeps its own spacing.
        ends = [m.end() for m in _WORD_RE.finditer(incoming)]
        incoming = incoming[ends[overlap - 1] :].strip()
        if not incoming:
            return accumulated

    if accumulated[-1].isspace():
        return accumulated + incoming
    return f"{accumulated} {incoming}"


def _result_index_and_text(item: Any) -> tuple[int, str]:
    if isinstance(item, dict):
        return int(item.get("index", 0)), str(item.get("text") or "")
    return int(getattr(item, "index", 0)), str(getattr(item, "text", "") or "")


def merge_chunk_results(
    results: Iterable[Any],
    *,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    min_chars: int = DEFAULT_MIN_CHARS,
) -> str:
    ordered = sorted((_result_index_and_text(item) for item in results), key=lambda pair: pair[0])
    texts = [text.strip() for _, text in ordered if text and text.strip()]
    if not texts:
        return ""
    if len(texts) == 1:
        return texts[0]

    merged = ""
    for text in texts:
        merged = merge_texts(merged, text, max_tokens=max_tokens, min_chars=min_chars)
    return merged


def tail_prompt_source(text: str, max_chars: int) -> str:
    """Last ``max_chars`` characters of ``text``, without a leading partial word."""
    if not text or max_chars <= 0:
        return ""
    text = _WS_RE.sub(" ", text).strip()
    if len(text) <= max_chars:
        return text
    cut = len(text) - max_chars
    tail = text[cut:]
    if not text[cut - 1].isspace() and " " in tail:
        tail = tail.split(" ", 1)[1]
    return tail.strip()
