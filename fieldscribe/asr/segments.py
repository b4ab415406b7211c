"""
Speech interval normalization.

Design intent:
- Accept loosely-typed intervals (tuples, dicts, models) from any detector.
- Emit a strictly ascending, non-overlapping, positive-length interval set.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any, Optional

from fieldscribe.asr.models import SpeechInterval


def _coerce_bounds(item: Any) -> Optional[tuple[float, float]]:
    if isinstance(item, SpeechInterval):
        return float(item.start_ms), float(item.end_ms)
    if isinstance(item, Mapping):
        start = item.get("start_ms", item.get("startMs"))
        end = item.get("end_ms", item.get("endMs"))
    elif isinstance(item, (tuple, list)) and len(item) == 2:
        start, end = item
    else:
        start = getattr(item, "start_ms", None)
        end = getattr(item, "end_ms", None)
    try:
        start_f = float(start)
        end_f = float(end)
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(start_f) and math.isfinite(end_f)):
        return None
    if end_f <= start_f:
        return None
    return start_f, end_f


def normalize_speech_segments(
    segments: Iterable[Any],
    duration_ms: float,
    pad_ms: float,
    *,
    merge_gap_ms: float = 0.0,
) -> list[SpeechInterval]:
    if duration_ms <= 0 or not math.isfinite(duration_ms):
        return []
    pad_ms = max(0.0, float(pad_ms))
    merge_gap_ms = max(0.0, float(merge_gap_ms))

    bounded: list[tuple[float, float]] = []
    for item in segments or []:
        bounds = _coerce_bounds(item)
        if bounds is None:
            continue
        start = min(max(bounds[0], 0.0), duration_ms)
        end = min(max(bounds[1], 0.0), duration_ms)
        if end <= start:
            continue
        bounded.append((max(0.0, start - pad_ms), min(duration_ms, end + pad_ms)))

    bounded.sort(key=lambda pair: (pair[0], pair[1]))

    merged: list[list[float]] = []
    for start, end in bounded:
        if merged and start - merged[-1][1] <= merge_gap_ms:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])

    return [
        SpeechInterval(start_ms=start, end_ms=end)
        for start, end in merged
        if end > start
    ]
