from fieldscribe.asr.models import SpeechInterval
from fieldscribe.asr.planner import (
    PlannerLimits,
    build_uniform_chunks,
    estimate_wav_bytes,
    max_duration_ms_for_bytes,
    plan_chunks,
    plan_chunks_with_debug,
)


def _limits(**overrides) -> PlannerLimits:
    values = {
        "max_duration_ms": 10_000,
        "max_bytes": 24 * 1024 * 1024,
        "overlap_ms": 500,
        "min_chunk_ms": 0,
        "sample_rate": 16000,
        "bytes_per_sample": 2,
    }
    values.update(overrides)
    return PlannerLimits(**values)


def _seg(start_ms: float, end_ms: float) -> SpeechInterval:
    return SpeechInterval(start_ms=start_ms, end_ms=end_ms)


def test_two_speech_regions_split_into_two_chunks() -> None:
    segments = [_seg(0, 5000), _seg(6500, 13000)]
    plans = plan_chunks(segments, 20_000, _limits(min_chunk_ms=15_000))
    assert len(plans) == 2
    assert plans[0].start_ms == 0
    assert plans[1].start_ms <= 13_000
    # The second chunk repeats overlap audio before its first speech interval.
    assert plans[1].start_ms == 6000


def test_uniform_fallback_covers_duration_with_overlap() -> None:
    plans, debug = plan_chunks_with_debug([], 15_000, _limits(max_duration_ms=6000))
    assert debug["mode"] == "uniform"
    assert len(plans) == 3
    assert plans[0].start_ms == 0
    assert plans[-1].end_ms == 15_000
    for prev, nxt in zip(plans, plans[1:]):
        assert nxt.start_ms < prev.end_ms
    assert [(p.start_ms, p.end_ms) for p in plans] == [(0, 6250), (5750, 12250), (11750, 15000)]


def test_non_positive_duration_yields_empty_plan() -> None:
    assert plan_chunks([_seg(0, 1000)], 0, _limits()) == []
    assert plan_chunks([], -5, _limits()) == []


def test_single_long_interval_is_pre_split() -> None:
    plans = plan_chunks([_seg(0, 25_000)], 25_000, _limits())
    assert [(p.start_ms, p.end_ms) for p in plans] == [(0, 10_000), (9500, 20_000), (19_500, 25_000)]


def test_byte_limit_binds_when_tighter_than_duration() -> None:
    max_bytes = 44 + 2 * 16000 * 2  # ~2 seconds of 16-bit mono audio
    limits = _limits(max_duration_ms=60_000, max_bytes=max_bytes)
    assert limits.byte_limited_ms < 2000
    plans = plan_chunks([_seg(0, 9000)], 9000, limits)
    assert len(plans) >= 5
    for plan in plans:
        assert estimate_wav_bytes(plan.duration_ms, 16000, 2) <= max_bytes


def test_plans_respect_limits_and_have_dense_indices() -> None:
    limits = _limits(max_duration_ms=4000, max_bytes=44 + 3 * 16000 * 2, min_chunk_ms=800)
    segments = [_seg(i * 1700, i * 1700 + 900 + (i % 4) * 350) for i in range(25)]
    duration = 25 * 1700 + 2000
    plans = plan_chunks(segments, duration, limits)
    assert [p.index for p in plans] == list(range(len(plans)))
    for plan in plans:
        assert plan.end_ms > plan.start_ms
        assert plan.duration_ms <= limits.max_duration_ms + limits.overlap_ms
        assert estimate_wav_bytes(plan.duration_ms, 16000, 2) <= limits.max_bytes
    covered_speech_end = max(s.end_ms for s in segments)
    assert plans[-1].end_ms >= covered_speech_end


def test_short_trailing_chunk_merges_into_preceding_when_it_fits() -> None:
    plans = plan_chunks([_seg(0, 9800), _seg(9900, 10_200)], 12_000, _limits(min_chunk_ms=2000))
    assert [(p.start_ms, p.end_ms) for p in plans] == [(0, 10_200)]


def test_short_chunk_kept_when_merge_would_break_limits() -> None:
    plans = plan_chunks([_seg(0, 9800), _seg(15_000, 15_500)], 16_000, _limits(min_chunk_ms=2000))
    assert [(p.start_ms, p.end_ms) for p in plans] == [(0, 9800), (14_500, 15_500)]


def test_byte_helpers_account_for_header() -> None:
    assert estimate_wav_bytes(0, 16000, 2) == 46
    assert estimate_wav_bytes(1000, 16000, 2) == 44 + 16001 * 2
    ms = max_duration_ms_for_bytes(44 + 16001 * 2, 16000, 2)
    assert ms == 1000
    assert estimate_wav_bytes(ms, 16000, 2) <= 44 + 16001 * 2
    assert max_duration_ms_for_bytes(44, 16000, 2) == 0


def test_build_uniform_chunks_handles_remainder() -> None:
    chunks = build_uniform_chunks(10_100, _limits(max_duration_ms=5000))
    assert chunks[0] == [0, 5250]
    assert chunks[-1][1] == 10_100
