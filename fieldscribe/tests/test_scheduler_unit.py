import asyncio

import pytest

from fieldscribe.asr.models import ChunkPlan, ChunkResult
from fieldscribe.asr.scheduler import UPSTREAM_FAILED, PromptTracker, run_uploads
from fieldscribe.internal_core.errors import TranscriptionServiceError


def _chunks(n: int) -> list[ChunkPlan]:
    return [ChunkPlan(index=i, start_ms=i * 1000, end_ms=i * 1000 + 1500) for i in range(n)]


def test_parallel_mode_preserves_index_order_despite_completion_order() -> None:
    completed: list[int] = []

    async def transcribe(chunk: ChunkPlan, prompt: str) -> str:
        assert prompt == ""
        await asyncio.sleep(0.01 * (5 - chunk.index))
        completed.append(chunk.index)
        return f"text {chunk.index}"

    results = asyncio.run(
        run_uploads(_chunks(5), transcribe, concurrency=5, prompt_chain=False)
    )
    assert [r.index for r in results] == [0, 1, 2, 3, 4]
    assert [r.text for r in results] == [f"text {i}" for i in range(5)]
    assert completed != sorted(completed)


def test_concurrency_cap_is_respected() -> None:
    in_flight = 0
    peak = 0

    async def transcribe(chunk: ChunkPlan, prompt: str) -> str:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return "ok"

    asyncio.run(run_uploads(_chunks(8), transcribe, concurrency=3, prompt_chain=False))
    assert peak == 3


def test_prompt_chain_passes_tail_of_merged_text() -> None:
    seen_prompts: list[str] = []

    async def transcribe(chunk: ChunkPlan, prompt: str) -> str:
        seen_prompts.append(prompt)
        return f"sentence number {chunk.index} ends here."

    results = asyncio.run(
        run_uploads(_chunks(3), transcribe, concurrency=3, prompt_tail_chars=25)
    )
    assert all(r.ok for r in results)
    assert seen_prompts[0] == ""
    assert seen_prompts[1] == "sentence number 0 ends here."[-25:].split(" ", 1)[1]
    assert seen_prompts[2].endswith("1 ends here.")
    assert len(seen_prompts[2]) <= 25


def test_chain_failure_marks_later_chunks_upstream_failed() -> None:
    calls: list[int] = []

    async def transcribe(chunk: ChunkPlan, prompt: str) -> str:
        calls.append(chunk.index)
        if chunk.index == 1:
            raise TranscriptionServiceError("HTTP_500", "boom", "fake", status=500, request_id="req_1")
        return "fine"

    reported: list[ChunkResult] = []
    results = asyncio.run(
        run_uploads(_chunks(4), transcribe, concurrency=2, on_result=reported.append)
    )
    assert calls == [0, 1]
    assert results[0].ok and results[0].text == "fine"
    assert results[1].error_code == "HTTP_500"
    assert results[2].error_code == UPSTREAM_FAILED
    assert results[3].error_code == UPSTREAM_FAILED
    assert sorted(r.index for r in reported) == [0, 1, 2, 3]


def test_parallel_failure_only_fails_its_slot() -> None:
    async def transcribe(chunk: ChunkPlan, prompt: str) -> str:
        if chunk.index == 0:
            raise TranscriptionServiceError("NETWORK", "offline", "fake")
        return "fine"

    results = asyncio.run(run_uploads(_chunks(3), transcribe, concurrency=3, prompt_chain=False))
    assert [r.ok for r in results] == [False, True, True]


def test_unexpected_exception_propagates() -> None:
    async def transcribe(chunk: ChunkPlan, prompt: str) -> str:
        if chunk.index == 2:
            raise KeyError("bug")
        await asyncio.sleep(0)
        return "fine"

    with pytest.raises(KeyError):
        asyncio.run(run_uploads(_chunks(4), transcribe, concurrency=2))


def test_empty_chunk_list_returns_empty_results() -> None:
    async def transcribe(chunk: ChunkPlan, prompt: str) -> str:
        raise AssertionError("should not be called")

    assert asyncio.run(run_uploads([], transcribe, concurrency=3)) == []


def test_prompt_tracker_merges_overlap_before_taking_tail() -> None:
    tracker = PromptTracker(200)
    tracker.append("The quick brown fox jumps")
    tracker.append("brown fox jumps over the lazy dog")
    tracker.append("   ")
    assert tracker.value == "The quick brown fox jumps over the lazy dog"
    assert tracker.prompt() == tracker.value
