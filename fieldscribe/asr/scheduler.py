"""
Bounded-concurrency upload scheduling with prompt carry-over.

Design intent:
- Keep at most ``concurrency`` requests in flight; network latency is the bottleneck.
- Default to a prompt chain: chunk i starts only after chunk i-1 resolved, so its prompt is the
  tail of everything merged so far.
- Fail a slot, never the batch, on service errors; retries belong to the orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Optional

from fieldscribe.asr.merge import DEFAULT_MAX_TOKENS, DEFAULT_MIN_CHARS, merge_texts, tail_prompt_source
from fieldscribe.asr.models import ChunkPlan, ChunkResult
from fieldscribe.internal_core.errors import TranscriptionServiceError

logger = logging.getLogger(__name__)

TranscribeFn = Callable[[ChunkPlan, str], Awaitable[str]]

UPSTREAM_FAILED = "UPSTREAM_FAILED"


class PromptTracker:
    """Merged-text-so-far; the only state shared between upload workers."""

    def __init__(
        self,
        tail_chars: int,
        *,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        min_chars: int = DEFAULT_MIN_CHARS,
    ):
        self._tail_chars = tail_chars
        self._max_tokens = max_tokens
        self._min_chars = min_chars
        self._merged = ""

    @property
    def value(self) -> str:
        return self._merged

    def append(self, text: str) -> None:
        if not text or not text.strip():
            return
        self._merged = merge_texts(
            self._merged, text, max_tokens=self._max_tokens, min_chars=self._min_chars
        )

    def prompt(self) -> str:
        return tail_prompt_source(self._merged, self._tail_chars)


async def run_uploads(
    chunks: Sequence[ChunkPlan],
    transcribe_fn: TranscribeFn,
    *,
    concurrency: int,
    prompt_tail_chars: int = 200,
    prompt_chain: bool = True,
    on_result: Optional[Callable[[ChunkResult], None]] = None,
    tracker: Optional[PromptTracker] = None,
) -> list[ChunkResult]:
    """
    Transcribe every chunk and return one result per chunk in chunk order.

    ``TranscriptionServiceError`` fails only its own slot. In prompt-chain mode the chunks after
    a failed one are resolved as ``UPSTREAM_FAILED`` without calling the service. Any other
    exception cancels the remaining workers and propagates.
    """
    ordered = sorted(chunks, key=lambda c: c.index)
    if not ordered:
        return []

    tracker = tracker or PromptTracker(prompt_tail_chars)
    results: list[Optional[ChunkResult]] = [None] * len(ordered)
    resolved = [asyncio.Event() for _ in ordered]
    state = {"next": 0, "failed_at": None}

    def _finish(slot: int, result: ChunkResult) -> None:
        results[slot] = result
        resolved[slot].set()
        if on_result is not None:
            on_result(result)

    async def _process(slot: int) -> None:
        chunk = ordered[slot]
        prompt = ""
        if prompt_chain:
            if slot > 0:
                await resolved[slot - 1].wait()
            failed_at = state["failed_at"]
            if failed_at is not None and failed_at < slot:
                _finish(
                    slot,
                    ChunkResult(
                        index=chunk.index,
                        start_ms=chunk.start_ms,
                        end_ms=chunk.end_ms,
                        error=f"chunk {failed_at} failed earlier in the prompt chain",
                        error_code=UPSTREAM_FAILED,
                    ),
                )
                return
            prompt = tracker.prompt()

        try:
            text = await transcribe_fn(chunk, prompt)
        except TranscriptionServiceError as e:
            logger.warning(
                "Chunk %s failed: provider=%s code=%s status=%s request_id=%s",
                chunk.index,
                e.provider_name,
                e.code,
                e.status,
                e.request_id,
            )
            if state["failed_at"] is None or slot < state["failed_at"]:
                state["failed_at"] = slot
            _finish(
                slot,
                ChunkResult(
                    index=chunk.index,
                    start_ms=chunk.start_ms,
                    end_ms=chunk.end_ms,
                    error=e.message,
                    error_code=e.code,
                ),
            )
            return

        text = (text or "").strip()
        if prompt_chain:
            tracker.append(text)
        _finish(
            slot,
            ChunkResult(index=chunk.index, start_ms=chunk.start_ms, end_ms=chunk.end_ms, text=text),
        )

    async def _worker() -> None:
        while True:
            slot = state["next"]
            if slot >= len(ordered):
                return
            state["next"] = slot + 1
            await _process(slot)

    n_workers = max(1, min(int(concurrency or 1), len(ordered)))
    tasks = [asyncio.create_task(_worker()) for _ in range(n_workers)]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    return [r for r in results if r is not None]
