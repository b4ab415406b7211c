from __future__ import annotations

from typing import Optional

from .base import TranscriptionProvider


class MockTranscriptionProvider(TranscriptionProvider):
    def __init__(self) -> None:
        self._counter = 0
        self.calls: list[dict[str, object]] = []

    async def transcribe(
        self,
        audio: bytes,
        *,
        filename: str,
        language: Optional[str] = None,
        prompt: Optional[str] = None,
        content_type: str = "audio/wav",
    ) -> str:
        self._counter += 1
        self.calls.append(
            {
                "filename": filename,
                "bytes": len(audio),
                "language": language,
                "prompt": prompt,
                "content_type": content_type,
            }
        )
        return f"(mock) simulated transcript for chunk {self._counter}."

    def name(self) -> str:
        return "mock"
