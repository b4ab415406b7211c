from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class TranscriptionProvider(ABC):
    @abstractmethod
    async def transcribe(
        self,
        audio: bytes,
        *,
        filename: str,
        language: Optional[str] = None,
        prompt: Optional[str] = None,
        content_type: str = "audio/wav",
    ) -> str: ...

    @abstractmethod
    def name(self) -> str: ...
