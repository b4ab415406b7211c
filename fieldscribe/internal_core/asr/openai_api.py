from __future__ import annotations

import logging
from typing import Any, Optional

import openai
from openai import AsyncOpenAI

from ..errors import TranscriptionServiceError
from .base import TranscriptionProvider

logger = logging.getLogger(__name__)


class OpenAITranscriptionProvider(TranscriptionProvider):
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-transcribe",
        timeout_sec: float = 120.0,
        client: Optional[Any] = None,
    ):
        if client is None and not api_key:
            raise TranscriptionServiceError(
                "MISSING_API_KEY",
                "OPENAI_API_KEY is required for the openai transcription provider",
                "openai",
            )
        self._model = model
        # SDK retries are disabled; replanning with smaller chunks is the retry strategy.
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout_sec, max_retries=0)

    @property
    def model(self) -> str:
        return self._model

    async def transcribe(
        self,
        audio: bytes,
        *,
        filename: str,
        language: Optional[str] = None,
        prompt: Optional[str] = None,
        content_type: str = "audio/wav",
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "file": (filename, audio, content_type),
        }
        if language:
            kwargs["language"] = language
        if prompt:
            kwargs["prompt"] = prompt

        try:
            transcript = await self._client.audio.transcriptions.create(**kwargs)
        except openai.APIStatusError as e:
            request_id = getattr(e, "request_id", None)
            logger.error(
                "Transcription failed: model=%s file=%s status=%s request_id=%s",
                self._model,
                filename,
                e.status_code,
                request_id,
            )
            raise TranscriptionServiceError(
                f"HTTP_{e.status_code}",
                f"Transcription request failed ({e.status_code}): {e.message}",
                self.name(),
                status=e.status_code,
                request_id=request_id,
            ) from e
        except openai.APITimeoutError as e:
            logger.error("Transcription timed out: model=%s file=%s", self._model, filename)
            raise TranscriptionServiceError(
                "TIMEOUT", f"Transcription request timed out: {e}", self.name()
            ) from e
        except openai.APIConnectionError as e:
            logger.error(
                "Transcription connection error: model=%s file=%s error=%s",
                self._model,
                filename,
                e,
            )
            raise TranscriptionServiceError(
                "NETWORK", f"Transcription request could not reach the service: {e}", self.name()
            ) from e
        except openai.APIError as e:
            logger.error(
                "Transcription API error: model=%s file=%s type=%s error=%s",
                self._model,
                filename,
                type(e).__name__,
                e,
            )
            raise TranscriptionServiceError(
                "API_ERROR", f"Transcription request failed: {e}", self.name()
            ) from e

        text = getattr(transcript, "text", None)
        if text is None:
            raise TranscriptionServiceError(
                "EMPTY_RESPONSE", "Transcription response did not include text", self.name()
            )
        return str(text).strip()

    def name(self) -> str:
        return "openai"
