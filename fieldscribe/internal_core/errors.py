from __future__ import annotations

from typing import Optional, Sequence


class PipelineError(RuntimeError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class DecodeError(PipelineError):
    def __init__(self, message: str, code: str = "DECODE_FAILED"):
        super().__init__(code, message)


class ClassifierUnavailable(PipelineError):
    def __init__(self, message: str, code: str = "VAD_UNAVAILABLE"):
        super().__init__(code, message)


class ClassifierInferenceError(PipelineError):
    def __init__(self, message: str, code: str = "VAD_INFERENCE_FAILED"):
        super().__init__(code, message)


class ChunkEncodingError(PipelineError):
    def __init__(self, chunk_index: int, message: str, code: str = "CHUNK_ENCODING_FAILED"):
        super().__init__(code, message)
        self.chunk_index = chunk_index


class TranscriptionServiceError(PipelineError):
    def __init__(
        self,
        code: str,
        message: str,
        provider_name: str,
        *,
        status: Optional[int] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(code, message)
        self.provider_name = provider_name
        self.status = status
        self.request_id = request_id


class TranscriptionPipelineError(PipelineError):
    """Every stage of the fallback chain failed; ``errors`` lists ``stage:code`` entries."""

    def __init__(self, message: str, errors: Sequence[str] = ()):
        super().__init__("TRANSCRIPTION_FAILED", message)
        self.errors = list(errors)
