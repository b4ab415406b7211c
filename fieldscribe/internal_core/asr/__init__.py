from __future__ import annotations

from .base import TranscriptionProvider
from .classifier import SileroVADClassifier, SpeechClassifier, VADSession, load_silero_vad
from .mock import MockTranscriptionProvider
from .openai_api import OpenAITranscriptionProvider

__all__ = [
    "TranscriptionProvider",
    "MockTranscriptionProvider",
    "OpenAITranscriptionProvider",
    "SpeechClassifier",
    "SileroVADClassifier",
    "VADSession",
    "load_silero_vad",
]
