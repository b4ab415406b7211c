"""
Speech interval detection over decoded PCM.

Design intent:
- Prefer the neural classifier, but never fail a run because it is missing or broken.
- Share one hysteresis state machine between classifier and energy probabilities.
- Return plain intervals; padding and merging belong to the segment normalizer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from fieldscribe.asr.models import PcmBuffer, SpeechInterval
from fieldscribe.internal_core.asr.classifier import SpeechClassifier, VADSession
from fieldscribe.internal_core.config import PipelineConfig
from fieldscribe.internal_core.errors import ClassifierInferenceError, ClassifierUnavailable

logger = logging.getLogger(__name__)

# Buffers whose loudest window is below this RMS are treated as silence.
_SILENCE_PEAK_RMS = 1e-4
_SUPPORTED_WINDOWS = (512, 1024, 1536)


@dataclass(frozen=True)
class VADParams:
    threshold: float = 0.5
    min_speech_ms: float = 250.0
    min_silence_ms: float = 100.0
    max_speech_ms: float = 15 * 60 * 1000.0
    window_samples: int = 512
    energy_peak_ratio: float = 0.2

    @classmethod
    def from_config(cls, cfg: PipelineConfig) -> "VADParams":
        return cls(
            threshold=float(cfg.STT_VAD_THRESHOLD),
            min_speech_ms=float(cfg.STT_VAD_MIN_SPEECH_MS),
            min_silence_ms=float(cfg.STT_VAD_MIN_SILENCE_MS),
            max_speech_ms=float(cfg.STT_VAD_MAX_SPEECH_MS),
            window_samples=int(cfg.STT_VAD_WINDOW_SAMPLES),
            energy_peak_ratio=float(cfg.STT_VAD_ENERGY_PEAK_RATIO),
        )


class SpeechStateTracker:
    """Two-state hysteresis (idle / in speech) fed one window probability at a time."""

    def __init__(self, params: VADParams):
        self._params = params
        self.in_speech = False
        self.segment_start_ms = 0.0
        self.last_speech_ms = float("-inf")
        self.segments: list[SpeechInterval] = []

    def _emit(self, start_ms: float, end_ms: float) -> None:
        if end_ms <= start_ms:
            return
        if end_ms - start_ms < self._params.min_speech_ms:
            return
        self.segments.append(SpeechInterval(start_ms=start_ms, end_ms=end_ms))

    def push(self, probability: float, start_ms: float, end_ms: float) -> None:
        if probability >= self._params.threshold:
            if not self.in_speech:
                self.in_speech = True
                self.segment_start_ms = start_ms
            self.last_speech_ms = end_ms
            if self.last_speech_ms - self.segment_start_ms >= self._params.max_speech_ms:
                # Force-close and keep going from the cut with no gap.
                self.segments.append(
                    SpeechInterval(start_ms=self.segment_start_ms, end_ms=self.last_speech_ms)
                )
                self.segment_start_ms = self.last_speech_ms
            return

        if not self.in_speech:
            return
        if start_ms - self.last_speech_ms < self._params.min_silence_ms:
            return
        self._emit(self.segment_start_ms, self.last_speech_ms)
        self.in_speech = False

    def finish(self) -> list[SpeechInterval]:
        if self.in_speech:
            self._emit(self.segment_start_ms, self.last_speech_ms)
            self.in_speech = False
        return list(self.segments)


def _window_size(value: int) -> int:
    return value if value in _SUPPORTED_WINDOWS else _SUPPORTED_WINDOWS[0]


def _iter_windows(pcm: PcmBuffer, window_samples: int):
    total = pcm.num_samples
    for offset in range(0, total, window_samples):
        end = min(total, offset + window_samples)
        start_ms = offset * 1000.0 / pcm.sample_rate
        end_ms = end * 1000.0 / pcm.sample_rate
        yield pcm.samples[offset:end], start_ms, end_ms


def energy_speech_probabilities(pcm: PcmBuffer, *, window_samples: int, peak_ratio: float) -> np.ndarray:
    """Per-window speech probability from RMS energy relative to the loudest window."""
    window_samples = _window_size(window_samples)
    total = pcm.num_samples
    if total == 0:
        return np.zeros(0, dtype=np.float32)
    n_windows = (total + window_samples - 1) // window_samples
    padded = np.zeros(n_windows * window_samples, dtype=np.float32)
    padded[:total] = pcm.samples
    frames = padded.reshape(n_windows, window_samples)
    counts = np.full(n_windows, window_samples, dtype=np.float32)
    counts[-1] = total - (n_windows - 1) * window_samples
    rms = np.sqrt((frames * frames).sum(axis=1) / counts)
    peak = float(rms.max()) if rms.size else 0.0
    if peak < _SILENCE_PEAK_RMS:
        return np.zeros(n_windows, dtype=np.float32)
    scale = max(peak * max(peak_ratio, 1e-6), 1e-12)
    return np.clip(rms / scale, 0.0, 1.0).astype(np.float32)


def _run_tracker(pcm: PcmBuffer, params: VADParams, probabilities) -> list[SpeechInterval]:
    tracker = SpeechStateTracker(params)
    for probability, (_, start_ms, end_ms) in zip(
        probabilities, _iter_windows(pcm, _window_size(params.window_samples))
    ):
        tracker.push(float(probability), start_ms, end_ms)
    return tracker.finish()


def _classifier_probabilities(pcm: PcmBuffer, classifier: SpeechClassifier, window_samples: int) -> list[float]:
    out: list[float] = []
    try:
        classifier.reset()
        for window, _, _ in _iter_windows(pcm, window_samples):
            if window.shape[0] < window_samples:
                frame = np.zeros(window_samples, dtype=np.float32)
                frame[: window.shape[0]] = window
                window = frame
            out.append(float(classifier.probability(window)))
    except ClassifierInferenceError:
        raise
    except Exception as e:
        raise ClassifierInferenceError(f"{classifier.name()} failed on window {len(out)}: {e}") from e
    return out


def detect_speech_segments_with_debug(
    pcm: PcmBuffer,
    params: VADParams,
    *,
    session: Optional[VADSession] = None,
) -> tuple[list[SpeechInterval], dict[str, Any]]:
    window_samples = _window_size(params.window_samples)
    debug: dict[str, Any] = {
        "window_samples": window_samples,
        "windows": 0,
        "method": "none",
        "fallback_reason": None,
    }
    if pcm.num_samples == 0:
        return [], debug
    debug["windows"] = (pcm.num_samples + window_samples - 1) // window_samples

    if session is not None:
        try:
            classifier = session.classifier()
            probabilities = _classifier_probabilities(pcm, classifier, window_samples)
            segments = _run_tracker(pcm, params, probabilities)
            debug["method"] = classifier.name()
            debug["segments"] = len(segments)
            return segments, debug
        except ClassifierUnavailable as e:
            debug["fallback_reason"] = e.code
        except ClassifierInferenceError as e:
            logger.warning("Speech classifier failed mid-run, using energy fallback: %s", e.message)
            debug["fallback_reason"] = e.code
    else:
        debug["fallback_reason"] = "VAD_DISABLED"

    probabilities = energy_speech_probabilities(
        pcm, window_samples=window_samples, peak_ratio=params.energy_peak_ratio
    )
    segments = _run_tracker(pcm, params, probabilities)
    debug["method"] = "energy"
    debug["segments"] = len(segments)
    return segments, debug


def detect_speech_segments(
    pcm: PcmBuffer,
    params: VADParams,
    *,
    session: Optional[VADSession] = None,
) -> list[SpeechInterval]:
    segments, _ = detect_speech_segments_with_debug(pcm, params, session=session)
    return segments
