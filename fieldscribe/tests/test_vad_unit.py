import numpy as np
import pytest

from fieldscribe.asr.models import PcmBuffer
from fieldscribe.asr.vad import (
    SpeechStateTracker,
    VADParams,
    detect_speech_segments,
    detect_speech_segments_with_debug,
    energy_speech_probabilities,
)
from fieldscribe.internal_core.asr.classifier import SpeechClassifier, VADSession
from fieldscribe.internal_core.errors import ClassifierInferenceError, ClassifierUnavailable

SR = 16000


def _tone(seconds: float, amp: float = 0.5, freq: float = 440.0) -> np.ndarray:
    t = np.arange(int(seconds * SR)) / SR
    return (amp * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def _silence(seconds: float) -> np.ndarray:
    return np.zeros(int(seconds * SR), dtype=np.float32)


def _feed(tracker: SpeechStateTracker, pattern: list[tuple[float, int]], frame_ms: int = 10) -> list[tuple[float, float]]:
    t = 0
    for probability, duration_ms in pattern:
        for _ in range(duration_ms // frame_ms):
            tracker.push(probability, t, t + frame_ms)
            t += frame_ms
    return [(s.start_ms, s.end_ms) for s in tracker.finish()]


class _RmsClassifier(SpeechClassifier):
    def __init__(self, fail_after: int | None = None, error: Exception | None = None):
        self.calls = 0
        self.resets = 0
        self._fail_after = fail_after
        self._error = error or ClassifierInferenceError("window failed")

    def reset(self) -> None:
        self.resets += 1

    def probability(self, window: np.ndarray) -> float:
        self.calls += 1
        if self._fail_after is not None and self.calls > self._fail_after:
            raise self._error
        assert window.shape[0] == 512
        return 1.0 if float(np.sqrt(np.mean(window * window))) > 0.05 else 0.0

    def name(self) -> str:
        return "rms_stub"


def test_tracker_emits_segment_after_min_silence() -> None:
    tracker = SpeechStateTracker(VADParams())
    assert _feed(tracker, [(1.0, 500), (0.0, 500)]) == [(0, 500)]


def test_tracker_discards_speech_shorter_than_min_speech() -> None:
    tracker = SpeechStateTracker(VADParams(min_speech_ms=250))
    assert _feed(tracker, [(0.9, 100), (0.0, 500)]) == []


def test_tracker_bridges_gaps_shorter_than_min_silence() -> None:
    tracker = SpeechStateTracker(VADParams(min_silence_ms=100))
    assert _feed(tracker, [(1.0, 300), (0.0, 50), (1.0, 350), (0.0, 300)]) == [(0, 700)]


def test_tracker_force_closes_at_max_speech_without_gap() -> None:
    tracker = SpeechStateTracker(VADParams(max_speech_ms=1000))
    assert _feed(tracker, [(1.0, 2500)]) == [(0, 1000), (1000, 2000), (2000, 2500)]


def test_tracker_closes_open_segment_at_stream_end() -> None:
    tracker = SpeechStateTracker(VADParams())
    assert _feed(tracker, [(0.0, 200), (1.0, 400)]) == [(200, 600)]


def test_energy_detection_finds_tone_between_silences() -> None:
    pcm = PcmBuffer(np.concatenate([_silence(1.0), _tone(1.0), _silence(1.0)]))
    segments, debug = detect_speech_segments_with_debug(pcm, VADParams())
    assert debug["method"] == "energy"
    assert len(segments) == 1
    assert segments[0].start_ms == pytest.approx(1000, abs=64)
    assert segments[0].end_ms == pytest.approx(2000, abs=64)


def test_all_silence_and_empty_buffers_return_no_segments() -> None:
    assert detect_speech_segments(PcmBuffer(_silence(2.0)), VADParams()) == []
    assert detect_speech_segments(PcmBuffer(np.zeros(0, dtype=np.float32)), VADParams()) == []
    probs = energy_speech_probabilities(PcmBuffer(_silence(0.5)), window_samples=512, peak_ratio=0.2)
    assert probs.shape[0] == 16 and float(probs.max()) == 0.0


def test_classifier_is_used_when_available() -> None:
    classifier = _RmsClassifier()
    pcm = PcmBuffer(np.concatenate([_silence(0.5), _tone(1.0), _silence(0.5)]))
    segments, debug = detect_speech_segments_with_debug(
        pcm, VADParams(), session=VADSession.from_classifier(classifier)
    )
    assert debug["method"] == "rms_stub"
    assert classifier.resets == 1
    assert classifier.calls == debug["windows"]
    assert len(segments) == 1


def test_unavailable_classifier_falls_back_to_energy_and_loads_once() -> None:
    loads = 0

    def loader() -> SpeechClassifier:
        nonlocal loads
        loads += 1
        raise ClassifierUnavailable("torch missing")

    session = VADSession(loader=loader)
    assert not session.loaded
    pcm = PcmBuffer(np.concatenate([_silence(0.5), _tone(1.0), _silence(0.5)]))
    for _ in range(2):
        segments, debug = detect_speech_segments_with_debug(pcm, VADParams(), session=session)
        assert debug["method"] == "energy"
        assert debug["fallback_reason"] == "VAD_UNAVAILABLE"
        assert len(segments) == 1
    assert loads == 1
    assert session.loaded
    with pytest.raises(ClassifierUnavailable):
        session.classifier()


def test_inference_failure_reruns_whole_buffer_with_energy() -> None:
    pcm = PcmBuffer(np.concatenate([_silence(0.5), _tone(1.0), _silence(0.5), _tone(1.0)]))
    expected = detect_speech_segments(pcm, VADParams())
    session = VADSession.from_classifier(_RmsClassifier(fail_after=20))
    segments, debug = detect_speech_segments_with_debug(pcm, VADParams(), session=session)
    assert debug["method"] == "energy"
    assert debug["fallback_reason"] == "VAD_INFERENCE_FAILED"
    assert segments == expected


def test_unexpected_classifier_error_reruns_whole_buffer_with_energy() -> None:
    pcm = PcmBuffer(np.concatenate([_silence(0.5), _tone(1.0), _silence(0.5)]))
    expected = detect_speech_segments(pcm, VADParams())
    classifier = _RmsClassifier(fail_after=5, error=RuntimeError("runtime session crashed"))
    segments, debug = detect_speech_segments_with_debug(
        pcm, VADParams(), session=VADSession.from_classifier(classifier)
    )
    assert debug["method"] == "energy"
    assert debug["fallback_reason"] == "VAD_INFERENCE_FAILED"
    assert segments == expected


def test_loader_os_error_is_remembered_as_unavailable() -> None:
    loads = 0

    def loader() -> SpeechClassifier:
        nonlocal loads
        loads += 1
        raise OSError("model file unreadable")

    session = VADSession(loader=loader)
    for _ in range(2):
        with pytest.raises(ClassifierUnavailable) as excinfo:
            session.classifier()
        assert "model file unreadable" in excinfo.value.message
    assert loads == 1

    pcm = PcmBuffer(np.concatenate([_silence(0.5), _tone(1.0)]))
    segments, debug = detect_speech_segments_with_debug(pcm, VADParams(), session=session)
    assert debug["method"] == "energy"
    assert debug["fallback_reason"] == "VAD_UNAVAILABLE"
    assert len(segments) == 1


def test_loader_returning_nothing_is_unavailable() -> None:
    session = VADSession(loader=lambda: None)
    with pytest.raises(ClassifierUnavailable):
        session.classifier()
    with pytest.raises(ClassifierUnavailable):
        session.classifier()
