import io
import sys
import wave

import numpy as np
import pytest

from fieldscribe.asr.models import PcmBuffer
from fieldscribe.internal_core import audio_utils
from fieldscribe.internal_core.audio_utils import (
    decode_to_pcm,
    encode_wav_bytes,
    encode_wav_chunk,
    slice_pcm,
)
from fieldscribe.internal_core.errors import ChunkEncodingError, DecodeError


def _ramp(n: int) -> np.ndarray:
    return np.linspace(-0.5, 0.5, n, dtype=np.float32)


def test_decode_parses_16k_mono_wav_directly(monkeypatch) -> None:
    monkeypatch.setattr(audio_utils, "_which", lambda cmd: pytest.fail("ffmpeg should not be used"))
    raw = encode_wav_bytes(_ramp(16000))
    pcm = decode_to_pcm(raw, "ramp.wav")
    assert pcm.sample_rate == 16000
    assert pcm.num_samples == 16000
    assert pcm.duration_ms == pytest.approx(1000.0)
    assert float(pcm.samples[0]) == pytest.approx(-0.5, abs=1e-3)
    assert not pcm.samples.flags.writeable


def test_decode_without_ffmpeg_or_miniaudio_raises_decode_error(monkeypatch) -> None:
    monkeypatch.setattr(audio_utils, "_which", lambda cmd: None)
    monkeypatch.setitem(sys.modules, "miniaudio", None)
    with pytest.raises(DecodeError) as excinfo:
        decode_to_pcm(b"ID3not-really-an-mp3", "clip.mp3")
    assert excinfo.value.code == "DECODER_UNAVAILABLE"


def test_decode_rejects_empty_payload() -> None:
    with pytest.raises(DecodeError) as excinfo:
        decode_to_pcm(b"", "empty.wav")
    assert excinfo.value.code == "EMPTY_AUDIO"


def test_encode_chunk_writes_standard_wav_header() -> None:
    pcm = PcmBuffer(_ramp(32000))
    payload = encode_wav_chunk(pcm, 500, 1500, chunk_index=3)
    assert payload[:4] == b"RIFF" and payload[8:12] == b"WAVE"
    assert len(payload) == 44 + 16000 * 2
    with wave.open(io.BytesIO(payload), "rb") as wf:
        assert wf.getnchannels() == 1
        assert wf.getframerate() == 16000
        assert wf.getsampwidth() == 2
        assert wf.getnframes() == 16000


def test_encode_chunk_outside_buffer_raises_encoding_error() -> None:
    pcm = PcmBuffer(_ramp(1600))
    with pytest.raises(ChunkEncodingError) as excinfo:
        encode_wav_chunk(pcm, 5000, 6000, chunk_index=7)
    assert excinfo.value.chunk_index == 7


def test_slice_pcm_uses_floor_start_and_ceil_end() -> None:
    pcm = PcmBuffer(_ramp(1000))
    window = slice_pcm(pcm, 0.03, 1.01)
    # 0.03ms -> sample 0 (floor), 1.01ms -> sample 17 (ceil of 16.16)
    assert window.shape[0] == 17


def test_pcm_buffer_does_not_alias_caller_array() -> None:
    source = _ramp(100)
    pcm = PcmBuffer(source)
    source[0] = 0.9
    assert float(pcm.samples[0]) == pytest.approx(-0.5)
