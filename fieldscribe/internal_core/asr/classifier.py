from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import numpy as np

from ..errors import ClassifierInferenceError, ClassifierUnavailable

logger = logging.getLogger(__name__)


class SpeechClassifier(ABC):
    @abstractmethod
    def reset(self) -> None: ...

    @abstractmethod
    def probability(self, window: np.ndarray) -> float: ...

    @abstractmethod
    def name(self) -> str: ...


class SileroVADClassifier(SpeechClassifier):
    def __init__(self, model: Any, *, sample_rate: int = 16000):
        self._model = model
        self._sample_rate = int(sample_rate)

    def reset(self) -> None:
        if hasattr(self._model, "reset_states"):
            self._model.reset_states()

    def probability(self, window: np.ndarray) -> float:
        import torch  # type: ignore

        try:
            with torch.no_grad():
                tensor = torch.from_numpy(np.ascontiguousarray(window, dtype=np.float32))
                value = float(self._model(tensor, self._sample_rate).item())
        except Exception as e:
            raise ClassifierInferenceError(f"Silero VAD inference failed: {e}") from e
        return min(1.0, max(0.0, value))

    def name(self) -> str:
        return "silero_vad"


def load_silero_vad(model_path: str = "", *, sample_rate: int = 16000) -> SileroVADClassifier:
    try:
        import torch  # type: ignore
    except ImportError as e:
        raise ClassifierUnavailable(
            "Silero VAD requires the optional dependency `torch`.",
            code="VAD_RUNTIME_MISSING",
        ) from e

    try:
        if model_path:
            model = torch.jit.load(model_path, map_location="cpu")
        else:
            model, _utils = torch.hub.load(
                repo_or_dir="snakers4/silero-vad",
                model="silero_vad",
                force_reload=False,
                trust_repo=True,
            )
        model.eval()
    except Exception as e:
        raise ClassifierUnavailable(f"Failed to load Silero VAD model: {e}") from e
    logger.info("Loaded Silero VAD model from %s", model_path or "torch.hub")
    return SileroVADClassifier(model, sample_rate=sample_rate)


class VADSession:
    """
    Load-once handle for the speech classifier.

    Built once by the caller and passed into speech detection. The first call to
    ``classifier()`` loads the model; later calls reuse it. A failed load is remembered
    and re-raised without retrying.
    """

    def __init__(
        self,
        model_path: str = "",
        *,
        sample_rate: int = 16000,
        loader: Optional[Callable[[], SpeechClassifier]] = None,
    ):
        self._model_path = model_path
        self._sample_rate = sample_rate
        self._loader = loader
        self._lock = threading.Lock()
        self._classifier: Optional[SpeechClassifier] = None
        self._error: Optional[ClassifierUnavailable] = None
        self._loaded = False

    @classmethod
    def from_classifier(cls, classifier: SpeechClassifier) -> "VADSession":
        return cls(loader=lambda: classifier)

    @property
    def loaded(self) -> bool:
        return self._loaded

    def classifier(self) -> SpeechClassifier:
        with self._lock:
            if not self._loaded:
                self._loaded = True
                try:
                    if self._loader is not None:
                        self._classifier = self._loader()
                    else:
                        self._classifier = load_silero_vad(
                            self._model_path, sample_rate=self._sample_rate
                        )
                except ClassifierUnavailable as e:
                    self._error = e
                except Exception as e:
                    self._error = ClassifierUnavailable(f"Speech classifier failed to load: {e}")
                    self._error.__cause__ = e
                if self._error is None and self._classifier is None:
                    self._error = ClassifierUnavailable("Speech classifier loader returned nothing")
                if self._error is not None:
                    logger.warning("Speech classifier unavailable: %s", self._error.message)
            if self._error is not None:
                raise self._error
            return self._classifier
