"""
Continuous speech recognition controller.

Design intent:
- Model the restart-on-end loop as an explicit STOPPED/ACTIVE state machine.
- Feed engine notifications through one event channel instead of nested callbacks.
- Make stop() the single transition that suppresses every automatic restart.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Literal, Optional

logger = logging.getLogger(__name__)

EventKind = Literal["result", "error", "end"]


class RecognitionState(str, Enum):
    STOPPED = "stopped"
    ACTIVE = "active"


@dataclass(frozen=True)
class RecognitionEvent:
    kind: EventKind
    final_text: str = ""
    interim_text: str = ""
    error: str = ""


class SpeechRecognizer(ABC):
    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def set_language(self, language: str) -> None: ...


class RecognitionController:
    def __init__(
        self,
        recognizer: SpeechRecognizer,
        *,
        on_final: Optional[Callable[[str], None]] = None,
        on_interim: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[str, str], None]] = None,
    ):
        self._recognizer = recognizer
        self._on_final = on_final
        self._on_interim = on_interim
        self._on_error = on_error
        self._state = RecognitionState.STOPPED
        self._events: asyncio.Queue[Optional[RecognitionEvent]] = asyncio.Queue()

    @property
    def state(self) -> RecognitionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is RecognitionState.ACTIVE

    def post(self, event: RecognitionEvent) -> None:
        self._events.put_nowait(event)

    def close(self) -> None:
        self._events.put_nowait(None)

    def start(self) -> None:
        if self.is_active:
            return
        self._state = RecognitionState.ACTIVE
        self._recognizer.start()

    def stop(self) -> None:
        if not self.is_active:
            return
        self._state = RecognitionState.STOPPED
        self._recognizer.stop()

    def set_language(self, language: str) -> None:
        self._recognizer.set_language(language)
        if self.is_active:
            # The resulting "end" event restarts the engine with the new language.
            self._recognizer.stop()

    def _report_error(self, kind: str, message: str) -> None:
        if self._on_error is not None:
            self._on_error(kind, message)

    def _restart(self, *, stop_first: bool) -> None:
        try:
            if stop_first:
                self._recognizer.stop()
            self._recognizer.start()
        except Exception as e:
            logger.warning("Recognizer restart failed: %s", e)
            self._report_error("restart", str(e))

    def _dispatch(self, event: RecognitionEvent) -> None:
        if event.kind == "result":
            if event.final_text and self._on_final is not None:
                self._on_final(event.final_text)
            if self._on_interim is not None:
                self._on_interim(event.interim_text)
        elif event.kind == "error":
            self._report_error("error", event.error)
            if self.is_active:
                self._restart(stop_first=True)
        elif event.kind == "end":
            if self.is_active:
                self._restart(stop_first=False)

    async def run(self) -> None:
        while True:
            event = await self._events.get()
            if event is None:
                return
            self._dispatch(event)
