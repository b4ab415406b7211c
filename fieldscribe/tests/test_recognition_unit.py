import asyncio

from fieldscribe.asr.recognition import (
    RecognitionController,
    RecognitionEvent,
    RecognitionState,
    SpeechRecognizer,
)


class _FakeRecognizer(SpeechRecognizer):
    def __init__(self, *, fail_start_after: int | None = None):
        self.calls: list[str] = []
        self.language = ""
        self._fail_start_after = fail_start_after

    def start(self) -> None:
        self.calls.append("start")
        starts = self.calls.count("start")
        if self._fail_start_after is not None and starts > self._fail_start_after:
            raise RuntimeError("microphone busy")

    def stop(self) -> None:
        self.calls.append("stop")

    def set_language(self, language: str) -> None:
        self.language = language
        self.calls.append(f"lang:{language}")


def _drain(controller: RecognitionController, events: list[RecognitionEvent]) -> None:
    for event in events:
        controller.post(event)
    controller.close()
    asyncio.run(controller.run())


def test_results_route_final_and_interim_text() -> None:
    finals: list[str] = []
    interims: list[str] = []
    controller = RecognitionController(
        _FakeRecognizer(), on_final=finals.append, on_interim=interims.append
    )
    controller.start()
    _drain(
        controller,
        [
            RecognitionEvent("result", interim_text="hel"),
            RecognitionEvent("result", final_text="hello", interim_text=""),
        ],
    )
    assert finals == ["hello"]
    assert interims == ["hel", ""]


def test_end_event_restarts_only_while_active() -> None:
    recognizer = _FakeRecognizer()
    controller = RecognitionController(recognizer)
    controller.start()
    _drain(controller, [RecognitionEvent("end")])
    assert recognizer.calls == ["start", "start"]
    assert controller.state is RecognitionState.ACTIVE

    stopped = _FakeRecognizer()
    idle = RecognitionController(stopped)
    idle.start()
    idle.stop()
    _drain(idle, [RecognitionEvent("end")])
    assert stopped.calls == ["start", "stop"]
    assert idle.state is RecognitionState.STOPPED


def test_error_is_reported_then_engine_restarted() -> None:
    errors: list[tuple[str, str]] = []
    recognizer = _FakeRecognizer()
    controller = RecognitionController(recognizer, on_error=lambda kind, msg: errors.append((kind, msg)))
    controller.start()
    _drain(controller, [RecognitionEvent("error", error="network")])
    assert errors == [("error", "network")]
    assert recognizer.calls == ["start", "stop", "start"]


def test_failed_restart_is_reported_as_restart_error() -> None:
    errors: list[tuple[str, str]] = []
    recognizer = _FakeRecognizer(fail_start_after=1)
    controller = RecognitionController(recognizer, on_error=lambda kind, msg: errors.append((kind, msg)))
    controller.start()
    _drain(controller, [RecognitionEvent("end")])
    assert errors == [("restart", "microphone busy")]


def test_start_and_stop_are_idempotent() -> None:
    recognizer = _FakeRecognizer()
    controller = RecognitionController(recognizer)
    controller.start()
    controller.start()
    controller.stop()
    controller.stop()
    assert recognizer.calls == ["start", "stop"]


def test_language_change_while_active_cycles_engine() -> None:
    recognizer = _FakeRecognizer()
    controller = RecognitionController(recognizer)
    controller.start()
    controller.set_language("de-DE")
    _drain(controller, [RecognitionEvent("end")])
    assert recognizer.language == "de-DE"
    assert recognizer.calls == ["start", "lang:de-DE", "stop", "start"]
    assert controller.is_active
