from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Sequence, Tuple

import pytest

from kaiwa_partner.controller import TurnController
from kaiwa_partner.models import ChatSession, Fragment, Message, TranscriptState
from kaiwa_partner.player import Utterance


async def settle(rounds: int = 10) -> None:
    """Let callbacks scheduled with call_soon and freshly spawned tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeRecognizer:
    def __init__(self, log: Optional[List[Tuple[str, Any]]] = None) -> None:
        self.log = log if log is not None else []
        self.sink: Any = None
        self.starts = 0
        self.stops = 0
        self.locale: Optional[str] = None

    def start(self, sink: Any, *, locale: str) -> None:
        self.starts += 1
        self.sink = sink
        self.locale = locale
        self.log.append(("capture.start", None))

    def stop(self) -> None:
        self.stops += 1
        self.log.append(("capture.stop", None))

    def emit(self, results: Sequence[Fragment], index: int = 0) -> None:
        self.sink.on_results(tuple(results), index)

    def fail(self, code: str, detail: Optional[str] = None) -> None:
        self.sink.on_error(code, detail)

    def end(self) -> None:
        self.sink.on_end()


class FakeSynthesizer:
    def __init__(self, log: Optional[List[Tuple[str, Any]]] = None) -> None:
        self.log = log if log is not None else []
        self.sink: Any = None
        self.spoken: List[Utterance] = []
        self.cancelled: List[Utterance] = []

    def speak(self, utterance: Utterance, sink: Any) -> None:
        self.sink = sink
        self.spoken.append(utterance)
        self.log.append(("speak", utterance.text))

    def cancel(self, utterance: Utterance) -> None:
        self.cancelled.append(utterance)
        self.log.append(("cancel", utterance.text))

    @property
    def last(self) -> Utterance:
        return self.spoken[-1]

    def start_last(self) -> None:
        self.sink.on_start(self.last)

    def finish_last(self) -> None:
        self.sink.on_start(self.last)
        self.sink.on_end(self.last)

    def fail_last(self, detail: str) -> None:
        self.sink.on_error(self.last, detail)


class FakePermission:
    def __init__(self, error: Optional[BaseException] = None) -> None:
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.checks = 0

    async def check(self) -> None:
        self.checks += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error


class FakeChatClient:
    def __init__(self, reply: str = "いいですね！", error: Optional[BaseException] = None) -> None:
        self.reply = reply
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[Tuple[str, ChatSession]] = []

    def create_session(self) -> ChatSession:
        return ChatSession(conversation_id="test-session", system_prompt="be kind")

    async def send_user_utterance(self, text: str, session: ChatSession) -> str:
        self.calls.append((text, session))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply


class RecordingView:
    def __init__(self) -> None:
        self.states: List[Any] = []
        self.transcripts: List[TranscriptState] = []
        self.messages: List[Message] = []
        self.errors: List[Optional[str]] = []

    def on_state(self, state: Any) -> None:
        self.states.append(state)

    def on_transcript(self, transcript: TranscriptState) -> None:
        self.transcripts.append(transcript)

    def on_message(self, message: Message) -> None:
        self.messages.append(message)

    def on_error(self, message: Optional[str]) -> None:
        self.errors.append(message)


@pytest.fixture
def log() -> List[Tuple[str, Any]]:
    return []


@pytest.fixture
def recognizer(log: List[Tuple[str, Any]]) -> FakeRecognizer:
    return FakeRecognizer(log)


@pytest.fixture
def synthesizer(log: List[Tuple[str, Any]]) -> FakeSynthesizer:
    return FakeSynthesizer(log)


@pytest.fixture
def permission() -> FakePermission:
    return FakePermission()


@pytest.fixture
def chat_client() -> FakeChatClient:
    return FakeChatClient()


@pytest.fixture
def view() -> RecordingView:
    return RecordingView()


@pytest.fixture
def make_controller(recognizer, synthesizer, permission, chat_client, view):
    def factory(**overrides: Any) -> TurnController:
        options = dict(
            chat_client=chat_client,
            recognizer=recognizer,
            synthesizer=synthesizer,
            permission=permission,
            view=view,
            greeting=None,
        )
        options.update(overrides)
        return TurnController(**options)

    return factory
