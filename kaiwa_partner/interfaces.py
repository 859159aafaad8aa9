"""Protocol interfaces for dependency injection."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Protocol, Sequence

from .models import ChatSession, Fragment, Message, TranscriptState

if TYPE_CHECKING:
    from .player import Utterance
    from .turns import ControllerState


class RecognitionSink(Protocol):
    """Receives events from a running recognition engine."""

    def on_results(self, results: Sequence[Fragment], result_index: int) -> None:
        """
        Deliver the engine's result list.

        Args:
            results: Every result of the current activation, in order.
            result_index: Cursor of the first result that changed in this event.
        """

    def on_error(self, code: str, detail: Optional[str] = None) -> None:
        """Report a recognition failure using the engine's error code."""

    def on_end(self) -> None:
        """Signal that the engine stopped listening."""


class RecognitionEngine(Protocol):
    """Streaming speech-to-text capability in single-utterance mode."""

    def start(self, sink: RecognitionSink, *, locale: str) -> None:
        """Begin listening and report to ``sink``."""

    def stop(self) -> None:
        """Request graceful termination; ``sink.on_end`` still follows."""


class SynthesisSink(Protocol):
    """Receives events for one utterance."""

    def on_start(self, utterance: "Utterance") -> None: ...

    def on_end(self, utterance: "Utterance") -> None: ...

    def on_error(self, utterance: "Utterance", detail: str) -> None: ...


class SynthesisEngine(Protocol):
    """Cancelable text-to-speech capability."""

    def speak(self, utterance: "Utterance", sink: SynthesisSink) -> None:
        """Start speaking ``utterance`` without blocking the event loop."""

    def cancel(self, utterance: "Utterance") -> None:
        """Stop ``utterance`` immediately."""


class MicrophonePermission(Protocol):
    """Preflight check run before every capture start."""

    async def check(self) -> None:
        """Raise ``PermissionDenied`` or ``CaptureUnavailable`` when capture cannot start."""


class ChatClient(Protocol):
    """Sends user utterances to the conversational backend."""

    def create_session(self) -> ChatSession:
        """Create the long-lived conversational context."""

    async def send_user_utterance(self, text: str, session: ChatSession) -> str:
        """Return the assistant reply for ``text`` within ``session``."""


class ConversationView(Protocol):
    """Presentation layer fed by the turn controller."""

    def on_state(self, state: "ControllerState") -> None: ...

    def on_transcript(self, transcript: TranscriptState) -> None: ...

    def on_message(self, message: Message) -> None: ...

    def on_error(self, message: Optional[str]) -> None: ...
