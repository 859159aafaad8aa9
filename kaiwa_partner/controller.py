"""Core orchestration for the practice partner: the turn controller."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Deque, List, Optional, Sequence, Set

from .capture import CaptureErrorKind, SpeechCaptureSession
from .exceptions import CaptureStartFailed, CaptureUnavailable, PermissionDenied, ReplyTimeout, SynthesisUnavailable
from .interfaces import ChatClient, ConversationView, MicrophonePermission, RecognitionEngine, SynthesisEngine
from .models import ChatSession, FragmentBatch, Message, TranscriptState, TurnState
from .player import Utterance, UtterancePlayer
from .transcript import TranscriptAccumulator
from .turns import (
    AppendMessage,
    CancelUtterance,
    CaptureEnded,
    CaptureFailed,
    CaptureRejected,
    CaptureStarted,
    ClearError,
    ConfigurationFailed,
    ControllerState,
    Effect,
    Event,
    InitializationFailed,
    Initialized,
    ReplyFailed,
    ReplyReceived,
    ResetTranscript,
    SetError,
    Speak,
    StartCapture,
    StopCapture,
    SubmitTranscript,
    ToggleRequested,
    UtteranceFailed,
    UtteranceFinished,
    transition,
)

logger = logging.getLogger(__name__)

DEFAULT_GREETING = "こんにちは！私はあなたのAI日本語練習パートナーです。今日の調子はどうですか？"
DEFAULT_FALLBACK_REPLY = "申し訳ありません、問題が発生しました。もう一度試していただけますか？"

CAPTURE_ERROR_MESSAGES = {
    CaptureErrorKind.NO_SPEECH: "何も聞こえませんでした。もう一度話してみてください。",
    CaptureErrorKind.AUDIO_CAPTURE: "音声キャプチャエラー。マイクを確認してください。",
    CaptureErrorKind.PERMISSION_DENIED: "マイクへのアクセスが拒否されました。マイクの許可を有効にしてください。",
}
CAPTURE_UNAVAILABLE_MESSAGE = "音声認識はこの環境では利用できません。"
CAPTURE_START_MESSAGE = "録音を開始できませんでした。マイクを確認してください。"
SYNTHESIS_UNAVAILABLE_MESSAGE = "Text-to-Speech is not supported on this platform."


class TurnController:
    """
    Runs the turn-taking loop: listen, submit, speak, repeat.

    All decisions are made by :func:`kaiwa_partner.turns.transition`; this class
    owns the collaborators and executes the effects it returns. Every callback is
    expected on the event loop thread, so events are processed one at a time.

    Usage:
        controller = TurnController(
            chat_client=HttpChatClient("http://localhost:8000", api_key="..."),
            recognizer=ConsoleRecognizer(),
            synthesizer=ConsoleTextToSpeech(),
            permission=AlwaysGrantedPermission(),
            view=ConsoleView(),
        )
        await controller.initialize()
        controller.toggle()  # start listening
        controller.toggle()  # stop; the reply is spoken once capture ends
    """

    def __init__(
        self,
        *,
        chat_client: ChatClient,
        recognizer: Optional[RecognitionEngine],
        synthesizer: Optional[SynthesisEngine],
        permission: MicrophonePermission,
        view: Optional[ConversationView] = None,
        locale: str = "ja-JP",
        greeting: Optional[str] = DEFAULT_GREETING,
        fallback_reply: str = DEFAULT_FALLBACK_REPLY,
        reply_timeout: Optional[float] = None,
        separator: str = " ",
    ) -> None:
        self._chat_client = chat_client
        self._recognizer = recognizer
        self._permission = permission
        self._view = view
        self._locale = locale
        self._greeting = greeting
        self._fallback_reply = fallback_reply
        self._reply_timeout = reply_timeout

        self._state = ControllerState()
        self._transcript = TranscriptAccumulator(separator)
        self._player = UtterancePlayer(synthesizer, listener=self, locale=locale)
        self._capture: Optional[SpeechCaptureSession] = None
        self._speaking: Optional[Utterance] = None
        self._session: Optional[ChatSession] = None
        self._messages: List[Message] = []
        self._tasks: Set[asyncio.Task] = set()
        self._pending: Deque[Event] = deque()
        self._dispatching = False

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def turn(self) -> TurnState:
        return self._state.turn

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    @property
    def transcript(self) -> TranscriptState:
        return self._transcript.state

    @property
    def messages(self) -> Sequence[Message]:
        """Read-only message history accumulated during the session."""
        return tuple(self._messages)

    @property
    def session(self) -> Optional[ChatSession]:
        return self._session

    async def initialize(self) -> None:
        """Create the conversation session and greet the user."""
        try:
            self._session = self._chat_client.create_session()
        except Exception as exc:
            logger.exception("Initialization failed: %s", exc)
            self.dispatch(InitializationFailed(f"Initialization failed: {exc}"))
            return
        logger.info("Session %s ready.", self._session.conversation_id)
        self.dispatch(Initialized(self._greeting))

    def halt(self, message: str) -> None:
        """Enter the terminal error state (missing configuration)."""
        logger.error("Configuration error: %s", message)
        self.dispatch(ConfigurationFailed(message))

    def toggle(self) -> None:
        """The single user intent: start or stop recording, or barge in."""
        self.dispatch(ToggleRequested())

    async def close(self) -> None:
        """Stop capture and speech and wait for outstanding work to unwind."""
        if self._capture is not None:
            self._capture.stop()
        self._speaking = None
        self._player.cancel()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def dispatch(self, event: Event) -> None:
        """Feed an event to the transition function and run its effects."""
        self._pending.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._pending:
                self._step(self._pending.popleft())
        finally:
            self._dispatching = False

    def _step(self, event: Event) -> None:
        previous = self._state
        result = transition(previous, event)
        self._state = result.state
        for effect in result.effects:
            self._run(effect)
        if self._state != previous:
            logger.debug(
                "%s: %s -> %s",
                type(event).__name__,
                previous.turn.value,
                self._state.turn.value,
            )
            if self._view is not None:
                self._view.on_state(self._state)

    def _run(self, effect: Effect) -> None:
        if isinstance(effect, CancelUtterance):
            self._speaking = None
            self._player.cancel()
        elif isinstance(effect, ResetTranscript):
            self._transcript.reset()
            self._show_transcript()
        elif isinstance(effect, StartCapture):
            self._start_capture()
        elif isinstance(effect, StopCapture):
            if self._capture is not None:
                self._capture.stop()
        elif isinstance(effect, AppendMessage):
            message = Message(text=effect.text, sender=effect.sender)
            self._messages.append(message)
            if self._view is not None:
                self._view.on_message(message)
        elif isinstance(effect, SubmitTranscript):
            self._spawn(self._submit(effect.text))
        elif isinstance(effect, Speak):
            self._speak(effect.text)
        elif isinstance(effect, SetError):
            if self._view is not None:
                self._view.on_error(effect.message)
        elif isinstance(effect, ClearError):
            if self._view is not None:
                self._view.on_error(None)
        else:  # pragma: no cover - exhaustive over Effect
            raise TypeError(f"Unknown effect: {effect!r}")

    def _start_capture(self) -> None:
        previous = self._capture
        if previous is not None and previous.active:
            previous.stop()
        session = SpeechCaptureSession(
            self._recognizer,
            permission=self._permission,
            listener=self,
            locale=self._locale,
        )
        self._capture = session
        self._spawn(self._open_capture(session))

    async def _open_capture(self, session: SpeechCaptureSession) -> None:
        try:
            await session.start()
        except CaptureUnavailable as exc:
            logger.warning("Capture unavailable: %s", exc)
            message = CAPTURE_UNAVAILABLE_MESSAGE
        except PermissionDenied as exc:
            logger.warning("Microphone permission denied: %s", exc)
            message = CAPTURE_ERROR_MESSAGES[CaptureErrorKind.PERMISSION_DENIED]
        except CaptureStartFailed as exc:
            logger.error("Could not start recognition: %s", exc)
            message = CAPTURE_START_MESSAGE
        else:
            if session is self._capture:
                self.dispatch(CaptureStarted())
            return
        if session is self._capture:
            self.dispatch(CaptureRejected(message))

    async def _submit(self, text: str) -> None:
        try:
            reply = await self._request_reply(text)
        except Exception as exc:
            logger.error("AI response error: %s", exc)
            self.dispatch(ReplyFailed(f"Error getting AI response: {str(exc) or 'Unknown error'}", self._fallback_reply))
            return
        self.dispatch(ReplyReceived(reply))

    async def _request_reply(self, text: str) -> str:
        if self._session is None:
            raise RuntimeError("TurnController.initialize() has not created a session.")
        request = self._chat_client.send_user_utterance(text, self._session)
        if self._reply_timeout is None:
            return await request
        try:
            return await asyncio.wait_for(request, timeout=self._reply_timeout)
        except asyncio.TimeoutError as exc:
            raise ReplyTimeout(f"no reply within {self._reply_timeout}s") from exc

    def _speak(self, text: str) -> None:
        try:
            self._player.speak(text)
        except SynthesisUnavailable as exc:
            logger.warning("%s", exc)
            self._speaking = None
            self.dispatch(UtteranceFailed(SYNTHESIS_UNAVAILABLE_MESSAGE))

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _show_transcript(self) -> None:
        if self._view is not None:
            self._view.on_transcript(self._transcript.state)

    # CaptureListener

    def on_capture_fragments(self, session: SpeechCaptureSession, batch: FragmentBatch) -> None:
        if session is not self._capture or self._state.turn is not TurnState.LISTENING:
            return
        self._transcript.apply(batch)
        self._show_transcript()

    def on_capture_error(self, session: SpeechCaptureSession, kind: CaptureErrorKind, detail: Optional[str]) -> None:
        if session is not self._capture:
            return
        message = CAPTURE_ERROR_MESSAGES.get(kind) or f"音声認識エラー: {detail}"
        self.dispatch(CaptureFailed(message))

    def on_capture_ended(self, session: SpeechCaptureSession) -> None:
        if session is not self._capture:
            return
        self.dispatch(CaptureEnded(self._transcript.finalized))

    # PlayerListener

    def on_utterance_queued(self, utterance: Utterance) -> None:
        self._speaking = utterance

    def on_utterance_start(self, utterance: Utterance) -> None:
        logger.debug("Speaking utterance %s.", utterance.id)

    def on_utterance_end(self, utterance: Utterance) -> None:
        if utterance is not self._speaking:
            return
        self._speaking = None
        self.dispatch(UtteranceFinished())

    def on_utterance_error(self, utterance: Utterance, detail: str) -> None:
        if utterance is not self._speaking:
            return
        self._speaking = None
        self.dispatch(UtteranceFailed(f"Text-to-speech error: {detail}"))
