"""
Turn-taking transition function.

``transition(state, event) -> Transition(state, effects)`` is pure: it never
touches audio, the network or the clock. The controller feeds it events and
executes the returned effects in order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional, Tuple, Union

from .models import Sender, TurnState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControllerState:
    """
    Snapshot of the turn controller.

    Attributes:
        turn: Current phase of the conversation loop.
        ready: False until the session handle exists; toggling is ignored until then.
        stopping: A toggle-off was issued and the capture session has not ended yet.
        error: Latest user-facing error, or None.
    """

    turn: TurnState = TurnState.IDLE
    ready: bool = False
    stopping: bool = False
    error: Optional[str] = None

    @property
    def can_toggle(self) -> bool:
        return self.ready and self.turn not in (TurnState.SUBMITTING, TurnState.ERROR)


# Events


@dataclass(frozen=True)
class Initialized:
    greeting: Optional[str] = None


@dataclass(frozen=True)
class InitializationFailed:
    message: str


@dataclass(frozen=True)
class ConfigurationFailed:
    message: str


@dataclass(frozen=True)
class ToggleRequested:
    pass


@dataclass(frozen=True)
class CaptureStarted:
    pass


@dataclass(frozen=True)
class CaptureRejected:
    message: str


@dataclass(frozen=True)
class CaptureFailed:
    message: str


@dataclass(frozen=True)
class CaptureEnded:
    transcript: str


@dataclass(frozen=True)
class ReplyReceived:
    text: str


@dataclass(frozen=True)
class ReplyFailed:
    message: str
    fallback: str


@dataclass(frozen=True)
class UtteranceFinished:
    pass


@dataclass(frozen=True)
class UtteranceFailed:
    message: str


Event = Union[
    Initialized,
    InitializationFailed,
    ConfigurationFailed,
    ToggleRequested,
    CaptureStarted,
    CaptureRejected,
    CaptureFailed,
    CaptureEnded,
    ReplyReceived,
    ReplyFailed,
    UtteranceFinished,
    UtteranceFailed,
]


# Effects


@dataclass(frozen=True)
class CancelUtterance:
    pass


@dataclass(frozen=True)
class ResetTranscript:
    pass


@dataclass(frozen=True)
class StartCapture:
    pass


@dataclass(frozen=True)
class StopCapture:
    pass


@dataclass(frozen=True)
class AppendMessage:
    sender: Sender
    text: str


@dataclass(frozen=True)
class SubmitTranscript:
    text: str


@dataclass(frozen=True)
class Speak:
    text: str


@dataclass(frozen=True)
class SetError:
    message: str


@dataclass(frozen=True)
class ClearError:
    pass


Effect = Union[
    CancelUtterance,
    ResetTranscript,
    StartCapture,
    StopCapture,
    AppendMessage,
    SubmitTranscript,
    Speak,
    SetError,
    ClearError,
]


@dataclass(frozen=True)
class Transition:
    state: ControllerState
    effects: Tuple[Effect, ...] = ()


def _ignored(state: ControllerState, event: Event) -> Transition:
    logger.debug("Ignoring %s in %s.", type(event).__name__, state.turn.value)
    return Transition(state)


def _fail_to_idle(state: ControllerState, message: str) -> Transition:
    return Transition(
        replace(state, turn=TurnState.IDLE, stopping=False, error=message),
        (SetError(message), ResetTranscript()),
    )


def transition(state: ControllerState, event: Event) -> Transition:
    """Compute the next controller state and the side effects to run."""
    turn = state.turn

    if isinstance(event, ConfigurationFailed):
        return Transition(
            ControllerState(turn=TurnState.ERROR, ready=False, error=event.message),
            (SetError(event.message),),
        )

    if turn is TurnState.ERROR:
        return _ignored(state, event)

    if isinstance(event, Initialized):
        if state.ready:
            return _ignored(state, event)
        if event.greeting:
            return Transition(
                replace(state, ready=True, turn=TurnState.SPEAKING),
                (AppendMessage(Sender.SYSTEM, event.greeting), Speak(event.greeting)),
            )
        return Transition(replace(state, ready=True))

    if isinstance(event, InitializationFailed):
        return Transition(replace(state, ready=False, error=event.message), (SetError(event.message),))

    if isinstance(event, ToggleRequested):
        if not state.can_toggle:
            return _ignored(state, event)
        if turn is TurnState.IDLE:
            return Transition(
                replace(state, turn=TurnState.LISTENING, stopping=False),
                (ResetTranscript(), StartCapture()),
            )
        if turn is TurnState.SPEAKING:
            # Barge-in: synthesis is cancelled before capture starts.
            return Transition(
                replace(state, turn=TurnState.LISTENING, stopping=False),
                (CancelUtterance(), ResetTranscript(), StartCapture()),
            )
        if turn is TurnState.LISTENING:
            if state.stopping:
                return _ignored(state, event)
            return Transition(replace(state, stopping=True), (StopCapture(),))
        return _ignored(state, event)

    if isinstance(event, CaptureStarted):
        if turn is not TurnState.LISTENING:
            return _ignored(state, event)
        return Transition(replace(state, error=None), (ClearError(),))

    if isinstance(event, (CaptureRejected, CaptureFailed)):
        if turn is not TurnState.LISTENING:
            return _ignored(state, event)
        return _fail_to_idle(state, event.message)

    if isinstance(event, CaptureEnded):
        if turn is not TurnState.LISTENING:
            return _ignored(state, event)
        text = event.transcript.strip()
        if not text:
            return Transition(replace(state, turn=TurnState.IDLE, stopping=False), (ResetTranscript(),))
        return Transition(
            replace(state, turn=TurnState.SUBMITTING, stopping=False),
            (AppendMessage(Sender.USER, text), ResetTranscript(), SubmitTranscript(text)),
        )

    if isinstance(event, ReplyReceived):
        if turn is not TurnState.SUBMITTING:
            return _ignored(state, event)
        return Transition(
            replace(state, turn=TurnState.SPEAKING),
            (AppendMessage(Sender.SYSTEM, event.text), Speak(event.text)),
        )

    if isinstance(event, ReplyFailed):
        if turn is not TurnState.SUBMITTING:
            return _ignored(state, event)
        return Transition(
            replace(state, turn=TurnState.SPEAKING, error=event.message),
            (SetError(event.message), AppendMessage(Sender.SYSTEM, event.fallback), Speak(event.fallback)),
        )

    if isinstance(event, UtteranceFinished):
        if turn is not TurnState.SPEAKING:
            return _ignored(state, event)
        return Transition(replace(state, turn=TurnState.IDLE))

    if isinstance(event, UtteranceFailed):
        if turn is not TurnState.SPEAKING:
            return _ignored(state, event)
        return Transition(replace(state, turn=TurnState.IDLE, error=event.message), (SetError(event.message),))

    return _ignored(state, event)
