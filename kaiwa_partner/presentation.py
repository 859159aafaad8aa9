"""Console rendering of the conversation."""

from __future__ import annotations

import sys
from typing import Optional, TextIO

from .interfaces import ConversationView
from .models import Message, Sender, TranscriptState, TurnState
from .turns import ControllerState

_INDICATORS = {
    TurnState.LISTENING: "聞き取り中...",
    TurnState.SUBMITTING: "考え中...",
    TurnState.SPEAKING: "話しています...",
}


class ConsoleView(ConversationView):
    """
    Prints message bubbles, the live transcript and the current indicator.

    Usage:
        view = ConsoleView()
        controller = TurnController(..., view=view)
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream or sys.stdout
        self._last_transcript = ""

    def on_state(self, state: ControllerState) -> None:
        indicator = _INDICATORS.get(state.turn)
        if indicator:
            self._write(f"[{state.turn.value}] {indicator}")
        elif state.turn is TurnState.IDLE and state.ready:
            self._write("[idle] Press ENTER to talk (or type 'exit' to quit)")

    def on_transcript(self, transcript: TranscriptState) -> None:
        text = transcript.full_text
        if text and text != self._last_transcript:
            self._write(f"  ... {text}...")
        self._last_transcript = text

    def on_message(self, message: Message) -> None:
        label = "you" if message.sender is Sender.USER else "partner"
        stamp = message.timestamp.astimezone().strftime("%H:%M")
        self._write(f"[{label} {stamp}] {message.text}")

    def on_error(self, message: Optional[str]) -> None:
        if message:
            self._write(f"[error] {message}")

    def show_fatal(self, message: str) -> None:
        """Render the blocking configuration error screen."""
        self._write("=" * 60)
        self._write("設定エラー")
        self._write(message)
        self._write("アプリケーション管理者に連絡してください。")
        self._write("=" * 60)

    def _write(self, line: str) -> None:
        print(line, file=self._stream, flush=True)
