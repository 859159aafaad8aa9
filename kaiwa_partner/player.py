"""Utterance player: speaks one string at a time and can be cut off."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from .exceptions import SynthesisUnavailable
from .interfaces import SynthesisEngine

logger = logging.getLogger(__name__)

_utterance_ids = itertools.count(1)


@dataclass(eq=False)
class Utterance:
    """A single piece of text handed to the synthesis engine."""

    text: str
    locale: str
    id: int = field(default_factory=lambda: next(_utterance_ids))
    started: bool = False
    finished: bool = False
    retired: bool = False


class PlayerListener(Protocol):
    """Receives the lifecycle events of spoken utterances."""

    def on_utterance_queued(self, utterance: Utterance) -> None:
        """Called before the engine is asked to speak, so events it reports synchronously are recognized."""

    def on_utterance_start(self, utterance: Utterance) -> None: ...

    def on_utterance_end(self, utterance: Utterance) -> None: ...

    def on_utterance_error(self, utterance: Utterance, detail: str) -> None: ...


class UtterancePlayer:
    """
    Speaks exactly one utterance at a time.

    ``speak`` replaces whatever is playing: the previous utterance is stopped
    and retired, so it reports nothing further. ``cancel`` stops the current
    utterance and still delivers exactly one ``on_utterance_end`` for it,
    asynchronously on the event loop.

    Usage:
        player = UtterancePlayer(WyomingTextToSpeech(), listener=controller)
        player.speak("こんにちは")
        player.cancel()
    """

    def __init__(
        self,
        engine: Optional[SynthesisEngine],
        *,
        listener: PlayerListener,
        locale: str = "ja-JP",
    ) -> None:
        self._engine = engine
        self._listener = listener
        self._locale = locale
        self._current: Optional[Utterance] = None

    @property
    def active(self) -> Optional[Utterance]:
        return self._current

    def speak(self, text: str) -> Utterance:
        """
        Start speaking ``text``.

        Raises:
            SynthesisUnavailable: When no synthesis engine is configured.
        """
        if self._engine is None:
            raise SynthesisUnavailable("Text-to-speech is not available on this platform.")

        previous = self._current
        if previous is not None and not previous.finished:
            previous.retired = True
            previous.finished = True
            self._engine.cancel(previous)
            logger.debug("Utterance %s superseded.", previous.id)

        utterance = Utterance(text=text, locale=self._locale)
        self._current = utterance
        self._listener.on_utterance_queued(utterance)
        self._engine.speak(utterance, self)
        return utterance

    def cancel(self) -> None:
        """Force the current utterance to stop; ``on_utterance_end`` still follows."""
        utterance = self._current
        if utterance is None or utterance.finished or self._engine is None:
            return
        utterance.finished = True
        self._engine.cancel(utterance)
        logger.debug("Utterance %s cancelled.", utterance.id)
        asyncio.get_running_loop().call_soon(self._deliver_end, utterance)

    def _deliver_end(self, utterance: Utterance) -> None:
        if self._current is utterance:
            self._current = None
        self._listener.on_utterance_end(utterance)

    # SynthesisSink

    def on_start(self, utterance: Utterance) -> None:
        if utterance.finished or utterance.started:
            return
        utterance.started = True
        self._listener.on_utterance_start(utterance)

    def on_end(self, utterance: Utterance) -> None:
        if utterance.finished:
            return
        utterance.finished = True
        self._deliver_end(utterance)

    def on_error(self, utterance: Utterance, detail: str) -> None:
        if utterance.finished:
            return
        utterance.finished = True
        if self._current is utterance:
            self._current = None
        logger.warning("Speech synthesis error: %s", detail)
        self._listener.on_utterance_error(utterance, detail)
