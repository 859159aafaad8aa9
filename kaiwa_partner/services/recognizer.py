"""Console recognizer that treats typed lines as speech."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from ..interfaces import RecognitionEngine, RecognitionSink
from ..models import Fragment


class ConsoleRecognizer(RecognitionEngine):
    """
    Recognizes speech by accepting typed text.

    Each line passed to :meth:`feed` is streamed the way a browser recognizer
    streams speech: one interim result per word prefix, then the final result.
    Like a single-utterance engine, it stops listening on its own after the
    final result.

    Usage:
        recognizer = ConsoleRecognizer()
        recognizer.start(session, locale="ja-JP")
        recognizer.feed("こんにちは 元気です")
    """

    def __init__(self) -> None:
        self._sink: Optional[RecognitionSink] = None
        self._results: List[Fragment] = []
        self._ending = False

    @property
    def listening(self) -> bool:
        return self._sink is not None and not self._ending

    def start(self, sink: RecognitionSink, *, locale: str) -> None:
        if self._sink is not None:
            raise RuntimeError("ConsoleRecognizer is already listening.")
        self._sink = sink
        self._results = []
        self._ending = False

    def feed(self, text: str) -> None:
        """Deliver ``text`` as one spoken phrase."""
        sink = self._sink
        if sink is None or self._ending:
            raise RuntimeError("ConsoleRecognizer is not listening.")

        words = text.split()
        index = len(self._results)
        if words:
            self._results.append(Fragment(words[0], is_final=False))
            for count in range(1, len(words) + 1):
                self._results[index] = Fragment(" ".join(words[:count]), is_final=False)
                sink.on_results(tuple(self._results), index)
            self._results[index] = Fragment(" ".join(words), is_final=True)
            sink.on_results(tuple(self._results), index)

        # Single-utterance mode: the engine stops after the phrase.
        self._schedule_end()

    def stop(self) -> None:
        if self._sink is None:
            return
        self._schedule_end()

    def _schedule_end(self) -> None:
        if self._ending:
            return
        self._ending = True
        asyncio.get_running_loop().call_soon(self._finish)

    def _finish(self) -> None:
        sink, self._sink = self._sink, None
        self._ending = False
        if sink is not None:
            sink.on_end()
