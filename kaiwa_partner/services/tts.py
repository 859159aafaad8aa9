"""Console TTS implementation that paces replies instead of playing audio."""

from __future__ import annotations

import asyncio
from typing import Dict

from ..interfaces import SynthesisEngine, SynthesisSink
from ..player import Utterance


class ConsoleTextToSpeech(SynthesisEngine):
    """
    Speaks silently: the reply is already printed by the console view, so this
    engine only holds the "speaking" state for as long as reading it would take.

    Args:
        chars_per_second: Pacing used to estimate the utterance duration.

    Swap this out for Wyoming Piper or another speaker driver later.
    """

    def __init__(self, *, chars_per_second: float = 12.0) -> None:
        self.chars_per_second = chars_per_second
        self._tasks: Dict[int, asyncio.Task] = {}

    def speak(self, utterance: Utterance, sink: SynthesisSink) -> None:
        task = asyncio.get_running_loop().create_task(self._run(utterance, sink))
        self._tasks[utterance.id] = task

    def cancel(self, utterance: Utterance) -> None:
        task = self._tasks.pop(utterance.id, None)
        if task is not None:
            task.cancel()

    async def _run(self, utterance: Utterance, sink: SynthesisSink) -> None:
        try:
            sink.on_start(utterance)
            if self.chars_per_second > 0:
                await asyncio.sleep(len(utterance.text) / self.chars_per_second)
            sink.on_end(utterance)
        finally:
            self._tasks.pop(utterance.id, None)
