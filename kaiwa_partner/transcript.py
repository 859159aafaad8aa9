"""Merges incremental recognition fragments into a stable transcript."""

from __future__ import annotations

from typing import Iterable

from .models import Fragment, TranscriptState


class TranscriptAccumulator:
    """
    Buffers recognition fragments for one capture session.

    Final fragments are appended to ``finalized`` followed by the separator.
    Non-final fragments of a batch form the new ``interim`` value, which replaces
    the previous one: the recognizer restates the whole pending span every time.

    Usage:
        >>> acc = TranscriptAccumulator()
        >>> acc.apply([Fragment("hello", is_final=False)])
        >>> acc.apply([Fragment("hello world", is_final=True), Fragment("how", is_final=False)])
        >>> acc.finalized, acc.interim
        ('hello world ', 'how')
        >>> acc.full_text
        'hello world how'
    """

    def __init__(self, separator: str = " ") -> None:
        self._separator = separator
        self._finalized = ""
        self._interim = ""

    def apply(self, batch: Iterable[Fragment]) -> None:
        """
        Apply one ordered batch of fragments.

        Args:
            batch: Fragments from a single recognition event, in result order.
        """
        pending = ""
        seen = False
        for fragment in batch:
            seen = True
            if fragment.is_final:
                self._finalized += fragment.text + self._separator
            else:
                pending += fragment.text

        if seen:
            self._interim = pending

    def reset(self) -> None:
        self._finalized = ""
        self._interim = ""

    @property
    def finalized(self) -> str:
        return self._finalized

    @property
    def interim(self) -> str:
        return self._interim

    @property
    def full_text(self) -> str:
        return self._finalized + self._interim

    @property
    def state(self) -> TranscriptState:
        return TranscriptState(finalized=self._finalized, interim=self._interim)
