"""Speech capture session: one bounded activation of the recognition engine."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional, Protocol, Sequence

from .exceptions import CaptureStartFailed, CaptureUnavailable, PermissionDenied
from .interfaces import MicrophonePermission, RecognitionEngine
from .models import Fragment, FragmentBatch

logger = logging.getLogger(__name__)


class CaptureErrorKind(str, Enum):
    """Failure kinds reported while a capture session is active."""

    NO_SPEECH = "no-speech"
    AUDIO_CAPTURE = "audio-capture"
    PERMISSION_DENIED = "not-allowed"
    OTHER = "other"

    @classmethod
    def from_code(cls, code: str) -> "CaptureErrorKind":
        """Map a recognition engine error code to a kind."""
        normalized = (code or "").strip().lower()
        if normalized == "service-not-allowed":
            return cls.PERMISSION_DENIED
        for kind in cls:
            if kind.value == normalized:
                return kind
        return cls.OTHER


class CaptureListener(Protocol):
    """Receives the events of a capture session."""

    def on_capture_fragments(self, session: "SpeechCaptureSession", batch: FragmentBatch) -> None: ...

    def on_capture_error(
        self, session: "SpeechCaptureSession", kind: CaptureErrorKind, detail: Optional[str]
    ) -> None: ...

    def on_capture_ended(self, session: "SpeechCaptureSession") -> None: ...


class _Status(Enum):
    NEW = "new"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    CLOSED = "closed"


class SpeechCaptureSession:
    """
    Wraps a single start/stop lifecycle of a recognition engine.

    The engine runs in single-utterance mode and stops on its own after a pause,
    so ``on_capture_ended`` is the only reliable completion signal. It fires
    exactly once for every session whose ``start()`` succeeded, whether the
    engine stopped on silence, on an error, or because ``stop()`` was called.

    Usage:
        session = SpeechCaptureSession(engine, permission=mic, listener=controller)
        await session.start()
        ...
        session.stop()  # listener.on_capture_ended(session) follows
    """

    def __init__(
        self,
        engine: Optional[RecognitionEngine],
        *,
        permission: MicrophonePermission,
        listener: CaptureListener,
        locale: str = "ja-JP",
    ) -> None:
        self._engine = engine
        self._permission = permission
        self._listener = listener
        self._locale = locale
        self._status = _Status.NEW
        self._stop_requested = False

    @property
    def active(self) -> bool:
        return self._status in (_Status.STARTING, _Status.ACTIVE, _Status.STOPPING)

    @property
    def closed(self) -> bool:
        return self._status is _Status.CLOSED

    async def start(self) -> None:
        """
        Run the microphone preflight and start listening.

        Raises:
            CaptureUnavailable: No recognition engine, or no capture device.
            PermissionDenied: Microphone access was refused.
            CaptureStartFailed: The engine refused to start.
        """
        if self._status is not _Status.NEW:
            raise RuntimeError("A capture session can only be started once.")
        if self._engine is None:
            self._status = _Status.CLOSED
            raise CaptureUnavailable("Speech recognition is not available on this platform.")

        self._status = _Status.STARTING
        try:
            await self._permission.check()
        except (PermissionDenied, CaptureUnavailable, asyncio.CancelledError):
            self._status = _Status.CLOSED
            raise
        except Exception as exc:
            self._status = _Status.CLOSED
            raise CaptureStartFailed(f"Microphone check failed: {exc}") from exc

        if self._stop_requested:
            # Toggled off while the preflight was pending; nothing was captured.
            logger.debug("Capture stopped before the engine started.")
            self._status = _Status.ACTIVE
            self.on_end()
            return

        self._status = _Status.ACTIVE
        try:
            self._engine.start(self, locale=self._locale)
        except Exception as exc:
            self._status = _Status.CLOSED
            raise CaptureStartFailed(f"Recognition engine failed to start: {exc}") from exc
        logger.debug("Capture session started (locale=%s).", self._locale)

    def stop(self) -> None:
        """Request graceful termination. No-op once stopping or closed."""
        if self._status is _Status.STARTING:
            self._stop_requested = True
            return
        if self._status is not _Status.ACTIVE or self._engine is None:
            return
        self._status = _Status.STOPPING
        self._engine.stop()

    # RecognitionSink

    def on_results(self, results: Sequence[Fragment], result_index: int) -> None:
        if not self.active:
            logger.debug("Dropping results for a closed capture session.")
            return
        batch = tuple(results[max(result_index, 0):])
        self._listener.on_capture_fragments(self, batch)

    def on_error(self, code: str, detail: Optional[str] = None) -> None:
        if not self.active:
            return
        kind = CaptureErrorKind.from_code(code)
        logger.warning("Speech recognition error: %s (%s)", code, detail or "no detail")
        self._listener.on_capture_error(self, kind, detail or code)

    def on_end(self) -> None:
        if self._status is _Status.CLOSED:
            return
        self._status = _Status.CLOSED
        self._listener.on_capture_ended(self)
