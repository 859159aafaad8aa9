"""Microphone recognizer: sounddevice capture with VAD, Wyoming Whisper transcription."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Optional

from wyoming.asr import Transcribe, Transcript
from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.client import AsyncTcpClient

from ..interfaces import RecognitionEngine, RecognitionSink
from ..models import Fragment

logger = logging.getLogger(__name__)


class MicrophoneRecognizer(RecognitionEngine):
    """
    Records one utterance from the default microphone and transcribes it.

    Recording stops automatically after ``silence_duration`` seconds of silence
    following speech, after ``max_seconds``, or when :meth:`stop` is called.
    The audio is then sent to a Wyoming Whisper service and reported as a single
    final result.

    Args:
        host: Wyoming service host (e.g., "localhost").
        port: Wyoming service port (e.g., 10300 for whisper).
        sample_rate: Target sample rate (Hz).
        channels: Number of channels to record.
        max_seconds: Maximum recording duration (safety limit).
        silence_duration: Seconds of silence before stopping (VAD).
        silence_threshold: Audio level below which is considered silence.
        timeout: Seconds to wait for each Wyoming event.

    Error codes reported to the sink: ``no-speech`` when nothing above the
    threshold was heard, ``audio-capture`` when the input stream fails, and
    ``network`` when the transcription service cannot be reached.
    """

    def __init__(
        self,
        *,
        host: str = "localhost",
        port: int = 10300,
        sample_rate: int = 16000,
        channels: int = 1,
        max_seconds: float = 30.0,
        silence_duration: float = 1.5,
        silence_threshold: float = 0.01,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self.sample_rate = sample_rate
        self.channels = channels
        self.max_seconds = max_seconds
        self.silence_duration = silence_duration
        self.silence_threshold = silence_threshold
        self._timeout = timeout
        self._stop_event: Optional[threading.Event] = None
        self._task: Optional[asyncio.Task] = None

    def start(self, sink: RecognitionSink, *, locale: str) -> None:
        if self._task is not None and not self._task.done():
            raise RuntimeError("MicrophoneRecognizer is already listening.")
        self._stop_event = threading.Event()
        self._task = asyncio.get_running_loop().create_task(self._listen(sink, locale, self._stop_event))

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def _listen(self, sink: RecognitionSink, locale: str, stop_event: threading.Event) -> None:
        try:
            try:
                pcm = await asyncio.to_thread(self._record, stop_event)
            except Exception as exc:
                sink.on_error("audio-capture", str(exc))
                return

            if not pcm:
                sink.on_error("no-speech")
                return

            try:
                text = await self._transcribe(pcm, locale)
            except (OSError, RuntimeError, asyncio.TimeoutError) as exc:
                sink.on_error("network", f"Wyoming Whisper error: {exc}")
                return

            if text:
                sink.on_results((Fragment(text, is_final=True),), 0)
        finally:
            sink.on_end()

    def _record(self, stop_event: threading.Event) -> bytes:
        sd = _lazy_import_sounddevice()
        import numpy as np

        logger.info(
            "Listening... (max %ss, stops after %ss of silence)",
            self.max_seconds,
            self.silence_duration,
        )

        recorded_chunks = []
        silence_start: Optional[float] = None
        recording_started = False
        start_time = time.time()

        def callback(indata, frames, time_info, status):
            nonlocal silence_start, recording_started
            if status:
                logger.debug("Input status: %s", status)

            audio_level = np.abs(indata).mean()

            if audio_level > self.silence_threshold:
                recording_started = True
                silence_start = None
                recorded_chunks.append(indata.copy())
            elif recording_started:
                recorded_chunks.append(indata.copy())
                if silence_start is None:
                    silence_start = time.time()

        with sd.InputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype="float32",
            callback=callback,
        ):
            while not stop_event.is_set():
                sd.sleep(100)

                if self.max_seconds > 0 and time.time() - start_time > self.max_seconds:
                    logger.info("Max duration reached (%ss)", self.max_seconds)
                    break

                if recording_started and silence_start is not None:
                    if time.time() - silence_start > self.silence_duration:
                        logger.debug("Silence detected, stopping")
                        break

        if not recorded_chunks:
            logger.info("No audio recorded")
            return b""

        recording = np.concatenate(recorded_chunks, axis=0)
        logger.debug("Recorded %.2fs of audio", len(recording) / self.sample_rate)

        # float32 [-1.0, 1.0] to 16-bit PCM
        pcm = np.clip(recording, -1.0, 1.0)
        return (pcm * 32767).astype("int16").tobytes()

    async def _transcribe(self, pcm_data: bytes, locale: str) -> str:
        # Whisper wants the bare language: ja-JP -> ja
        lang = (locale or "ja").split("-")[0]

        async with AsyncTcpClient(self._host, self._port) as client:
            await client.write_event(Transcribe(language=lang).event())
            await client.write_event(AudioStart(rate=self.sample_rate, width=2, channels=self.channels).event())

            chunk_size = 8192
            for i in range(0, len(pcm_data), chunk_size):
                await client.write_event(
                    AudioChunk(
                        audio=pcm_data[i : i + chunk_size],
                        rate=self.sample_rate,
                        width=2,
                        channels=self.channels,
                    ).event()
                )
            await client.write_event(AudioStop().event())

            while True:
                event = await asyncio.wait_for(client.read_event(), timeout=self._timeout)
                if event is None:
                    break
                if Transcript.is_type(event.type):
                    return Transcript.from_event(event).text.strip()

        raise RuntimeError("No transcript received from Wyoming Whisper")


def _lazy_import_sounddevice():
    try:
        import sounddevice as sd  # type: ignore
    except (ImportError, OSError) as exc:  # pragma: no cover - runtime dependency
        raise RuntimeError("sounddevice is required for microphone recording. Install via pip.") from exc
    return sd
