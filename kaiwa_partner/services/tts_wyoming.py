"""Wyoming Piper TTS adapter via Wyoming protocol."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from wyoming.audio import AudioChunk, AudioStop
from wyoming.client import AsyncTcpClient
from wyoming.tts import Synthesize, SynthesizeVoice

from ..interfaces import SynthesisEngine, SynthesisSink
from ..player import Utterance

logger = logging.getLogger(__name__)


class WyomingTextToSpeech(SynthesisEngine):
    """
    Text-to-speech using Wyoming Piper protocol.

    Synthesis runs on the event loop; playback runs in a worker thread so a
    cancel can interrupt it with ``sounddevice.stop()``.

    Args:
        host: Wyoming service host (e.g., "localhost")
        port: Wyoming service port (e.g., 10200 for piper)
        timeout: Seconds to wait for each Wyoming event.
        sample_rate: Fallback playback sample rate (Hz).
        voice: Optional Piper voice name (e.g., "ja_JP-test-medium").
    """

    def __init__(
        self,
        *,
        host: str = "localhost",
        port: int = 10200,
        timeout: float = 30.0,
        sample_rate: int = 22050,
        voice: Optional[str] = None,
    ) -> None:
        self._host = host
        self._port = port
        self._timeout = timeout
        self._sample_rate = sample_rate
        self._voice = voice
        self._tasks: Dict[int, asyncio.Task] = {}
        self._playing: Optional[int] = None

    def speak(self, utterance: Utterance, sink: SynthesisSink) -> None:
        task = asyncio.get_running_loop().create_task(self._run(utterance, sink))
        self._tasks[utterance.id] = task

    def cancel(self, utterance: Utterance) -> None:
        task = self._tasks.pop(utterance.id, None)
        if task is not None:
            task.cancel()
        if self._playing == utterance.id:
            _lazy_import_sounddevice().stop()
            self._playing = None

    async def _run(self, utterance: Utterance, sink: SynthesisSink) -> None:
        try:
            audio, rate, width, channels = await self._synthesize(utterance.text)
            self._playing = utterance.id
            sink.on_start(utterance)
            await asyncio.to_thread(self._play_audio, audio, rate, width, channels)
        except asyncio.CancelledError:
            sink.on_end(utterance)
            raise
        except (OSError, RuntimeError, asyncio.TimeoutError) as exc:
            sink.on_error(utterance, f"Wyoming Piper error: {exc}")
        else:
            sink.on_end(utterance)
        finally:
            self._tasks.pop(utterance.id, None)
            if self._playing == utterance.id:
                self._playing = None

    async def _synthesize(self, text: str) -> Tuple[bytes, int, int, int]:
        """Collect the synthesized audio for ``text``."""
        voice = SynthesizeVoice(name=self._voice) if self._voice else None
        async with AsyncTcpClient(self._host, self._port) as client:
            await client.write_event(Synthesize(text=text, voice=voice).event())

            audio_chunks: List[bytes] = []
            actual_rate = self._sample_rate
            actual_width = 2
            actual_channels = 1

            while True:
                event = await asyncio.wait_for(client.read_event(), timeout=self._timeout)
                if event is None:
                    break

                if AudioChunk.is_type(event.type):
                    chunk = AudioChunk.from_event(event)
                    audio_chunks.append(chunk.audio)
                    actual_rate = chunk.rate
                    actual_width = chunk.width
                    actual_channels = chunk.channels
                elif AudioStop.is_type(event.type):
                    break

        if not audio_chunks:
            raise RuntimeError("Wyoming Piper produced no audio output")
        return b"".join(audio_chunks), actual_rate, actual_width, actual_channels

    def _play_audio(self, audio_data: bytes, rate: int, width: int, channels: int) -> None:
        """Play audio data through sounddevice, blocking until done or stopped."""
        sd = _lazy_import_sounddevice()
        import numpy as np

        if width == 2:
            pcm = np.frombuffer(audio_data, dtype=np.int16).astype(np.float32) / 32768.0
        elif width == 4:
            pcm = np.frombuffer(audio_data, dtype=np.int32).astype(np.float32) / 2147483648.0
        else:
            raise RuntimeError(f"Unsupported audio width: {width}")

        if channels > 1:
            pcm = pcm.reshape(-1, channels)

        logger.debug("Playing %d samples at %d Hz", len(pcm), rate)
        sd.play(pcm, samplerate=rate)
        sd.wait()


def _lazy_import_sounddevice():
    try:
        import sounddevice as sd  # type: ignore
    except (ImportError, OSError) as exc:  # pragma: no cover - runtime dependency
        raise RuntimeError("sounddevice and numpy required for audio playback. Install via pip.") from exc
    return sd
