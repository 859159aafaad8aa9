"""Microphone preflight checks run before every capture start."""

from __future__ import annotations

import asyncio
import logging

from ..exceptions import CaptureUnavailable, PermissionDenied
from ..interfaces import MicrophonePermission

logger = logging.getLogger(__name__)


class AlwaysGrantedPermission(MicrophonePermission):
    """Preflight for the console harness, where no microphone is involved."""

    async def check(self) -> None:
        return None


class SoundDevicePermission(MicrophonePermission):
    """
    Verifies that the default input device can be opened.

    Args:
        sample_rate: Sample rate the recognizer will record at.
        channels: Number of channels the recognizer will record.
    """

    def __init__(self, *, sample_rate: int = 16000, channels: int = 1) -> None:
        self.sample_rate = sample_rate
        self.channels = channels

    async def check(self) -> None:
        sd = _lazy_import_sounddevice()
        try:
            device = await asyncio.to_thread(sd.query_devices, kind="input")
        except (sd.PortAudioError, ValueError) as exc:
            raise CaptureUnavailable(f"No microphone found: {exc}") from exc

        try:
            await asyncio.to_thread(
                sd.check_input_settings,
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise PermissionDenied(f"Microphone access was refused: {exc}") from exc
        logger.debug("Microphone ready: %s", device.get("name") if isinstance(device, dict) else device)


def _lazy_import_sounddevice():
    try:
        import sounddevice as sd  # type: ignore
    except (ImportError, OSError) as exc:  # pragma: no cover - runtime dependency
        raise CaptureUnavailable("sounddevice is required for microphone capture. Install via pip.") from exc
    return sd
