"""CLI harness for the practice partner."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import threading
from typing import Optional, Tuple

from .config import AppConfig
from .controller import TurnController
from .exceptions import ConfigurationMissing
from .models import TurnState
from .presentation import ConsoleView
from .services.chat_client import HttpChatClient
from .services.permission import AlwaysGrantedPermission, SoundDevicePermission
from .services.recognizer import ConsoleRecognizer
from .services.tts import ConsoleTextToSpeech

logger = logging.getLogger(__name__)

EXIT_WORDS = {"exit", "quit", "q"}


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_controller(config: AppConfig, view: ConsoleView) -> Tuple[TurnController, Optional[ConsoleRecognizer]]:
    """
    Wire up the controller with console or audio implementations.

    Returns the controller and, in console mode, the recognizer that typed
    lines are fed to.
    """
    chat_client = HttpChatClient(
        config.base_url,
        api_key=config.api_key,
        timeout=config.request_timeout,
        system_prompt=config.system_prompt,
        conversation_id=config.conversation_id or None,
        debug=config.debug,
    )

    console_recognizer: Optional[ConsoleRecognizer] = None
    if config.mode == "audio":
        # Wyoming is only needed for audio mode.
        from .services.mic_recognizer import MicrophoneRecognizer
        from .services.tts_wyoming import WyomingTextToSpeech

        recognizer = MicrophoneRecognizer(
            host=config.whisper_host,
            port=config.whisper_port,
            max_seconds=config.record_seconds,
            silence_duration=config.silence_seconds,
        )
        synthesizer = WyomingTextToSpeech(
            host=config.piper_host,
            port=config.piper_port,
            voice=config.tts_voice,
        )
        permission = SoundDevicePermission(sample_rate=recognizer.sample_rate, channels=recognizer.channels)
    else:
        console_recognizer = ConsoleRecognizer()
        recognizer = console_recognizer
        synthesizer = ConsoleTextToSpeech()
        permission = AlwaysGrantedPermission()

    controller = TurnController(
        chat_client=chat_client,
        recognizer=recognizer,
        synthesizer=synthesizer,
        permission=permission,
        view=view,
        locale=config.locale,
        greeting=config.greeting,
        fallback_reply=config.fallback_reply,
        reply_timeout=config.reply_timeout,
    )
    return controller, console_recognizer


class _StdinLines:
    """Reads stdin on a daemon thread so shutdown never waits on ``input()``."""

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._loop = asyncio.get_running_loop()
        threading.Thread(target=self._pump, name="stdin-reader", daemon=True).start()

    def _pump(self) -> None:
        for line in sys.stdin:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, line.rstrip("\n"))
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    async def next(self) -> Optional[str]:
        return await self._queue.get()


async def handle_line(controller: TurnController, recognizer: Optional[ConsoleRecognizer], line: str) -> None:
    """
    Apply one line of console input.

    An empty line toggles recording. In console mode any other text is
    treated as speech: recording is started first when needed.
    """
    text = line.strip()
    if not text or recognizer is None:
        controller.toggle()
        return

    if controller.turn is not TurnState.LISTENING:
        controller.toggle()
    for _ in range(50):
        if recognizer.listening or controller.turn is not TurnState.LISTENING:
            break
        await asyncio.sleep(0.01)

    if recognizer.listening:
        recognizer.feed(text)
    else:
        logger.info("Not listening right now; '%s' was ignored.", text)


async def run(config: AppConfig) -> int:
    view = ConsoleView()
    controller, recognizer = build_controller(config, view)
    try:
        config.validate()
    except ConfigurationMissing as exc:
        controller.halt(str(exc))
        view.show_fatal(str(exc))
        return 2

    await controller.initialize()
    if not controller.state.ready:
        return 1

    lines = _StdinLines()
    try:
        while True:
            line = await lines.next()
            if line is None or line.strip().lower() in EXIT_WORDS:
                logger.info("Exiting...")
                break
            await handle_line(controller, recognizer, line)
    finally:
        await controller.close()
    return 0


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Japanese conversation practice partner.")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--mode",
        choices=["console", "audio"],
        help="Override PARTNER_MODE (console/audio).",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    config = AppConfig.from_env()
    if args.mode:
        config.mode = args.mode
    try:
        code = asyncio.run(run(config))
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
