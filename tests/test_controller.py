from __future__ import annotations

import asyncio

import pytest

from conftest import FakeSynthesizer, settle

from kaiwa_partner.controller import (
    CAPTURE_ERROR_MESSAGES,
    CAPTURE_UNAVAILABLE_MESSAGE,
    DEFAULT_FALLBACK_REPLY,
    SYNTHESIS_UNAVAILABLE_MESSAGE,
)
from kaiwa_partner.capture import CaptureErrorKind
from kaiwa_partner.exceptions import ChatClientError, PermissionDenied
from kaiwa_partner.models import Fragment, Sender, TurnState


async def start_listening(controller) -> None:
    controller.toggle()
    await settle()


def history(controller):
    return [(message.sender, message.text) for message in controller.messages]


@pytest.mark.asyncio
async def test_end_to_end_turn(make_controller, recognizer, synthesizer, chat_client) -> None:
    controller = make_controller()
    await controller.initialize()

    await start_listening(controller)
    assert controller.turn is TurnState.LISTENING
    assert recognizer.starts == 1

    recognizer.emit([Fragment("こんにちは")])
    assert controller.transcript.interim == "こんにちは"
    recognizer.emit([Fragment("こんにちは、元気です", is_final=True)])
    recognizer.end()
    await settle()

    assert [text for text, _ in chat_client.calls] == ["こんにちは、元気です"]
    assert chat_client.calls[0][1] is controller.session
    assert history(controller) == [
        (Sender.USER, "こんにちは、元気です"),
        (Sender.SYSTEM, "いいですね！"),
    ]
    assert synthesizer.last.text == "いいですね！"
    assert controller.turn is TurnState.SPEAKING

    synthesizer.finish_last()

    assert controller.turn is TurnState.IDLE
    assert controller.transcript.full_text == ""
    assert controller.error is None


@pytest.mark.asyncio
async def test_session_handle_is_shared_across_turns(make_controller, recognizer, synthesizer, chat_client) -> None:
    controller = make_controller()
    await controller.initialize()

    for phrase in ("一つ目", "二つ目"):
        await start_listening(controller)
        recognizer.emit([Fragment(phrase, is_final=True)])
        recognizer.end()
        await settle()
        synthesizer.finish_last()

    sessions = [session for _, session in chat_client.calls]
    assert len(sessions) == 2
    assert sessions[0] is sessions[1] is controller.session


@pytest.mark.asyncio
async def test_empty_capture_skips_the_turn(make_controller, recognizer, synthesizer, chat_client) -> None:
    controller = make_controller()
    await controller.initialize()

    await start_listening(controller)
    recognizer.emit([Fragment("   ", is_final=True)])
    recognizer.end()
    await settle()

    assert controller.turn is TurnState.IDLE
    assert controller.messages == ()
    assert chat_client.calls == []
    assert synthesizer.spoken == []


@pytest.mark.asyncio
async def test_interim_only_capture_is_not_submitted(make_controller, recognizer, chat_client) -> None:
    controller = make_controller()
    await controller.initialize()

    await start_listening(controller)
    recognizer.emit([Fragment("えっと")])
    recognizer.end()
    await settle()

    assert controller.turn is TurnState.IDLE
    assert chat_client.calls == []


@pytest.mark.asyncio
async def test_greeting_is_spoken_after_initialization(make_controller, synthesizer) -> None:
    controller = make_controller(greeting="ようこそ")
    await controller.initialize()

    assert history(controller) == [(Sender.SYSTEM, "ようこそ")]
    assert controller.turn is TurnState.SPEAKING

    synthesizer.finish_last()

    assert controller.turn is TurnState.IDLE


@pytest.mark.asyncio
async def test_barge_in_cancels_speech_before_capture_starts(make_controller, synthesizer, recognizer, log) -> None:
    controller = make_controller(greeting="ようこそ")
    await controller.initialize()
    synthesizer.start_last()

    controller.toggle()
    await settle()

    assert log == [("speak", "ようこそ"), ("cancel", "ようこそ"), ("capture.start", None)]
    assert controller.turn is TurnState.LISTENING
    assert recognizer.starts == 1


@pytest.mark.asyncio
async def test_backend_failure_speaks_fallback(make_controller, recognizer, synthesizer, chat_client, view) -> None:
    chat_client.error = ChatClientError("quota exceeded")
    controller = make_controller()
    await controller.initialize()

    await start_listening(controller)
    recognizer.emit([Fragment("天気はどう？", is_final=True)])
    recognizer.end()
    await settle()

    system_messages = [text for sender, text in history(controller) if sender is Sender.SYSTEM]
    assert system_messages == [DEFAULT_FALLBACK_REPLY]
    assert synthesizer.last.text == DEFAULT_FALLBACK_REPLY
    assert "quota exceeded" in (controller.error or "")
    assert view.errors[-1] == controller.error

    synthesizer.finish_last()

    assert controller.turn is TurnState.IDLE


@pytest.mark.asyncio
async def test_reply_timeout_uses_fallback(make_controller, recognizer, synthesizer, chat_client) -> None:
    chat_client.gate = asyncio.Event()
    controller = make_controller(reply_timeout=0.01, fallback_reply="もう一度お願いします")
    await controller.initialize()

    await start_listening(controller)
    recognizer.emit([Fragment("遅い返事", is_final=True)])
    recognizer.end()
    await asyncio.sleep(0.05)
    await settle()

    assert controller.turn is TurnState.SPEAKING
    assert synthesizer.last.text == "もう一度お願いします"
    assert "no reply" in (controller.error or "")


@pytest.mark.asyncio
async def test_toggle_is_ignored_while_submitting(make_controller, recognizer, chat_client) -> None:
    chat_client.gate = asyncio.Event()
    controller = make_controller()
    await controller.initialize()

    await start_listening(controller)
    recognizer.emit([Fragment("質問です", is_final=True)])
    recognizer.end()
    await settle()
    assert controller.turn is TurnState.SUBMITTING

    controller.toggle()
    await settle()

    assert recognizer.starts == 1
    assert controller.turn is TurnState.SUBMITTING

    chat_client.gate.set()
    await settle()

    assert controller.turn is TurnState.SPEAKING


@pytest.mark.asyncio
async def test_toggle_off_waits_for_capture_end(make_controller, recognizer, chat_client) -> None:
    controller = make_controller()
    await controller.initialize()
    await start_listening(controller)

    controller.toggle()
    controller.toggle()

    assert recognizer.stops == 1
    assert controller.turn is TurnState.LISTENING
    assert controller.state.stopping is True

    recognizer.emit([Fragment("止めました", is_final=True)])
    recognizer.end()
    await settle()

    assert controller.turn is TurnState.SPEAKING
    assert [text for text, _ in chat_client.calls] == ["止めました"]


@pytest.mark.asyncio
async def test_toggle_off_during_preflight(make_controller, recognizer, permission) -> None:
    permission.gate = asyncio.Event()
    controller = make_controller()
    await controller.initialize()
    await start_listening(controller)

    controller.toggle()
    permission.gate.set()
    await settle()

    assert recognizer.starts == 0
    assert controller.turn is TurnState.IDLE


@pytest.mark.asyncio
async def test_toggle_before_initialization_is_ignored(make_controller, recognizer) -> None:
    controller = make_controller()

    controller.toggle()
    await settle()

    assert recognizer.starts == 0
    assert controller.turn is TurnState.IDLE


@pytest.mark.asyncio
async def test_initialization_failure_keeps_toggle_disabled(make_controller, chat_client, recognizer, monkeypatch) -> None:
    def broken_session():
        raise ChatClientError("invalid key")

    monkeypatch.setattr(chat_client, "create_session", broken_session)
    controller = make_controller()
    await controller.initialize()
    controller.toggle()
    await settle()

    assert controller.state.ready is False
    assert (controller.error or "").startswith("Initialization failed")
    assert recognizer.starts == 0


@pytest.mark.asyncio
async def test_halt_blocks_everything(make_controller, recognizer, view) -> None:
    controller = make_controller()
    controller.halt("Critical Error: PARTNER_API_KEY is not configured.")

    controller.toggle()
    await settle()

    assert controller.turn is TurnState.ERROR
    assert controller.error == "Critical Error: PARTNER_API_KEY is not configured."
    assert view.errors == ["Critical Error: PARTNER_API_KEY is not configured."]
    assert recognizer.starts == 0


@pytest.mark.asyncio
async def test_capture_error_returns_to_idle(make_controller, recognizer, view) -> None:
    controller = make_controller()
    await controller.initialize()
    await start_listening(controller)

    recognizer.emit([Fragment("途中", is_final=True)])
    recognizer.fail("no-speech")
    recognizer.end()
    await settle()

    assert controller.turn is TurnState.IDLE
    assert controller.error == CAPTURE_ERROR_MESSAGES[CaptureErrorKind.NO_SPEECH]
    assert view.errors.count(controller.error) == 1
    assert controller.messages == ()


@pytest.mark.asyncio
async def test_unknown_capture_error_includes_detail(make_controller, recognizer) -> None:
    controller = make_controller()
    await controller.initialize()
    await start_listening(controller)

    recognizer.fail("network", "connection reset")

    assert controller.error == "音声認識エラー: connection reset"


@pytest.mark.asyncio
async def test_error_is_cleared_when_capture_restarts(make_controller, recognizer, view) -> None:
    controller = make_controller()
    await controller.initialize()
    await start_listening(controller)
    recognizer.fail("audio-capture")
    recognizer.end()
    assert controller.error is not None

    await start_listening(controller)

    assert controller.turn is TurnState.LISTENING
    assert controller.error is None
    assert view.errors[-1] is None


@pytest.mark.asyncio
async def test_stale_capture_session_is_ignored(make_controller, recognizer) -> None:
    controller = make_controller()
    await controller.initialize()
    await start_listening(controller)
    recognizer.fail("audio-capture")
    stale = recognizer.sink

    await start_listening(controller)
    stale.on_end()

    assert recognizer.stops == 1
    assert recognizer.starts == 2
    assert controller.turn is TurnState.LISTENING


@pytest.mark.asyncio
async def test_permission_denied_maps_to_user_message(make_controller, recognizer, permission) -> None:
    permission.error = PermissionDenied("refused")
    controller = make_controller()
    await controller.initialize()

    await start_listening(controller)

    assert recognizer.starts == 0
    assert controller.turn is TurnState.IDLE
    assert controller.error == CAPTURE_ERROR_MESSAGES[CaptureErrorKind.PERMISSION_DENIED]


@pytest.mark.asyncio
async def test_missing_recognizer_reports_unavailable(make_controller) -> None:
    controller = make_controller(recognizer=None)
    await controller.initialize()

    await start_listening(controller)

    assert controller.turn is TurnState.IDLE
    assert controller.error == CAPTURE_UNAVAILABLE_MESSAGE


@pytest.mark.asyncio
async def test_missing_synthesizer_still_records_reply(make_controller, recognizer) -> None:
    controller = make_controller(synthesizer=None)
    await controller.initialize()

    await start_listening(controller)
    recognizer.emit([Fragment("聞こえますか", is_final=True)])
    recognizer.end()
    await settle()

    assert history(controller)[-1] == (Sender.SYSTEM, "いいですね！")
    assert controller.turn is TurnState.IDLE
    assert controller.error == SYNTHESIS_UNAVAILABLE_MESSAGE


@pytest.mark.asyncio
async def test_synthesis_error_returns_to_idle(make_controller, recognizer, synthesizer) -> None:
    controller = make_controller()
    await controller.initialize()
    await start_listening(controller)
    recognizer.emit([Fragment("話して", is_final=True)])
    recognizer.end()
    await settle()

    synthesizer.fail_last("audio device lost")

    assert controller.turn is TurnState.IDLE
    assert controller.error == "Text-to-speech error: audio device lost"


@pytest.mark.asyncio
async def test_close_stops_live_capture(make_controller, recognizer) -> None:
    controller = make_controller()
    await controller.initialize()
    await start_listening(controller)

    await controller.close()

    assert recognizer.stops == 1


class FailingSynthesizer(FakeSynthesizer):
    """Reports the failure from inside speak(), before it returns."""

    def speak(self, utterance, sink) -> None:
        super().speak(utterance, sink)
        sink.on_error(utterance, "synthesis-failed")


class InstantSynthesizer(FakeSynthesizer):
    def speak(self, utterance, sink) -> None:
        super().speak(utterance, sink)
        sink.on_start(utterance)
        sink.on_end(utterance)


@pytest.mark.asyncio
async def test_synchronous_synthesis_error_returns_to_idle(make_controller, view) -> None:
    controller = make_controller(synthesizer=FailingSynthesizer(), greeting="ようこそ")
    await controller.initialize()
    await settle()

    assert controller.turn is TurnState.IDLE
    assert controller.error == "Text-to-speech error: synthesis-failed"
    assert view.errors[-1] == controller.error


@pytest.mark.asyncio
async def test_synchronous_synthesis_end_returns_to_idle(make_controller) -> None:
    controller = make_controller(synthesizer=InstantSynthesizer(), greeting="ようこそ")
    await controller.initialize()
    await settle()

    assert controller.turn is TurnState.IDLE
    assert controller.error is None


@pytest.mark.asyncio
async def test_backend_error_without_message_is_described(make_controller, recognizer, chat_client) -> None:
    chat_client.error = ChatClientError()
    controller = make_controller()
    await controller.initialize()

    await start_listening(controller)
    recognizer.emit([Fragment("もしもし", is_final=True)])
    recognizer.end()
    await settle()

    assert controller.error == "Error getting AI response: Unknown error"
