"""Configuration helpers for the practice partner."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .controller import DEFAULT_FALLBACK_REPLY, DEFAULT_GREETING
from .exceptions import ConfigurationMissing

# Load .env file if present
load_dotenv()

DEFAULT_SYSTEM_PROMPT = (
    "あなたは親切な日本語会話の練習相手です。短く自然な日本語で答え、"
    "ユーザーが会話を続けやすいように質問を返してください。"
)


@dataclass
class AppConfig:
    """
    Runtime configuration for the practice partner.

    Attributes:
        base_url: Root URL for the `/chat` endpoint (without trailing slash).
        api_key: Bearer token sent as `Authorization: Bearer <token>`. Required.
        request_timeout: HTTP timeout in seconds.
        reply_timeout: Optional bound on the whole backend call; expiry speaks the fallback reply.
        system_prompt: Instructions sent with every turn.
        greeting: Opening line spoken once the session is ready (empty to disable).
        fallback_reply: Line spoken when the backend fails.
        locale: BCP-47 locale for recognition and synthesis.
        conversation_id: Conversation identifier reused for the whole run; random when empty.
        debug: Whether to set debug=true on chat requests.
        mode: "console" or "audio" for selecting implementations.
        whisper_host: Wyoming Whisper host (audio mode).
        whisper_port: Wyoming Whisper port (audio mode).
        piper_host: Wyoming Piper host (audio mode).
        piper_port: Wyoming Piper port (audio mode).
        tts_voice: Optional Piper voice name.
        record_seconds: Maximum seconds per utterance in audio mode.
        silence_seconds: Seconds of silence that end an utterance in audio mode.

    Usage:
        >>> config = AppConfig.from_env()
        >>> config.locale
        'ja-JP'
    """

    base_url: str
    api_key: Optional[str]
    request_timeout: float
    reply_timeout: Optional[float]
    system_prompt: Optional[str]
    greeting: Optional[str]
    fallback_reply: str
    locale: str
    conversation_id: str
    debug: bool
    mode: str
    whisper_host: str
    whisper_port: int
    piper_host: str
    piper_port: int
    tts_voice: Optional[str]
    record_seconds: float
    silence_seconds: float

    @classmethod
    def from_env(cls) -> "AppConfig":
        """
        Build an :class:`AppConfig` from environment variables.

        Supported variables:
            - PARTNER_API_BASE_URL: Root URL for the chat service (default: http://localhost:8000)
            - PARTNER_API_KEY: Bearer token for authorization (required).
            - PARTNER_REQUEST_TIMEOUT: HTTP timeout in seconds (float, default: 30).
            - PARTNER_REPLY_TIMEOUT: Optional bound in seconds on each backend call.
            - PARTNER_SYSTEM_PROMPT: Instructions for the backend (default: Japanese tutor prompt).
            - PARTNER_GREETING: Opening line; set to an empty string to start silently.
            - PARTNER_FALLBACK_REPLY: Line spoken when the backend fails.
            - PARTNER_LOCALE: Recognition/synthesis locale (default: "ja-JP").
            - PARTNER_CONVERSATION_ID: Explicit conversation id; defaults to a random UUID.
            - PARTNER_DEBUG: "true"/"1" to enable debug flag on chat requests (default: false).
            - PARTNER_MODE: "console" (default) or "audio" to enable mic + TTS.
            - PARTNER_WHISPER_HOST: Wyoming Whisper host (default: "localhost").
            - PARTNER_WHISPER_PORT: Wyoming Whisper port (default: 10300).
            - PARTNER_PIPER_HOST: Wyoming Piper host (default: "localhost").
            - PARTNER_PIPER_PORT: Wyoming Piper port (default: 10200).
            - PARTNER_TTS_VOICE: Optional Piper voice name.
            - PARTNER_RECORD_SECONDS: Maximum seconds per utterance (default: 30).
            - PARTNER_SILENCE_SECONDS: Seconds of silence ending an utterance (default: 1.5).
        """

        base_url = os.environ.get("PARTNER_API_BASE_URL", "http://localhost:8000").rstrip("/")
        api_key = os.environ.get("PARTNER_API_KEY") or None
        request_timeout = _float_env("PARTNER_REQUEST_TIMEOUT", "30")
        reply_timeout_raw = os.environ.get("PARTNER_REPLY_TIMEOUT") or None
        reply_timeout = _float_env("PARTNER_REPLY_TIMEOUT", reply_timeout_raw) if reply_timeout_raw else None
        system_prompt = os.environ.get("PARTNER_SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT) or None
        greeting = os.environ.get("PARTNER_GREETING", DEFAULT_GREETING).strip() or None
        fallback_reply = os.environ.get("PARTNER_FALLBACK_REPLY", "").strip() or DEFAULT_FALLBACK_REPLY
        locale = os.environ.get("PARTNER_LOCALE", "ja-JP").strip() or "ja-JP"
        conversation_id = os.environ.get("PARTNER_CONVERSATION_ID") or ""
        debug_raw = os.environ.get("PARTNER_DEBUG", "false").lower()
        debug = debug_raw in {"1", "true", "yes", "on"}
        mode = os.environ.get("PARTNER_MODE", "console").lower()
        whisper_host = os.environ.get("PARTNER_WHISPER_HOST", "localhost")
        whisper_port = _int_env("PARTNER_WHISPER_PORT", "10300")
        piper_host = os.environ.get("PARTNER_PIPER_HOST", "localhost")
        piper_port = _int_env("PARTNER_PIPER_PORT", "10200")
        tts_voice = os.environ.get("PARTNER_TTS_VOICE") or None
        record_seconds = _float_env("PARTNER_RECORD_SECONDS", "30")
        silence_seconds = _float_env("PARTNER_SILENCE_SECONDS", "1.5")

        return cls(
            base_url=base_url,
            api_key=api_key,
            request_timeout=request_timeout,
            reply_timeout=reply_timeout,
            system_prompt=system_prompt,
            greeting=greeting,
            fallback_reply=fallback_reply,
            locale=locale,
            conversation_id=conversation_id,
            debug=debug,
            mode=mode,
            whisper_host=whisper_host,
            whisper_port=whisper_port,
            piper_host=piper_host,
            piper_port=piper_port,
            tts_voice=tts_voice,
            record_seconds=record_seconds,
            silence_seconds=silence_seconds,
        )

    def validate(self) -> None:
        """Raise :class:`ConfigurationMissing` when the app cannot function."""
        if not self.api_key:
            raise ConfigurationMissing("Critical Error: PARTNER_API_KEY is not configured. The application cannot function.")
        if self.mode not in {"console", "audio"}:
            raise ConfigurationMissing(f"Unknown PARTNER_MODE '{self.mode}'; expected 'console' or 'audio'.")


def _float_env(name: str, default: str) -> float:
    raw = os.environ.get(name) or default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc


def _int_env(name: str, default: str) -> int:
    raw = os.environ.get(name) or default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
