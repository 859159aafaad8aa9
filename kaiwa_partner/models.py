"""Shared dataclasses for the practice partner."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Sequence


class Sender(str, Enum):
    """Who authored a message in the visible history."""

    USER = "user"
    SYSTEM = "system"


class TurnState(str, Enum):
    """Phase of the conversation loop owned by the turn controller."""

    IDLE = "idle"
    LISTENING = "listening"
    SUBMITTING = "submitting"
    SPEAKING = "speaking"
    ERROR = "error"


def _new_message_id() -> str:
    return uuid.uuid4().hex


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """Represents a single bubble in the conversation history."""

    text: str
    sender: Sender
    id: str = field(default_factory=_new_message_id)
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class Fragment:
    """One incremental speech-to-text result."""

    text: str
    is_final: bool = False


FragmentBatch = Sequence[Fragment]


@dataclass(frozen=True)
class TranscriptState:
    """
    Snapshot of the transcript for one capture session.

    Attributes:
        finalized: Confirmed text, each final fragment followed by the separator.
        interim: The most recent non-final span, replaced on every batch.
    """

    finalized: str = ""
    interim: str = ""

    @property
    def full_text(self) -> str:
        return self.finalized + self.interim


@dataclass
class ChatSession:
    """
    Conversational context shared by every backend call.

    Created once at startup and passed by reference; the backend uses
    ``conversation_id`` to keep history server-side.
    """

    conversation_id: str
    system_prompt: Optional[str] = None


@dataclass
class ChatResponse:
    """Normalized response returned by the chat service."""

    text: str
    conversation_id: Optional[str]
    raw: Dict[str, Any]
