"""Custom exceptions for the practice partner."""

from __future__ import annotations


class PartnerError(RuntimeError):
    """Base class for errors surfaced to the conversation loop."""


class ConfigurationMissing(PartnerError):
    """Raised when required configuration (e.g. the API key) is absent. Fatal."""


class CaptureUnavailable(PartnerError):
    """Raised when the platform offers no speech recognition capability."""


class PermissionDenied(PartnerError):
    """Raised when microphone access is refused."""


class CaptureStartFailed(PartnerError):
    """Raised when the recognition engine could not begin listening."""


class SynthesisUnavailable(PartnerError):
    """Raised when the platform offers no speech synthesis capability."""


class ChatClientError(PartnerError):
    """Raised when the chat service responds with an error or invalid payload."""


class ReplyTimeout(ChatClientError):
    """Raised when the chat service does not answer within the configured bound."""
