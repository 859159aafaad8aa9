"""
Kaiwa practice partner package.

A voice-driven conversation partner for practicing spoken Japanese: it listens,
sends the transcript to a conversational backend, and speaks the reply, turn
after turn. The default entrypoint for local experiments is ``python main.py``
or the ``kaiwa-partner`` script.
"""

__all__ = [
    "capture",
    "config",
    "controller",
    "interfaces",
    "models",
    "player",
    "transcript",
    "turns",
]
