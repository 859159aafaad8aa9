"""HTTP client for the conversation backend `/chat` endpoint."""

from __future__ import annotations

import asyncio
import json
import logging
import socket
import ssl
import urllib.error
import urllib.request
import uuid
from typing import Dict, Iterable, Optional

from ..exceptions import ChatClientError
from ..models import ChatResponse, ChatSession

logger = logging.getLogger(__name__)


class HttpChatClient:
    """
    Minimal HTTP client that talks to the conversation backend.

    The backend keeps history per ``conversation_id``; the session handle created
    by :meth:`create_session` is reused for every turn.

    Usage:
        >>> client = HttpChatClient("http://localhost:8000", api_key="secret")
        >>> session = client.create_session()
        >>> reply = await client.send_user_utterance("こんにちは", session)
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        system_prompt: Optional[str] = None,
        conversation_id: Optional[str] = None,
        debug: bool = False,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self._endpoint = f"{base_url.rstrip('/')}/chat"
        self._api_key = api_key
        self._timeout = timeout
        self._system_prompt = system_prompt
        self._conversation_id = conversation_id
        self._debug = debug
        self._ssl_context = ssl_context

    def create_session(self) -> ChatSession:
        """Create the conversation context shared by every turn."""
        conversation_id = self._conversation_id or f"session-{uuid.uuid4()}"
        return ChatSession(conversation_id=conversation_id, system_prompt=self._system_prompt)

    async def send_user_utterance(self, text: str, session: ChatSession) -> str:
        """Send one user utterance without blocking the event loop."""
        response = await asyncio.to_thread(self.chat, text, session=session)
        return response.text

    def chat(self, message: str, *, session: ChatSession) -> ChatResponse:
        """Send a single message and validate the reply shape."""
        payload: Dict[str, object] = {
            "message": message,
            "conversation_id": session.conversation_id,
            "debug": self._debug,
        }
        if session.system_prompt:
            payload["system_prompt"] = session.system_prompt

        request = urllib.request.Request(
            self._endpoint,
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers=self._headers(),
            method="POST",
        )

        logger.debug("Sending to %s...", self._endpoint)
        try:
            with urllib.request.urlopen(request, timeout=self._timeout, context=self._ssl_context) as response:  # type: ignore[arg-type]
                body = response.read()
                content_type = response.headers.get("Content-Type", "")
                logger.debug("Received response (%d bytes)", len(body))
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="ignore")
            raise ChatClientError(f"Chat request failed ({exc.code}): {detail}") from exc
        except urllib.error.URLError as exc:
            raise ChatClientError(f"Chat request could not reach the server: {exc.reason}") from exc
        except (TimeoutError, socket.timeout) as exc:
            raise ChatClientError(f"Chat request timed out after {self._timeout}s") from exc

        if "application/json" not in content_type:
            raise ChatClientError(f"Unexpected content type: {content_type}")

        try:
            data = json.loads(body.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise ChatClientError("Chat response was not valid JSON") from exc
        if not isinstance(data, dict):
            raise ChatClientError("Chat response was not a JSON object")

        text = _extract_assistant_text(data)
        return ChatResponse(text=text, conversation_id=_extract_conversation_id(data), raw=data)

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers


def _extract_assistant_text(payload: Dict[str, object]) -> str:
    """
    Normalize multiple plausible response shapes to a string.

    Accepted shapes (first match wins):
        {"data": {"response": "text"}}
        {"reply": "text"}
        {"message": {"role": "assistant", "content": "text"}}
        {"choices": [{"message": {"role": "assistant", "content": "text"}}]}
    """

    data = payload.get("data")
    if isinstance(data, dict):
        response = data.get("response")
        if isinstance(response, str) and response.strip():
            return response

    reply = payload.get("reply")
    if isinstance(reply, str) and reply.strip():
        return reply

    message = payload.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, str) and content.strip():
            return content

    choices = payload.get("choices")
    if isinstance(choices, Iterable) and not isinstance(choices, (str, bytes)):
        for choice in choices:
            if isinstance(choice, dict):
                msg = choice.get("message")
                if isinstance(msg, dict):
                    content = msg.get("content")
                    if isinstance(content, str) and content.strip():
                        return content

    raise ChatClientError("Chat response did not contain assistant content")


def _extract_conversation_id(payload: Dict[str, object]) -> Optional[str]:
    data = payload.get("data")
    if isinstance(data, dict):
        conv = data.get("conversation_id")
        if isinstance(conv, str):
            return conv
    message = payload.get("message")
    if isinstance(message, dict):
        conv = message.get("conversation_id")
        if isinstance(conv, str):
            return conv
    return None
