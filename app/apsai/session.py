"""Chat conversation session: ordered history plus the streaming state machine."""

from __future__ import annotations

import asyncio
import itertools
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable

from apsai.gemini import GeminiGateway
from apsai.schemas import ChatMessage, ChatTurn

EmitFn = Callable[[str, dict[str, Any]], Awaitable[None]]

CHAT_ERROR_NOTICE = "Sorry, I encountered an error. Please try again."

_FRAGMENT = "fragment"
_END = "end"
_FAILED = "failed"


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    STREAMING = "streaming"


async def _no_emit(event_name: str, payload: dict[str, Any]) -> None:
    _ = (event_name, payload)


class ConversationSession:
    """Owns one chat history and allows a single submission in flight at a time.

    Each accepted submission appends a sealed user message and an empty model
    placeholder. Fragments from the gateway stream are pushed onto a channel by a
    producer task and applied, in order, by this session only. A failure anywhere
    in the stream replaces the placeholder text with ``CHAT_ERROR_NOTICE``.
    """

    def __init__(self, gateway: GeminiGateway, *, emit: EmitFn | None = None):
        self._gateway = gateway
        self._emit = emit or _no_emit
        self._messages: list[ChatMessage] = []
        self._ids = itertools.count(1)
        self._state = SessionState.IDLE
        self._errored = False
        self.input = ""
        self.thinking_mode = False
        self._pending: tuple[ChatMessage, ChatMessage, list[ChatTurn]] | None = None

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        # Copies, so only the session itself can change a message.
        return tuple(m.model_copy() for m in self._messages)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def errored(self) -> bool:
        return self._errored

    @property
    def is_loading(self) -> bool:
        return self._state is not SessionState.IDLE

    def toggle_thinking_mode(self) -> bool:
        self.thinking_mode = not self.thinking_mode
        return self.thinking_mode

    def can_submit(self, text: str | None = None) -> bool:
        candidate = self.input if text is None else text
        return bool(candidate.strip()) and self._state is SessionState.IDLE

    def _new_message(self, role: str, text: str, thinking: bool, *, sealed: bool) -> ChatMessage:
        return ChatMessage(id=str(next(self._ids)), role=role, text=text, thinking=thinking, sealed=sealed)

    def reserve(self, text: str | None = None) -> ChatMessage | None:
        """Claim the session for one submission without awaiting anything.

        Appends the sealed user message and the empty placeholder and moves to
        ``AWAITING_RESPONSE``. Returns a copy of the placeholder, or ``None`` when
        the text is blank or another submission is still in flight.
        """
        candidate = (self.input if text is None else text).strip()
        if not candidate or self._state is not SessionState.IDLE:
            return None

        thinking = self.thinking_mode
        user_message = self._new_message("user", candidate, thinking, sealed=True)
        self._messages.append(user_message)
        history = [ChatTurn(role=m.role, text=m.text) for m in self._messages]
        placeholder = self._new_message("model", "", thinking, sealed=False)
        self._messages.append(placeholder)
        self.input = ""
        self._state = SessionState.AWAITING_RESPONSE
        self._errored = False
        self._pending = (user_message, placeholder, history)
        return placeholder.model_copy()

    async def submit(self, text: str | None = None, *, emit: EmitFn | None = None) -> ChatMessage | None:
        """Send one user turn and stream the reply into a new placeholder.

        Returns a copy of the sealed model message, or ``None`` when the
        submission was rejected (blank text or another submission still in flight).
        """
        if self.reserve(text) is None:
            return None
        return await self.stream_reply(emit=emit)

    async def stream_reply(self, *, emit: EmitFn | None = None) -> ChatMessage | None:
        """Stream the reply for the submission claimed by ``reserve``."""
        if self._pending is None:
            return None
        user_message, placeholder, history = self._pending
        self._pending = None
        emit = emit or self._emit

        try:
            await emit("chat.user", {"message": user_message.to_wire()})
            await emit("chat.started", {"message_id": placeholder.id, "thinking": placeholder.thinking})
            stream = self._gateway.stream_chat(history, user_message.text, placeholder.thinking)
            await self._drain(stream, placeholder, emit)
        except Exception as exc:
            print(f"[apsai] chat_stream_failed: {type(exc).__name__}: {exc}")
            placeholder.text = CHAT_ERROR_NOTICE
            self._errored = True
        finally:
            placeholder.sealed = True
            self._state = SessionState.IDLE

        if self._errored:
            await self._emit_quietly(emit, "chat.error", {"message": placeholder.to_wire()})
        else:
            await self._emit_quietly(emit, "chat.completed", {"message": placeholder.to_wire()})
        return placeholder.model_copy()

    async def _drain(self, stream: AsyncIterator[str], placeholder: ChatMessage, emit: EmitFn) -> None:
        channel: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()

        async def _produce() -> None:
            try:
                async for fragment in stream:
                    if fragment:
                        await channel.put((_FRAGMENT, fragment))
                await channel.put((_END, None))
            except Exception as exc:
                await channel.put((_FAILED, exc))

        producer = asyncio.create_task(_produce())
        try:
            while True:
                kind, value = await channel.get()
                if kind == _END:
                    break
                if kind == _FAILED:
                    raise value
                if self._state is SessionState.AWAITING_RESPONSE:
                    self._state = SessionState.STREAMING
                placeholder.text += value
                await emit("chat.delta", {"message_id": placeholder.id, "text": value})
        finally:
            if not producer.done():
                producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)

    @staticmethod
    async def _emit_quietly(emit: EmitFn, event_name: str, payload: dict[str, Any]) -> None:
        try:
            await emit(event_name, payload)
        except Exception as exc:
            print(f"[apsai] chat_emit_failed: {event_name}: {type(exc).__name__}: {exc}")
