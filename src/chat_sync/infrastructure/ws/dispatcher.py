"""Routes raw inbound frames to typed handlers."""
from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import ValidationError

from chat_sync.application.exceptions import ProtocolError
from chat_sync.domain.value_objects.enums import InboundType
from chat_sync.infrastructure.ws.protocol import Frame

logger = logging.getLogger(__name__)

FrameHandler = Callable[[dict[str, Any]], None]


class MessageDispatcher:
    """Closed dispatch table: one handler per ``InboundType``.

    Frames are handled in arrival order. Malformed frames, unknown types and
    failing handlers are logged and dropped; nothing here raises to the
    transport reader.
    """

    def __init__(self) -> None:
        self._handlers: dict[InboundType, FrameHandler] = {}
        self._error_listeners: list[Callable[[ProtocolError], None]] = []

    def register(self, frame_type: InboundType, handler: FrameHandler) -> Callable[[], None]:
        self._handlers[frame_type] = handler

        def _unregister() -> None:
            if self._handlers.get(frame_type) is handler:
                del self._handlers[frame_type]

        return _unregister

    def missing(self) -> set[InboundType]:
        return set(InboundType) - set(self._handlers)

    def assert_exhaustive(self) -> None:
        missing = self.missing()
        if missing:
            raise ValueError(f"No handler for frame types: {sorted(missing)}")

    def on_protocol_error(self, listener: Callable[[ProtocolError], None]) -> Callable[[], None]:
        self._error_listeners.append(listener)
        return lambda: self._error_listeners.remove(listener)

    def dispatch(self, raw: str | bytes) -> None:
        try:
            frame = Frame.model_validate_json(raw)
        except ValidationError as exc:
            self._protocol_error(ProtocolError(f"malformed frame: {exc.error_count()} error(s)"), raw)
            return

        try:
            frame_type = InboundType(frame.type)
        except ValueError:
            logger.warning("Unhandled frame type: %s", frame.type)
            return

        handler = self._handlers.get(frame_type)
        if handler is None:
            logger.warning("No handler registered for frame type: %s", frame_type)
            return

        payload = frame.data if frame.data is not None else frame.model_dump(exclude_none=True)
        try:
            handler(payload)
        except ValidationError as exc:
            self._protocol_error(ProtocolError(f"invalid {frame_type} payload: {exc.error_count()} error(s)"), raw)
        except ProtocolError as exc:
            self._protocol_error(exc, raw)
        except Exception:
            logger.exception("Handler for %s failed", frame_type)

    def _protocol_error(self, exc: ProtocolError, raw: str | bytes) -> None:
        logger.error("Dropping frame: %s (raw=%.200r)", exc.detail, raw)
        for listener in list(self._error_listeners):
            try:
                listener(exc)
            except Exception:
                logger.exception("Protocol error listener failed")
