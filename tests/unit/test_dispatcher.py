from __future__ import annotations

import json
import logging

import pytest

from chat_sync.domain.value_objects.enums import InboundType, MessageKind, OutboundType
from chat_sync.infrastructure.ws.dispatcher import MessageDispatcher
from chat_sync.infrastructure.ws.handlers import FrameHandlers
from chat_sync.infrastructure.ws.protocol import MessagePayload, SendMessageData, outbound
from chat_sync.services.outbound_queue import OutboundQueue


@pytest.fixture
def dispatcher() -> MessageDispatcher:
    return MessageDispatcher()


def test_routes_data_to_handler(dispatcher):
    seen = []
    dispatcher.register(InboundType.TYPING, seen.append)

    dispatcher.dispatch(json.dumps({"type": "typing", "data": {"chatId": "c", "userId": "u", "isTyping": True}}))

    assert seen == [{"chatId": "c", "userId": "u", "isTyping": True}]


def test_frame_without_data_passes_whole_frame(dispatcher):
    seen = []
    dispatcher.register(InboundType.ERROR, seen.append)

    dispatcher.dispatch('{"type": "error", "error": "rate limited"}')

    assert seen == [{"type": "error", "error": "rate limited"}]


def test_frames_handled_in_arrival_order(dispatcher):
    seen = []
    dispatcher.register(InboundType.MESSAGE, lambda data: seen.append(data["n"]))

    for n in range(5):
        dispatcher.dispatch(json.dumps({"type": "message", "data": {"n": n}}))

    assert seen == [0, 1, 2, 3, 4]


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"data": {}}', '{"type": 5}'])
def test_malformed_frames_are_dropped(dispatcher, raw, caplog):
    errors = []
    dispatcher.on_protocol_error(errors.append)

    with caplog.at_level(logging.ERROR):
        dispatcher.dispatch(raw)

    assert len(errors) == 1
    assert "Dropping frame" in caplog.text


def test_unknown_type_is_dropped_with_warning(dispatcher, caplog):
    with caplog.at_level(logging.WARNING):
        dispatcher.dispatch('{"type": "shrug"}')

    assert "Unhandled frame type: shrug" in caplog.text


def test_invalid_payload_is_protocol_error(dispatcher):
    errors = []
    dispatcher.on_protocol_error(errors.append)
    dispatcher.register(InboundType.MESSAGE, MessagePayload.model_validate)

    dispatcher.dispatch('{"type": "message", "data": {"id": "m1"}}')

    assert len(errors) == 1
    assert "invalid message payload" in errors[0].detail


def test_handler_crash_does_not_propagate(dispatcher):
    seen = []

    def _boom(_data):
        raise RuntimeError("handler bug")

    dispatcher.register(InboundType.PONG, _boom)
    dispatcher.register(InboundType.ERROR, seen.append)

    dispatcher.dispatch('{"type": "pong"}')
    dispatcher.dispatch('{"type": "error", "data": {"error": "x"}}')

    assert seen == [{"error": "x"}]


def test_unregister(dispatcher):
    unregister = dispatcher.register(InboundType.PONG, lambda data: None)
    unregister()

    assert InboundType.PONG in dispatcher.missing()


def test_assert_exhaustive(dispatcher):
    dispatcher.register(InboundType.PONG, lambda data: None)

    with pytest.raises(ValueError):
        dispatcher.assert_exhaustive()


def test_frame_handlers_cover_every_inbound_type(dispatcher, store, manager, clock):
    handlers = FrameHandlers(store, OutboundQueue(store, manager, clock), manager, clock)

    handlers.register_all(dispatcher)

    assert dispatcher.missing() == set()


def test_payloads_accept_snake_case():
    payload = MessagePayload.model_validate({
        "id": "m1",
        "chat_id": "c1",
        "sender_id": "u1",
        "content": "hi",
        "timestamp": 5,
        "correlation_id": "corr",
    })

    assert payload.chat_id == "c1"
    assert payload.correlation_id == "corr"
    assert payload.kind == MessageKind.TEXT


def test_outbound_frame_uses_camel_case():
    frame = outbound(
        OutboundType.SEND_MESSAGE,
        SendMessageData(chat_id="c1", content="hi", kind=MessageKind.IMAGE, correlation_id="corr"),
    )

    assert json.loads(frame.to_wire()) == {
        "type": "send_message",
        "data": {"chatId": "c1", "content": "hi", "type": "image", "correlationId": "corr"},
    }


def test_ping_frame_has_empty_data():
    assert json.loads(outbound(OutboundType.PING).to_wire()) == {"type": "ping", "data": {}}


def test_non_utf8_bytes_are_dropped(dispatcher):
    errors = []
    dispatcher.on_protocol_error(errors.append)

    dispatcher.dispatch(b'{"type": "pong", "x": "\xff\xfe"}')

    assert len(errors) == 1
