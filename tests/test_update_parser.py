# tests/test_update_parser.py
"""Unit tests for decoding raw Telegram updates into typed events."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from parkbot.services import errors
from parkbot.services.update_parser import (
    CallbackEvent, CommandEvent, MalformedEvent, PreCheckoutEvent, SuccessfulPaymentEvent, TextEvent,
    parse_invoice_payload, parse_update, split_command,
)
from tests.factories import callback_update, invoice_payload, payment_update, precheckout_update, text_update


class TestVariants:
    def test_pre_checkout(self):
        event = parse_update(precheckout_update(111, invoice_payload(42), query_id="q-9", update_id=5))
        assert isinstance(event, PreCheckoutEvent)
        assert event.update_id == 5
        assert event.query_id == "q-9"
        assert event.telegram_user_id == 111
        assert event.kind == "pre_checkout"

    def test_successful_payment(self):
        event = parse_update(payment_update(111, invoice_payload(42), "charge-1"))
        assert isinstance(event, SuccessfulPaymentEvent)
        assert event.charge_id == "charge-1"
        assert event.chat_id == 111
        assert parse_invoice_payload(event.invoice_payload).space_id == 42

    def test_callback(self):
        event = parse_update(callback_update(111, "reserve_space:42", callback_id="cb-7"))
        assert isinstance(event, CallbackEvent)
        assert event.callback_id == "cb-7"
        assert event.data == "reserve_space:42"
        assert event.language_code == "en"

    def test_command_with_args_and_bot_suffix(self):
        event = parse_update(text_update(111, "/link@ParkirajBot abc123"))
        assert isinstance(event, CommandEvent)
        assert event.command == "/link"
        assert event.args == "abc123"

    def test_free_text(self):
        event = parse_update(text_update(111, "  ABC123 "))
        assert isinstance(event, TextEvent)
        assert event.text == "ABC123"

    def test_payment_wins_over_text(self):
        update = payment_update(111, invoice_payload(42), "charge-1")
        update["message"]["text"] = "/start"
        assert isinstance(parse_update(update), SuccessfulPaymentEvent)


class TestMalformed:
    @pytest.mark.parametrize("payload", [
        {},
        {"update_id": "not-a-number"},
        {"update_id": 1, "callback_query": {"id": "x"}},
        [1, 2, 3],
    ])
    def test_invalid_shapes(self, payload):
        assert isinstance(parse_update(payload), MalformedEvent)

    def test_unsupported_update_type(self):
        event = parse_update({"update_id": 3, "channel_post": {"message_id": 1}})
        assert isinstance(event, MalformedEvent)
        assert event.update_id == 3
        assert event.chat_id is None

    def test_message_without_text(self):
        update = text_update(111, "x")
        del update["message"]["text"]
        update["message"]["photo"] = [{"file_id": "abc"}]
        event = parse_update(update)
        assert isinstance(event, MalformedEvent)
        assert event.chat_id == 111


class TestHelpers:
    def test_split_command(self):
        assert split_command("/START") == ("/start", "")
        assert split_command("/wallet  EQabc ") == ("/wallet", "EQabc")

    @pytest.mark.parametrize("raw", ["", "nope", "{}", '{"space_id": "x"}', '{"space_id": 0}', "[42]",
                                     '{"space_id": 42, "amount_ton": "lots"}'])
    def test_bad_invoice_payload(self, raw):
        with pytest.raises(errors.MalformedEvent):
            parse_invoice_payload(raw)

    def test_invoice_payload_fields(self):
        payload = parse_invoice_payload(invoice_payload(42, amount_ton=2.5))
        assert payload.space_id == 42
        assert payload.amount_ton == 2.5
        assert payload.zone_name == "Centar"
