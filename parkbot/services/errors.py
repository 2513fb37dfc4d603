# parkbot/services/errors.py
"""
Error taxonomy for the reservation engine.

Every exception here is recovered inside the webhook handler: the user gets
one message in their language and Telegram still receives HTTP 200.
"""


class ParkbotError(Exception):
    """Base class. `message_key` names the user-facing text in services/messages.py."""

    message_key = "generic_error"

    def __init__(self, detail: str = "", **context):
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail
        self.context = context


class SpaceUnavailable(ParkbotError):
    """Target space is not vacant, at validation time or at commit time."""

    def __init__(self, space_id: int, detail: str = "", refund_pending: bool = False):
        super().__init__(detail or f"space {space_id} is not available", space_id=space_id)
        self.space_id = space_id
        # A verified payment lost the race and was flagged for manual refund
        self.refund_pending = refund_pending

    @property
    def message_key(self):
        return "space_taken_after_payment" if self.refund_pending else "space_unavailable"


class NotLinked(ParkbotError):
    """No license plate could be resolved for the chat user after the retry budget."""

    def __init__(self, telegram_user_id: int, tx_reference: str = None):
        super().__init__(f"telegram user {telegram_user_id} has no linked plate",
                         telegram_user_id=telegram_user_id, tx_reference=tx_reference or "")
        self.telegram_user_id = telegram_user_id
        # Payment already recorded for this user; shown so they can finish after /link
        self.tx_reference = tx_reference

    @property
    def message_key(self):
        return "not_linked_payment_kept" if self.tx_reference else "not_linked"


class PaymentNotVerified(ParkbotError):
    """Evidence was presented but the ledger never reached `verified` for it."""

    message_key = "payment_not_verified"

    def __init__(self, tx_reference: str, space_id: int, detail: str = ""):
        super().__init__(detail or f"payment {tx_reference} for space {space_id} is not verified",
                         tx_reference=tx_reference, space_id=space_id)
        self.tx_reference = tx_reference
        self.space_id = space_id


class UnknownPaymentReference(PaymentNotVerified):
    """A submitted transaction hash matches neither a ledger row nor an open payment intent."""

    message_key = "payment_tx_unknown"

    def __init__(self, tx_reference: str):
        super().__init__(tx_reference, 0, f"no pending payment matches {tx_reference}")


class TransferPending(PaymentNotVerified):
    """Transfer not confirmed yet (not indexed, or indexer down). The ledger row stays pending."""

    message_key = "payment_tx_pending"


class TransferRejected(PaymentNotVerified):
    """Final verdict on a transfer reference. The reason is shown to the user."""

    message_key = "payment_tx_rejected"

    def __init__(self, tx_reference: str, space_id: int, reason: str):
        super().__init__(tx_reference, space_id, reason)
        self.context["reason"] = reason
        self.reason = reason


class MalformedEvent(ParkbotError):
    """Unparseable callback argument or payload shape."""

    message_key = "malformed_event"


class UpstreamTransportFailure(ParkbotError):
    """A call to the Telegram Bot API (or the TON indexer) failed."""

    message_key = "generic_error"

    def __init__(self, method: str, detail: str = ""):
        super().__init__(f"{method} failed: {detail}" if detail else f"{method} failed", method=method)
        self.method = method
