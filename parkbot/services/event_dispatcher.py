# parkbot/services/event_dispatcher.py
"""
Routes decoded Telegram updates to the reservation engine and command handlers.

Classification, first match wins:
  1. pre-checkout query         → precheckout validation
  2. successful payment         → native-rail confirmation
  3. callback `namespace:arg`   → callbacks registry
  4. slash-command              → commands table
  5. free text: address / tx hash, plate from an unlinked sender,
     menu label (rewritten to its command), else "unknown input"

Every callback is answered and every exception is caught here, so the
webhook can always return 200 to Telegram.
"""

import re
from dataclasses import dataclass, replace
from typing import Optional

from sqlalchemy.orm import Session

from parkbot.config import settings
from parkbot.models.payment_record import RAIL_TON
from parkbot.services import errors
from parkbot.services import keyboards
from parkbot.services import update_parser as updates
from parkbot.services.link_resolver import AccountLinkResolver, normalize_plate
from parkbot.services.messages import t, LANGUAGE_NAMES
from parkbot.services.reservation_machine import (ReservationMachine, ReservationOutcome,
                                                  ReservationState, terminal_state)
from parkbot.services.telegram_client import TelegramClient
from parkbot.utils.logger import bind, get_logger

# User-friendly (EQ…/UQ…, 48 chars) or raw (0:<64 hex>) TON address
WALLET_ADDRESS_PATTERN = re.compile(r"^(?:[EUk0]Q[A-Za-z0-9_-]{46}|-?[0-9]:[0-9a-fA-F]{64})$")
# TON tx hash (hex or base64) or a Telegram payment charge id
TX_REFERENCE_PATTERN = re.compile(r"^(?:[0-9a-fA-F]{64}|[A-Za-z0-9_+/=-]{24,128})$")


@dataclass
class Context:
    event: updates.BaseEvent
    lang: str
    log: object


class EventDispatcher:
    def __init__(self, db: Session, telegram: TelegramClient = None,
                 machine: ReservationMachine = None, logger=None):
        self.db = db
        self.logger = logger or get_logger(__name__)
        self.telegram = telegram or TelegramClient(logger=self.logger)
        self.machine = machine or ReservationMachine(db, logger=self.logger)
        self.resolver: AccountLinkResolver = self.machine.resolver

        self.callbacks = {
            "reserve_space": self._cb_reserve_space,
            "payment_stars": self._cb_payment_stars,
            "payment_ton": self._cb_payment_ton,
            "payment_sent": self._cb_payment_sent,
            "reserve_cancel": self._cb_reserve_cancel,
            "link_account": self._cb_link_account,
            "lang": self._cb_language,
            "prefs": self._cb_preferences,
        }
        # Callbacks whose argument is a space id
        self.space_callbacks = {"reserve_space", "payment_stars", "payment_ton", "payment_sent"}

        self.commands = {
            "/start": self._cmd_start,
            "/help": self._cmd_help,
            "/link": self._cmd_link,
            "/status": self._cmd_status,
            "/spaces": self._cmd_spaces,
            "/reserve": self._cmd_reserve,
            "/wallet": self._cmd_wallet,
            "/lang": self._cmd_lang,
            "/preferences": self._cmd_preferences,
            "/app": self._cmd_app,
        }

    # ── Boundary ─────────────────────────────────────────────────────────
    async def dispatch(self, event: updates.BaseEvent) -> Optional[str]:
        """
        Handle one decoded update. Never raises. Returns the text used to
        answer a callback query (None for other update types).
        """
        log = bind(self.logger, update_id=event.update_id, event=event.kind)
        ctx = Context(event=event, lang="en", log=log)
        callback_text = None
        try:
            ctx.lang = self._language(event)
            callback_text = await self._route(ctx)
        except errors.ParkbotError as e:
            state = terminal_state(e)
            log.warning(f"{type(e).__name__}: {e}" + (f" → {state.value}" if state else ""))
            await self._reply_error(ctx, e)
        except Exception as e:
            log.error(f"Unhandled error while handling update: {e}", exc_info=True)
            self.db.rollback()
            await self._reply_error(ctx, errors.ParkbotError(str(e)))
        finally:
            if isinstance(event, updates.CallbackEvent):
                await self._safe(log, self.telegram.answer_callback_query, event.callback_id, callback_text)
        return callback_text

    def _language(self, event: updates.BaseEvent) -> str:
        if event.telegram_user_id is None:
            return "en"
        return self.resolver.language_for(event.telegram_user_id, event.language_code)

    async def _safe(self, log, send, *args, **kwargs):
        """Outbound call whose failure is logged, never retried and never raised."""
        try:
            return await send(*args, **kwargs)
        except errors.UpstreamTransportFailure as e:
            log.warning(f"[TG] {e}")
            return None

    async def _send(self, ctx: Context, key: str, reply_markup: dict = None, **replacements):
        if ctx.event.chat_id is None:
            return None
        return await self._safe(ctx.log, self.telegram.send_message, ctx.event.chat_id,
                                t(key, ctx.lang, **replacements), reply_markup)

    async def _reply_error(self, ctx: Context, exc: errors.ParkbotError):
        event = ctx.event
        values = {**exc.context, "space_id": getattr(exc, "space_id", None) or exc.context.get("space_id", "")}
        if isinstance(event, updates.PreCheckoutEvent):
            key = "precheckout_invalid" if isinstance(exc, errors.MalformedEvent) else exc.message_key
            await self._safe(ctx.log, self.telegram.answer_pre_checkout_query, event.query_id, False,
                             t(key, ctx.lang, **values))
            return
        await self._send(ctx, exc.message_key, **values)

    async def _route(self, ctx: Context) -> Optional[str]:
        event = ctx.event
        if isinstance(event, updates.PreCheckoutEvent):
            await self._handle_pre_checkout(ctx)
        elif isinstance(event, updates.SuccessfulPaymentEvent):
            await self._handle_successful_payment(ctx)
        elif isinstance(event, updates.CallbackEvent):
            return await self._handle_callback(ctx)
        elif isinstance(event, updates.CommandEvent):
            await self._handle_command(ctx)
        elif isinstance(event, updates.TextEvent):
            await self._handle_text(ctx)
        else:
            ctx.log.warning(f"Malformed update: {getattr(event, 'reason', '')}")
            await self._send(ctx, "unknown_input")
        return None

    # ── Payments ─────────────────────────────────────────────────────────
    async def _handle_pre_checkout(self, ctx: Context):
        event = ctx.event
        space_id = self.machine.precheckout_check(event.invoice_payload)
        ctx.log.info(f"[PRECHECKOUT] query={event.query_id} space={space_id} approved")
        await self._safe(ctx.log, self.telegram.answer_pre_checkout_query, event.query_id, True)

    async def _handle_successful_payment(self, ctx: Context):
        event = ctx.event
        ctx.log.info(f"[PAYMENT] charge={event.charge_id} amount={event.total_amount} {event.currency}")
        outcome = await self.machine.confirm_native_payment(event.charge_id, event.invoice_payload,
                                                            event.telegram_user_id)
        await self._confirm(ctx, outcome)

    async def _confirm(self, ctx: Context, outcome: ReservationOutcome):
        """Same confirmation for a first reservation and for a replayed one."""
        request = outcome.request
        values = dict(space_id=request.space_id, zone_name=outcome.zone_name or "",
                      license_plate=request.license_plate or "")
        if not outcome.is_premium:
            end = f"{outcome.end_time:%H:%M}" if outcome.end_time else ""
            await self._send(ctx, "reserve_free_success", keyboards.menu_keyboard(ctx.lang), end_time=end, **values)
        elif request.rail == RAIL_TON:
            await self._send(ctx, "ton_payment_success", keyboards.menu_keyboard(ctx.lang), **values)
        else:
            await self._send(ctx, "stars_payment_success", keyboards.menu_keyboard(ctx.lang), **values)

    # ── Callbacks ────────────────────────────────────────────────────────
    async def _handle_callback(self, ctx: Context) -> Optional[str]:
        namespace, _, argument = ctx.event.data.partition(":")
        handler = self.callbacks.get(namespace)
        if handler is None:
            raise errors.MalformedEvent(f"unknown callback {ctx.event.data!r}")
        if namespace in self.space_callbacks:
            return await handler(ctx, self._space_id(argument))
        return await handler(ctx, argument)

    @staticmethod
    def _space_id(argument: str) -> int:
        try:
            space_id = int(argument)
        except (TypeError, ValueError):
            raise errors.MalformedEvent(f"space id {argument!r} is not a number")
        if space_id <= 0:
            raise errors.MalformedEvent(f"space id {argument!r} is not positive")
        return space_id

    async def _cb_reserve_space(self, ctx: Context, space_id: int):
        outcome = await self.machine.select_space(space_id, ctx.event.telegram_user_id)
        if outcome.state == ReservationState.RESERVED:
            await self._confirm(ctx, outcome)
        else:
            await self._send(ctx, "reserve_choose_payment",
                             keyboards.payment_rail_keyboard(space_id, ctx.lang),
                             zone_name=outcome.zone_name, space_id=space_id,
                             amount_ton=outcome.amount_ton, hours=outcome.hours)
        return t("reserve_processing", ctx.lang)

    async def _cb_payment_stars(self, ctx: Context, space_id: int):
        outcome = self.machine.start_native_payment(space_id, ctx.event.telegram_user_id)
        account = self.resolver.lookup(ctx.event.telegram_user_id)
        values = dict(space_id=space_id, zone_name=outcome.zone_name or "",
                      license_plate=account.license_plate if account else "")
        await self.telegram.send_invoice(
            ctx.event.chat_id,
            title=t("stars_invoice_title", ctx.lang, **values),
            description=t("stars_invoice_description", ctx.lang, **values),
            payload={"space_id": space_id, "zone_name": outcome.zone_name,
                     "amount_ton": outcome.amount_ton, "payment_type": "stars"},
            label=t("stars_price_label", ctx.lang),
            amount=outcome.stars_amount,
        )
        return None

    async def _cb_payment_ton(self, ctx: Context, space_id: int):
        outcome = await self.machine.start_manual_payment(space_id, ctx.event.telegram_user_id)
        await self._send(ctx, "ton_payment_instructions",
                         keyboards.payment_sent_keyboard(space_id, ctx.lang),
                         amount_ton=outcome.amount_ton, recipient_address=settings.TON_RECIPIENT_ADDRESS,
                         space_id=space_id, zone_name=outcome.zone_name or "")
        return None

    async def _cb_payment_sent(self, ctx: Context, space_id: int):
        await self._send(ctx, "payment_enter_tx")
        return t("payment_waiting_tx", ctx.lang)

    async def _cb_reserve_cancel(self, ctx: Context, _argument: str):
        closed = self.machine.cancel_pending(ctx.event.telegram_user_id)
        ctx.log.info(f"[RSM] cancelled by user, {closed} open intent(s) closed")
        await self._send(ctx, "reserve_cancelled", keyboards.menu_keyboard(ctx.lang))
        return t("reserve_cancelled", ctx.lang)

    async def _cb_link_account(self, ctx: Context, _argument: str):
        await self._send(ctx, "link_usage")
        return None

    async def _cb_language(self, ctx: Context, code: str):
        if code not in LANGUAGE_NAMES:
            raise errors.MalformedEvent(f"unsupported language {code!r}")
        self.resolver.set_language(ctx.event.telegram_user_id, code)
        ctx.lang = code
        await self._send(ctx, "language_changed", keyboards.menu_keyboard(code), language=LANGUAGE_NAMES[code])
        return None

    async def _cb_preferences(self, ctx: Context, action: str):
        if action != "toggle":
            raise errors.MalformedEvent(f"unknown preferences action {action!r}")
        enabled = self.resolver.toggle_notifications(ctx.event.telegram_user_id)
        if enabled is None:
            raise errors.NotLinked(ctx.event.telegram_user_id)
        await self._send(ctx, "preferences_on" if enabled else "preferences_off")
        return None

    # ── Free text ────────────────────────────────────────────────────────
    async def _handle_text(self, ctx: Context):
        text = ctx.event.text.strip()

        if WALLET_ADDRESS_PATTERN.match(text):
            await self._wallet_connect(ctx, text)
            return
        if TX_REFERENCE_PATTERN.match(text):
            outcome = await self.machine.submit_transfer_reference(text, ctx.event.telegram_user_id)
            await self._confirm(ctx, outcome)
            return

        plate = normalize_plate(text)
        if plate and self.resolver.lookup(ctx.event.telegram_user_id) is None:
            await self._link(ctx, plate)
            return

        command = keyboards.command_from_label(text, ctx.lang)
        if command:
            ctx.log.debug(f"Menu label {text!r} → {command}")
            e = ctx.event
            rewritten = updates.CommandEvent(e.update_id, e.telegram_user_id, e.chat_id,
                                             e.language_code, e.username, command=command)
            await self._handle_command(replace(ctx, event=rewritten))
            return

        await self._send(ctx, "unknown_input")

    async def _wallet_connect(self, ctx: Context, address: str):
        if not self.resolver.set_wallet(ctx.event.telegram_user_id, address):
            raise errors.NotLinked(ctx.event.telegram_user_id)
        ctx.log.info(f"[WALLET] connected {address[:6]}…{address[-4:]}")
        await self._send(ctx, "wallet_saved", address=address)

    async def _link(self, ctx: Context, plate: str):
        e = ctx.event
        self.resolver.link(e.telegram_user_id, e.chat_id, plate, username=e.username, language=ctx.lang)
        await self._send(ctx, "link_success", keyboards.menu_keyboard(ctx.lang), plate=plate)

    # ── Commands ─────────────────────────────────────────────────────────
    async def _handle_command(self, ctx: Context):
        handler = self.commands.get(ctx.event.command)
        if handler is None:
            await self._send(ctx, "unknown_input")
            return
        ctx.log.info(f"Command {ctx.event.command} from tg={ctx.event.telegram_user_id}")
        await handler(ctx)

    async def _cmd_start(self, ctx: Context):
        await self._send(ctx, "welcome", keyboards.menu_keyboard(ctx.lang))

    async def _cmd_help(self, ctx: Context):
        await self._send(ctx, "help", keyboards.menu_keyboard(ctx.lang))

    async def _cmd_link(self, ctx: Context):
        if not ctx.event.args:
            await self._send(ctx, "link_usage")
            return
        plate = normalize_plate(ctx.event.args)
        if plate is None:
            await self._send(ctx, "link_invalid", plate=ctx.event.args)
            return
        await self._link(ctx, plate)

    async def _cmd_status(self, ctx: Context):
        account = self.resolver.lookup(ctx.event.telegram_user_id)
        if account is None or not account.license_plate:
            raise errors.NotLinked(ctx.event.telegram_user_id)
        active = self.machine.store.active_reservations_for_plate(account.license_plate)
        if not active:
            await self._send(ctx, "status_none")
            return
        lines = [t("status_header", ctx.lang)]
        lines += [t("status_line", ctx.lang, space_id=r.parking_space_id, end_time=f"{r.end_time:%Y-%m-%d %H:%M}")
                  for r in active]
        await self._safe(ctx.log, self.telegram.send_message, ctx.event.chat_id, "\n".join(lines))

    async def _cmd_spaces(self, ctx: Context):
        counts = {}
        for space in self.machine.store.vacant_spaces(limit=500):
            name = space.zone.name if space.zone else "—"
            counts[name] = counts.get(name, 0) + 1
        if not counts:
            await self._send(ctx, "reserve_no_spaces")
            return
        lines = [t("spaces_header", ctx.lang)]
        lines += [t("spaces_line", ctx.lang, zone_name=name, count=count) for name, count in sorted(counts.items())]
        await self._safe(ctx.log, self.telegram.send_message, ctx.event.chat_id, "\n".join(lines))

    async def _cmd_reserve(self, ctx: Context):
        spaces = [s for s in self.machine.store.vacant_spaces(limit=20)
                  if s.zone is None or s.zone.is_active]
        if not spaces:
            await self._send(ctx, "reserve_no_spaces")
            return
        await self._send(ctx, "reserve_choose_space", keyboards.spaces_keyboard(spaces))

    async def _cmd_wallet(self, ctx: Context):
        if ctx.event.args and WALLET_ADDRESS_PATTERN.match(ctx.event.args):
            await self._wallet_connect(ctx, ctx.event.args)
            return
        account = self.resolver.lookup(ctx.event.telegram_user_id)
        if account and account.ton_wallet_address:
            await self._send(ctx, "wallet_show", address=account.ton_wallet_address)
        else:
            await self._send(ctx, "wallet_none")

    async def _cmd_lang(self, ctx: Context):
        await self._send(ctx, "language_choose", keyboards.language_keyboard())

    async def _cmd_preferences(self, ctx: Context):
        account = self.resolver.lookup(ctx.event.telegram_user_id)
        if account is None:
            raise errors.NotLinked(ctx.event.telegram_user_id)
        key = "preferences_on" if account.notifications_enabled else "preferences_off"
        await self._send(ctx, key, keyboards.preferences_keyboard(ctx.lang))

    async def _cmd_app(self, ctx: Context):
        await self._send(ctx, "app_open", keyboards.web_app_keyboard(settings.WEB_APP_URL, ctx.lang))
