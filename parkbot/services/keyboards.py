# parkbot/services/keyboards.py
"""Reply/inline keyboard builders and the menu-label → command reverse lookup."""

from typing import Optional

from parkbot.services.messages import t, LANGUAGE_NAMES

# Menu buttons per language, in display order
MENU_LABELS = {
    "en": {
        "/start": "🏠 Start", "/help": "❓ Help",
        "/link": "🔗 Link Account", "/status": "📋 Status",
        "/spaces": "🅿️ Spaces", "/reserve": "✅ Reserve",
        "/preferences": "⚙️ Preferences", "/wallet": "👛 Wallet",
        "/app": "🌐 Web App", "/lang": "🌍 Language",
    },
    "sr": {
        "/start": "🏠 Početak", "/help": "❓ Pomoć",
        "/link": "🔗 Poveži Nalog", "/status": "📋 Status",
        "/spaces": "🅿️ Mesta", "/reserve": "✅ Rezerviši",
        "/preferences": "⚙️ Postavke", "/wallet": "👛 Novčanik",
        "/app": "🌐 Web Aplikacija", "/lang": "🌍 Jezik",
    },
    "de": {
        "/start": "🏠 Start", "/help": "❓ Hilfe",
        "/link": "🔗 Konto Verknüpfen", "/status": "📋 Status",
        "/spaces": "🅿️ Parkplätze", "/reserve": "✅ Reservieren",
        "/preferences": "⚙️ Einstellungen", "/wallet": "👛 Wallet",
        "/app": "🌐 Web-App", "/lang": "🌍 Sprache",
    },
}


def command_from_label(text: str, lang: str = "en") -> Optional[str]:
    """Reverse lookup: user's language first, then every other language."""
    for code in [lang] + [c for c in MENU_LABELS if c != lang]:
        for command, label in MENU_LABELS.get(code, {}).items():
            if label == text:
                return command
    return None


def menu_keyboard(lang: str = "en") -> dict:
    labels = list((MENU_LABELS.get(lang) or MENU_LABELS["en"]).values())
    rows = [[{"text": labels[i]}, {"text": labels[i + 1]}] for i in range(0, len(labels), 2)]
    return {"keyboard": rows, "resize_keyboard": True, "one_time_keyboard": False}


def _inline(rows) -> dict:
    return {"inline_keyboard": rows}


def spaces_keyboard(spaces) -> dict:
    rows = []
    for space in spaces:
        zone = space.zone.name if space.zone else "—"
        label = f"#{space.id} · {zone}" + (" 💎" if space.zone and space.zone.is_premium else "")
        rows.append([{"text": label, "callback_data": f"reserve_space:{space.id}"}])
    return _inline(rows)


def payment_rail_keyboard(space_id: int, lang: str) -> dict:
    return _inline([
        [{"text": t("btn_pay_stars", lang), "callback_data": f"payment_stars:{space_id}"}],
        [{"text": t("btn_pay_ton", lang), "callback_data": f"payment_ton:{space_id}"}],
        [{"text": t("btn_cancel", lang), "callback_data": "reserve_cancel"}],
    ])


def payment_sent_keyboard(space_id: int, lang: str) -> dict:
    return _inline([
        [{"text": t("btn_payment_sent", lang), "callback_data": f"payment_sent:{space_id}"}],
        [{"text": t("btn_cancel", lang), "callback_data": "reserve_cancel"}],
    ])


def language_keyboard() -> dict:
    return _inline([[{"text": name, "callback_data": f"lang:{code}"}] for code, name in LANGUAGE_NAMES.items()])


def web_app_keyboard(url: str, lang: str) -> dict:
    return _inline([[{"text": t("btn_open_app", lang), "web_app": {"url": url}}]])


def preferences_keyboard(lang: str) -> dict:
    return _inline([[{"text": t("btn_toggle_notifications", lang), "callback_data": "prefs:toggle"}]])
