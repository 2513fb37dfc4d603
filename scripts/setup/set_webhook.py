# scripts/setup/set_webhook.py
"""
Point the Telegram bot at this backend.
Usage: python scripts/setup/set_webhook.py --url https://bot.example.com
       python scripts/setup/set_webhook.py --delete
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

import argparse
import requests
from parkbot.config import settings

WEBHOOK_PATH = "/api/v1/telegram/webhook"


def set_webhook(base_url: str):
    payload = {
        "url": base_url.rstrip("/") + WEBHOOK_PATH,
        "allowed_updates": ["message", "edited_message", "callback_query", "pre_checkout_query"],
        "drop_pending_updates": False,
    }
    if settings.TELEGRAM_WEBHOOK_SECRET:
        payload["secret_token"] = settings.TELEGRAM_WEBHOOK_SECRET
    resp = requests.post(f"{settings.TELEGRAM_BOT_URL}/setWebhook", json=payload, timeout=10)
    print(f"{'✅' if resp.ok else '❌'} setWebhook → HTTP {resp.status_code}: {resp.json()}")


def delete_webhook():
    resp = requests.post(f"{settings.TELEGRAM_BOT_URL}/deleteWebhook", timeout=10)
    print(f"{'✅' if resp.ok else '❌'} deleteWebhook → HTTP {resp.status_code}: {resp.json()}")


def show_info():
    resp = requests.get(f"{settings.TELEGRAM_BOT_URL}/getWebhookInfo", timeout=10)
    print(f"ℹ️  getWebhookInfo → {resp.json()}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Manage the Telegram webhook")
    parser.add_argument("--url", help="Public base URL of this backend")
    parser.add_argument("--delete", action="store_true")
    args = parser.parse_args()

    try:
        if args.delete:
            delete_webhook()
        elif args.url:
            set_webhook(args.url)
        show_info()
    except requests.exceptions.ConnectionError as e:
        print(f"❌ Cannot reach Telegram: {e}")
        sys.exit(1)
