# parkbot/utils/clock.py
"""Naive-UTC timestamps, matching how every DateTime column is stored."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
