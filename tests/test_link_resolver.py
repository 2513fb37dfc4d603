# tests/test_link_resolver.py
"""Unit tests for the account-link resolver and the retry helper it uses."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from unittest.mock import AsyncMock

from parkbot.services.errors import NotLinked
from parkbot.services.link_resolver import AccountLinkResolver, normalize_plate
from parkbot.utils.retry import RetryPolicy, retry_until_found
from tests.factories import add_account, make_engine, make_session, make_session_factory


class TestNormalizePlate:
    @pytest.mark.parametrize("raw,expected", [
        ("abc123", "ABC123"),
        ("ABC-123", "ABC123"),
        ("abc 123", "ABC123"),
        (" bg 1234 ab ", "BG1234AB"),
        ("NS123AB", "NS123AB"),
    ])
    def test_valid(self, raw, expected):
        assert normalize_plate(raw) == expected

    def test_spelling_variants_share_one_form(self):
        assert normalize_plate("XYZ 789") == normalize_plate("xyz-789") == normalize_plate("XYZ789")

    @pytest.mark.parametrize("raw", ["", "hello", "12345", "A1", "ABCD12345", "EQ" + "a" * 46])
    def test_invalid(self, raw):
        assert normalize_plate(raw) is None


class TestRetryHelper:
    def test_backoff_is_exponential_and_capped(self):
        policy = RetryPolicy(max_attempts=5, base_delay=0.05, multiplier=2.0, max_delay=0.15)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [0.05, 0.1, 0.15, 0.15]

    @pytest.mark.asyncio
    async def test_stops_at_first_hit(self):
        fetch = AsyncMock(side_effect=[None, "found", "never"])
        sleep = AsyncMock()
        assert await retry_until_found(fetch, RetryPolicy(max_attempts=3), sleep=sleep) == "found"
        assert fetch.await_count == 2
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self):
        fetch = AsyncMock(return_value=None)
        sleep = AsyncMock()
        misses = []
        result = await retry_until_found(fetch, RetryPolicy(max_attempts=3), sleep=sleep, on_miss=misses.append)
        assert result is None
        assert fetch.await_count == 3
        assert sleep.await_count == 2      # no sleep after the last attempt
        assert misses == [1, 2, 3]


class TestResolve:
    @pytest.mark.asyncio
    async def test_linked_user_resolves_first_try(self):
        db = make_session()
        add_account(db, 111, plate="ABC123")
        sleep = AsyncMock()
        resolver = AccountLinkResolver(db, sleep=sleep)
        assert await resolver.resolve(111) == "ABC123"
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_linked_after_budget(self):
        sleep = AsyncMock()
        resolver = AccountLinkResolver(make_session(), policy=RetryPolicy(max_attempts=3), sleep=sleep)
        with pytest.raises(NotLinked) as exc:
            await resolver.resolve(111)
        assert exc.value.telegram_user_id == 111
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_link_committed_by_another_session_during_backoff(self, tmp_path):
        factory = make_session_factory(make_engine(tmp_path / "link.db"))
        payment_db, link_db = factory(), factory()

        async def link_meanwhile(_delay):
            AccountLinkResolver(link_db).link(222, 222, "XYZ789")

        resolver = AccountLinkResolver(payment_db, policy=RetryPolicy(max_attempts=3, base_delay=0.0),
                                       sleep=link_meanwhile)
        assert await resolver.resolve(222) == "XYZ789"
        payment_db.close()
        link_db.close()

    @pytest.mark.asyncio
    async def test_link_beyond_budget_is_not_linked(self):
        db = make_session()
        calls = []

        async def late_link(_delay):
            calls.append(_delay)

        resolver = AccountLinkResolver(db, policy=RetryPolicy(max_attempts=2, base_delay=0.0), sleep=late_link)
        with pytest.raises(NotLinked):
            await resolver.resolve(333)
        assert len(calls) == 1


class TestAccountSettings:
    def test_language_preference_order(self):
        db = make_session()
        resolver = AccountLinkResolver(db)
        assert resolver.language_for(1, "de-DE") == "de"
        assert resolver.language_for(1, "fr") == "en"
        add_account(db, 1, language="sr")
        assert resolver.language_for(1, "de") == "sr"

    def test_relink_updates_plate(self):
        db = make_session()
        resolver = AccountLinkResolver(db)
        resolver.link(1, 1, "ABC123", username="ana", language="de")
        account = resolver.link(1, 1, "XYZ789")
        assert account.license_plate == "XYZ789"
        assert account.language == "de"
        assert account.username == "ana"

    def test_wallet_language_notifications(self):
        db = make_session()
        resolver = AccountLinkResolver(db)
        assert resolver.set_wallet(1, "EQ" + "a" * 46) is False
        assert resolver.toggle_notifications(1) is None

        add_account(db, 1)
        assert resolver.set_wallet(1, "EQ" + "a" * 46) is True
        assert resolver.set_language(1, "sr") is True
        assert resolver.set_language(1, "xx") is False
        assert resolver.toggle_notifications(1) is False
        account = resolver.lookup(1)
        assert account.ton_wallet_address.startswith("EQ")
        assert account.language == "sr"
