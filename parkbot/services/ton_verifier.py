# parkbot/services/ton_verifier.py
"""
Checks a user-submitted TON transaction hash against a tonapi-style indexer.

GET {TON_API_URL}/blockchain/transactions/{hash}

A transfer counts as payment when the transaction exists, succeeded, has no
outgoing messages, its incoming message is addressed to our recipient, and
the value is within TON_AMOUNT_TOLERANCE_NANO of the expected amount.

Outcomes:
  verified=True                  → mark the ledger row verified
  verified=False, final=True     → the transfer can never match, reject the row
  verified=False, final=False    → not indexed yet, leave the row pending
Transport failures raise UpstreamTransportFailure.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from parkbot.config import settings
from parkbot.services.errors import UpstreamTransportFailure
from parkbot.utils.logger import get_logger

NANO_PER_TON = 1_000_000_000


@dataclass
class TransferCheck:
    verified: bool
    final: bool = True
    reason: Optional[str] = None
    amount_nano: int = 0
    source: Optional[str] = None
    destination: Optional[str] = None


def _normalize_address(address: Optional[str]) -> str:
    return (address or "").strip().lower()


def to_nano(amount_ton: float) -> int:
    return int(round(amount_ton * NANO_PER_TON))


class TonVerifier:
    def __init__(self, api_url: str = None, api_key: str = None, recipient: str = None,
                 tolerance_nano: int = None, timeout: float = None, logger=None,
                 transport: httpx.AsyncBaseTransport = None):
        self.api_url = (api_url or settings.TON_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.TON_API_KEY
        self.recipient = recipient if recipient is not None else settings.TON_RECIPIENT_ADDRESS
        self.tolerance_nano = tolerance_nano if tolerance_nano is not None else settings.TON_AMOUNT_TOLERANCE_NANO
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.logger = logger or get_logger(__name__)
        self._transport = transport

    async def _fetch(self, tx_hash: str) -> Optional[dict]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        url = f"{self.api_url}/blockchain/transactions/{tx_hash}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, headers=headers)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamTransportFailure("ton_indexer", str(e)) from e

    async def verify_transfer(self, tx_hash: str, expected_amount_ton: float,
                              from_address: Optional[str] = None) -> TransferCheck:
        tx = await self._fetch(tx_hash)
        if tx is None:
            self.logger.info(f"[TON] tx={tx_hash} not found (yet)")
            return TransferCheck(verified=False, final=False, reason="transaction not found")

        if tx.get("success") is False:
            return TransferCheck(verified=False, reason="transaction failed on chain")
        if tx.get("out_msgs"):
            return TransferCheck(verified=False, reason="transaction is outgoing")

        in_msg = tx.get("in_msg") or {}
        if not in_msg:
            return TransferCheck(verified=False, reason="no incoming message")

        destination = (in_msg.get("destination") or {}).get("address")
        source = (in_msg.get("source") or {}).get("address")
        amount_nano = int(in_msg.get("value") or 0)
        check = TransferCheck(verified=False, amount_nano=amount_nano, source=source, destination=destination)

        if _normalize_address(destination) != _normalize_address(self.recipient):
            check.reason = "transaction is not addressed to the parking wallet"
        elif abs(amount_nano - to_nano(expected_amount_ton)) > self.tolerance_nano:
            check.reason = (f"amount mismatch: expected {expected_amount_ton} TON, "
                            f"got {amount_nano / NANO_PER_TON} TON")
        elif from_address and _normalize_address(from_address) != _normalize_address(source):
            check.reason = "sender address mismatch"
        else:
            check.verified = True

        self.logger.info(f"[TON] tx={tx_hash} verified={check.verified} reason={check.reason}")
        return check
