"""
Pytest configuration and shared fixtures for the Domain Mint backend.
"""

import asyncio
import hashlib
import hmac
import json
import os
import time

import pytest

# Set test environment before importing the app
os.environ["ENVIRONMENT"] = "testing"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_PUBLISHABLE_KEY"] = "pk_test_dummy"
os.environ["WEBHOOK_SECRET_KEY"] = "whsec_test_secret"
os.environ["PRIVATE_KEY"] = ""
os.environ["MAX_PRIORITY_FEE_GWEI"] = ""
os.environ["EDITION_ADDRESS"] = ""
os.environ["DATABASE_URL"] = "sqlite:///./test_domain_mints.db"
os.environ["RATE_LIMIT_INTENT"] = "1000/minute"
os.environ["RATE_LIMIT_LOOKUP"] = "1000/minute"

WEBHOOK_SECRET = os.environ["WEBHOOK_SECRET_KEY"]


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe signs deliveries."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def build_event(
    event_type="payment_intent.succeeded",
    intent_id="pi_test_123",
    metadata=None,
    amount=10000,
    event_id="evt_test_1",
):
    if metadata is None:
        metadata = {"domain": "satoshi", "category": "Letter"}
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": intent_id,
                "object": "payment_intent",
                "amount": amount,
                "currency": "usd",
                "metadata": metadata,
            }
        },
    }


@pytest.fixture
def make_event():
    """Factory for Stripe event payloads."""
    return build_event


@pytest.fixture
def signed_webhook():
    """Factory returning (payload, headers) for a correctly signed event."""

    def _signed(event: dict, secret: str = WEBHOOK_SECRET):
        payload = json.dumps(event).encode("utf-8")
        return payload, {"Stripe-Signature": sign_payload(payload, secret), "Content-Type": "application/json"}

    return _signed


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the SQLite ledger at a fresh per-test file."""
    from domainmint import database

    path = str(tmp_path / "mints.db")
    monkeypatch.setattr(database, "DB_PATH", path)
    asyncio.run(database.init_db())
    return path


@pytest.fixture
def client(db_path):
    """Create a test client for the FastAPI application."""
    from fastapi.testclient import TestClient
    from domainmint.main import app

    with TestClient(app) as test_client:
        yield test_client


# Well-known throwaway key (first Hardhat/Anvil account)
TEST_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
TX_HASH_BYTES = b"\xab" * 32
TX_HASH = "0x" + "ab" * 32


@pytest.fixture
def chain_minter():
    """A keyed minter whose web3 and contract are mocked."""
    from unittest.mock import MagicMock

    from web3 import Web3
    from domainmint.minter import Minter

    m = Minter(private_key=TEST_KEY)
    m.w3 = MagicMock()
    m.registry = MagicMock()

    m.w3.eth.gas_price = 10
    m.w3.eth.max_priority_fee = Web3.to_wei(1, "gwei")
    m.w3.eth.get_transaction_count.return_value = 7
    m.w3.eth.estimate_gas.return_value = 100000
    m.w3.eth.get_balance.return_value = Web3.to_wei(1, "ether")
    m.w3.eth.send_raw_transaction.return_value = TX_HASH_BYTES
    m.w3.eth.wait_for_transaction_receipt.return_value = {
        "status": 1,
        "blockNumber": 123,
        "gasUsed": 90000,
    }
    m.registry.functions.register.return_value.build_transaction.side_effect = lambda params: dict(params)
    return m
