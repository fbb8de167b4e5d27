"""Tests for the register() minter."""

import asyncio
import time

from web3 import Web3
from web3.exceptions import TransactionNotFound

from conftest import TEST_ADDRESS, TEST_KEY, TX_HASH
from domainmint.minter import Minter


def test_mock_mode_without_key():
    m = Minter(private_key="")

    result = asyncio.run(m.register("satoshi", "Letter"))

    assert m.mock_mode is True
    assert result["minted"] is True
    assert result["mock"] is True
    assert result["tx_hash"] == "0x" + "0" * 64


def test_fee_defaults_to_one_hundredth_ether():
    m = Minter(private_key="")
    assert m.fee_wei == Web3.to_wei("0.01", "ether")


def test_keyed_minter_address():
    m = Minter(private_key=TEST_KEY)
    assert m.mock_mode is False
    assert m.address == TEST_ADDRESS


def test_register_success(chain_minter):
    result = asyncio.run(chain_minter.register("satoshi", "Letter"))

    assert result == {
        "minted": True,
        "tx_hash": TX_HASH,
        "block_number": 123,
        "gas_used": 90000,
    }
    chain_minter.registry.functions.register.assert_called_once_with("satoshi", "Letter")

    sent_tx = chain_minter.w3.eth.account.sign_transaction.call_args.args[0]
    assert sent_tx["value"] == Web3.to_wei("0.01", "ether")
    assert sent_tx["from"] == TEST_ADDRESS
    assert sent_tx["nonce"] == 7
    assert sent_tx["gas"] == 120000


def test_low_gas_price_keeps_tip_under_cap(chain_minter):
    chain_minter.w3.eth.gas_price = Web3.to_wei(1, "gwei")
    chain_minter.w3.eth.max_priority_fee = Web3.to_wei(30, "gwei")

    asyncio.run(chain_minter.register("satoshi", "Letter"))

    tx = chain_minter.w3.eth.estimate_gas.call_args.args[0]
    assert tx["maxPriorityFeePerGas"] == Web3.to_wei(30, "gwei")
    assert tx["maxPriorityFeePerGas"] <= tx["maxFeePerGas"]
    assert tx["maxFeePerGas"] == Web3.to_wei(31, "gwei")


def test_high_gas_price_doubles_cap(chain_minter):
    chain_minter.w3.eth.gas_price = Web3.to_wei(50, "gwei")

    max_fee, priority = chain_minter.fee_caps()

    assert max_fee == Web3.to_wei(100, "gwei")
    assert priority == Web3.to_wei(1, "gwei")


def test_configured_priority_fee_skips_node_query():
    m = Minter(private_key=TEST_KEY, priority_fee_gwei="2.5")
    m.w3 = chain = type("W3", (), {})()
    chain.eth = type("Eth", (), {"gas_price": Web3.to_wei(1, "gwei")})()

    max_fee, priority = m.fee_caps()

    assert priority == Web3.to_wei("2.5", "gwei")
    assert max_fee == Web3.to_wei("3.5", "gwei")


def test_register_reverted(chain_minter):
    chain_minter.w3.eth.wait_for_transaction_receipt.return_value = {
        "status": 0,
        "blockNumber": 123,
        "gasUsed": 90000,
    }

    result = asyncio.run(chain_minter.register("satoshi", "Letter"))

    assert result["minted"] is False
    assert result["tx_hash"] == TX_HASH
    assert result["error"] == "Transaction reverted"


def test_gas_estimation_failure_does_not_send(chain_minter):
    chain_minter.w3.eth.estimate_gas.side_effect = Exception("execution reverted: name taken")

    result = asyncio.run(chain_minter.register("satoshi", "Letter"))

    assert result["minted"] is False
    assert "name taken" in result["error"]
    chain_minter.w3.eth.send_raw_transaction.assert_not_called()


def test_insufficient_balance_does_not_send(chain_minter):
    chain_minter.w3.eth.get_balance.return_value = Web3.to_wei("0.005", "ether")

    result = asyncio.run(chain_minter.register("satoshi", "Letter"))

    assert result["minted"] is False
    assert "insufficient funds" in result["error"]
    chain_minter.w3.eth.send_raw_transaction.assert_not_called()


def test_receipt_timeout_keeps_tx_hash(chain_minter):
    chain_minter.w3.eth.wait_for_transaction_receipt.side_effect = TimeoutError("not mined")

    result = asyncio.run(chain_minter.register("satoshi", "Letter"))

    assert result["minted"] is False
    assert result["tx_hash"] == TX_HASH
    assert "confirmation failed" in result["error"]


def test_rpc_error_is_reported(chain_minter):
    chain_minter.w3.eth.get_transaction_count.side_effect = ConnectionError("rpc unreachable")

    result = asyncio.run(chain_minter.register("satoshi", "Letter"))

    assert result["minted"] is False
    assert "rpc unreachable" in result["error"]
    assert "tx_hash" not in result


def test_register_does_not_block_event_loop(chain_minter):
    def slow_receipt(tx_hash, timeout):
        time.sleep(0.5)
        return {"status": 1, "blockNumber": 123, "gasUsed": 90000}

    chain_minter.w3.eth.wait_for_transaction_receipt.side_effect = slow_receipt

    async def scenario():
        started = time.monotonic()
        mint = asyncio.create_task(chain_minter.register("satoshi", "Letter"))
        await asyncio.sleep(0.05)
        ticked_after = time.monotonic() - started
        return ticked_after, await mint

    ticked_after, result = asyncio.run(scenario())

    assert ticked_after < 0.4
    assert result["minted"] is True


class TestCheckTransaction:
    def test_mined(self, chain_minter):
        chain_minter.w3.eth.get_transaction_receipt.return_value = {"status": 1, "blockNumber": 321}

        check = asyncio.run(chain_minter.check_transaction(TX_HASH))

        assert check == {"state": "minted", "block_number": 321}

    def test_reverted(self, chain_minter):
        chain_minter.w3.eth.get_transaction_receipt.return_value = {"status": 0, "blockNumber": 321}

        assert asyncio.run(chain_minter.check_transaction(TX_HASH))["state"] == "reverted"

    def test_pending(self, chain_minter):
        chain_minter.w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("no receipt")
        chain_minter.w3.eth.get_transaction.return_value = {"hash": TX_HASH, "blockNumber": None}

        assert asyncio.run(chain_minter.check_transaction(TX_HASH))["state"] == "pending"

    def test_dropped(self, chain_minter):
        chain_minter.w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("no receipt")
        chain_minter.w3.eth.get_transaction.side_effect = TransactionNotFound("unknown tx")

        assert asyncio.run(chain_minter.check_transaction(TX_HASH))["state"] == "lost"

    def test_rpc_failure_is_unknown(self, chain_minter):
        chain_minter.w3.eth.get_transaction_receipt.side_effect = ConnectionError("rpc unreachable")

        assert asyncio.run(chain_minter.check_transaction(TX_HASH))["state"] == "unknown"

    def test_mock_mode_reports_lost(self):
        check = asyncio.run(Minter(private_key="").check_transaction(TX_HASH))

        assert check["state"] == "lost"
