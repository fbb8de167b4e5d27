"""Minter that calls register(domain, category) on the name registry contract."""
import asyncio
import logging
from decimal import Decimal
from typing import Optional

from web3 import Web3
from web3.exceptions import TransactionNotFound
from eth_account import Account
from . import config

logger = logging.getLogger(__name__)

# Registry ABI (only the functions we need)
REGISTRY_ABI = [
    {
        "inputs": [
            {"name": "domain", "type": "string"},
            {"name": "category", "type": "string"}
        ],
        "name": "register",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function"
    }
]

DEFAULT_GAS = 300000


class Minter:
    """Signs and sends register() transactions from the minter wallet."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        private_key: Optional[str] = None,
        registry_address: Optional[str] = None,
        fee_eth: Optional[str] = None,
        priority_fee_gwei: Optional[str] = None,
    ):
        self.w3 = Web3(Web3.HTTPProvider(rpc_url or config.RPC_URL))
        self.registry = self.w3.eth.contract(
            address=Web3.to_checksum_address(registry_address or config.REGISTRY_ADDRESS),
            abi=REGISTRY_ABI
        )
        self.fee_wei = Web3.to_wei(Decimal(fee_eth or config.MINT_FEE_ETH), 'ether')
        priority_gwei = priority_fee_gwei if priority_fee_gwei is not None else config.MAX_PRIORITY_FEE_GWEI
        self.priority_fee_wei = Web3.to_wei(Decimal(priority_gwei), "gwei") if priority_gwei else None

        key = private_key if private_key is not None else config.PRIVATE_KEY
        if key:
            self.account = Account.from_key(key)
            self.address = self.account.address
            logger.info(f"Minter initialized with address: {self.address}")
        else:
            self.account = None
            self.address = None
            logger.warning("Minter initialized without private key (mock mode)")

    @property
    def mock_mode(self) -> bool:
        return self.account is None

    def fee_caps(self) -> tuple[int, int]:
        """Return (maxFeePerGas, maxPriorityFeePerGas) with the tip never above the cap."""
        gas_price = self.w3.eth.gas_price
        if self.priority_fee_wei is not None:
            priority = self.priority_fee_wei
        else:
            priority = self.w3.eth.max_priority_fee
        return max(gas_price * 2, gas_price + priority), priority

    async def register(self, domain: str, category: str) -> dict:
        """
        Mint a domain NFT by calling register(domain, category) with the fee.

        Returns:
            Dict with minted, tx_hash, block_number, gas_used, error
        """
        if self.mock_mode:
            logger.warning(f"Mock mode: simulating register({domain!r}, {category!r})")
            return {
                "minted": True,
                "tx_hash": "0x" + "0" * 64,
                "block_number": 0,
                "mock": True
            }

        # web3's HTTP provider blocks, keep it off the event loop
        return await asyncio.to_thread(self._register, domain, category)

    async def check_transaction(self, tx_hash: str) -> dict:
        """
        Look up an earlier register() transaction.

        Returns:
            {"state": "minted" | "reverted" | "pending" | "lost" | "unknown", "block_number": int or None}
        """
        if self.mock_mode:
            return {"state": "lost", "block_number": None}
        return await asyncio.to_thread(self._check_transaction, tx_hash)

    def _check_transaction(self, tx_hash: str) -> dict:
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            receipt = None
        except Exception as e:
            logger.error(f"Receipt lookup failed for {tx_hash}: {e}")
            return {"state": "unknown", "block_number": None}

        if receipt is not None:
            state = "minted" if receipt['status'] == 1 else "reverted"
            return {"state": state, "block_number": receipt['blockNumber']}

        # No receipt: still in the mempool, or dropped by the node
        try:
            self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return {"state": "lost", "block_number": None}
        except Exception as e:
            logger.error(f"Transaction lookup failed for {tx_hash}: {e}")
            return {"state": "unknown", "block_number": None}
        return {"state": "pending", "block_number": None}

    def _register(self, domain: str, category: str) -> dict:
        tx_hash = None
        try:
            call = self.registry.functions.register(domain, category)
            max_fee, priority_fee = self.fee_caps()

            tx = call.build_transaction({
                'from': self.address,
                'value': self.fee_wei,
                'nonce': self.w3.eth.get_transaction_count(self.address),
                'gas': DEFAULT_GAS,
                'maxFeePerGas': max_fee,
                'maxPriorityFeePerGas': priority_fee,
                'chainId': config.CHAIN_ID,
            })

            # Estimate gas
            try:
                gas_estimate = self.w3.eth.estimate_gas(tx)
                tx['gas'] = int(gas_estimate * 1.2)  # 20% buffer
            except Exception as e:
                logger.error(f"Gas estimation failed for {domain}: {e}")
                return {
                    "minted": False,
                    "error": f"Transaction would fail: {str(e)[:100]}"
                }

            # Fee plus worst-case gas must be covered by the minter wallet
            balance = self.w3.eth.get_balance(self.address)
            required = self.fee_wei + tx['gas'] * tx['maxFeePerGas']
            if balance < required:
                logger.error(f"Minter has insufficient funds: {balance} < {required} wei")
                return {
                    "minted": False,
                    "error": "Minter wallet has insufficient funds. Please try again later."
                }

            signed_tx = self.w3.eth.account.sign_transaction(tx, self.account.key)
            tx_hash = Web3.to_hex(self.w3.eth.send_raw_transaction(signed_tx.raw_transaction))

            logger.info(f"Submitted register tx for {domain}: {tx_hash}")

            try:
                receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=config.RECEIPT_TIMEOUT)
            except Exception as e:
                logger.error(f"Waiting for receipt failed: {e}")
                # Transaction was sent but we couldn't confirm
                return {
                    "minted": False,
                    "tx_hash": tx_hash,
                    "error": f"Transaction sent but confirmation failed: {str(e)[:100]}"
                }

            if receipt['status'] == 1:
                logger.info(f"Mint transaction successful: {tx_hash}")
                return {
                    "minted": True,
                    "tx_hash": tx_hash,
                    "block_number": receipt['blockNumber'],
                    "gas_used": receipt['gasUsed']
                }

            logger.error(f"Mint failed (reverted): {tx_hash}")
            return {
                "minted": False,
                "tx_hash": tx_hash,
                "error": "Transaction reverted"
            }

        except Exception as e:
            logger.error(f"Mint execution error for {domain}: {e}")
            result = {
                "minted": False,
                "error": f"Execution failed: {str(e)[:100]}"
            }
            if tx_hash is not None:
                result["tx_hash"] = tx_hash
            return result


# Global minter instance
minter = Minter()
