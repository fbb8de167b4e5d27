"""Showcase NFT metadata from the edition contract, with mock mode for development."""
import asyncio
import logging
from typing import Optional

import httpx
from web3 import Web3
from . import config

logger = logging.getLogger(__name__)

# ERC-1155 metadata extension
EDITION_ABI = [
    {
        "inputs": [{"name": "id", "type": "uint256"}],
        "name": "uri",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    }
]


class EditionReader:
    """Reads token metadata for the storefront's showcase card."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        edition_address: Optional[str] = None,
        gateway: Optional[str] = None,
        mock_mode: Optional[bool] = None,
    ):
        self.edition_address = edition_address if edition_address is not None else config.EDITION_ADDRESS
        self.gateway = gateway or config.IPFS_GATEWAY
        self.mock_mode = config.CHAIN_MOCK_MODE if mock_mode is None else mock_mode
        self.w3 = Web3(Web3.HTTPProvider(rpc_url or config.RPC_URL)) if not self.mock_mode else None

    def resolve_uri(self, uri: str, token_id: int) -> str:
        """Fill the ERC-1155 {id} placeholder and route ipfs:// through the gateway."""
        uri = uri.replace("{id}", format(token_id, "064x"))
        if uri.startswith("ipfs://"):
            return self.gateway.rstrip("/") + "/" + uri[len("ipfs://"):]
        return uri

    async def get_token(self, token_id: int) -> dict:
        """Fetch name, description and image of an edition token."""
        if self.mock_mode:
            return self._mock_token(token_id)

        if not self.edition_address:
            raise LookupError("No edition contract configured")

        edition = self.w3.eth.contract(
            address=Web3.to_checksum_address(self.edition_address),
            abi=EDITION_ABI
        )
        uri = await asyncio.to_thread(edition.functions.uri(token_id).call)
        if not uri:
            raise LookupError(f"Token {token_id} has no metadata URI")

        async with httpx.AsyncClient(timeout=30.0) as client:
            resp = await client.get(self.resolve_uri(uri, token_id))
            resp.raise_for_status()
            metadata = resp.json()

        image = metadata.get("image", "")
        if image:
            image = self.resolve_uri(image, token_id)

        return {
            "token_id": token_id,
            "name": metadata.get("name", ""),
            "description": metadata.get("description", ""),
            "image": image,
            "price": self._price(),
        }

    def _price(self) -> dict:
        return {"amount": config.PRICE_CENTS, "currency": config.PRICE_CURRENCY}

    def _mock_token(self, token_id: int) -> dict:
        """Mock token metadata."""
        return {
            "token_id": token_id,
            "name": f"Domain Pass #{token_id}",
            "description": f"[MOCK] Mint your own {config.DOMAIN_SUFFIX} name",
            "image": "",
            "price": self._price(),
            "mock": True,
        }


# Global reader instance
edition = EditionReader()
