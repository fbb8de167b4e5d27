"""Configuration for the Domain Mint backend."""
import os
import re
from dotenv import load_dotenv

load_dotenv()

# Environment
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
IS_PRODUCTION = ENVIRONMENT == "production"

# Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY", "")
WEBHOOK_SECRET_KEY = os.getenv("WEBHOOK_SECRET_KEY", "")
STRIPE_API_VERSION = os.getenv("STRIPE_API_VERSION", "2022-11-15")

# Use mock intents if no secret key provided
STRIPE_MOCK_MODE = not STRIPE_SECRET_KEY

if IS_PRODUCTION and STRIPE_MOCK_MODE:
    raise RuntimeError("STRIPE_SECRET_KEY is required in production")

# Webhooks are always verified, so production must know the signing secret
if IS_PRODUCTION and not WEBHOOK_SECRET_KEY:
    raise RuntimeError("WEBHOOK_SECRET_KEY is required in production")

# Price of one domain NFT, in the smallest currency unit
PRICE_CENTS = int(os.getenv("PRICE_CENTS", "10000"))
PRICE_CURRENCY = os.getenv("PRICE_CURRENCY", "usd")

# Chain settings (Polygon Mumbai by default)
CHAIN_NAME = os.getenv("CHAIN_NAME", "mumbai")
CHAIN_ID = int(os.getenv("CHAIN_ID", "80001"))
RPC_URL = os.getenv("RPC_URL", "https://rpc-mumbai.maticvigil.com")
REGISTRY_ADDRESS = os.getenv("REGISTRY_ADDRESS", "0xe39aEBC9Ae55b5B84EDA1932416cEcc49692837e")
MINT_FEE_ETH = os.getenv("MINT_FEE_ETH", "0.01")
RECEIPT_TIMEOUT = int(os.getenv("RECEIPT_TIMEOUT", "120"))
# Tip per gas in gwei; empty means ask the node (eth_maxPriorityFeePerGas)
MAX_PRIORITY_FEE_GWEI = os.getenv("MAX_PRIORITY_FEE_GWEI", "")
# A claim stuck in "minting" this long is assumed abandoned by a crashed worker
MINT_STALE_SECONDS = int(os.getenv("MINT_STALE_SECONDS", str(RECEIPT_TIMEOUT + 300)))

# Showcase edition shown on the storefront (optional)
EDITION_ADDRESS = os.getenv("EDITION_ADDRESS", "")
IPFS_GATEWAY = os.getenv("IPFS_GATEWAY", "https://ipfs.io/ipfs/")

# Minter wallet that signs register() calls and pays the fee
PRIVATE_KEY = os.getenv("PRIVATE_KEY", "")
CHAIN_MOCK_MODE = not PRIVATE_KEY

if IS_PRODUCTION and CHAIN_MOCK_MODE:
    raise RuntimeError("PRIVATE_KEY is required in production for minting")

# Domain names
DOMAIN_SUFFIX = ".arb"
CATEGORIES = ["Letter", "Number", "Emoji", "Kaomoji", "Symbol", "Special Character"]

# CORS - specific origins for security
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
if IS_PRODUCTION and "*" in ALLOWED_ORIGINS:
    raise RuntimeError("Wildcard CORS origin not allowed in production!")

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# Database (SQLite for development, PostgreSQL for production)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./domain_mints.db")

# Rate limiting
RATE_LIMIT_INTENT = os.getenv("RATE_LIMIT_INTENT", "10/minute")
RATE_LIMIT_LOOKUP = os.getenv("RATE_LIMIT_LOOKUP", "30/minute")


# Validation helpers
def is_valid_eth_address(address: str) -> bool:
    """Validate Ethereum address format."""
    return bool(re.match(r'^0x[a-fA-F0-9]{40}$', address))


def sanitize_error(error: Exception) -> str:
    """Remove sensitive details from error messages for user display."""
    msg = str(error)
    # Remove file paths
    msg = re.sub(r'/[^\s]+/', '[path]/', msg)
    # Remove line numbers
    msg = re.sub(r'line \d+', 'line [N]', msg)
    # Remove potential secrets
    msg = re.sub(r'(api[_-]?key|secret|password|token)[=:]\s*\S+', r'\1=[REDACTED]', msg, flags=re.IGNORECASE)
    msg = re.sub(r'\b(sk|rk|whsec)_(test_|live_)?[A-Za-z0-9]+', r'\1_[REDACTED]', msg)
    # Truncate
    return msg[:200] + "..." if len(msg) > 200 else msg
