"""Domain Mint API - card payments that mint domain-name NFTs."""
import logging
from typing import Optional
from contextlib import asynccontextmanager

import httpx
import stripe
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field, field_validator, model_validator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from . import config
from .payments import gateway, WebhookVerificationError, MissingMetadataError, SUCCEEDED_EVENT
from .minter import minter
from .collection import edition
from . import database as db

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    await db.init_db()
    logger.info("Database initialized")
    yield


app = FastAPI(
    title="Domain Mint",
    description="Pay by card to mint .arb domain NFTs",
    version=VERSION,
    lifespan=lifespan,
)

# Add rate limit error handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS - use specific origins, not wildcard
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
)


def normalize_domain(name: str) -> str:
    """Strip whitespace and an optional .arb suffix from a domain name."""
    name = name.strip()
    if name.lower().endswith(config.DOMAIN_SUFFIX):
        name = name[: -len(config.DOMAIN_SUFFIX)]
    return name


# Wallet address validator
def validate_wallet_address(address: str) -> str:
    """Validate and normalize Ethereum wallet address."""
    if not config.is_valid_eth_address(address):
        raise ValueError("Invalid Ethereum address format")
    return address.lower()


# Request/Response Models
class IntentRequest(BaseModel):
    domain: str = Field(..., min_length=1, max_length=80)
    category: str
    wallet: Optional[str] = None

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v):
        v = normalize_domain(v)
        if not v or len(v) > 63:
            raise ValueError("Domain must be 1-63 characters")
        if any(ch.isspace() for ch in v) or "." in v:
            raise ValueError("Domain cannot contain spaces or dots")
        if not v.isprintable():
            raise ValueError("Domain contains control characters")
        return v

    @field_validator("category")
    @classmethod
    def validate_category(cls, v):
        if v not in config.CATEGORIES:
            raise ValueError(f"Category must be one of: {', '.join(config.CATEGORIES)}")
        return v

    @field_validator("wallet")
    @classmethod
    def validate_wallet(cls, v):
        return validate_wallet_address(v) if v else None

    @model_validator(mode="after")
    def check_domain_matches_category(self):
        if self.category == "Letter" and not self.domain.isalpha():
            raise ValueError("Letter domains may only contain letters")
        if self.category == "Number" and not (self.domain.isascii() and self.domain.isdigit()):
            raise ValueError("Number domains may only contain digits 0-9")
        return self


class IntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str
    domain: str
    category: str
    amount: int
    currency: str
    mock_mode: bool = False


class MintStatus(BaseModel):
    payment_intent_id: str
    domain: Optional[str] = None
    category: Optional[str] = None
    status: str
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    error: Optional[str] = None
    updated_at: str


# Health check
@app.get("/health")
async def health():
    return {
        "status": "ok",
        "stripe_mock_mode": gateway.mock_mode,
        "chain_mock_mode": minter.mock_mode,
        "version": VERSION,
        "environment": config.ENVIRONMENT,
    }


# Public settings the storefront needs to render Stripe Elements
@app.get("/config")
async def storefront_config():
    return {
        "publishable_key": config.STRIPE_PUBLISHABLE_KEY,
        "price": {"amount": config.PRICE_CENTS, "currency": config.PRICE_CURRENCY},
        "categories": config.CATEGORIES,
        "domain_suffix": config.DOMAIN_SUFFIX,
        "chain": {"name": config.CHAIN_NAME, "chain_id": config.CHAIN_ID},
        "registry_address": config.REGISTRY_ADDRESS,
        "edition_address": config.EDITION_ADDRESS or None,
    }


# Create a PaymentIntent for a domain
@app.post("/api/stripe_intent", response_model=IntentResponse)
@limiter.limit(config.RATE_LIMIT_INTENT)
async def create_stripe_intent(req: IntentRequest, request: Request):
    """Create a PaymentIntent carrying the domain and category to mint."""
    taken = await db.get_mint_by_domain(req.domain, db.ACTIVE)
    if taken:
        raise HTTPException(409, f"{req.domain}{config.DOMAIN_SUFFIX} is already registered")

    try:
        intent = gateway.create_intent(req.domain, req.category, req.wallet)
    except stripe.StripeError as e:
        logger.error(f"Stripe error creating intent for {req.domain}: {e}")
        raise HTTPException(502, f"Payment provider error: {config.sanitize_error(e)}")

    await db.create_intent_record({
        "payment_intent_id": intent["id"],
        "domain": req.domain,
        "category": req.category,
        "amount": intent["amount"],
        "currency": intent["currency"],
        "wallet": req.wallet,
    })

    return IntentResponse(
        client_secret=intent["client_secret"],
        payment_intent_id=intent["id"],
        domain=req.domain,
        category=req.category,
        amount=intent["amount"],
        currency=intent["currency"],
        mock_mode=gateway.mock_mode,
    )


# Stripe webhook - mints on payment_intent.succeeded
@app.post("/api/webhook")
async def stripe_webhook(request: Request):
    """Verify a Stripe event and mint the paid-for domain."""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        event = gateway.construct_event(payload, sig_header)
    except WebhookVerificationError as e:
        logger.warning(f"Rejected webhook: {e}")
        return PlainTextResponse(f"Webhook Error: {e}", status_code=400)

    if event.get("type") != SUCCEEDED_EVENT:
        logger.info(f"Ignoring {event.get('type')} event {event.get('id')}")
        return {"received": True}

    try:
        mint_request = gateway.extract_mint_request(event)
    except MissingMetadataError as e:
        # Nothing to mint; Stripe redelivering would not help
        logger.error(str(e))
        await db.mark_invalid(e.payment_intent_id, event.get("id"), str(e))
        return {"received": True}

    intent_id = mint_request.payment_intent_id
    if not await db.claim_mint(mint_request.model_dump()):
        logger.info(f"PaymentIntent {intent_id} already claimed, skipping mint")
        return {"received": True, "duplicate": True}

    # A failed attempt may have left a transaction that was mined or is still pending
    previous_tx = (await db.get_mint(intent_id) or {}).get("tx_hash")
    if previous_tx:
        check = await minter.check_transaction(previous_tx)
        if check["state"] == "minted":
            await db.update_mint(intent_id, {
                "status": db.MINTED,
                "block_number": check["block_number"],
                "error": None,
            })
            logger.info(f"Earlier register tx {previous_tx} for {mint_request.domain} was mined late")
            return {"received": True, "tx_hash": previous_tx}
        if check["state"] in ("pending", "unknown"):
            await db.update_mint(intent_id, {
                "status": db.MINT_FAILED,
                "error": f"Previous transaction {check['state']}",
            })
            logger.warning(f"Register tx {previous_tx} for {mint_request.domain} is {check['state']}, not resending")
            return JSONResponse(
                status_code=500,
                content={"error": "Earlier mint transaction unresolved. The delivery will be retried."}
            )

    result = await minter.register(mint_request.domain, mint_request.category)

    if not result.get("minted"):
        await db.update_mint(intent_id, {
            "status": db.MINT_FAILED,
            "error": result.get("error"),
            "tx_hash": result.get("tx_hash"),
        })
        logger.error(f"Mint failed for {mint_request.domain} ({intent_id}): {result.get('error')}")
        # Non-2xx makes Stripe retry the delivery
        return JSONResponse(
            status_code=500,
            content={"error": "Mint failed. The delivery will be retried."}
        )

    await db.update_mint(intent_id, {
        "status": db.MINTED,
        "tx_hash": result.get("tx_hash"),
        "block_number": result.get("block_number"),
        "error": None,
    })
    logger.info(f"Mint transaction successful! {mint_request.domain} -> {result.get('tx_hash')}")
    logger.info(f"PaymentIntent was successful for: {mint_request.amount}")

    return {"received": True, "tx_hash": result.get("tx_hash")}


# Mint status for a PaymentIntent
@app.get("/mints/{payment_intent_id}", response_model=MintStatus)
@limiter.limit(config.RATE_LIMIT_LOOKUP)
async def get_mint_status(payment_intent_id: str, request: Request):
    """Get the mint status of a PaymentIntent."""
    mint = await db.get_mint(payment_intent_id)
    if not mint:
        raise HTTPException(404, "Mint not found")

    # Don't expose wallet or event internals
    return MintStatus(**{k: mint[k] for k in MintStatus.model_fields})


# Domain availability
@app.get("/domains/{domain}")
@limiter.limit(config.RATE_LIMIT_LOOKUP)
async def get_domain(domain: str, request: Request):
    """Check whether a domain name is minted or being minted."""
    name = normalize_domain(domain)
    if not name:
        raise HTTPException(400, "Invalid domain")

    mint = await db.get_mint_by_domain(name, db.ACTIVE)
    return {
        "domain": name + config.DOMAIN_SUFFIX,
        "available": mint is None,
        "status": mint["status"] if mint else None,
        "category": mint["category"] if mint else None,
        "tx_hash": mint["tx_hash"] if mint else None,
    }


# Showcase NFT card
@app.get("/collection/{token_id}")
async def get_collection_token(token_id: int):
    """Get metadata of the showcase edition token."""
    if token_id < 0:
        raise HTTPException(400, "Invalid token id")
    try:
        return await edition.get_token(token_id)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except httpx.HTTPError as e:
        logger.error(f"Metadata fetch failed for token {token_id}: {e}")
        raise HTTPException(502, "Could not fetch token metadata")


# Main entry point
if __name__ == "__main__":
    import uvicorn

    print(f"Starting Domain Mint API on port {config.PORT}")
    print(f"Stripe mock mode: {config.STRIPE_MOCK_MODE}")
    print(f"Chain mock mode: {config.CHAIN_MOCK_MODE}")
    print(f"Environment: {config.ENVIRONMENT}")

    uvicorn.run(
        "domainmint.main:app",
        host=config.HOST,
        port=config.PORT,
        reload=True,
    )
