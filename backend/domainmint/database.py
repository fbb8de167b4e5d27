"""Database module for the mint ledger (one row per PaymentIntent)."""
from datetime import datetime, timedelta, timezone
from typing import Optional

from . import config

# Determine database type from URL
DATABASE_URL = config.DATABASE_URL
IS_POSTGRES = DATABASE_URL.startswith("postgresql://") or DATABASE_URL.startswith("postgres://")

if IS_POSTGRES:
    import asyncpg
    _pool = None
else:
    import aiosqlite
    DB_PATH = DATABASE_URL.replace("sqlite:///", "")

# Ledger statuses
PENDING = "pending"
MINTING = "minting"
MINTED = "minted"
MINT_FAILED = "mint_failed"
INVALID_METADATA = "invalid_metadata"

# A claim may take over rows in these states
CLAIMABLE = (PENDING, MINT_FAILED)
# A domain is taken while a row is in one of these states
ACTIVE = (MINTING, MINTED)

MINTS_TABLE = """
    CREATE TABLE IF NOT EXISTS mints (
        payment_intent_id TEXT PRIMARY KEY,
        domain TEXT,
        category TEXT,
        amount INTEGER NOT NULL DEFAULT 0,
        currency TEXT,
        wallet TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        event_id TEXT,
        tx_hash TEXT,
        block_number INTEGER,
        error TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _affected(status: str) -> int:
    """Row count from an asyncpg command tag such as 'INSERT 0 1' or 'UPDATE 1'."""
    return int(status.split()[-1])


async def init_db():
    """Initialize the database with required tables."""
    if IS_POSTGRES:
        global _pool
        _pool = await asyncpg.create_pool(DATABASE_URL)
        async with _pool.acquire() as conn:
            await conn.execute(MINTS_TABLE)
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_mints_domain ON mints(domain)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_mints_status ON mints(status)")
    else:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.execute(MINTS_TABLE)
            await db.execute("CREATE INDEX IF NOT EXISTS idx_mints_domain ON mints(domain)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_mints_status ON mints(status)")
            await db.commit()


async def create_intent_record(record: dict) -> None:
    """Record a freshly created PaymentIntent as pending."""
    now = _now()
    values = (
        record["payment_intent_id"],
        record["domain"],
        record["category"],
        record["amount"],
        record["currency"],
        record.get("wallet"),
        PENDING,
        now,
        now,
    )

    if IS_POSTGRES:
        async with _pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO mints (payment_intent_id, domain, category, amount, currency, wallet, status, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (payment_intent_id) DO NOTHING
            """, *values)
    else:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.execute("""
                INSERT OR IGNORE INTO mints (payment_intent_id, domain, category, amount, currency, wallet, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, values)
            await db.commit()


async def get_mint(payment_intent_id: str) -> Optional[dict]:
    """Get a ledger row by PaymentIntent ID."""
    if IS_POSTGRES:
        async with _pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM mints WHERE payment_intent_id = $1", payment_intent_id)
            return dict(row) if row else None
    else:
        async with aiosqlite.connect(DB_PATH) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM mints WHERE payment_intent_id = ?", (payment_intent_id,)) as cursor:
                row = await cursor.fetchone()
                return dict(row) if row else None


async def get_mint_by_domain(domain: str, statuses: Optional[tuple] = None) -> Optional[dict]:
    """Get the most recent ledger row for a domain, optionally limited to some statuses."""
    statuses = tuple(statuses or ())

    if IS_POSTGRES:
        query = "SELECT * FROM mints WHERE domain = $1"
        args = [domain]
        if statuses:
            query += " AND status = ANY($2::text[])"
            args.append(list(statuses))
        query += " ORDER BY updated_at DESC LIMIT 1"
        async with _pool.acquire() as conn:
            row = await conn.fetchrow(query, *args)
            return dict(row) if row else None
    else:
        query = "SELECT * FROM mints WHERE domain = ?"
        args = [domain]
        if statuses:
            query += f" AND status IN ({', '.join('?' for _ in statuses)})"
            args.extend(statuses)
        query += " ORDER BY updated_at DESC LIMIT 1"
        async with aiosqlite.connect(DB_PATH) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, args) as cursor:
                row = await cursor.fetchone()
                return dict(row) if row else None


async def update_mint(payment_intent_id: str, updates: dict) -> None:
    """Update a ledger row."""
    updates = {**updates, "updated_at": _now()}

    if IS_POSTGRES:
        async with _pool.acquire() as conn:
            set_clauses = []
            values = []
            for i, (key, value) in enumerate(updates.items(), 1):
                set_clauses.append(f"{key} = ${i}")
                values.append(value)
            values.append(payment_intent_id)

            await conn.execute(
                f"UPDATE mints SET {', '.join(set_clauses)} WHERE payment_intent_id = ${len(values)}",
                *values
            )
    else:
        async with aiosqlite.connect(DB_PATH) as db:
            set_clauses = []
            values = []
            for key, value in updates.items():
                set_clauses.append(f"{key} = ?")
                values.append(value)
            values.append(payment_intent_id)

            await db.execute(
                f"UPDATE mints SET {', '.join(set_clauses)} WHERE payment_intent_id = ?",
                values
            )
            await db.commit()


async def claim_mint(record: dict, stale_after: Optional[int] = None) -> bool:
    """Atomically move a PaymentIntent into 'minting'.

    A 'minting' row untouched for `stale_after` seconds (default
    MINT_STALE_SECONDS) is taken over, since its worker is gone.
    Returns False when another delivery already claimed or minted it.
    """
    now = _now()
    stale_after = config.MINT_STALE_SECONDS if stale_after is None else stale_after
    stale_before = (datetime.now(timezone.utc) - timedelta(seconds=stale_after)).isoformat()
    insert_values = (
        record["payment_intent_id"],
        record["domain"],
        record["category"],
        record.get("amount", 0),
        record.get("currency"),
        record.get("wallet"),
        MINTING,
        record.get("event_id"),
        now,
        now,
    )
    update_values = (
        record.get("event_id"),
        record["domain"],
        record["category"],
        now,
        record["payment_intent_id"],
        *CLAIMABLE,
        MINTING,
        stale_before,
    )

    if IS_POSTGRES:
        async with _pool.acquire() as conn:
            async with conn.transaction():
                status = await conn.execute("""
                    INSERT INTO mints (payment_intent_id, domain, category, amount, currency, wallet, status, event_id, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                    ON CONFLICT (payment_intent_id) DO NOTHING
                """, *insert_values)
                if _affected(status) == 1:
                    return True
                status = await conn.execute("""
                    UPDATE mints SET status = 'minting', event_id = $1, domain = $2, category = $3,
                        error = NULL, updated_at = $4
                    WHERE payment_intent_id = $5
                        AND (status IN ($6, $7) OR (status = $8 AND updated_at < $9))
                """, *update_values)
                return _affected(status) == 1
    else:
        async with aiosqlite.connect(DB_PATH) as db:
            cursor = await db.execute("""
                INSERT OR IGNORE INTO mints (payment_intent_id, domain, category, amount, currency, wallet, status, event_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, insert_values)
            claimed = cursor.rowcount == 1
            if not claimed:
                cursor = await db.execute("""
                    UPDATE mints SET status = 'minting', event_id = ?, domain = ?, category = ?,
                        error = NULL, updated_at = ?
                    WHERE payment_intent_id = ?
                        AND (status IN (?, ?) OR (status = ? AND updated_at < ?))
                """, update_values)
                claimed = cursor.rowcount == 1
            await db.commit()
            return claimed


async def mark_invalid(payment_intent_id: str, event_id: Optional[str], error: str) -> None:
    """Record a succeeded payment that cannot be minted because its metadata is incomplete."""
    now = _now()
    values = (payment_intent_id, INVALID_METADATA, event_id, error, now, now)

    if IS_POSTGRES:
        async with _pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO mints (payment_intent_id, status, event_id, error, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (payment_intent_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    event_id = EXCLUDED.event_id,
                    error = EXCLUDED.error,
                    updated_at = EXCLUDED.updated_at
            """, *values)
    else:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.execute("""
                INSERT INTO mints (payment_intent_id, status, event_id, error, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (payment_intent_id) DO UPDATE SET
                    status = excluded.status,
                    event_id = excluded.event_id,
                    error = excluded.error,
                    updated_at = excluded.updated_at
            """, values)
            await db.commit()
