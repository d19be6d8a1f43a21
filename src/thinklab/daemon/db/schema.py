"""Database schema initialization for ThinkLab."""

from ..utils.logging_config import StructuredLogger
from .connection import describe_db, get_backend, get_db_connection

logger = StructuredLogger(__name__)

_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS accounts (
        account_id TEXT PRIMARY KEY,
        balance INTEGER NOT NULL DEFAULT 0,
        active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        deactivated_at TEXT,
        CHECK (balance >= 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS credit_grants (
        grant_id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL REFERENCES accounts(account_id),
        amount INTEGER NOT NULL,
        source TEXT NOT NULL,
        reason TEXT,
        created_at TEXT NOT NULL,
        CHECK (amount > 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS action_records (
        record_id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL REFERENCES accounts(account_id),
        action_kind TEXT NOT NULL,
        cost INTEGER NOT NULL,
        status TEXT NOT NULL,
        project_id TEXT,
        input_json TEXT,
        output_json TEXT,
        error TEXT,
        metadata_json TEXT,
        sweep_attempts INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        resolved_at TEXT,
        CHECK (cost > 0),
        CHECK (status IN ('RESERVED', 'COMMITTED', 'FAILED', 'REFUNDED'))
    )
    """,
)

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_records_account_created ON action_records (account_id, created_at, record_id)",
    "CREATE INDEX IF NOT EXISTS idx_records_status_created ON action_records (status, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_grants_account ON credit_grants (account_id)",
)

REQUIRED_TABLES = ("accounts", "credit_grants", "action_records")


def init_db():
    """Initialize the database with the required schema (idempotent)."""
    logger.info("Initializing database", location=describe_db())
    with get_db_connection() as conn:
        if get_backend() == "sqlite":
            # WAL mode for concurrency
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")

        for ddl in _TABLES:
            conn.execute(ddl)
        for ddl in _INDEXES:
            conn.execute(ddl)
        conn.commit()
    logger.info("Database initialized successfully")
