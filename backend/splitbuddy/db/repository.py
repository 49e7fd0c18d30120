from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

try:
    import psycopg
    from psycopg.types.json import Jsonb
except ImportError:  # pragma: no cover
    psycopg = None
    Jsonb = None

from splitbuddy.domain.errors import InconsistentBillData, Result
from splitbuddy.domain.models import Bill, ModelValidationError, bill_from_record, bill_to_record

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS bills (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    is_equally BOOLEAN NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    record JSONB NOT NULL
)
"""


class BillRepository:
    """
    Bill store: insert, read and delete whole records. Bills are never
    updated in place.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url.strip()

    @property
    def enabled(self) -> bool:
        return bool(self.database_url)

    def _connect(self):
        if not self.enabled:
            raise RuntimeError("DATABASE_URL not configured")
        if psycopg is None:
            raise RuntimeError("psycopg is not installed")
        return psycopg.connect(self.database_url)

    def ensure_schema(self) -> None:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)
            conn.commit()

    def insert_bill(self, bill: Bill) -> str:
        record = bill_to_record(bill)
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO bills (id, title, is_equally, created_at, record)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id
                """,
                (bill.id, bill.title, bill.is_equally, bill.created_at, Jsonb(record)),
            )
            bill_id = cur.fetchone()[0]
            conn.commit()
            logger.info("Stored bill %s", bill_id)
            return str(bill_id)

    def get_bill(self, *, bill_id: str) -> Optional[Result[Bill]]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, record
                FROM bills
                WHERE id = %s
                """,
                (bill_id,),
            )
            row = cur.fetchone()
            return _load(row[0], row[1]) if row else None

    def list_bills(self) -> List[Result[Bill]]:
        """
        All bills, newest first. A row that no longer parses is returned as
        a failed Result so the rest of the history still loads.
        """
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, record
                FROM bills
                ORDER BY created_at DESC, id ASC
                """
            )
            return [_load(row[0], row[1]) for row in cur.fetchall()]

    def get_latest_bill(self) -> Optional[Result[Bill]]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, record
                FROM bills
                ORDER BY created_at DESC, id ASC
                LIMIT 1
                """
            )
            row = cur.fetchone()
            return _load(row[0], row[1]) if row else None

    def delete_bill(self, *, bill_id: str) -> bool:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                DELETE FROM bills
                WHERE id = %s
                """,
                (bill_id,),
            )
            deleted = cur.rowcount > 0
            conn.commit()
            if deleted:
                logger.info("Deleted bill %s", bill_id)
            return deleted


def _as_dict(value: Any) -> Dict[str, Any]:
    # psycopg loads JSONB as Python objects already
    if not isinstance(value, dict):
        raise TypeError(f"unexpected record type: {type(value).__name__}")
    return value


def _load(bill_id: Any, record: Any) -> Result[Bill]:
    try:
        return Result.success(bill_from_record(_as_dict(record)))
    except (ModelValidationError, TypeError) as e:
        logger.warning("Unreadable record for bill %s: %s", bill_id, e)
        return Result.failure(InconsistentBillData(str(bill_id), f"stored record is unreadable: {e}"))
