"""
SQLite persistence layer for purchase orders.

A single database file (output/procurement.db) holds:

  - purchase_orders  one row per order: denormalised key fields for fast
                     filtering plus the full order serialised as JSON
  - order_sequence   monotonic counters used for order numbers; a number
                     is never handed out twice, even after a delete
  - audit_log        append-only history of order events

Every write that replaces an existing order is guarded by the order's
version column.  A writer whose expected version no longer matches gets
ConcurrencyConflict instead of overwriting the other writer's result.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

from models.purchase_order import (
    PurchaseOrder, RegisteredSupplier, ALL_STATUSES,
    STATUS_PENDING, STATUS_SENT, STATUS_PARTIALLY_RECEIVED, STATUS_RECEIVED, STATUS_CANCELLED,
)
from .errors import ConcurrencyConflict, OrderNotFoundError

logger = logging.getLogger(__name__)

ORDER_SEQUENCE = "purchase_order"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS purchase_orders (
    id                      TEXT PRIMARY KEY,
    order_number            TEXT NOT NULL UNIQUE,
    status                  TEXT NOT NULL DEFAULT 'pending',

    -- Key fields (denormalised for fast filtering / sorting)
    supplier_kind           TEXT NOT NULL,      -- registered | generic
    supplier_id             TEXT,
    supplier_name           TEXT,
    order_date              TEXT NOT NULL,
    expected_delivery_date  TEXT,
    received_date           TEXT,
    item_count              INTEGER NOT NULL DEFAULT 0,
    subtotal                REAL NOT NULL DEFAULT 0,
    tax                     REAL NOT NULL DEFAULT 0,
    total                   REAL NOT NULL DEFAULT 0,
    email_sent              INTEGER NOT NULL DEFAULT 0,

    -- Full PurchaseOrder serialised as JSON
    data                    TEXT NOT NULL,

    version                 INTEGER NOT NULL DEFAULT 1,
    updated_at              TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_orders_status     ON purchase_orders (status);
CREATE INDEX IF NOT EXISTS idx_orders_order_date ON purchase_orders (order_date DESC);
CREATE INDEX IF NOT EXISTS idx_orders_supplier   ON purchase_orders (supplier_id);

CREATE TABLE IF NOT EXISTS order_sequence (
    name    TEXT PRIMARY KEY,
    value   INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id    TEXT    NOT NULL,
    timestamp   TEXT    NOT NULL,   -- ISO-8601 UTC
    action      TEXT    NOT NULL,   -- created | edited | sent | received |
                                    -- partially_received | cancelled | deleted
    actor       TEXT    NOT NULL DEFAULT 'system',
    detail      TEXT                -- optional JSON blob with action-specific context
);

CREATE INDEX IF NOT EXISTS idx_audit_order     ON audit_log (order_id);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log (timestamp DESC);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_date(name: str, value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError as exc:
        raise ValueError(f"{name} must be YYYY-MM-DD, got {value!r}") from exc


def _row_params(order: PurchaseOrder) -> dict:
    registered = isinstance(order.supplier, RegisteredSupplier)
    return {
        "id":                     order.id,
        "order_number":           order.order_number,
        "status":                 order.status,
        "supplier_kind":          order.supplier.kind,
        "supplier_id":            order.supplier.supplier_id if registered else None,
        "supplier_name":          order.supplier_name,
        "order_date":             order.order_date,
        "expected_delivery_date": order.expected_delivery_date,
        "received_date":          order.received_date,
        "item_count":             len(order.items),
        "subtotal":               order.subtotal,
        "tax":                    order.tax,
        "total":                  order.total,
        "email_sent":             int(order.email_sent),
        "data":                   order.model_dump_json(),
        "version":                order.version,
        "updated_at":             order.updated_at or _now(),
    }


class Database:
    """Thin wrapper around an SQLite database file for purchase order state."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @contextmanager
    def _conn(self):
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Database schema ready: %s", self.db_path)

    # ------------------------------------------------------------------
    # Order numbers
    # ------------------------------------------------------------------

    def next_order_number(self, prefix: str = "OC-") -> str:
        """
        Reserve the next order number.  The counter only moves forward, so
        numbers of deleted orders are retired rather than recycled.
        """
        with self._conn() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO order_sequence (name, value) VALUES (?, 0)",
                (ORDER_SEQUENCE,),
            )
            conn.execute(
                "UPDATE order_sequence SET value = value + 1 WHERE name = ?",
                (ORDER_SEQUENCE,),
            )
            value = conn.execute(
                "SELECT value FROM order_sequence WHERE name = ?", (ORDER_SEQUENCE,)
            ).fetchone()[0]
        return f"{prefix}{value:06d}"

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def insert_order(self, order: PurchaseOrder) -> PurchaseOrder:
        """Store a newly created order."""
        stored = order.model_copy(update={"updated_at": _now()})
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO purchase_orders (
                    id, order_number, status,
                    supplier_kind, supplier_id, supplier_name,
                    order_date, expected_delivery_date, received_date,
                    item_count, subtotal, tax, total, email_sent,
                    data, version, updated_at
                ) VALUES (
                    :id, :order_number, :status,
                    :supplier_kind, :supplier_id, :supplier_name,
                    :order_date, :expected_delivery_date, :received_date,
                    :item_count, :subtotal, :tax, :total, :email_sent,
                    :data, :version, :updated_at
                )
                """,
                _row_params(stored),
            )
        logger.info("DB inserted: %s  status=%s", stored.order_number, stored.status)
        return stored

    def update_order(self, order: PurchaseOrder, expected_version: int) -> PurchaseOrder:
        """
        Replace an order if its stored version still equals expected_version.

        Returns the stored order with its version incremented.  Raises
        ConcurrencyConflict if another writer got there first.
        """
        stored = order.model_copy(update={
            "version": expected_version + 1,
            "updated_at": _now(),
        })
        params = _row_params(stored)
        params["expected_version"] = expected_version

        with self._conn() as conn:
            conn.execute(
                """
                UPDATE purchase_orders SET
                    status                 = :status,
                    supplier_kind          = :supplier_kind,
                    supplier_id            = :supplier_id,
                    supplier_name          = :supplier_name,
                    expected_delivery_date = :expected_delivery_date,
                    received_date          = :received_date,
                    item_count             = :item_count,
                    subtotal               = :subtotal,
                    tax                    = :tax,
                    total                  = :total,
                    email_sent             = :email_sent,
                    data                   = :data,
                    version                = :version,
                    updated_at             = :updated_at
                WHERE id = :id AND version = :expected_version
                """,
                params,
            )
            changed = conn.execute("SELECT changes()").fetchone()[0]
            if not changed:
                self._raise_missing_or_conflict(conn, order.id, expected_version)

        logger.info(
            "DB updated: %s  status=%s  version=%d",
            stored.order_number, stored.status, stored.version,
        )
        return stored

    def delete_order(self, order_id: str, expected_version: int) -> bool:
        """Delete an order if it has not changed since it was read."""
        with self._conn() as conn:
            conn.execute(
                "DELETE FROM purchase_orders WHERE id = ? AND version = ?",
                (order_id, expected_version),
            )
            changed = conn.execute("SELECT changes()").fetchone()[0]
            if not changed:
                self._raise_missing_or_conflict(conn, order_id, expected_version)
        return True

    def log_audit(
        self,
        order_id: str,
        action: str,
        actor: str = "system",
        detail: Optional[dict] = None,
    ) -> None:
        """Append one entry to the audit log."""
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO audit_log (order_id, timestamp, action, actor, detail)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    order_id,
                    _now(),
                    action,
                    actor,
                    json.dumps(detail) if detail is not None else None,
                ),
            )

    @staticmethod
    def _raise_missing_or_conflict(conn, order_id: str, expected_version: int) -> None:
        row = conn.execute(
            "SELECT version FROM purchase_orders WHERE id = ?", (order_id,)
        ).fetchone()
        if row is None:
            raise OrderNotFoundError(order_id)
        raise ConcurrencyConflict(order_id, expected_version)

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get_order(self, order_id: str) -> Optional[PurchaseOrder]:
        """Return the full order or None."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT data FROM purchase_orders WHERE id = ?", (order_id,)
            ).fetchone()
        return PurchaseOrder.model_validate_json(row["data"]) if row else None

    def get_order_by_number(self, order_number: str) -> Optional[PurchaseOrder]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT data FROM purchase_orders WHERE order_number = ?",
                (order_number,),
            ).fetchone()
        return PurchaseOrder.model_validate_json(row["data"]) if row else None

    def list_orders(
        self,
        status: Optional[str] = None,
        supplier_id: Optional[str] = None,
        search: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int = 500,
        offset: int = 0,
    ) -> list[dict]:
        """
        Return order summaries (no data blob) ordered newest-first.

        Args:
            status:       Filter by status value, or None for all.
            supplier_id:  Only orders placed with this registered supplier.
            search:       Case-insensitive substring match on order_number
                          or supplier_name.
            start_date:   YYYY-MM-DD; only orders placed on or after it.
            end_date:     YYYY-MM-DD; only orders placed on or before it.
            limit:        Max rows to return.
            offset:       Pagination offset.
        """
        if status and status not in ALL_STATUSES:
            raise ValueError(f"Invalid status {status!r}. Must be one of {ALL_STATUSES}")
        start_date = _check_date("start_date", start_date)
        end_date = _check_date("end_date", end_date)

        clauses: list[str] = []
        params: list = []

        if status:
            clauses.append("status = ?")
            params.append(status)
        if supplier_id:
            clauses.append("supplier_id = ?")
            params.append(supplier_id)
        if search:
            clauses.append("(order_number LIKE ? OR supplier_name LIKE ?)")
            like = f"%{search}%"
            params.extend([like, like])
        if start_date:
            clauses.append("substr(order_date, 1, 10) >= ?")
            params.append(start_date)
        if end_date:
            clauses.append("substr(order_date, 1, 10) <= ?")
            params.append(end_date)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, offset])

        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT
                    id, order_number, status,
                    supplier_kind, supplier_id, supplier_name,
                    order_date, expected_delivery_date, received_date,
                    item_count, subtotal, tax, total, email_sent,
                    version, updated_at
                FROM purchase_orders
                {where}
                ORDER BY order_date DESC, order_number DESC
                LIMIT ? OFFSET ?
                """,
                params,
            ).fetchall()

        return [dict(r) for r in rows]

    def get_stats(self) -> dict:
        """Return order counts by status plus the value of received orders."""
        with self._conn() as conn:
            row = conn.execute(
                f"""
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN status = '{STATUS_PENDING}'            THEN 1 ELSE 0 END) AS pending,
                    SUM(CASE WHEN status = '{STATUS_SENT}'               THEN 1 ELSE 0 END) AS sent,
                    SUM(CASE WHEN status = '{STATUS_PARTIALLY_RECEIVED}' THEN 1 ELSE 0 END) AS partially_received,
                    SUM(CASE WHEN status = '{STATUS_RECEIVED}'           THEN 1 ELSE 0 END) AS received,
                    SUM(CASE WHEN status = '{STATUS_CANCELLED}'          THEN 1 ELSE 0 END) AS cancelled,
                    SUM(CASE WHEN status IN ('{STATUS_RECEIVED}', '{STATUS_PARTIALLY_RECEIVED}')
                             THEN total ELSE 0 END) AS received_value,
                    MAX(order_date) AS last_order_date
                FROM purchase_orders
                """
            ).fetchone()
        stats = dict(row) if row else {}
        for key in ("pending", "sent", "partially_received", "received", "cancelled"):
            stats[key] = stats.get(key) or 0
        stats["received_value"] = round(stats.get("received_value") or 0.0, 2)
        return stats

    def get_audit_log(self, order_id: str) -> list[dict]:
        """Return all audit entries for one order, oldest first."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT id, timestamp, action, actor, detail
                   FROM audit_log WHERE order_id = ?
                   ORDER BY timestamp ASC, id ASC""",
                (order_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_recent_audit_log(self, limit: int = 200, offset: int = 0) -> list[dict]:
        """Return recent audit entries across all orders, newest first."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT id, order_id, timestamp, action, actor, detail
                   FROM audit_log
                   ORDER BY timestamp DESC, id DESC
                   LIMIT ? OFFSET ?""",
                (limit, offset),
            ).fetchall()
        return [dict(r) for r in rows]
