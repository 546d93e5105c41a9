from __future__ import annotations

import shutil
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional

from tbo.domain.models import (
    Alert,
    Invoice,
    InvoiceDirection,
    InvoiceRef,
    Lot,
    LotStatus,
    Payment,
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    ReplenishmentLine,
    ReplenishmentRequest,
    ReplenishmentStatus,
    Sale,
    SaleLine,
    StockMovement,
    Warehouse,
)
from tbo.domain.scopes import ALL_RECORDS, RecordScope

RETURNS_WAREHOUSE = "RETURNS"

# direction -> (table, source column, party column, payments fk column, number prefix)
INVOICE_TABLES = {
    InvoiceDirection.CUSTOMER: ("customer_invoices", "sale_id", "customer_id", "customer_invoice_id", "F"),
    InvoiceDirection.SUPPLIER: ("supplier_invoices", "purchase_order_id", "supplier_id", "supplier_invoice_id", "FF"),
}

LOT_COLS = "id, product_id, warehouse_id, quantity, location, entry_date, batch_no, status, expiry_date"
PRODUCT_COLS = "id, code, name, purchase_price, sale_price, reorder_threshold, perishable, active"
SALE_COLS = "id, number, customer_id, seller_id, sale_date, discount, total_pretax, total_with_tax, status, notes"
PO_COLS = "id, number, supplier_id, order_date, expected_date, total, status, notes"
MOVEMENT_COLS = (
    "id, datetime, lot_id, product_id, warehouse_id, movement_type, qty_delta, qty_after, "
    "reference_type, reference_id, notes"
)


def iso_dt(value: datetime) -> str:
    return value.replace(microsecond=0).isoformat(sep=" ")


def iso_date(value: date | None) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value) -> datetime:
    return datetime.fromisoformat(str(value))


def _parse_date(value) -> Optional[date]:
    if value is None:
        return None
    return date.fromisoformat(str(value)[:10])


def _product(r) -> Product:
    return Product(
        id=int(r[0]),
        code=str(r[1]),
        name=str(r[2]),
        purchase_price=float(r[3]),
        sale_price=float(r[4]),
        reorder_threshold=int(r[5]),
        perishable=bool(r[6]),
        active=int(r[7]),
    )


def _lot(r) -> Lot:
    return Lot(
        id=int(r[0]),
        product_id=int(r[1]),
        warehouse_id=int(r[2]),
        quantity=int(r[3]),
        location=str(r[4]),
        entry_date=_parse_dt(r[5]),
        batch_no=str(r[6]),
        status=str(r[7]),
        expiry_date=_parse_date(r[8]),
    )


def _movement(r) -> StockMovement:
    return StockMovement(
        id=int(r[0]),
        datetime=_parse_dt(r[1]),
        lot_id=int(r[2]),
        product_id=int(r[3]),
        warehouse_id=int(r[4]),
        movement_type=str(r[5]),
        qty_delta=int(r[6]),
        qty_after=int(r[7]),
        reference_type=(str(r[8]) if r[8] is not None else None),
        reference_id=(int(r[9]) if r[9] is not None else None),
        notes=(r[10] if r[10] is not None else None),
    )


class SqliteRepository:
    def __init__(self, db_path: Path | str, timeout: float = 30.0):
        self.db_path = str(db_path)
        self.timeout = float(timeout)

    def _conn(self) -> sqlite3.Connection:
        # Transactions are opened explicitly (BEGIN / BEGIN IMMEDIATE).
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Cursor]:
        conn = self._conn()
        try:
            yield conn.cursor()
        finally:
            conn.close()

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_returns_and_indexes),
                (3, self._migration_v3_replenishment_requests),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                code TEXT UNIQUE NOT NULL,
                name TEXT NOT NULL,
                purchase_price REAL NOT NULL CHECK(purchase_price >= 0),
                sale_price REAL NOT NULL CHECK(sale_price >= 0),
                reorder_threshold INTEGER NOT NULL DEFAULT 0 CHECK(reorder_threshold >= 0),
                perishable INTEGER NOT NULL DEFAULT 0 CHECK(perishable IN (0,1)),
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS warehouses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT UNIQUE NOT NULL,
                capacity INTEGER CHECK(capacity IS NULL OR capacity >= 0),
                location TEXT
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS lots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id INTEGER NOT NULL,
                warehouse_id INTEGER NOT NULL,
                quantity INTEGER NOT NULL CHECK(quantity >= 0),
                location TEXT NOT NULL,
                entry_date TEXT NOT NULL,
                batch_no TEXT NOT NULL,
                status TEXT NOT NULL CHECK(status IN ('available','reserved','expired','damaged')),
                expiry_date TEXT,
                FOREIGN KEY(product_id) REFERENCES products(id),
                FOREIGN KEY(warehouse_id) REFERENCES warehouses(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS stock_movements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                datetime TEXT NOT NULL,
                lot_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                warehouse_id INTEGER NOT NULL,
                movement_type TEXT NOT NULL CHECK(movement_type IN ('entry','reception','sale','release','adjustment')),
                qty_delta INTEGER NOT NULL,
                qty_after INTEGER NOT NULL CHECK(qty_after >= 0),
                reference_type TEXT,
                reference_id INTEGER,
                notes TEXT,
                FOREIGN KEY(lot_id) REFERENCES lots(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sales (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                number TEXT UNIQUE,
                customer_id INTEGER NOT NULL,
                seller_id INTEGER,
                sale_date TEXT NOT NULL,
                discount REAL NOT NULL DEFAULT 0 CHECK(discount >= 0),
                total_pretax REAL NOT NULL,
                total_with_tax REAL NOT NULL,
                status TEXT NOT NULL CHECK(status IN ('draft','validated','delivered','cancelled')),
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sale_lines (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                qty INTEGER NOT NULL CHECK(qty > 0),
                unit_price REAL NOT NULL CHECK(unit_price >= 0),
                FOREIGN KEY(sale_id) REFERENCES sales(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS purchase_orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                number TEXT UNIQUE,
                supplier_id INTEGER NOT NULL,
                order_date TEXT NOT NULL,
                expected_date TEXT,
                total REAL NOT NULL CHECK(total >= 0),
                status TEXT NOT NULL CHECK(status IN ('draft','validated','received','cancelled')),
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS purchase_order_lines (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                purchase_order_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                qty INTEGER NOT NULL CHECK(qty > 0),
                unit_cost REAL NOT NULL CHECK(unit_cost >= 0),
                expiry_date TEXT,
                FOREIGN KEY(purchase_order_id) REFERENCES purchase_orders(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS customer_invoices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                number TEXT UNIQUE,
                sale_id INTEGER NOT NULL UNIQUE,
                customer_id INTEGER NOT NULL,
                issue_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                total REAL NOT NULL CHECK(total >= 0),
                status TEXT NOT NULL CHECK(status IN ('unpaid','partially_paid','paid','cancelled')),
                FOREIGN KEY(sale_id) REFERENCES sales(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS supplier_invoices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                number TEXT UNIQUE,
                purchase_order_id INTEGER NOT NULL UNIQUE,
                supplier_id INTEGER NOT NULL,
                issue_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                total REAL NOT NULL CHECK(total >= 0),
                status TEXT NOT NULL CHECK(status IN ('unpaid','partially_paid','paid','cancelled')),
                FOREIGN KEY(purchase_order_id) REFERENCES purchase_orders(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                customer_invoice_id INTEGER,
                supplier_invoice_id INTEGER,
                amount REAL NOT NULL CHECK(amount > 0),
                payment_date TEXT NOT NULL,
                method TEXT NOT NULL CHECK(method IN ('cash','cheque','transfer','mobile_money','card')),
                reference TEXT,
                created_at TEXT NOT NULL,
                CHECK((customer_invoice_id IS NULL) <> (supplier_invoice_id IS NULL)),
                FOREIGN KEY(customer_invoice_id) REFERENCES customer_invoices(id),
                FOREIGN KEY(supplier_invoice_id) REFERENCES supplier_invoices(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                type TEXT NOT NULL CHECK(type IN ('Rupture','StockFaible','Peremption')),
                product_id INTEGER NOT NULL,
                message TEXT NOT NULL,
                read INTEGER NOT NULL DEFAULT 0 CHECK(read IN (0,1)),
                created_at TEXT NOT NULL,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )

    def _migration_v2_returns_and_indexes(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            "INSERT OR IGNORE INTO warehouses (name, capacity, location) VALUES (?, NULL, ?)",
            (RETURNS_WAREHOUSE, RETURNS_WAREHOUSE),
        )
        cur.execute("CREATE INDEX IF NOT EXISTS ix_lots_product_status ON lots(product_id, status, entry_date)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_lots_warehouse ON lots(warehouse_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_movements_product ON stock_movements(product_id, datetime)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_payments_date ON payments(payment_date)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_alerts_unread ON alerts(type, product_id, read)")

    def _migration_v3_replenishment_requests(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS replenishment_requests (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                number TEXT UNIQUE,
                requester_id INTEGER NOT NULL,
                assignee_id INTEGER,
                request_date TEXT NOT NULL,
                reason TEXT,
                priority TEXT NOT NULL DEFAULT 'normal' CHECK(priority IN ('normal','urgent','critical')),
                status TEXT NOT NULL DEFAULT 'draft'
                    CHECK(status IN ('draft','sent','in_progress','processed','rejected','cancelled')),
                processed_at TEXT,
                processing_comment TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS replenishment_lines (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                request_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                qty_requested INTEGER NOT NULL CHECK(qty_requested > 0),
                current_stock INTEGER,
                reorder_threshold INTEGER,
                justification TEXT,
                FOREIGN KEY(request_id) REFERENCES replenishment_requests(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS ix_replenishment_status ON replenishment_requests(status, priority)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_replenishment_requester ON replenishment_requests(requester_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_replenishment_assignee ON replenishment_requests(assignee_id)")

    def integrity_check(self) -> str:
        with self._read() as cur:
            cur.execute("PRAGMA integrity_check")
            row = cur.fetchone()
        return str(row[0]) if row else "unknown"

    # ---------- Products ----------
    def add_product(
        self,
        code: str,
        name: str,
        purchase_price: float,
        sale_price: float,
        reorder_threshold: int,
        perishable: bool,
    ) -> int:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO products (code, name, purchase_price, sale_price, reorder_threshold, perishable)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (code, name, float(purchase_price), float(sale_price), int(reorder_threshold), int(bool(perishable))),
            )
            return int(cur.lastrowid)
        finally:
            conn.close()

    def last_product_code(self, prefix: str) -> Optional[str]:
        with self._read() as cur:
            cur.execute(
                "SELECT code FROM products WHERE code LIKE ? ORDER BY LENGTH(code) DESC, code DESC LIMIT 1",
                (f"{prefix}%",),
            )
            row = cur.fetchone()
        return str(row[0]) if row else None

    def fetch_product(
        self, cur: sqlite3.Cursor, product_id: int, include_inactive: bool = False
    ) -> Optional[Product]:
        active = "" if include_inactive else "active=1 AND "
        cur.execute(f"SELECT {PRODUCT_COLS} FROM products WHERE {active}id=?", (int(product_id),))
        r = cur.fetchone()
        return _product(r) if r else None

    def get_product_by_id(self, product_id: int) -> Optional[Product]:
        with self._read() as cur:
            return self.fetch_product(cur, product_id)

    def get_product_by_code(self, code: str) -> Optional[Product]:
        with self._read() as cur:
            cur.execute(f"SELECT {PRODUCT_COLS} FROM products WHERE active=1 AND code=?", (code,))
            r = cur.fetchone()
        return _product(r) if r else None

    def list_products(self) -> list[Product]:
        with self._read() as cur:
            cur.execute(f"SELECT {PRODUCT_COLS} FROM products WHERE active=1 ORDER BY name")
            rows = cur.fetchall()
        return [_product(r) for r in rows]

    def update_product(
        self, product_id: int, name: str, purchase_price: float, sale_price: float, reorder_threshold: int
    ) -> bool:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE products
                SET name=?, purchase_price=?, sale_price=?, reorder_threshold=?
                WHERE id=? AND active=1
                """,
                (name, float(purchase_price), float(sale_price), int(reorder_threshold), int(product_id)),
            )
            return cur.rowcount > 0
        finally:
            conn.close()

    def deactivate_product(self, product_id: int) -> bool:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute("UPDATE products SET active=0 WHERE id=? AND active=1", (int(product_id),))
            return cur.rowcount > 0
        finally:
            conn.close()

    # ---------- Warehouses ----------
    def add_warehouse(self, name: str, capacity: Optional[int], location: Optional[str]) -> int:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "INSERT INTO warehouses (name, capacity, location) VALUES (?, ?, ?)",
                (name, (int(capacity) if capacity is not None else None), location),
            )
            return int(cur.lastrowid)
        finally:
            conn.close()

    def fetch_warehouse(self, cur: sqlite3.Cursor, warehouse_id: int) -> Optional[Warehouse]:
        cur.execute("SELECT id, name, capacity, location FROM warehouses WHERE id=?", (int(warehouse_id),))
        r = cur.fetchone()
        if not r:
            return None
        return Warehouse(id=int(r[0]), name=str(r[1]), capacity=(int(r[2]) if r[2] is not None else None), location=r[3])

    def fetch_returns_warehouse(self, cur: sqlite3.Cursor) -> Warehouse:
        cur.execute("SELECT id FROM warehouses WHERE name=?", (RETURNS_WAREHOUSE,))
        row = cur.fetchone()
        if row:
            wh = self.fetch_warehouse(cur, int(row[0]))
            if wh is not None:
                return wh
        cur.execute(
            "INSERT INTO warehouses (name, capacity, location) VALUES (?, NULL, ?)",
            (RETURNS_WAREHOUSE, RETURNS_WAREHOUSE),
        )
        return Warehouse(id=int(cur.lastrowid), name=RETURNS_WAREHOUSE, capacity=None, location=RETURNS_WAREHOUSE)

    def get_warehouse(self, warehouse_id: int) -> Optional[Warehouse]:
        with self._read() as cur:
            return self.fetch_warehouse(cur, warehouse_id)

    def list_warehouses(self) -> list[Warehouse]:
        with self._read() as cur:
            cur.execute("SELECT id, name, capacity, location FROM warehouses ORDER BY name")
            rows = cur.fetchall()
        return [
            Warehouse(id=int(r[0]), name=str(r[1]), capacity=(int(r[2]) if r[2] is not None else None), location=r[3])
            for r in rows
        ]

    def warehouse_used_quantity(self, cur: sqlite3.Cursor, warehouse_id: int) -> int:
        cur.execute("SELECT COALESCE(SUM(quantity), 0) FROM lots WHERE warehouse_id=?", (int(warehouse_id),))
        return int(cur.fetchone()[0])

    def used_capacity(self, warehouse_id: int) -> int:
        with self._read() as cur:
            return self.warehouse_used_quantity(cur, warehouse_id)

    # ---------- Lots ----------
    def insert_lot(
        self,
        cur: sqlite3.Cursor,
        product_id: int,
        warehouse_id: int,
        quantity: int,
        location: str,
        entry_iso: str,
        batch_no: str,
        status: str,
        expiry_iso: Optional[str],
    ) -> int:
        cur.execute(
            """
            INSERT INTO lots (product_id, warehouse_id, quantity, location, entry_date, batch_no, status, expiry_date)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (int(product_id), int(warehouse_id), int(quantity), location, entry_iso, batch_no, status, expiry_iso),
        )
        return int(cur.lastrowid)

    def fetch_lot(self, cur: sqlite3.Cursor, lot_id: int) -> Optional[Lot]:
        cur.execute(f"SELECT {LOT_COLS} FROM lots WHERE id=?", (int(lot_id),))
        r = cur.fetchone()
        return _lot(r) if r else None

    def get_lot(self, lot_id: int) -> Optional[Lot]:
        with self._read() as cur:
            return self.fetch_lot(cur, lot_id)

    def update_lot(self, cur: sqlite3.Cursor, lot_id: int, quantity: int, status: str) -> None:
        cur.execute("UPDATE lots SET quantity=?, status=? WHERE id=?", (int(quantity), status, int(lot_id)))

    def set_lot_status(self, cur: sqlite3.Cursor, lot_id: int, status: str) -> None:
        cur.execute("UPDATE lots SET status=? WHERE id=?", (status, int(lot_id)))

    def delete_lot(self, cur: sqlite3.Cursor, lot_id: int) -> None:
        cur.execute("DELETE FROM lots WHERE id=?", (int(lot_id),))

    def list_lots(
        self,
        product_id: Optional[int] = None,
        warehouse_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Lot]:
        clauses, params = [], []
        if product_id is not None:
            clauses.append("product_id=?")
            params.append(int(product_id))
        if warehouse_id is not None:
            clauses.append("warehouse_id=?")
            params.append(int(warehouse_id))
        if status is not None:
            clauses.append("status=?")
            params.append(status)
        where = " AND ".join(clauses) or "1=1"
        with self._read() as cur:
            cur.execute(f"SELECT {LOT_COLS} FROM lots WHERE {where} ORDER BY entry_date DESC, id DESC", tuple(params))
            rows = cur.fetchall()
        return [_lot(r) for r in rows]

    def available_lots_fifo(self, cur: sqlite3.Cursor, product_id: int, today_iso: str) -> list[Lot]:
        cur.execute(
            f"""
            SELECT {LOT_COLS}
            FROM lots
            WHERE product_id=? AND status='available' AND quantity > 0
              AND (expiry_date IS NULL OR expiry_date > ?)
            ORDER BY entry_date ASC, id ASC
            """,
            (int(product_id), today_iso),
        )
        return [_lot(r) for r in cur.fetchall()]

    def newest_available_lot(self, cur: sqlite3.Cursor, product_id: int, today_iso: str) -> Optional[Lot]:
        cur.execute(
            f"""
            SELECT {LOT_COLS}
            FROM lots
            WHERE product_id=? AND status='available'
              AND (expiry_date IS NULL OR expiry_date > ?)
            ORDER BY entry_date DESC, id DESC
            LIMIT 1
            """,
            (int(product_id), today_iso),
        )
        r = cur.fetchone()
        return _lot(r) if r else None

    def total_available(self, cur: sqlite3.Cursor, product_id: int, today_iso: str) -> int:
        cur.execute(
            """
            SELECT COALESCE(SUM(quantity), 0)
            FROM lots
            WHERE product_id=? AND status='available'
              AND (expiry_date IS NULL OR expiry_date > ?)
            """,
            (int(product_id), today_iso),
        )
        return int(cur.fetchone()[0])

    def available_quantity(self, product_id: int, today_iso: str) -> int:
        with self._read() as cur:
            return self.total_available(cur, product_id, today_iso)

    def available_by_product(self, cur: sqlite3.Cursor, today_iso: str) -> list[tuple[Product, int]]:
        cur.execute(
            f"""
            SELECT {', '.join('p.' + c.strip() for c in PRODUCT_COLS.split(','))},
                   COALESCE(SUM(CASE WHEN l.status='available'
                                      AND (l.expiry_date IS NULL OR l.expiry_date > ?)
                                     THEN l.quantity ELSE 0 END), 0)
            FROM products p
            LEFT JOIN lots l ON l.product_id = p.id
            WHERE p.active=1
            GROUP BY p.id
            ORDER BY p.name
            """,
            (today_iso,),
        )
        return [(_product(r[:8]), int(r[8])) for r in cur.fetchall()]

    def stale_lots(self, cur: sqlite3.Cursor, today_iso: str, product_id: Optional[int] = None) -> list[Lot]:
        sql = f"SELECT {LOT_COLS} FROM lots WHERE expiry_date IS NOT NULL AND expiry_date <= ? AND status != 'expired'"
        params: list = [today_iso]
        if product_id is not None:
            sql += " AND product_id=?"
            params.append(int(product_id))
        cur.execute(sql + " ORDER BY expiry_date, id", tuple(params))
        return [_lot(r) for r in cur.fetchall()]

    def expiring_lots(self, cur: sqlite3.Cursor, today_iso: str, horizon_iso: str) -> list[Lot]:
        cur.execute(
            f"""
            SELECT {LOT_COLS}
            FROM lots
            WHERE expiry_date IS NOT NULL AND expiry_date > ? AND expiry_date <= ?
              AND status != 'expired'
            ORDER BY expiry_date, id
            """,
            (today_iso, horizon_iso),
        )
        return [_lot(r) for r in cur.fetchall()]

    def insert_movement(
        self,
        cur: sqlite3.Cursor,
        datetime_iso: str,
        lot: Lot,
        movement_type: str,
        qty_delta: int,
        qty_after: int,
        reference_type: Optional[str],
        reference_id: Optional[int],
        notes: Optional[str],
    ) -> None:
        cur.execute(
            """
            INSERT INTO stock_movements (
                datetime, lot_id, product_id, warehouse_id, movement_type, qty_delta, qty_after,
                reference_type, reference_id, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                datetime_iso,
                int(lot.id),
                int(lot.product_id),
                int(lot.warehouse_id),
                movement_type,
                int(qty_delta),
                int(qty_after),
                reference_type,
                reference_id,
                notes,
            ),
        )

    def movements_for_product(self, product_id: int) -> list[StockMovement]:
        with self._read() as cur:
            cur.execute(
                f"SELECT {MOVEMENT_COLS} FROM stock_movements WHERE product_id=? ORDER BY datetime DESC, id DESC",
                (int(product_id),),
            )
            rows = cur.fetchall()
        return [_movement(r) for r in rows]

    def movements_between(self, start_iso: str, end_iso: str) -> list[StockMovement]:
        with self._read() as cur:
            cur.execute(
                f"""
                SELECT {MOVEMENT_COLS}
                FROM stock_movements
                WHERE datetime >= ? AND datetime < ?
                ORDER BY datetime DESC, id DESC
                """,
                (start_iso, end_iso),
            )
            rows = cur.fetchall()
        return [_movement(r) for r in rows]

    # ---------- Sales ----------
    def insert_sale(
        self,
        cur: sqlite3.Cursor,
        customer_id: int,
        seller_id: Optional[int],
        sale_date_iso: str,
        discount: float,
        total_pretax: float,
        total_with_tax: float,
        status: str,
        notes: Optional[str],
        created_iso: str,
        lines: Iterable[dict],
    ) -> int:
        cur.execute(
            """
            INSERT INTO sales (customer_id, seller_id, sale_date, discount, total_pretax, total_with_tax,
                               status, notes, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(customer_id),
                seller_id,
                sale_date_iso,
                float(discount),
                float(total_pretax),
                float(total_with_tax),
                status,
                notes,
                created_iso,
            ),
        )
        sale_id = int(cur.lastrowid)
        cur.execute(
            "UPDATE sales SET number=? WHERE id=?",
            (f"V{sale_date_iso[:4]}{sale_id:06d}", sale_id),
        )
        for it in lines:
            cur.execute(
                "INSERT INTO sale_lines (sale_id, product_id, qty, unit_price) VALUES (?, ?, ?, ?)",
                (sale_id, int(it["product_id"]), int(it["qty"]), float(it["unit_price"])),
            )
        return sale_id

    def fetch_sale(self, cur: sqlite3.Cursor, sale_id: int) -> Optional[Sale]:
        cur.execute(f"SELECT {SALE_COLS} FROM sales WHERE id=?", (int(sale_id),))
        r = cur.fetchone()
        if not r:
            return None
        cur.execute(
            "SELECT id, product_id, qty, unit_price FROM sale_lines WHERE sale_id=? ORDER BY id",
            (int(sale_id),),
        )
        lines = tuple(
            SaleLine(id=int(x[0]), product_id=int(x[1]), qty=int(x[2]), unit_price=float(x[3]))
            for x in cur.fetchall()
        )
        return Sale(
            id=int(r[0]),
            number=str(r[1]),
            customer_id=int(r[2]),
            seller_id=(int(r[3]) if r[3] is not None else None),
            sale_date=_parse_date(r[4]),
            discount=float(r[5]),
            total_pretax=float(r[6]),
            total_with_tax=float(r[7]),
            status=str(r[8]),
            notes=(r[9] if r[9] is not None else None),
            lines=lines,
        )

    def get_sale(self, sale_id: int) -> Optional[Sale]:
        with self._read() as cur:
            return self.fetch_sale(cur, sale_id)

    def update_sale_status(self, cur: sqlite3.Cursor, sale_id: int, status: str, updated_iso: str) -> None:
        cur.execute("UPDATE sales SET status=?, updated_at=? WHERE id=?", (status, updated_iso, int(sale_id)))

    def replace_sale_lines(
        self,
        cur: sqlite3.Cursor,
        sale_id: int,
        discount: float,
        total_pretax: float,
        total_with_tax: float,
        notes: Optional[str],
        updated_iso: str,
        lines: Iterable[dict],
    ) -> None:
        cur.execute(
            """
            UPDATE sales SET discount=?, total_pretax=?, total_with_tax=?, notes=?, updated_at=?
            WHERE id=?
            """,
            (float(discount), float(total_pretax), float(total_with_tax), notes, updated_iso, int(sale_id)),
        )
        cur.execute("DELETE FROM sale_lines WHERE sale_id=?", (int(sale_id),))
        for it in lines:
            cur.execute(
                "INSERT INTO sale_lines (sale_id, product_id, qty, unit_price) VALUES (?, ?, ?, ?)",
                (int(sale_id), int(it["product_id"]), int(it["qty"]), float(it["unit_price"])),
            )

    def list_sales(
        self,
        scope: RecordScope = ALL_RECORDS,
        start_iso: Optional[str] = None,
        end_iso: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[Sale]:
        where, params = scope.sql("seller_id")
        clauses, args = [where], list(params)
        if start_iso is not None:
            clauses.append("sale_date >= ?")
            args.append(start_iso)
        if end_iso is not None:
            clauses.append("sale_date < ?")
            args.append(end_iso)
        if status is not None:
            clauses.append("status = ?")
            args.append(status)
        with self._read() as cur:
            cur.execute(
                f"SELECT id FROM sales WHERE {' AND '.join(clauses)} ORDER BY sale_date DESC, id DESC",
                tuple(args),
            )
            ids = [int(r[0]) for r in cur.fetchall()]
            return [s for s in (self.fetch_sale(cur, i) for i in ids) if s is not None]

    def sales_daily_totals(self, start_iso: str, end_iso: str) -> list[tuple[str, int, float]]:
        with self._read() as cur:
            cur.execute(
                """
                SELECT sale_date, COUNT(*), COALESCE(SUM(total_with_tax), 0)
                FROM sales
                WHERE sale_date >= ? AND sale_date < ? AND status != 'cancelled'
                GROUP BY sale_date
                ORDER BY sale_date
                """,
                (start_iso, end_iso),
            )
            rows = cur.fetchall()
        return [(str(r[0]), int(r[1]), float(r[2])) for r in rows]

    def top_products_sold(self, start_iso: str, end_iso: str, limit: int = 10) -> list[tuple[str, str, int, float]]:
        with self._read() as cur:
            cur.execute(
                """
                SELECT p.code, p.name, SUM(sl.qty) AS units, SUM(sl.qty * sl.unit_price) AS amount
                FROM sale_lines sl
                JOIN sales s ON s.id = sl.sale_id
                JOIN products p ON p.id = sl.product_id
                WHERE s.sale_date >= ? AND s.sale_date < ? AND s.status != 'cancelled'
                GROUP BY p.id
                ORDER BY units DESC
                LIMIT ?
                """,
                (start_iso, end_iso, int(limit)),
            )
            rows = cur.fetchall()
        return [(str(r[0]), str(r[1]), int(r[2]), float(r[3])) for r in rows]

    def sales_income_between(self, start_iso: str, end_iso: str) -> tuple[float, float, float]:
        """(pre-tax revenue, tax-inclusive revenue, cost of goods sold) for validated/delivered sales."""
        with self._read() as cur:
            cur.execute(
                """
                SELECT COALESCE(SUM(total_pretax), 0), COALESCE(SUM(total_with_tax), 0)
                FROM sales
                WHERE sale_date >= ? AND sale_date < ? AND status IN ('validated','delivered')
                """,
                (start_iso, end_iso),
            )
            pretax, with_tax = cur.fetchone()
            cur.execute(
                """
                SELECT COALESCE(SUM(sl.qty * p.purchase_price), 0)
                FROM sale_lines sl
                JOIN sales s ON s.id = sl.sale_id
                JOIN products p ON p.id = sl.product_id
                WHERE s.sale_date >= ? AND s.sale_date < ? AND s.status IN ('validated','delivered')
                """,
                (start_iso, end_iso),
            )
            cogs = cur.fetchone()[0]
        return float(pretax), float(with_tax), float(cogs)

    # ---------- Purchase orders ----------
    def insert_purchase_order(
        self,
        cur: sqlite3.Cursor,
        supplier_id: int,
        order_date_iso: str,
        expected_iso: Optional[str],
        total: float,
        status: str,
        notes: Optional[str],
        created_iso: str,
        lines: Iterable[dict],
    ) -> int:
        cur.execute(
            """
            INSERT INTO purchase_orders (supplier_id, order_date, expected_date, total, status, notes, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (int(supplier_id), order_date_iso, expected_iso, float(total), status, notes, created_iso),
        )
        po_id = int(cur.lastrowid)
        cur.execute(
            "UPDATE purchase_orders SET number=? WHERE id=?",
            (f"CA{order_date_iso[:4]}{po_id:06d}", po_id),
        )
        for it in lines:
            cur.execute(
                """
                INSERT INTO purchase_order_lines (purchase_order_id, product_id, qty, unit_cost, expiry_date)
                VALUES (?, ?, ?, ?, ?)
                """,
                (po_id, int(it["product_id"]), int(it["qty"]), float(it["unit_cost"]), it.get("expiry_date")),
            )
        return po_id

    def fetch_purchase_order(self, cur: sqlite3.Cursor, po_id: int) -> Optional[PurchaseOrder]:
        cur.execute(f"SELECT {PO_COLS} FROM purchase_orders WHERE id=?", (int(po_id),))
        r = cur.fetchone()
        if not r:
            return None
        cur.execute(
            """
            SELECT id, product_id, qty, unit_cost, expiry_date
            FROM purchase_order_lines WHERE purchase_order_id=? ORDER BY id
            """,
            (int(po_id),),
        )
        lines = tuple(
            PurchaseOrderLine(
                id=int(x[0]), product_id=int(x[1]), qty=int(x[2]), unit_cost=float(x[3]), expiry_date=_parse_date(x[4])
            )
            for x in cur.fetchall()
        )
        return PurchaseOrder(
            id=int(r[0]),
            number=str(r[1]),
            supplier_id=int(r[2]),
            order_date=_parse_date(r[3]),
            expected_date=_parse_date(r[4]),
            total=float(r[5]),
            status=str(r[6]),
            notes=(r[7] if r[7] is not None else None),
            lines=lines,
        )

    def get_purchase_order(self, po_id: int) -> Optional[PurchaseOrder]:
        with self._read() as cur:
            return self.fetch_purchase_order(cur, po_id)

    def update_purchase_status(self, cur: sqlite3.Cursor, po_id: int, status: str, updated_iso: str) -> None:
        cur.execute("UPDATE purchase_orders SET status=?, updated_at=? WHERE id=?", (status, updated_iso, int(po_id)))

    def list_purchase_orders(self, status: Optional[str] = None) -> list[PurchaseOrder]:
        with self._read() as cur:
            if status is None:
                cur.execute("SELECT id FROM purchase_orders ORDER BY order_date DESC, id DESC")
            else:
                cur.execute("SELECT id FROM purchase_orders WHERE status=? ORDER BY order_date DESC, id DESC", (status,))
            ids = [int(r[0]) for r in cur.fetchall()]
            return [po for po in (self.fetch_purchase_order(cur, i) for i in ids) if po is not None]

    def received_purchases_total(self, start_iso: str, end_iso: str) -> float:
        with self._read() as cur:
            cur.execute(
                """
                SELECT COALESCE(SUM(total), 0)
                FROM purchase_orders
                WHERE order_date >= ? AND order_date < ? AND status = 'received'
                """,
                (start_iso, end_iso),
            )
            return float(cur.fetchone()[0])

    # ---------- Replenishment requests ----------
    def insert_replenishment_request(
        self,
        cur: sqlite3.Cursor,
        requester_id: int,
        request_date_iso: str,
        reason: Optional[str],
        priority: str,
        created_iso: str,
        lines: Iterable[dict],
    ) -> int:
        cur.execute(
            """
            INSERT INTO replenishment_requests (requester_id, request_date, reason, priority, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (int(requester_id), request_date_iso, reason, priority, ReplenishmentStatus.DRAFT, created_iso),
        )
        request_id = int(cur.lastrowid)
        cur.execute(
            "UPDATE replenishment_requests SET number=? WHERE id=?",
            (f"DA{request_date_iso[:4]}{request_id:06d}", request_id),
        )
        for it in lines:
            cur.execute(
                """
                INSERT INTO replenishment_lines (request_id, product_id, qty_requested, current_stock,
                                                 reorder_threshold, justification)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    request_id,
                    int(it["product_id"]),
                    int(it["qty"]),
                    it.get("current_stock"),
                    it.get("reorder_threshold"),
                    it.get("justification"),
                ),
            )
        return request_id

    def fetch_replenishment_request(self, cur: sqlite3.Cursor, request_id: int) -> Optional[ReplenishmentRequest]:
        cur.execute(
            """
            SELECT id, number, requester_id, assignee_id, request_date, reason, priority, status,
                   processed_at, processing_comment
            FROM replenishment_requests WHERE id=?
            """,
            (int(request_id),),
        )
        r = cur.fetchone()
        if not r:
            return None
        cur.execute(
            """
            SELECT id, product_id, qty_requested, current_stock, reorder_threshold, justification
            FROM replenishment_lines WHERE request_id=? ORDER BY id
            """,
            (int(request_id),),
        )
        lines = tuple(
            ReplenishmentLine(
                id=int(x[0]),
                product_id=int(x[1]),
                qty_requested=int(x[2]),
                current_stock=(int(x[3]) if x[3] is not None else None),
                reorder_threshold=(int(x[4]) if x[4] is not None else None),
                justification=x[5],
            )
            for x in cur.fetchall()
        )
        return ReplenishmentRequest(
            id=int(r[0]),
            number=str(r[1]),
            requester_id=int(r[2]),
            assignee_id=(int(r[3]) if r[3] is not None else None),
            request_date=_parse_date(r[4]),
            reason=r[5],
            priority=str(r[6]),
            status=str(r[7]),
            processed_at=(_parse_dt(r[8]) if r[8] else None),
            processing_comment=r[9],
            lines=lines,
        )

    def get_replenishment_request(self, request_id: int) -> Optional[ReplenishmentRequest]:
        with self._read() as cur:
            return self.fetch_replenishment_request(cur, request_id)

    def update_replenishment_request(
        self,
        cur: sqlite3.Cursor,
        request_id: int,
        status: str,
        assignee_id: Optional[int],
        processed_iso: Optional[str],
        comment: Optional[str],
        updated_iso: str,
    ) -> None:
        cur.execute(
            """
            UPDATE replenishment_requests
            SET status=?, assignee_id=?, processed_at=?, processing_comment=?, updated_at=?
            WHERE id=?
            """,
            (status, assignee_id, processed_iso, comment, updated_iso, int(request_id)),
        )

    def _replenishment_filter(
        self, requester_id: Optional[int], assignee_id: Optional[int]
    ) -> tuple[list[str], list]:
        clauses, args = [], []
        if requester_id is not None:
            clauses.append("requester_id = ?")
            args.append(int(requester_id))
        if assignee_id is not None:
            # purchasing agents also see every sent request nobody has taken yet
            clauses.append("(assignee_id = ? OR status = ?)")
            args.extend([int(assignee_id), ReplenishmentStatus.SENT])
        return clauses, args

    def list_replenishment_requests(
        self,
        requester_id: Optional[int] = None,
        assignee_id: Optional[int] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> list[ReplenishmentRequest]:
        clauses, args = self._replenishment_filter(requester_id, assignee_id)
        if status is not None:
            clauses.append("status = ?")
            args.append(status)
        if priority is not None:
            clauses.append("priority = ?")
            args.append(priority)
        where = " AND ".join(clauses) or "1=1"
        with self._read() as cur:
            cur.execute(
                f"SELECT id FROM replenishment_requests WHERE {where} ORDER BY created_at DESC, id DESC",
                tuple(args),
            )
            ids = [int(r[0]) for r in cur.fetchall()]
            return [rq for rq in (self.fetch_replenishment_request(cur, i) for i in ids) if rq is not None]

    def replenishment_status_counts(
        self, requester_id: Optional[int] = None, assignee_id: Optional[int] = None
    ) -> dict[str, int]:
        """status -> number of requests, over all requests or those of one requester/assignee."""
        clauses, args = [], []
        if requester_id is not None:
            clauses.append("requester_id = ?")
            args.append(int(requester_id))
        if assignee_id is not None:
            clauses.append("assignee_id = ?")
            args.append(int(assignee_id))
        where = " AND ".join(clauses) or "1=1"
        with self._read() as cur:
            cur.execute(f"SELECT status, COUNT(*) FROM replenishment_requests WHERE {where} GROUP BY status", tuple(args))
            rows = cur.fetchall()
        return {str(r[0]): int(r[1]) for r in rows}

    # ---------- Invoices ----------
    def _invoice(self, direction: str, r) -> Invoice:
        return Invoice(
            id=int(r[0]),
            direction=direction,
            number=str(r[1]),
            source_id=int(r[2]),
            party_id=int(r[3]),
            issue_date=_parse_date(r[4]),
            due_date=_parse_date(r[5]),
            total=float(r[6]),
            status=str(r[7]),
        )

    def _invoice_select(self, direction: str) -> str:
        table, source_col, party_col, _fk, _prefix = INVOICE_TABLES[direction]
        return f"SELECT id, number, {source_col}, {party_col}, issue_date, due_date, total, status FROM {table}"

    def insert_invoice(
        self,
        cur: sqlite3.Cursor,
        direction: str,
        source_id: int,
        party_id: int,
        issue_iso: str,
        due_iso: str,
        total: float,
        status: str,
    ) -> int:
        table, source_col, party_col, _fk, prefix = INVOICE_TABLES[direction]
        cur.execute(
            f"""
            INSERT INTO {table} ({source_col}, {party_col}, issue_date, due_date, total, status)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (int(source_id), int(party_id), issue_iso, due_iso, float(total), status),
        )
        invoice_id = int(cur.lastrowid)
        cur.execute(
            f"UPDATE {table} SET number=? WHERE id=?",
            (f"{prefix}{issue_iso[:4]}{invoice_id:06d}", invoice_id),
        )
        return invoice_id

    def fetch_invoice(self, cur: sqlite3.Cursor, ref: InvoiceRef) -> Optional[Invoice]:
        cur.execute(f"{self._invoice_select(ref.direction)} WHERE id=?", (int(ref.id),))
        r = cur.fetchone()
        return self._invoice(ref.direction, r) if r else None

    def fetch_invoice_for_source(self, cur: sqlite3.Cursor, direction: str, source_id: int) -> Optional[Invoice]:
        _table, source_col, _party, _fk, _prefix = INVOICE_TABLES[direction]
        cur.execute(f"{self._invoice_select(direction)} WHERE {source_col}=?", (int(source_id),))
        r = cur.fetchone()
        return self._invoice(direction, r) if r else None

    def get_invoice(self, ref: InvoiceRef) -> Optional[Invoice]:
        with self._read() as cur:
            return self.fetch_invoice(cur, ref)

    def get_invoice_for_source(self, direction: str, source_id: int) -> Optional[Invoice]:
        with self._read() as cur:
            return self.fetch_invoice_for_source(cur, direction, source_id)

    def set_invoice_status(self, cur: sqlite3.Cursor, ref: InvoiceRef, status: str) -> None:
        table = INVOICE_TABLES[ref.direction][0]
        cur.execute(f"UPDATE {table} SET status=? WHERE id=?", (status, int(ref.id)))

    def list_invoices(self, direction: str, statuses: Optional[Iterable[str]] = None) -> list[Invoice]:
        sql = self._invoice_select(direction)
        params: tuple = ()
        if statuses is not None:
            statuses = tuple(statuses)
            sql += f" WHERE status IN ({','.join('?' for _ in statuses)})"
            params = statuses
        with self._read() as cur:
            cur.execute(sql + " ORDER BY due_date ASC, id ASC", params)
            rows = cur.fetchall()
        return [self._invoice(direction, r) for r in rows]

    # ---------- Payments ----------
    def sum_payments(self, cur: sqlite3.Cursor, ref: InvoiceRef) -> float:
        fk = INVOICE_TABLES[ref.direction][3]
        cur.execute(f"SELECT COALESCE(SUM(amount), 0) FROM payments WHERE {fk}=?", (int(ref.id),))
        return float(cur.fetchone()[0])

    def paid_amount(self, ref: InvoiceRef) -> float:
        with self._read() as cur:
            return self.sum_payments(cur, ref)

    def insert_payment(
        self,
        cur: sqlite3.Cursor,
        ref: InvoiceRef,
        amount: float,
        payment_date_iso: str,
        method: str,
        reference: Optional[str],
        created_iso: str,
    ) -> int:
        customer_id = int(ref.id) if ref.direction == InvoiceDirection.CUSTOMER else None
        supplier_id = int(ref.id) if ref.direction == InvoiceDirection.SUPPLIER else None
        cur.execute(
            """
            INSERT INTO payments (customer_invoice_id, supplier_invoice_id, amount, payment_date, method,
                                  reference, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (customer_id, supplier_id, float(amount), payment_date_iso, method, reference, created_iso),
        )
        return int(cur.lastrowid)

    def _payment(self, r) -> Payment:
        if r[1] is not None:
            ref = InvoiceRef(InvoiceDirection.CUSTOMER, int(r[1]))
        else:
            ref = InvoiceRef(InvoiceDirection.SUPPLIER, int(r[2]))
        return Payment(
            id=int(r[0]),
            invoice=ref,
            amount=float(r[3]),
            payment_date=_parse_date(r[4]),
            method=str(r[5]),
            reference=(r[6] if r[6] is not None else None),
        )

    def payments_for_invoice(self, ref: InvoiceRef) -> list[Payment]:
        fk = INVOICE_TABLES[ref.direction][3]
        with self._read() as cur:
            cur.execute(
                f"""
                SELECT id, customer_invoice_id, supplier_invoice_id, amount, payment_date, method, reference
                FROM payments WHERE {fk}=? ORDER BY payment_date, id
                """,
                (int(ref.id),),
            )
            rows = cur.fetchall()
        return [self._payment(r) for r in rows]

    def payment_totals_between(self, start_iso: str, end_iso: str) -> tuple[float, float]:
        """(customer receipts, supplier disbursements) with payment_date in [start, end]."""
        with self._read() as cur:
            cur.execute(
                """
                SELECT COALESCE(SUM(CASE WHEN customer_invoice_id IS NOT NULL THEN amount ELSE 0 END), 0),
                       COALESCE(SUM(CASE WHEN supplier_invoice_id IS NOT NULL THEN amount ELSE 0 END), 0)
                FROM payments
                WHERE payment_date >= ? AND payment_date <= ?
                """,
                (start_iso, end_iso),
            )
            inflow, outflow = cur.fetchone()
        return float(inflow), float(outflow)

    def payment_totals_until(self, end_iso: str) -> tuple[float, float]:
        """Cumulative (customer receipts, supplier disbursements) up to and including ``end_iso``."""
        with self._read() as cur:
            cur.execute(
                """
                SELECT COALESCE(SUM(CASE WHEN customer_invoice_id IS NOT NULL THEN amount ELSE 0 END), 0),
                       COALESCE(SUM(CASE WHEN supplier_invoice_id IS NOT NULL THEN amount ELSE 0 END), 0)
                FROM payments
                WHERE payment_date <= ?
                """,
                (end_iso,),
            )
            inflow, outflow = cur.fetchone()
        return float(inflow), float(outflow)

    def payment_daily_totals(self, start_iso: str, end_iso: str) -> dict[str, tuple[float, float]]:
        with self._read() as cur:
            cur.execute(
                """
                SELECT payment_date,
                       COALESCE(SUM(CASE WHEN customer_invoice_id IS NOT NULL THEN amount ELSE 0 END), 0),
                       COALESCE(SUM(CASE WHEN supplier_invoice_id IS NOT NULL THEN amount ELSE 0 END), 0)
                FROM payments
                WHERE payment_date >= ? AND payment_date <= ?
                GROUP BY payment_date
                """,
                (start_iso, end_iso),
            )
            rows = cur.fetchall()
        return {str(r[0]): (float(r[1]), float(r[2])) for r in rows}

    def payment_totals_by_method(self, start_iso: str, end_iso: str) -> list[tuple[str, float, int]]:
        with self._read() as cur:
            cur.execute(
                """
                SELECT method, COALESCE(SUM(amount), 0), COUNT(*)
                FROM payments
                WHERE payment_date >= ? AND payment_date <= ?
                GROUP BY method
                ORDER BY method
                """,
                (start_iso, end_iso),
            )
            rows = cur.fetchall()
        return [(str(r[0]), float(r[1]), int(r[2])) for r in rows]

    # ---------- Alerts ----------
    def find_unread_alert(self, cur: sqlite3.Cursor, alert_type: str, product_id: int, message: str) -> Optional[int]:
        cur.execute(
            "SELECT id FROM alerts WHERE type=? AND product_id=? AND message=? AND read=0 LIMIT 1",
            (alert_type, int(product_id), message),
        )
        row = cur.fetchone()
        return int(row[0]) if row else None

    def insert_alert(self, cur: sqlite3.Cursor, alert_type: str, product_id: int, message: str, created_iso: str) -> int:
        cur.execute(
            "INSERT INTO alerts (type, product_id, message, read, created_at) VALUES (?, ?, ?, 0, ?)",
            (alert_type, int(product_id), message, created_iso),
        )
        return int(cur.lastrowid)

    def list_unread_alerts(self) -> list[Alert]:
        with self._read() as cur:
            cur.execute(
                "SELECT id, type, product_id, message, read, created_at FROM alerts WHERE read=0 ORDER BY created_at, id"
            )
            rows = cur.fetchall()
        return [
            Alert(
                id=int(r[0]),
                type=str(r[1]),
                product_id=int(r[2]),
                message=str(r[3]),
                read=bool(r[4]),
                created_at=_parse_dt(r[5]),
            )
            for r in rows
        ]

    def mark_alert_read(self, alert_id: int) -> bool:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute("UPDATE alerts SET read=1 WHERE id=? AND read=0", (int(alert_id),))
            return cur.rowcount > 0
        finally:
            conn.close()

    # ---------- Valuation ----------
    def lot_valuation_rows(self, warehouse_id: Optional[int] = None) -> list[tuple]:
        """(lot_id, batch_no, product code, product name, warehouse name, quantity, purchase price)."""
        sql = """
            SELECT l.id, l.batch_no, p.code, p.name, w.name, l.quantity, p.purchase_price
            FROM lots l
            JOIN products p ON p.id = l.product_id
            JOIN warehouses w ON w.id = l.warehouse_id
            WHERE l.status = ?
        """
        params: list = [LotStatus.AVAILABLE]
        if warehouse_id is not None:
            sql += " AND l.warehouse_id = ?"
            params.append(int(warehouse_id))
        with self._read() as cur:
            cur.execute(sql + " ORDER BY w.name, p.name, l.entry_date", tuple(params))
            return cur.fetchall()
