from __future__ import annotations

import os
import re
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from storefront.constants import RELATIONS

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.sql")

_IDENT = re.compile(r"^[a-z_][a-z0-9_]*$")
_BOOL_COLUMNS = ("active", "is_percentage")


class StoreError(Exception):
    """Backend failure on select/insert/update/delete."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def _check_table(table: str) -> str:
    if table not in RELATIONS:
        raise StoreError(f"unknown relation: {table}")
    return table


def _check_columns(cols: Iterable[str]) -> List[str]:
    out = []
    for c in cols:
        if not _IDENT.match(c):
            raise StoreError(f"bad column name: {c!r}")
        out.append(c)
    return out


def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    d = dict(row)
    for c in _BOOL_COLUMNS:
        if c in d and d[c] is not None:
            d[c] = bool(d[c])
    return d


class SqliteStore:
    """
    Row store over products / categories / coupons / admins.

    Every call opens its own connection; there are no transactions spanning
    relations. sqlite3 errors surface as StoreError.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        folder = os.path.dirname(self.db_path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_db(self) -> None:
        conn = self._connect()
        try:
            with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
                conn.executescript(f.read())
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    # ---------------- relations ----------------

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        table = _check_table(table)
        filters = filters or {}
        cols = _check_columns(filters.keys())
        sql = f"SELECT * FROM {table}"
        if cols:
            sql += " WHERE " + " AND ".join(f"{c} = ?" for c in cols)
        if order_by:
            _check_columns([order_by])
            sql += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}"

        conn = self._connect()
        try:
            rows = conn.execute(sql, tuple(filters[c] for c in cols)).fetchall()
            return [_row_to_dict(r) for r in rows]
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def select_one(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = self.select(table, filters)
        return rows[0] if rows else None

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        table = _check_table(table)
        now = utc_now_iso()
        row = {"id": new_id(), "created_at": now, "updated_at": now}
        row.update(values)
        cols = _check_columns(row.keys())

        conn = self._connect()
        try:
            conn.execute(
                f"INSERT INTO {table}({', '.join(cols)}) VALUES({', '.join('?' for _ in cols)})",
                tuple(row[c] for c in cols),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()
        return row

    def update(self, table: str, row_id: str, values: Dict[str, Any]) -> bool:
        table = _check_table(table)
        row = dict(values)
        row["updated_at"] = utc_now_iso()
        cols = _check_columns(row.keys())

        conn = self._connect()
        try:
            cur = conn.execute(
                f"UPDATE {table} SET {', '.join(f'{c} = ?' for c in cols)} WHERE id = ?",
                tuple(row[c] for c in cols) + (row_id,),
            )
            conn.commit()
            return cur.rowcount > 0
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def increment(self, table: str, row_id: str, column: str, by: int = 1) -> bool:
        # single statement, so concurrent increments are not lost
        table = _check_table(table)
        (column,) = _check_columns([column])
        conn = self._connect()
        try:
            cur = conn.execute(
                f"UPDATE {table} SET {column} = {column} + ?, updated_at = ? WHERE id = ?",
                (by, utc_now_iso(), row_id),
            )
            conn.commit()
            return cur.rowcount > 0
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def delete(self, table: str, row_id: str) -> bool:
        return self.delete_many(table, [row_id]) > 0

    def delete_many(self, table: str, ids: Iterable[str]) -> int:
        table = _check_table(table)
        ids = list(ids)
        if not ids:
            return 0
        conn = self._connect()
        try:
            cur = conn.execute(
                f"DELETE FROM {table} WHERE id IN ({', '.join('?' for _ in ids)})",
                tuple(ids),
            )
            conn.commit()
            return cur.rowcount
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    # ---------------- client key-value slots ----------------

    def kv_get(self, client_id: str, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT value FROM client_storage WHERE client_id = ? AND key = ?",
                (client_id, key),
            ).fetchone()
            return row["value"] if row else None
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def kv_set(self, client_id: str, key: str, value: str) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO client_storage(client_id, key, value, updated_at) VALUES(?,?,?,?) "
                "ON CONFLICT(client_id, key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
                (client_id, key, value, utc_now_iso()),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def kv_remove(self, client_id: str, key: str) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "DELETE FROM client_storage WHERE client_id = ? AND key = ?",
                (client_id, key),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()
