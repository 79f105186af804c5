"""
SQL Server store.

Uses mssql-python (Microsoft's native Python driver). Entities are kept as
datoms in mbz.Datom; every value of a unique attribute also goes into
mbz.UniqueValue, whose primary key on (a, v) makes the database itself
reject a second commit of the same batch-id.
https://github.com/microsoft/mssql-python
"""

from __future__ import annotations

import json
import re
from typing import Any

import mssql_python
from mssql_python import connect as mssql_connect
from mssql_python.connection import Connection
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from mbz_import.anomalies import Category, StoreError
from mbz_import.config import Settings
from mbz_import.store.base import TxReport
from mbz_import.store.txdata import AttrDef, TxPlan, builtin_attr, expand_tx_data

_DB_NAME = re.compile(r"^[A-Za-z0-9_-]+$")

BOOTSTRAP_SQL = [
    "IF SCHEMA_ID('mbz') IS NULL EXEC('CREATE SCHEMA mbz')",
    """
    IF OBJECT_ID('mbz.Attribute') IS NULL
    CREATE TABLE mbz.Attribute (
        ident NVARCHAR(400) NOT NULL PRIMARY KEY,
        value_type NVARCHAR(100) NOT NULL,
        many BIT NOT NULL,
        uniqueness NVARCHAR(100) NULL
    )
    """,
    """
    IF OBJECT_ID('mbz.Datom') IS NULL
    CREATE TABLE mbz.Datom (
        e BIGINT NOT NULL,
        a NVARCHAR(400) NOT NULL,
        v NVARCHAR(MAX) NOT NULL,
        tx BIGINT NOT NULL,
        INDEX ix_datom_ea (e, a),
        INDEX ix_datom_a (a)
    )
    """,
    """
    IF OBJECT_ID('mbz.UniqueValue') IS NULL
    CREATE TABLE mbz.UniqueValue (
        a NVARCHAR(400) NOT NULL,
        v NVARCHAR(450) NOT NULL,
        e BIGINT NOT NULL,
        CONSTRAINT pk_unique_value PRIMARY KEY (a, v)
    )
    """,
    "IF OBJECT_ID('mbz.EntityId') IS NULL CREATE SEQUENCE mbz.EntityId AS BIGINT START WITH 1000",
]


def _encode(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


class _SqlView:
    """DbView over an open transaction."""

    def __init__(self, cursor):
        self.cursor = cursor
        self._attrs: dict[str, AttrDef | None] = {}

    def attribute(self, ident: str) -> AttrDef | None:
        if ident not in self._attrs:
            self.cursor.execute(
                "SELECT value_type, many, uniqueness FROM mbz.Attribute WHERE ident = ?", ident
            )
            row = self.cursor.fetchone()
            self._attrs[ident] = (
                AttrDef(ident, row[0], bool(row[1]), row[2]) if row else None
            )
        return self._attrs[ident]

    def entid_by_unique(self, attr: str, value: Any) -> int | None:
        self.cursor.execute(
            "SELECT e FROM mbz.UniqueValue WHERE a = ? AND v = ?", attr, _encode(value)
        )
        row = self.cursor.fetchone()
        return int(row[0]) if row else None

    def new_entid(self) -> int:
        self.cursor.execute("SELECT NEXT VALUE FOR mbz.EntityId")
        return int(self.cursor.fetchone()[0])

    def resolve_attr(self, ident: str) -> AttrDef:
        return self.attribute(ident) or builtin_attr(ident)


class SqlServerConnection:
    """Connection handle: the settings and database to open per call."""

    def __init__(self, settings: Settings, db_name: str):
        self.settings = settings
        self.db_name = db_name


class SqlServerStore:
    """Store backed by SQL Server tables in the mbz schema."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _open_once(self, database: str, autocommit: bool = False) -> Connection:
        return mssql_connect(self.settings.connection_string(database), autocommit=autocommit)

    @retry(
        retry=retry_if_exception_type((mssql_python.OperationalError, mssql_python.InterfaceError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    def _open(self, database: str, autocommit: bool = False) -> Connection:
        """Open a connection with retries."""
        return self._open_once(database, autocommit=autocommit)

    def _connect_or_fail(
        self, database: str, autocommit: bool = False, retried: bool = True
    ) -> Connection:
        opener = self._open if retried else self._open_once
        try:
            return opener(database, autocommit=autocommit)
        except (mssql_python.OperationalError, mssql_python.InterfaceError) as e:
            raise StoreError(Category.UNAVAILABLE, f"Cannot connect to {database}: {e}") from e

    def create_database(self, name: str) -> bool:
        """Create the database and the mbz tables if missing."""
        if not _DB_NAME.match(name):
            raise StoreError(Category.INCORRECT, f"Invalid database name: {name}")
        conn = self._connect_or_fail("master", autocommit=True)
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT DB_ID(?)", name)
            created = cursor.fetchone()[0] is None
            if created:
                cursor.execute(f"CREATE DATABASE [{name}]")
        finally:
            conn.close()

        conn = self._connect_or_fail(name)
        try:
            cursor = conn.cursor()
            for statement in BOOTSTRAP_SQL:
                cursor.execute(statement)
            conn.commit()
        finally:
            conn.close()
        return created

    def connect(self, name: str) -> SqlServerConnection:
        conn = self._connect_or_fail(name)
        conn.close()
        return SqlServerConnection(self.settings, name)

    def transact(self, conn: SqlServerConnection, tx_data: list[dict[str, Any]]) -> TxReport:
        """Expand and write tx-data in one SQL transaction."""
        db = self._connect_or_fail(conn.db_name)
        try:
            cursor = db.cursor()
            view = _SqlView(cursor)
            plan = expand_tx_data(tx_data, view)
            self._apply(cursor, view, plan)
            db.commit()
        except mssql_python.IntegrityError as e:
            db.rollback()
            raise StoreError(Category.CONFLICT, str(e)) from e
        except mssql_python.Error as e:
            db.rollback()
            raise StoreError(Category.FAULT, str(e)) from e
        except StoreError:
            db.rollback()
            raise
        finally:
            db.close()
        return TxReport(tx_id=plan.tx_id, datoms=len(plan.datoms), tempids=plan.tempids)

    def _apply(self, cursor, view: _SqlView, plan: TxPlan) -> None:
        for attr in plan.installs:
            cursor.execute(
                """
                MERGE mbz.Attribute AS t
                USING (SELECT ? AS ident, ? AS value_type, ? AS many, ? AS uniqueness) AS s
                ON t.ident = s.ident
                WHEN MATCHED THEN UPDATE SET value_type = s.value_type, many = s.many,
                    uniqueness = s.uniqueness
                WHEN NOT MATCHED THEN INSERT (ident, value_type, many, uniqueness)
                    VALUES (s.ident, s.value_type, s.many, s.uniqueness);
                """,
                attr.ident, attr.value_type, int(attr.many), attr.unique,
            )
            view._attrs[attr.ident] = attr
        for d in plan.datoms:
            attr = view.resolve_attr(d.a)
            v = _encode(d.v)
            if attr.many:
                cursor.execute(
                    """
                    IF NOT EXISTS (SELECT 1 FROM mbz.Datom WHERE e = ? AND a = ? AND v = ?)
                    INSERT INTO mbz.Datom (e, a, v, tx) VALUES (?, ?, ?, ?)
                    """,
                    d.e, d.a, v, d.e, d.a, v, plan.tx_id,
                )
            else:
                cursor.execute("DELETE FROM mbz.Datom WHERE e = ? AND a = ?", d.e, d.a)
                if attr.unique:
                    cursor.execute("DELETE FROM mbz.UniqueValue WHERE e = ? AND a = ?", d.e, d.a)
                cursor.execute(
                    "INSERT INTO mbz.Datom (e, a, v, tx) VALUES (?, ?, ?, ?)",
                    d.e, d.a, v, plan.tx_id,
                )
            if attr.unique:
                cursor.execute(
                    """
                    IF NOT EXISTS (SELECT 1 FROM mbz.UniqueValue WHERE a = ? AND v = ? AND e = ?)
                    INSERT INTO mbz.UniqueValue (a, v, e) VALUES (?, ?, ?)
                    """,
                    d.a, v, d.e, d.a, v, d.e,
                )

    def query_markers(self, conn: SqlServerConnection, attr: str) -> set[str]:
        """Committed marker values. A failed query is not retried."""
        db = self._connect_or_fail(conn.db_name, retried=False)
        try:
            cursor = db.cursor()
            cursor.execute("SELECT v FROM mbz.Datom WHERE a = ?", attr)
            return {json.loads(row[0]) for row in cursor.fetchall()}
        except mssql_python.Error as e:
            raise StoreError(Category.FAULT, str(e)) from e
        finally:
            db.close()
