"""PyMySQL-backed DB: every call runs in its own BEGIN/COMMIT."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence, Set

import pymysql
from pymysql.constants import CLIENT
from pymysql.cursors import DictCursor

from txload.db import DB, Row, Status, TransactionHandle, ValueBuilder

KEY_COLUMN = "YCSB_KEY"


@dataclass
class MySQLSettings:
    host: str = "127.0.0.1"
    port: int = 3306
    user: str = "root"
    password: Optional[str] = None
    socket: Optional[str] = None
    database: Optional[str] = "ycsb"
    connect_timeout: int = 10

    @classmethod
    def from_properties(cls, props: Mapping[str, str]) -> "MySQLSettings":
        return cls(
            host=props.get("mysql.host", "127.0.0.1"),
            port=int(props.get("mysql.port", 3306)),
            user=props.get("mysql.user", "root"),
            password=props.get("mysql.password") or None,
            socket=props.get("mysql.socket") or None,
            database=props.get("mysql.database", "ycsb") or None,
            connect_timeout=int(props.get("mysql.connect_timeout", 10)),
        )

    def with_db(self, database: Optional[str]) -> "MySQLSettings":
        return replace(self, database=database)

    @property
    def target(self) -> str:
        return self.socket or f"{self.host}:{self.port}"


def connect_mysql(settings: MySQLSettings, autocommit: bool) -> pymysql.connections.Connection:
    params: Dict[str, object] = {
        "user": settings.user,
        "password": settings.password or "",
        "charset": "utf8mb4",
        "autocommit": autocommit,
        "cursorclass": DictCursor,
        "connect_timeout": settings.connect_timeout,
        # UPDATE rowcount counts matched rows, so rewriting identical bytes is not NOT_FOUND.
        "client_flag": CLIENT.FOUND_ROWS,
    }
    if settings.socket:
        params["unix_socket"] = settings.socket
    else:
        params["host"] = settings.host
        params["port"] = settings.port
    conn = pymysql.connect(**params)
    if settings.database:
        conn.select_db(settings.database)
    return conn


def _quote(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"


def _columns(fields: Optional[Set[str]]) -> str:
    if fields is None:
        return "*"
    return ", ".join([_quote(KEY_COLUMN)] + [_quote(name) for name in sorted(fields)])


def _strip_key(row: Mapping[str, object]) -> Row:
    return {name: value for name, value in row.items() if name != KEY_COLUMN and value is not None}


def create_table(settings: MySQLSettings, table: str, fieldcount: int, force: bool = False) -> None:
    """Create the database and the ``YCSB_KEY`` + ``field0..N-1`` table."""
    database = settings.database or "ycsb"
    try:
        conn = connect_mysql(settings.with_db(None), autocommit=True)
    except pymysql.MySQLError as exc:
        raise SystemExit(f"[mysql] Failed to connect to {settings.target}: {exc}") from exc
    try:
        with conn.cursor() as cur:
            cur.execute(
                f"CREATE DATABASE IF NOT EXISTS {_quote(database)} "
                "DEFAULT CHARACTER SET utf8mb4 COLLATE utf8mb4_general_ci"
            )
            cur.execute(
                "SELECT COUNT(*) AS cnt FROM information_schema.tables "
                "WHERE table_schema=%s AND table_name=%s",
                (database, table),
            )
            exists = bool(cur.fetchone()["cnt"])
            cur.execute(f"USE {_quote(database)}")
            if exists and not force:
                logging.info("[mysql] Table `%s`.`%s` already exists; keeping it", database, table)
                return
            if exists:
                logging.warning("[mysql] Dropping existing table `%s`.`%s`", database, table)
                cur.execute(f"DROP TABLE IF EXISTS {_quote(table)}")
            columns = ", ".join(f"{_quote(f'field{i}')} BLOB" for i in range(fieldcount))
            cur.execute(
                f"CREATE TABLE {_quote(table)} ("
                f"{_quote(KEY_COLUMN)} VARCHAR(255) NOT NULL PRIMARY KEY, {columns}"
                ") ENGINE=InnoDB"
            )
            logging.info("[mysql] Created `%s`.`%s` with %d field(s)", database, table, fieldcount)
    finally:
        conn.close()


class MySQLDB(DB):
    """One connection per worker; autocommit off, explicit BEGIN/COMMIT per call.

    Driver errors become ``Status.ERROR`` after a rollback. A commit failure is
    reported as ``Status.ERROR`` and never retried here.
    """

    def __init__(self, properties: Optional[Mapping[str, str]] = None) -> None:
        super().__init__(properties)
        self.settings = MySQLSettings.from_properties(self.properties)
        self.conn: Optional[pymysql.connections.Connection] = None
        self._tx_ids = itertools.count(1)

    def init(self) -> None:
        self.conn = connect_mysql(self.settings, autocommit=False)
        logging.debug("[mysql] Connected to %s", self.settings.target)

    def cleanup(self) -> None:
        if self.conn is not None:
            try:
                self.conn.close()
            except pymysql.MySQLError as exc:
                logging.debug("[mysql] close failed: %s", exc)
            self.conn = None

    def begin(self) -> TransactionHandle:
        assert self.conn is not None, "init() must be called before use"
        self.conn.begin()
        return TransactionHandle(next(self._tx_ids), context=self.conn.cursor())

    def commit(self, tx: TransactionHandle) -> bool:
        try:
            self.conn.commit()
            return True
        except pymysql.MySQLError as exc:
            logging.warning("[mysql] commit of tx %d failed: %s", tx.tx_id, exc)
            self._rollback()
            return False
        finally:
            if tx.context is not None:
                tx.context.close()

    def _rollback(self) -> None:
        try:
            self.conn.rollback()
        except pymysql.MySQLError as exc:
            logging.debug("[mysql] rollback failed: %s", exc)

    def _run(self, name: str, body) -> Status:
        try:
            tx = self.begin()
        except pymysql.MySQLError as exc:
            logging.debug("[mysql] %s: begin failed: %s", name, exc)
            return Status.ERROR
        try:
            status = body(tx.context)
        except pymysql.MySQLError as exc:
            logging.debug("[mysql] %s failed: %s", name, exc)
            self._rollback()
            tx.context.close()
            return Status.ERROR
        if not status.is_ok():
            self._rollback()
            tx.context.close()
            return status
        if not self.commit(tx):
            return Status.ERROR
        return status

    def _upsert(self, cur, table: str, key: str, values: Row) -> None:
        names = sorted(values)
        columns = ", ".join([_quote(KEY_COLUMN)] + [_quote(name) for name in names])
        placeholders = ", ".join(["%s"] * (len(names) + 1))
        updates = ", ".join(f"{_quote(name)}=VALUES({_quote(name)})" for name in names)
        sql = f"INSERT INTO {_quote(table)} ({columns}) VALUES ({placeholders})"
        if updates:
            sql += f" ON DUPLICATE KEY UPDATE {updates}"
        cur.execute(sql, [key] + [values[name] for name in names])

    def _update_row(self, cur, table: str, key: str, values: Row) -> int:
        names = sorted(values)
        assignments = ", ".join(f"{_quote(name)}=%s" for name in names)
        return cur.execute(
            f"UPDATE {_quote(table)} SET {assignments} WHERE {_quote(KEY_COLUMN)}=%s",
            [values[name] for name in names] + [key],
        )

    def _select_keys(
        self, cur, table: str, keys: Sequence[str], fields: Optional[Set[str]], result: Dict[str, Row]
    ) -> None:
        if not keys:
            return
        unique = list(dict.fromkeys(keys))
        placeholders = ", ".join(["%s"] * len(unique))
        cur.execute(
            f"SELECT {_columns(fields)} FROM {_quote(table)} "
            f"WHERE {_quote(KEY_COLUMN)} IN ({placeholders})",
            unique,
        )
        found = {row[KEY_COLUMN]: _strip_key(row) for row in cur.fetchall()}
        for key in unique:
            result[key] = found.get(key, {})

    def read(self, table: str, key: str, fields: Optional[Set[str]], result: Row) -> Status:
        def body(cur) -> Status:
            cur.execute(
                f"SELECT {_columns(fields)} FROM {_quote(table)} WHERE {_quote(KEY_COLUMN)}=%s",
                (key,),
            )
            row = cur.fetchone()
            if row is None:
                return Status.NOT_FOUND
            result.update(_strip_key(row))
            return Status.OK

        return self._run("read", body)

    def scan(
        self,
        table: str,
        startkey: str,
        recordcount: int,
        fields: Optional[Set[str]],
        result: List[Row],
    ) -> Status:
        def body(cur) -> Status:
            cur.execute(
                f"SELECT {_columns(fields)} FROM {_quote(table)} WHERE {_quote(KEY_COLUMN)}>=%s "
                f"ORDER BY {_quote(KEY_COLUMN)} LIMIT %s",
                (startkey, int(recordcount)),
            )
            result.extend(_strip_key(row) for row in cur.fetchall())
            return Status.OK

        return self._run("scan", body)

    def update(self, table: str, key: str, values: Row) -> Status:
        def body(cur) -> Status:
            matched = self._update_row(cur, table, key, values)
            return Status.OK if matched else Status.NOT_FOUND

        return self._run("update", body)

    def insert(self, table: str, key: str, values: Row) -> Status:
        def body(cur) -> Status:
            self._upsert(cur, table, key, values)
            return Status.OK

        return self._run("insert", body)

    def delete(self, table: str, key: str) -> Status:
        def body(cur) -> Status:
            deleted = cur.execute(
                f"DELETE FROM {_quote(table)} WHERE {_quote(KEY_COLUMN)}=%s", (key,)
            )
            return Status.OK if deleted else Status.NOT_FOUND

        return self._run("delete", body)

    def read_multi(
        self,
        table: str,
        keys: List[str],
        fields: Optional[Set[str]],
        result: Dict[str, Row],
    ) -> Status:
        def body(cur) -> Status:
            self._select_keys(cur, table, keys, fields, result)
            return Status.OK

        return self._run("read_multi", body)

    def update_multi(self, table: str, values_by_key: Dict[str, Row]) -> Status:
        def body(cur) -> Status:
            for key, values in values_by_key.items():
                if not self._update_row(cur, table, key, values):
                    return Status.NOT_FOUND
            return Status.OK

        return self._run("update_multi", body)

    def scan_write(
        self,
        table: str,
        startkey: str,
        recordcount: int,
        fields: Optional[Set[str]],
        build_values: ValueBuilder,
    ) -> Status:
        def body(cur) -> Status:
            cur.execute(
                f"SELECT {_quote(KEY_COLUMN)} FROM {_quote(table)} WHERE {_quote(KEY_COLUMN)}>=%s "
                f"ORDER BY {_quote(KEY_COLUMN)} LIMIT %s FOR UPDATE",
                (startkey, int(recordcount)),
            )
            for row in cur.fetchall():
                key = row[KEY_COLUMN]
                self._update_row(cur, table, key, build_values(key))
            return Status.OK

        return self._run("scan_write", body)

    def complex(
        self,
        table: str,
        read_keys: List[str],
        fields: Optional[Set[str]],
        result: Dict[str, Row],
        values_by_key: Dict[str, Row],
    ) -> Status:
        def body(cur) -> Status:
            self._select_keys(cur, table, read_keys, fields, result)
            for key, values in values_by_key.items():
                self._upsert(cur, table, key, values)
            return Status.OK

        return self._run("complex", body)
