import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from . import config
from .errors import ConstraintViolation, PersistenceError

logger = logging.getLogger("fintracker.storage")

TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "portfolio_consolidado": (
        "user_id",
        "data_base_ref",
        "tipo_ativo_categoria",
        "produto_descricao",
        "instituicao",
        "conta",
        "codigo_negociacao",
        "codigo_isin",
        "quantidade",
        "quantidade_disponivel",
        "quantidade_indisponivel",
        "valor_atualizado",
        "preco_fechamento",
        "cnpj_emissor",
        "tipo_papel",
        "agente_custodia",
        "motivo_indisponibilidade",
        "indexador",
        "data_vencimento",
        "valor_aplicado",
        "valor_bruto",
        "valor_liquido",
        "created_at",
    ),
    "proventos_consolidado": (
        "user_id",
        "codigo_negociacao",
        "produto_descricao",
        "data_pagamento",
        "tipo_evento",
        "instituicao",
        "quantidade",
        "preco_unitario",
        "valor_liquido",
        "created_at",
    ),
    "movimentacoes": (
        "user_id",
        "entrada_saida",
        "data_movimentacao",
        "produto",
        "instituicao",
        "quantidade",
        "preco_unitario",
        "valor_operacao",
        "codigo_negociacao",
        "created_at",
    ),
}


@contextmanager
def _db_connection() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(config.DB_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db() -> None:
    with _db_connection() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                email TEXT PRIMARY KEY,
                salt TEXT NOT NULL,
                password_hash TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS sessions (
                token TEXT PRIMARY KEY,
                email TEXT NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS portfolio_consolidado (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                data_base_ref TEXT NOT NULL,
                tipo_ativo_categoria TEXT NOT NULL,
                produto_descricao TEXT,
                instituicao TEXT,
                conta TEXT,
                codigo_negociacao TEXT,
                codigo_isin TEXT,
                quantidade REAL,
                quantidade_disponivel REAL,
                quantidade_indisponivel REAL,
                valor_atualizado REAL,
                preco_fechamento REAL,
                cnpj_emissor TEXT,
                tipo_papel TEXT,
                agente_custodia TEXT,
                motivo_indisponibilidade TEXT,
                indexador TEXT,
                data_vencimento TEXT,
                valor_aplicado REAL,
                valor_bruto REAL,
                valor_liquido REAL,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_portfolio_snapshot
                ON portfolio_consolidado(user_id, data_base_ref, tipo_ativo_categoria);
            CREATE TABLE IF NOT EXISTS proventos_consolidado (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                codigo_negociacao TEXT NOT NULL,
                produto_descricao TEXT NOT NULL,
                data_pagamento TEXT NOT NULL,
                tipo_evento TEXT,
                instituicao TEXT,
                quantidade REAL,
                preco_unitario REAL,
                valor_liquido REAL,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_proventos_identity
                ON proventos_consolidado(user_id, codigo_negociacao, data_pagamento);
            CREATE TABLE IF NOT EXISTS movimentacoes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                entrada_saida TEXT NOT NULL CHECK (entrada_saida IN ('CREDITO', 'DEBITO')),
                data_movimentacao TEXT NOT NULL,
                produto TEXT,
                instituicao TEXT,
                quantidade REAL NOT NULL,
                preco_unitario REAL NOT NULL,
                valor_operacao REAL NOT NULL,
                codigo_negociacao TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_movimentacoes_user_date
                ON movimentacoes(user_id, data_movimentacao);
            CREATE TABLE IF NOT EXISTS categorias_ativo (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                codigo_negociacao TEXT NOT NULL UNIQUE,
                tipo TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )


def _columns_for(table: str) -> tuple[str, ...]:
    try:
        return TABLE_COLUMNS[table]
    except KeyError as exc:
        raise ValueError(f"Unknown table: {table}") from exc


def _where_clause(table: str, where: dict) -> tuple[str, list[object]]:
    allowed = _columns_for(table)
    clauses: list[str] = []
    params: list[object] = []
    for column, value in where.items():
        if column not in allowed:
            raise ValueError(f"Unknown column for {table}: {column}")
        if value is None:
            clauses.append(f"{column} IS NULL")
        else:
            clauses.append(f"{column} = ?")
            params.append(value)
    return (" AND ".join(clauses) or "1 = 1"), params


class Transaction:
    """Storage operations bound to one connection; see :func:`transaction`."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def _execute(self, sql: str, params=()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.IntegrityError as exc:
            raise ConstraintViolation(str(exc)) from exc
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    def delete_many(self, table: str, where: dict) -> int:
        clause, params = _where_clause(table, where)
        cursor = self._execute(f"DELETE FROM {table} WHERE {clause}", params)
        return cursor.rowcount or 0

    def count(self, table: str, where: dict) -> int:
        clause, params = _where_clause(table, where)
        row = self._execute(
            f"SELECT COUNT(*) AS total FROM {table} WHERE {clause}", params
        ).fetchone()
        return int(row["total"])

    def find_first(self, table: str, where: dict) -> dict | None:
        clause, params = _where_clause(table, where)
        row = self._execute(
            f"SELECT * FROM {table} WHERE {clause} ORDER BY id LIMIT 1", params
        ).fetchone()
        return dict(row) if row else None

    def _insert_sql(self, table: str) -> tuple[str, tuple[str, ...]]:
        columns = _columns_for(table)
        placeholders = ", ".join("?" for _ in columns)
        return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})", columns

    def _values(self, columns: tuple[str, ...], record: dict, now: str) -> tuple:
        return tuple(
            record.get(column, now) if column == "created_at" else record.get(column)
            for column in columns
        )

    def create(self, table: str, record: dict) -> dict:
        sql, columns = self._insert_sql(table)
        now = datetime.utcnow().isoformat()
        values = self._values(columns, record, now)
        cursor = self._execute(sql, values)
        created = dict(zip(columns, values))
        created["id"] = int(cursor.lastrowid)
        return created

    def create_many(self, table: str, records: list[dict]) -> int:
        if not records:
            return 0
        sql, columns = self._insert_sql(table)
        now = datetime.utcnow().isoformat()
        try:
            cursor = self._conn.executemany(
                sql, [self._values(columns, record, now) for record in records]
            )
        except sqlite3.IntegrityError as exc:
            raise ConstraintViolation(str(exc)) from exc
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc
        return cursor.rowcount if cursor.rowcount >= 0 else len(records)


@contextmanager
def transaction() -> Iterator[Transaction]:
    """Run storage operations as one unit of work: commit on success, roll back on error."""
    try:
        with _db_connection() as conn:
            # Take the write lock up front so lookups and inserts see one snapshot.
            conn.execute("BEGIN IMMEDIATE")
            yield Transaction(conn)
    except sqlite3.Error as exc:
        logger.exception("Transaction failed")
        raise PersistenceError(str(exc)) from exc
