import sqlite3
from datetime import datetime

from fastapi import HTTPException

from .models import TipoAtivo
from .storage import _db_connection


def _category_row(row: sqlite3.Row) -> dict:
    return {
        "id": row["id"],
        "codigo_negociacao": row["codigo_negociacao"],
        "tipo": row["tipo"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def _normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _validate_tipo(tipo: str | None) -> str:
    try:
        return TipoAtivo((tipo or "").strip().upper()).value
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid asset type.") from exc


def list_categories() -> list[dict]:
    with _db_connection() as conn:
        rows = conn.execute(
            "SELECT * FROM categorias_ativo ORDER BY codigo_negociacao ASC"
        ).fetchall()
    return [_category_row(row) for row in rows]


def create_category(codigo_negociacao: str, tipo: str) -> dict:
    code = _normalize_code(codigo_negociacao)
    if not code or not tipo:
        raise HTTPException(status_code=400, detail="Code and type are required.")
    tipo_value = _validate_tipo(tipo)
    now = datetime.utcnow().isoformat()
    try:
        with _db_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO categorias_ativo (codigo_negociacao, tipo, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (code, tipo_value, now, now),
            )
            row = conn.execute(
                "SELECT * FROM categorias_ativo WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
    except sqlite3.IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Trading code already registered.") from exc
    return _category_row(row)


def update_category(category_id: int, codigo_negociacao: str | None, tipo: str | None) -> dict:
    updates: dict[str, str] = {}
    if codigo_negociacao:
        updates["codigo_negociacao"] = _normalize_code(codigo_negociacao)
    if tipo:
        updates["tipo"] = _validate_tipo(tipo)
    with _db_connection() as conn:
        existing = conn.execute(
            "SELECT * FROM categorias_ativo WHERE id = ?", (category_id,)
        ).fetchone()
        if not existing:
            raise HTTPException(status_code=404, detail="Category not found.")
        if "codigo_negociacao" in updates:
            clash = conn.execute(
                "SELECT id FROM categorias_ativo WHERE codigo_negociacao = ? AND id != ?",
                (updates["codigo_negociacao"], category_id),
            ).fetchone()
            if clash:
                raise HTTPException(status_code=409, detail="Trading code already registered.")
        if updates:
            updates["updated_at"] = datetime.utcnow().isoformat()
            assignments = ", ".join(f"{column} = ?" for column in updates)
            conn.execute(
                f"UPDATE categorias_ativo SET {assignments} WHERE id = ?",
                [*updates.values(), category_id],
            )
        row = conn.execute(
            "SELECT * FROM categorias_ativo WHERE id = ?", (category_id,)
        ).fetchone()
    return _category_row(row)


def delete_category(category_id: int) -> bool:
    with _db_connection() as conn:
        deleted = conn.execute(
            "DELETE FROM categorias_ativo WHERE id = ?", (category_id,)
        ).rowcount
    return bool(deleted)
