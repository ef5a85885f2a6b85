import math
from datetime import date

from fastapi import HTTPException

from . import config
from .models import TipoAtivo
from .storage import _db_connection

PORTFOLIO_FIELDS = (
    "id",
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
    "tipo_papel",
    "cnpj_emissor",
    "agente_custodia",
    "motivo_indisponibilidade",
    "indexador",
    "data_vencimento",
    "valor_aplicado",
    "valor_bruto",
    "valor_liquido",
)
PROVENTOS_FIELDS = (
    "id",
    "codigo_negociacao",
    "produto_descricao",
    "data_pagamento",
    "tipo_evento",
    "instituicao",
    "quantidade",
    "preco_unitario",
    "valor_liquido",
)
MOVIMENTACOES_FIELDS = (
    "id",
    "entrada_saida",
    "data_movimentacao",
    "produto",
    "instituicao",
    "quantidade",
    "preco_unitario",
    "valor_operacao",
    "codigo_negociacao",
)
ALL_ASSET_TYPES = "TODOS"


def _pagination(page: int, page_size: int, total_count: int) -> dict:
    return {
        "page": page,
        "page_size": page_size,
        "total_count": total_count,
        "total_pages": math.ceil(total_count / page_size) if page_size else 0,
    }


def _order_clause(sort_by: str, sort_order: str, allowed: tuple[str, ...]) -> str:
    if sort_by not in allowed:
        raise HTTPException(status_code=400, detail=f"Invalid sort field: {sort_by}.")
    direction = "ASC" if (sort_order or "").lower() == "asc" else "DESC"
    return f"ORDER BY {sort_by} {direction}, id {direction}"


def _contains(column: str, value: str | None, query: list[str], params: list[object]) -> None:
    text = (value or "").strip()
    if not text:
        return
    query.append(f"AND instr(lower(coalesce({column}, '')), ?) > 0")
    params.append(text.lower())


def _page_of(
    table: str,
    fields: tuple[str, ...],
    filters: list[str],
    params: list[object],
    order: str,
    page: int,
    page_size: int,
    sum_column: str,
) -> dict:
    page = max(page, 1)
    where = "\n".join(filters)
    with _db_connection() as conn:
        totals = conn.execute(
            f"SELECT COUNT(*) AS total, SUM({sum_column}) AS value FROM {table} {where}",
            params,
        ).fetchone()
        rows = conn.execute(
            f"SELECT {', '.join(fields)} FROM {table} {where} {order} LIMIT ? OFFSET ?",
            [*params, page_size, (page - 1) * page_size],
        ).fetchall()
    return {
        "records": [dict(row) for row in rows],
        "pagination": _pagination(page, page_size, int(totals["total"] or 0)),
        "total_value": float(totals["value"] or 0),
    }


def list_portfolio(
    user_id: str, data_base_ref: date, asset_type: str | None = None, page: int = 1
) -> dict:
    filters = ["WHERE user_id = ?", "AND data_base_ref = ?"]
    params: list[object] = [user_id, data_base_ref.isoformat()]
    if asset_type and asset_type.upper() != ALL_ASSET_TYPES:
        tipo = _asset_type_or_400(asset_type)
        filters.append("AND tipo_ativo_categoria = ?")
        params.append(tipo.value)
    return _page_of(
        "portfolio_consolidado",
        PORTFOLIO_FIELDS,
        filters,
        params,
        "ORDER BY tipo_ativo_categoria ASC, produto_descricao ASC, id ASC",
        page,
        config.REVIEW_PAGE_SIZE,
        "valor_atualizado",
    )


def list_proventos(
    user_id: str,
    data_pagamento: date | None = None,
    ticker: str | None = None,
    instituicao: str | None = None,
    page: int = 1,
    sort_by: str = "data_pagamento",
    sort_order: str = "desc",
) -> dict:
    filters = ["WHERE user_id = ?"]
    params: list[object] = [user_id]
    if data_pagamento:
        filters.append("AND data_pagamento = ?")
        params.append(data_pagamento.isoformat())
    _contains("codigo_negociacao", ticker, filters, params)
    _contains("instituicao", instituicao, filters, params)
    return _page_of(
        "proventos_consolidado",
        PROVENTOS_FIELDS,
        filters,
        params,
        _order_clause(sort_by, sort_order, PROVENTOS_FIELDS),
        page,
        config.REVIEW_PAGE_SIZE,
        "valor_liquido",
    )


def list_movimentacoes(
    user_id: str,
    page: int = 1,
    page_size: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    asset_type: str | None = None,
    ticker: str | None = None,
    sort_by: str = "data_movimentacao",
    sort_order: str = "desc",
) -> dict:
    filters = ["WHERE user_id = ?"]
    params: list[object] = [user_id]
    if start_date and end_date:
        filters.append("AND data_movimentacao BETWEEN ? AND ?")
        params.extend([start_date.isoformat(), end_date.isoformat()])
    _contains("codigo_negociacao", ticker, filters, params)
    if asset_type and asset_type.upper() != ALL_ASSET_TYPES:
        tipo = _asset_type_or_400(asset_type)
        filters.append(
            "AND upper(codigo_negociacao) IN "
            "(SELECT codigo_negociacao FROM categorias_ativo WHERE tipo = ?)"
        )
        params.append(tipo.value)
    return _page_of(
        "movimentacoes",
        MOVIMENTACOES_FIELDS,
        filters,
        params,
        _order_clause(sort_by, sort_order, MOVIMENTACOES_FIELDS),
        page,
        page_size or config.MOVEMENTS_PAGE_SIZE,
        "valor_operacao",
    )


def _asset_type_or_400(value: str) -> TipoAtivo:
    try:
        return TipoAtivo(value.upper())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid asset type.") from exc


def delete_record(table: str, user_id: str, record_id: int) -> bool:
    if table not in ("portfolio_consolidado", "proventos_consolidado", "movimentacoes"):
        raise ValueError(f"Unknown table: {table}")
    with _db_connection() as conn:
        deleted = conn.execute(
            f"DELETE FROM {table} WHERE id = ? AND user_id = ?",
            (record_id, user_id),
        ).rowcount
    return bool(deleted)
