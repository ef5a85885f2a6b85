from datetime import date

from fastapi import HTTPException

from .models import TipoAtivo
from .storage import _db_connection

PERIOD_YEARS = {"1y": 1, "2y": 2, "5y": 5, "10y": 10}
UNBOUNDED_PERIODS = {"max", "all"}


def _years_ago(today: date, years: int) -> date:
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        # 29 February in a non-leap target year.
        return today.replace(year=today.year - years, day=28)


def _period_start(period: str, allowed: set[str], today: date | None = None) -> date | None:
    if period not in allowed:
        raise HTTPException(status_code=400, detail=f"Invalid period: {period}.")
    if period in UNBOUNDED_PERIODS:
        return None
    return _years_ago(today or date.today(), PERIOD_YEARS[period])


def portfolio_evolution(user_id: str, period: str = "max", today: date | None = None) -> dict:
    start = _period_start(period, {"2y", "5y", "10y", "max"}, today)
    query = [
        "SELECT data_base_ref, SUM(valor_atualizado) AS total",
        "FROM portfolio_consolidado",
        "WHERE user_id = ?",
    ]
    params: list[object] = [user_id]
    if start:
        query.append("AND data_base_ref >= ?")
        params.append(start.isoformat())
    query.append("GROUP BY data_base_ref ORDER BY data_base_ref ASC")
    with _db_connection() as conn:
        rows = conn.execute("\n".join(query), params).fetchall()
    return {
        "data": [
            {"date": row["data_base_ref"], "value": float(row["total"] or 0)} for row in rows
        ],
        "period": period,
    }


def portfolio_by_asset_type(user_id: str, period: str = "2y", today: date | None = None) -> dict:
    start = _period_start(period, {"2y", "5y", "10y", "max"}, today)
    query = [
        "SELECT data_base_ref, tipo_ativo_categoria, SUM(valor_atualizado) AS total",
        "FROM portfolio_consolidado",
        "WHERE user_id = ?",
    ]
    params: list[object] = [user_id]
    if start:
        query.append("AND data_base_ref >= ?")
        params.append(start.isoformat())
    query.append("GROUP BY data_base_ref, tipo_ativo_categoria")
    with _db_connection() as conn:
        rows = conn.execute("\n".join(query), params).fetchall()
    by_date: dict[str, dict[str, float]] = {}
    for row in rows:
        by_date.setdefault(row["data_base_ref"], {})[row["tipo_ativo_categoria"]] = float(
            row["total"] or 0
        )
    dates = sorted(by_date)
    series = {
        tipo.value: [by_date[key].get(tipo.value, 0.0) for key in dates] for tipo in TipoAtivo
    }
    return {"dates": dates, "series": series, "period": period}


def proventos_monthly(user_id: str, period: str = "1y", today: date | None = None) -> dict:
    start = _period_start(period, {"1y", "2y", "5y", "all"}, today)
    query = [
        "SELECT substr(data_pagamento, 1, 7) AS month, SUM(valor_liquido) AS total",
        "FROM proventos_consolidado",
        "WHERE user_id = ? AND valor_liquido IS NOT NULL",
    ]
    params: list[object] = [user_id]
    if start:
        query.append("AND data_pagamento >= ?")
        params.append(start.isoformat())
    query.append("GROUP BY month ORDER BY month ASC")
    with _db_connection() as conn:
        rows = conn.execute("\n".join(query), params).fetchall()
    return {
        "data": [
            {"date": f"{row['month']}-01", "value": round(float(row["total"] or 0), 2)}
            for row in rows
        ],
        "period": period,
    }
