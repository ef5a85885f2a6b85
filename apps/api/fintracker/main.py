import hashlib
import logging
import re
import secrets
import sqlite3
from datetime import date, datetime, timedelta
from typing import Callable

from fastapi import FastAPI, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import categories, config, dashboard, imports, reviews
from .errors import (
    BatchParseError,
    DateFormatError,
    IngestionError,
    NoRecordsError,
    PersistenceError,
)
from .formatters import parse_brazilian_date
from .models import ImportResult, map_asset_type
from .storage import _db_connection, init_db

app = FastAPI(title="FinTracker API")
logger = logging.getLogger("fintracker")
logger.setLevel(config.LOG_LEVEL)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class RegisterRequest(BaseModel):
    email: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class CategoryCreateRequest(BaseModel):
    codigo_negociacao: str
    tipo: str


class CategoryUpdateRequest(BaseModel):
    codigo_negociacao: str | None = None
    tipo: str | None = None


init_db()


def _get_user(email: str) -> sqlite3.Row | None:
    with _db_connection() as conn:
        return conn.execute(
            "SELECT email, salt, password_hash, created_at FROM users WHERE email = ?",
            (email,),
        ).fetchone()


def _save_user(email: str, salt: str, password_hash: str) -> None:
    with _db_connection() as conn:
        conn.execute(
            "INSERT INTO users (email, salt, password_hash, created_at) VALUES (?, ?, ?, ?)",
            (email, salt, password_hash, datetime.utcnow().isoformat()),
        )


def _store_session(token: str, email: str) -> None:
    expires_at = datetime.utcnow() + timedelta(hours=config.SESSION_TTL_HOURS)
    with _db_connection() as conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO sessions (token, email, created_at, expires_at)
            VALUES (?, ?, ?, ?)
            """,
            (token, email, datetime.utcnow().isoformat(), expires_at.isoformat()),
        )


def _get_session(token: str) -> sqlite3.Row | None:
    with _db_connection() as conn:
        return conn.execute(
            "SELECT token, email, created_at, expires_at FROM sessions WHERE token = ?",
            (token,),
        ).fetchone()


def _delete_session(token: str) -> None:
    with _db_connection() as conn:
        conn.execute("DELETE FROM sessions WHERE token = ?", (token,))


def _cleanup_expired_sessions() -> None:
    now = datetime.utcnow().isoformat()
    with _db_connection() as conn:
        conn.execute("DELETE FROM sessions WHERE expires_at <= ?", (now,))


def _validate_email(email: str) -> None:
    if not EMAIL_REGEX.match(email):
        raise HTTPException(status_code=400, detail="Invalid email format.")


def _hash_password(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), 100_000
    ).hex()


def _issue_session(email: str) -> str:
    _cleanup_expired_sessions()
    token = secrets.token_hex(24)
    _store_session(token, email)
    return token


def _require_token(authorization: str | None) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization.")
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization.")
    return authorization.replace("Bearer ", "").strip()


def _require_session(authorization: str | None) -> sqlite3.Row:
    token = _require_token(authorization)
    session = _get_session(token)
    if not session:
        raise HTTPException(status_code=401, detail="Invalid session.")
    if datetime.fromisoformat(session["expires_at"]) < datetime.utcnow():
        _delete_session(token)
        raise HTTPException(status_code=401, detail="Session expired.")
    return session


def _query_date(value: str | None, name: str) -> date | None:
    try:
        return parse_brazilian_date(value)
    except DateFormatError as exc:
        raise HTTPException(
            status_code=400, detail=f"Invalid {name}. Use DD/MM/YYYY."
        ) from exc


def _import_failure(status_code: int, errors: list[str], message: str) -> JSONResponse:
    result = ImportResult(success=False, errors=errors, message=message)
    return JSONResponse(status_code=status_code, content=result.to_response())


def _run_import(operation: Callable[..., ImportResult], *args) -> JSONResponse:
    try:
        result = operation(*args)
    except PersistenceError:
        raise
    except BatchParseError as exc:
        return _import_failure(
            400, [error.message for error in exc.row_errors], "Error processing file."
        )
    except NoRecordsError as exc:
        return _import_failure(400, exc.errors or [exc.message], "No valid records found.")
    except IngestionError as exc:
        return _import_failure(400, [exc.message], "Error processing file.")
    except Exception:
        logger.exception("Unexpected failure while importing statement")
        return _import_failure(500, ["Internal server error."], "Import failed.")
    return JSONResponse(status_code=200, content=result.to_response())


def _read_upload(file: UploadFile | None) -> tuple[bytes, str] | None:
    if file is None or not file.filename:
        return None
    return file.file.read(), file.filename


@app.exception_handler(PersistenceError)
def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("Storage failure on %s: %s", request.url.path, exc.message)
    return _import_failure(500, [exc.message], "Import failed.")


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/register")
def register(payload: RegisterRequest) -> dict:
    email = payload.email.strip().lower()
    _validate_email(email)
    if len(payload.password) < 6:
        raise HTTPException(status_code=400, detail="Password too short.")
    if _get_user(email):
        raise HTTPException(status_code=409, detail="User already exists.")
    salt = secrets.token_hex(12)
    _save_user(email, salt, _hash_password(payload.password, salt))
    return {"status": "registered"}


@app.post("/auth/login")
def login(payload: LoginRequest) -> dict:
    email = payload.email.strip().lower()
    _validate_email(email)
    user = _get_user(email)
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    expected = _hash_password(payload.password, user["salt"])
    if not secrets.compare_digest(expected, user["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")
    return {"status": "ok", "token": _issue_session(email)}


@app.get("/auth/me")
def auth_me(authorization: str | None = Header(default=None)) -> dict:
    session = _require_session(authorization)
    return {
        "status": "ok",
        "email": session["email"],
        "expires_at": session["expires_at"],
    }


@app.post("/auth/logout")
def logout(authorization: str | None = Header(default=None)) -> dict:
    token = _require_token(authorization)
    _delete_session(token)
    return {"status": "logged_out"}


@app.post("/imports/portfolio")
def import_portfolio(
    authorization: str | None = Header(default=None),
    file: UploadFile | None = File(default=None),
    asset_type: str | None = Form(default=None, alias="assetType"),
    date_value: str | None = Form(default=None, alias="date"),
) -> JSONResponse:
    session = _require_session(authorization)
    upload = _read_upload(file)
    if upload is None:
        return _import_failure(400, ["File is required."], "Import failed.")
    if not asset_type:
        return _import_failure(400, ["Asset type is required."], "Import failed.")
    tipo = map_asset_type(asset_type)
    if tipo is None:
        return _import_failure(
            400, [f"Invalid asset type: {asset_type}."], "Import failed."
        )
    if not date_value:
        return _import_failure(400, ["Reference date is required."], "Import failed.")
    try:
        data_base_ref = parse_brazilian_date(date_value)
    except DateFormatError as exc:
        return _import_failure(400, [exc.message], "Invalid date format. Use DD/MM/YYYY.")
    if data_base_ref is None:
        return _import_failure(400, ["Reference date is required."], "Import failed.")
    file_bytes, filename = upload
    return _run_import(
        imports.import_portfolio, file_bytes, filename, session["email"], data_base_ref, tipo
    )


@app.post("/imports/proventos")
def import_proventos(
    authorization: str | None = Header(default=None),
    file: UploadFile | None = File(default=None),
) -> JSONResponse:
    session = _require_session(authorization)
    upload = _read_upload(file)
    if upload is None:
        return _import_failure(400, ["File is required."], "Import failed.")
    file_bytes, filename = upload
    return _run_import(imports.import_proventos, file_bytes, filename, session["email"])


@app.post("/imports/movimentacoes")
def import_movimentacoes(
    authorization: str | None = Header(default=None),
    file: UploadFile | None = File(default=None),
) -> JSONResponse:
    session = _require_session(authorization)
    upload = _read_upload(file)
    if upload is None:
        return _import_failure(400, ["File is required."], "Import failed.")
    file_bytes, filename = upload
    return _run_import(imports.import_movimentacoes, file_bytes, filename, session["email"])


@app.get("/reviews/portfolio")
def review_portfolio(
    authorization: str | None = Header(default=None),
    date_value: str | None = Query(default=None, alias="date"),
    asset_type: str | None = Query(default=None, alias="assetType"),
    page: int = Query(default=1, ge=1),
) -> dict:
    session = _require_session(authorization)
    data_base_ref = _query_date(date_value, "date")
    if data_base_ref is None:
        raise HTTPException(status_code=400, detail="Date is required.")
    return reviews.list_portfolio(session["email"], data_base_ref, asset_type, page)


@app.get("/reviews/proventos")
def review_proventos(
    authorization: str | None = Header(default=None),
    data_pagamento: str | None = Query(default=None, alias="dataPagamento"),
    ticker: str | None = None,
    instituicao: str | None = None,
    page: int = Query(default=1, ge=1),
    sort_by: str = Query(default="data_pagamento", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
) -> dict:
    session = _require_session(authorization)
    return reviews.list_proventos(
        session["email"],
        data_pagamento=_query_date(data_pagamento, "dataPagamento"),
        ticker=ticker,
        instituicao=instituicao,
        page=page,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@app.get("/reviews/movimentacoes")
def review_movimentacoes(
    authorization: str | None = Header(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, alias="pageSize", ge=1, le=500),
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    asset_type: str | None = Query(default=None, alias="assetType"),
    ticker: str | None = None,
    sort_by: str = Query(default="data_movimentacao", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
) -> dict:
    session = _require_session(authorization)
    return reviews.list_movimentacoes(
        session["email"],
        page=page,
        page_size=page_size,
        start_date=_query_date(start_date, "startDate"),
        end_date=_query_date(end_date, "endDate"),
        asset_type=asset_type,
        ticker=ticker,
        sort_by=sort_by,
        sort_order=sort_order,
    )


def _delete_review_record(table: str, record_id: int, authorization: str | None) -> dict:
    session = _require_session(authorization)
    if not reviews.delete_record(table, session["email"], record_id):
        raise HTTPException(status_code=404, detail="Record not found.")
    return {"success": True}


@app.delete("/reviews/portfolio/{record_id}")
def delete_portfolio_record(
    record_id: int, authorization: str | None = Header(default=None)
) -> dict:
    return _delete_review_record("portfolio_consolidado", record_id, authorization)


@app.delete("/reviews/proventos/{record_id}")
def delete_provento_record(
    record_id: int, authorization: str | None = Header(default=None)
) -> dict:
    return _delete_review_record("proventos_consolidado", record_id, authorization)


@app.delete("/reviews/movimentacoes/{record_id}")
def delete_movimentacao_record(
    record_id: int, authorization: str | None = Header(default=None)
) -> dict:
    return _delete_review_record("movimentacoes", record_id, authorization)


@app.get("/asset-categories")
def list_asset_categories(authorization: str | None = Header(default=None)) -> dict:
    _require_session(authorization)
    return {"items": categories.list_categories()}


@app.post("/asset-categories", status_code=201)
def create_asset_category(
    payload: CategoryCreateRequest, authorization: str | None = Header(default=None)
) -> dict:
    _require_session(authorization)
    return categories.create_category(payload.codigo_negociacao, payload.tipo)


@app.put("/asset-categories/{category_id}")
def update_asset_category(
    category_id: int,
    payload: CategoryUpdateRequest,
    authorization: str | None = Header(default=None),
) -> dict:
    _require_session(authorization)
    return categories.update_category(category_id, payload.codigo_negociacao, payload.tipo)


@app.delete("/asset-categories/{category_id}")
def delete_asset_category(
    category_id: int, authorization: str | None = Header(default=None)
) -> dict:
    _require_session(authorization)
    if not categories.delete_category(category_id):
        raise HTTPException(status_code=404, detail="Category not found.")
    return {"success": True}


@app.get("/dashboard/portfolio-evolution")
def portfolio_evolution(
    authorization: str | None = Header(default=None), period: str = "max"
) -> dict:
    session = _require_session(authorization)
    return dashboard.portfolio_evolution(session["email"], period)


@app.get("/dashboard/portfolio-by-asset-type")
def portfolio_by_asset_type(
    authorization: str | None = Header(default=None), period: str = "2y"
) -> dict:
    session = _require_session(authorization)
    return dashboard.portfolio_by_asset_type(session["email"], period)


@app.get("/dashboard/proventos")
def proventos_chart(
    authorization: str | None = Header(default=None), period: str = "1y"
) -> dict:
    session = _require_session(authorization)
    return dashboard.proventos_monthly(session["email"], period)
