"""Import orchestration: parse an uploaded statement and commit it.

The three import kinds commit differently:

* ``import_portfolio`` replaces the snapshot for (user, date, asset type);
* ``import_proventos`` inserts events whose identity key is new and skips the rest;
* ``import_movimentacoes`` appends every parsed movement, with no duplicate check.
"""

import logging
from datetime import date

from pydantic import BaseModel

from .errors import ConstraintViolation, NoRecordsError
from .models import ImportResult, TipoAtivo
from .parsers import load_rows, parse_movimentacoes, parse_portfolio, parse_proventos
from .storage import transaction

logger = logging.getLogger("fintracker.imports")


def _to_row(record: BaseModel) -> dict:
    return record.model_dump(mode="json")


def import_portfolio(
    file_bytes: bytes,
    filename: str,
    user_id: str,
    data_base_ref: date,
    tipo: TipoAtivo,
) -> ImportResult:
    rows = load_rows(file_bytes, filename)
    records = parse_portfolio(rows, user_id, data_base_ref, tipo)
    if not records:
        raise NoRecordsError([])
    with transaction() as tx:
        deleted = tx.delete_many(
            "portfolio_consolidado",
            {
                "user_id": user_id,
                "data_base_ref": data_base_ref.isoformat(),
                "tipo_ativo_categoria": tipo.value,
            },
        )
        imported = tx.create_many("portfolio_consolidado", [_to_row(record) for record in records])
    logger.info(
        "Portfolio import for %s %s %s: %d inserted, %d replaced",
        user_id,
        data_base_ref.isoformat(),
        tipo.value,
        imported,
        deleted,
    )
    return ImportResult(
        success=True,
        records_imported=imported,
        records_deleted=deleted,
        message=(
            f"Successfully imported {imported} records. "
            f"{deleted} existing records were replaced."
        ),
    )


def import_proventos(file_bytes: bytes, filename: str, user_id: str) -> ImportResult:
    rows = load_rows(file_bytes, filename)
    records, errors = parse_proventos(rows, user_id)
    if not records:
        raise NoRecordsError(errors)
    imported = 0
    skipped = 0
    insert_errors: list[str] = []
    with transaction() as tx:
        for record in records:
            if tx.find_first("proventos_consolidado", record.identity_key()):
                skipped += 1
                continue
            try:
                tx.create("proventos_consolidado", _to_row(record))
            except ConstraintViolation as exc:
                insert_errors.append(f"Error importing {record.codigo_negociacao}: {exc.message}")
                continue
            imported += 1
    logger.info(
        "Proventos import for %s: %d inserted, %d duplicates, %d errors",
        user_id,
        imported,
        skipped,
        len(errors) + len(insert_errors),
    )
    if imported:
        message = f"{imported} records imported. {skipped} duplicates skipped."
    elif skipped:
        message = f"No new records. {skipped} duplicates skipped."
    else:
        message = "No records were imported."
    return ImportResult(
        success=imported > 0 or skipped > 0,
        records_imported=imported,
        # Reported in the deleted slot: proventos never delete, they skip.
        records_deleted=skipped,
        errors=errors + insert_errors,
        message=message,
    )


def import_movimentacoes(file_bytes: bytes, filename: str, user_id: str) -> ImportResult:
    rows = load_rows(file_bytes, filename, delimiter=None)
    records, skipped = parse_movimentacoes(rows, user_id)
    with transaction() as tx:
        imported = tx.create_many("movimentacoes", [_to_row(record) for record in records])
    logger.info(
        "Movements import for %s: %d inserted, %d rows skipped",
        user_id,
        imported,
        len(skipped),
    )
    return ImportResult(
        success=True,
        records_imported=imported,
        records_deleted=0,
        message=f"Imported {imported} movements. {len(skipped)} rows skipped.",
    )
