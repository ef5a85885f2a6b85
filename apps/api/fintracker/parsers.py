"""Turn uploaded statements into typed records.

Each import kind has its own failure policy:

* portfolio snapshots are all-or-nothing, every row error is collected and
  raised together as one :class:`BatchParseError`;
* dividend (provento) rows that fail are reported next to the rows that parsed;
* movement rows that fail are skipped and only counted by the caller.
"""

import logging
from datetime import date
from io import BytesIO

import xlrd
from openpyxl import load_workbook

from .errors import (
    BatchParseError,
    EmptyFileError,
    IngestionError,
    RowError,
    SchemaError,
    UnsupportedFileError,
)
from .formatters import (
    EMPTY_MARKERS,
    detect_delimiter,
    extract_ticker,
    fix_mojibake,
    normalize_text,
    parse_ambiguous_number,
    parse_brazilian_date,
    sanitize_string,
    tokenize,
)
from .models import (
    MovimentacaoRecord,
    PortfolioRecord,
    ProventoRecord,
    TipoAtivo,
    TipoMovimentacao,
)

logger = logging.getLogger("fintracker.parsers")

TEXT = "text"
NUMBER = "number"
DATE = "date"

_CONVERTERS = {
    TEXT: sanitize_string,
    NUMBER: parse_ambiguous_number,
    DATE: parse_brazilian_date,
}

_POSITION_COLUMNS = (
    ("Produto", "produto_descricao", TEXT),
    ("Instituição", "instituicao", TEXT),
    ("Conta", "conta", TEXT),
    ("Código de Negociação", "codigo_negociacao", TEXT),
    ("Código ISIN / Distribuição", "codigo_isin", TEXT),
    ("Tipo", "tipo_papel", TEXT),
    ("Quantidade", "quantidade", NUMBER),
    ("Quantidade Disponível", "quantidade_disponivel", NUMBER),
    ("Quantidade Indisponível", "quantidade_indisponivel", NUMBER),
    ("Motivo", "motivo_indisponibilidade", TEXT),
    ("Preço de Fechamento", "preco_fechamento", NUMBER),
    ("Valor Atualizado", "valor_atualizado", NUMBER),
)
_COMPANY_COLUMNS = _POSITION_COLUMNS + (
    ("CNPJ da Empresa", "cnpj_emissor", TEXT),
    ("Escriturador", "agente_custodia", TEXT),
)

PORTFOLIO_COLUMNS: dict[TipoAtivo, tuple[tuple[str, str, str], ...]] = {
    TipoAtivo.ACAO: _COMPANY_COLUMNS,
    TipoAtivo.BDR: _COMPANY_COLUMNS,
    TipoAtivo.ETF: _POSITION_COLUMNS
    + (
        ("CNPJ do Fundo", "cnpj_emissor", TEXT),
        ("Escriturador", "agente_custodia", TEXT),
    ),
    TipoAtivo.FUNDO: _POSITION_COLUMNS
    + (
        ("CNPJ do Fundo", "cnpj_emissor", TEXT),
        ("Administrador", "agente_custodia", TEXT),
    ),
    # Treasury bonds have no account or trading code.
    TipoAtivo.TESOURO: (
        ("Produto", "produto_descricao", TEXT),
        ("Instituição", "instituicao", TEXT),
        ("Código ISIN", "codigo_isin", TEXT),
        ("Indexador", "indexador", TEXT),
        ("Vencimento", "data_vencimento", DATE),
        ("Quantidade", "quantidade", NUMBER),
        ("Quantidade Disponível", "quantidade_disponivel", NUMBER),
        ("Quantidade Indisponível", "quantidade_indisponivel", NUMBER),
        ("Motivo", "motivo_indisponibilidade", TEXT),
        ("Valor Aplicado", "valor_aplicado", NUMBER),
        ("Valor bruto", "valor_bruto", NUMBER),
        ("Valor líquido", "valor_liquido", NUMBER),
        ("Valor Atualizado", "valor_atualizado", NUMBER),
    ),
}

PROVENTOS_REQUIRED_COLUMNS = [
    "Produto",
    "Pagamento",
    "Tipo de Evento",
    "Instituição",
    "Quantidade",
    "Preço unitário",
    "Valor líquido",
]

MOVIMENTACOES_REQUIRED_COLUMNS = [
    "Entrada/Saída",
    "Data Movimentação",
    "Produto",
    "Instituição",
    "Quantidade",
    "Preço unitário",
    "Valor da Operação",
]

SPREADSHEET_EXTENSIONS = (".xlsx", ".xls")

Cell = str | float | int | date | None


def decode_text(file_bytes: bytes) -> str:
    try:
        return file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError:
        return file_bytes.decode("latin-1")


def split_lines(text: str) -> list[str]:
    return [line for line in text.splitlines() if line.strip()]


def _is_blank_cell(value: Cell) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and value.strip() in EMPTY_MARKERS


def _is_blank_row(cells: list[Cell]) -> bool:
    return all(_is_blank_cell(cell) for cell in cells)


def _spreadsheet_cell(value: Cell) -> Cell:
    if value is None:
        return ""
    if isinstance(value, str):
        return fix_mojibake(value).strip()
    return value


def _xls_cell(cell, datemode: int) -> Cell:
    if cell.ctype == xlrd.XL_CELL_DATE:
        return xlrd.xldate_as_datetime(cell.value, datemode).date()
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
        return ""
    return _spreadsheet_cell(cell.value)


def _load_rows_from_excel(file_bytes: bytes, filename: str) -> list[list[Cell]]:
    rows: list[list[Cell]] = []
    if filename.lower().endswith(".xls"):
        book = xlrd.open_workbook(file_contents=file_bytes)
        sheet = book.sheet_by_index(0)
        for row_idx in range(sheet.nrows):
            rows.append([_xls_cell(cell, book.datemode) for cell in sheet.row(row_idx)])
    else:
        workbook = load_workbook(BytesIO(file_bytes), data_only=True)
        sheet = workbook.active
        for row in sheet.iter_rows(values_only=True):
            rows.append([_spreadsheet_cell(cell) for cell in row])
    return [row for row in rows if not all(cell == "" for cell in row)]


def load_rows(file_bytes: bytes, filename: str, delimiter: str | None = ",") -> list[list[Cell]]:
    """Read an uploaded statement into a matrix of cells, header row first.

    Blank lines are dropped, so row ``i`` of the result is line ``i + 1``.
    ``delimiter=None`` picks ``;`` or ``,`` from the header line of a CSV.
    """
    lowered = (filename or "").lower()
    if lowered.endswith(SPREADSHEET_EXTENSIONS):
        return _load_rows_from_excel(file_bytes, lowered)
    if not lowered.endswith(".csv"):
        raise UnsupportedFileError(filename)
    lines = split_lines(decode_text(file_bytes))
    if not lines:
        return []
    if delimiter is None:
        delimiter = detect_delimiter(lines[0])
    return [[fix_mojibake(cell) for cell in tokenize(line, delimiter)] for line in lines]


def build_header_index(header: list[Cell]) -> dict[str, int]:
    index: dict[str, int] = {}
    for position, name in enumerate(header):
        label = str(name).strip() if name is not None else ""
        if label:
            index[label] = position
    return index


def require_columns(header_index: dict[str, int], required: list[str]) -> None:
    missing = [column for column in required if column not in header_index]
    if missing:
        raise SchemaError(missing)


def _raw_cell(header_index: dict[str, int], cells: list[Cell], column: str) -> Cell:
    position = header_index.get(column)
    if position is None or position >= len(cells):
        return None
    return cells[position]


def _convert(header_index: dict[str, int], cells: list[Cell], column: str, kind: str):
    try:
        return _CONVERTERS[kind](_raw_cell(header_index, cells, column))
    except IngestionError as exc:
        exc.column = column
        raise


def _check_width(cells: list[Cell], required: list[str]) -> None:
    if len(cells) < len(required):
        raise IngestionError(
            f"Expected at least {len(required)} columns, found {len(cells)}"
        )


def map_portfolio_row(
    header_index: dict[str, int],
    cells: list[Cell],
    tipo: TipoAtivo,
    user_id: str,
    data_base_ref: date,
) -> PortfolioRecord:
    values = {
        field: _convert(header_index, cells, column, kind)
        for column, field, kind in PORTFOLIO_COLUMNS[tipo]
    }
    return PortfolioRecord(
        user_id=user_id,
        data_base_ref=data_base_ref,
        tipo_ativo_categoria=tipo,
        **values,
    )


def parse_portfolio(
    rows: list[list[Cell]], user_id: str, data_base_ref: date, tipo: TipoAtivo
) -> list[PortfolioRecord]:
    if tipo not in PORTFOLIO_COLUMNS:
        raise ValueError(f"No column layout for asset type {tipo.value}")
    if len(rows) < 2:
        raise EmptyFileError()
    header_index = build_header_index(rows[0])
    records: list[PortfolioRecord] = []
    row_errors: list[RowError] = []
    for line_number, cells in enumerate(rows[1:], start=2):
        if _is_blank_row(cells):
            continue
        try:
            records.append(map_portfolio_row(header_index, cells, tipo, user_id, data_base_ref))
        except IngestionError as exc:
            row_errors.append(RowError(line_number, exc))
    if row_errors:
        raise BatchParseError(row_errors)
    return records


def map_provento_row(
    header_index: dict[str, int], cells: list[Cell], user_id: str
) -> ProventoRecord:
    _check_width(cells, PROVENTOS_REQUIRED_COLUMNS)
    produto = sanitize_string(_raw_cell(header_index, cells, "Produto"))
    if not produto:
        raise IngestionError("Missing 'Produto'")
    ticker = extract_ticker(produto)
    if not ticker:
        raise IngestionError(f"Could not extract ticker from {produto!r}")
    data_pagamento = _convert(header_index, cells, "Pagamento", DATE)
    if data_pagamento is None:
        raise IngestionError("Missing 'Pagamento' date")
    return ProventoRecord(
        user_id=user_id,
        codigo_negociacao=ticker,
        produto_descricao=produto,
        data_pagamento=data_pagamento,
        tipo_evento=_convert(header_index, cells, "Tipo de Evento", TEXT),
        instituicao=_convert(header_index, cells, "Instituição", TEXT),
        quantidade=_convert(header_index, cells, "Quantidade", NUMBER),
        preco_unitario=_convert(header_index, cells, "Preço unitário", NUMBER),
        valor_liquido=_convert(header_index, cells, "Valor líquido", NUMBER),
    )


def parse_proventos(
    rows: list[list[Cell]], user_id: str
) -> tuple[list[ProventoRecord], list[str]]:
    if len(rows) < 2:
        raise EmptyFileError()
    header_index = build_header_index(rows[0])
    require_columns(header_index, PROVENTOS_REQUIRED_COLUMNS)
    records: list[ProventoRecord] = []
    errors: list[str] = []
    for line_number, cells in enumerate(rows[1:], start=2):
        if _is_blank_row(cells):
            continue
        try:
            records.append(map_provento_row(header_index, cells, user_id))
        except IngestionError as exc:
            errors.append(RowError(line_number, exc).message)
    return records, errors


def _movement_direction(value: Cell) -> TipoMovimentacao:
    key = normalize_text(value)
    if "credito" in key:
        return TipoMovimentacao.CREDITO
    if "debito" in key:
        return TipoMovimentacao.DEBITO
    raise IngestionError(f"Unknown Entrada/Saída value {value!r}")


def _required_number(header_index: dict[str, int], cells: list[Cell], column: str) -> float:
    value = _convert(header_index, cells, column, NUMBER)
    if value is None:
        raise IngestionError("missing value", column)
    return value


def map_movimentacao_row(
    header_index: dict[str, int], cells: list[Cell], user_id: str
) -> MovimentacaoRecord:
    _check_width(cells, MOVIMENTACOES_REQUIRED_COLUMNS)
    entrada_saida = _movement_direction(_raw_cell(header_index, cells, "Entrada/Saída"))
    data_movimentacao = _convert(header_index, cells, "Data Movimentação", DATE)
    if data_movimentacao is None:
        raise IngestionError("missing value", "Data Movimentação")
    produto = _convert(header_index, cells, "Produto", TEXT)
    return MovimentacaoRecord(
        user_id=user_id,
        entrada_saida=entrada_saida,
        data_movimentacao=data_movimentacao,
        produto=produto,
        instituicao=_convert(header_index, cells, "Instituição", TEXT),
        quantidade=_required_number(header_index, cells, "Quantidade"),
        preco_unitario=_required_number(header_index, cells, "Preço unitário"),
        valor_operacao=_required_number(header_index, cells, "Valor da Operação"),
        codigo_negociacao=extract_ticker(produto),
    )


def parse_movimentacoes(
    rows: list[list[Cell]], user_id: str
) -> tuple[list[MovimentacaoRecord], list[RowError]]:
    if len(rows) < 2:
        raise EmptyFileError()
    header_index = build_header_index(rows[0])
    require_columns(header_index, MOVIMENTACOES_REQUIRED_COLUMNS)
    records: list[MovimentacaoRecord] = []
    skipped: list[RowError] = []
    for line_number, cells in enumerate(rows[1:], start=2):
        if _is_blank_row(cells):
            continue
        try:
            records.append(map_movimentacao_row(header_index, cells, user_id))
        except IngestionError as exc:
            skipped.append(RowError(line_number, exc))
            logger.debug("Skipping movement row: %s", skipped[-1].message)
    return records, skipped
