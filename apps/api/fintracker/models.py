from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TipoAtivo(str, Enum):
    ACAO = "ACAO"
    ETF = "ETF"
    FUNDO = "FUNDO"
    TESOURO = "TESOURO"
    BDR = "BDR"
    RFIXA = "RFIXA"


class TipoMovimentacao(str, Enum):
    CREDITO = "CREDITO"
    DEBITO = "DEBITO"


# Values accepted in the portfolio upload form.
ASSET_TYPE_ALIASES = {
    "acoes": TipoAtivo.ACAO,
    "etf": TipoAtivo.ETF,
    "fii": TipoAtivo.FUNDO,
    "tesouro": TipoAtivo.TESOURO,
    "bdr": TipoAtivo.BDR,
}


def map_asset_type(value: str | None) -> TipoAtivo | None:
    if not value:
        return None
    return ASSET_TYPE_ALIASES.get(value.strip().lower())


class PortfolioRecord(BaseModel):
    user_id: str
    data_base_ref: date
    tipo_ativo_categoria: TipoAtivo
    produto_descricao: str | None = None
    instituicao: str | None = None
    conta: str | None = None
    codigo_negociacao: str | None = None
    codigo_isin: str | None = None
    quantidade: float | None = None
    quantidade_disponivel: float | None = None
    quantidade_indisponivel: float | None = None
    valor_atualizado: float | None = None
    preco_fechamento: float | None = None
    cnpj_emissor: str | None = None
    tipo_papel: str | None = None
    agente_custodia: str | None = None
    motivo_indisponibilidade: str | None = None
    indexador: str | None = None
    data_vencimento: date | None = None
    valor_aplicado: float | None = None
    valor_bruto: float | None = None
    valor_liquido: float | None = None


class ProventoRecord(BaseModel):
    user_id: str
    codigo_negociacao: str
    produto_descricao: str
    data_pagamento: date
    tipo_evento: str | None = None
    instituicao: str | None = None
    quantidade: float | None = None
    preco_unitario: float | None = None
    valor_liquido: float | None = None

    def identity_key(self) -> dict:
        return {
            "user_id": self.user_id,
            "codigo_negociacao": self.codigo_negociacao,
            "data_pagamento": self.data_pagamento.isoformat(),
            "instituicao": self.instituicao,
            "tipo_evento": self.tipo_evento,
        }


class MovimentacaoRecord(BaseModel):
    user_id: str
    entrada_saida: TipoMovimentacao
    data_movimentacao: date
    produto: str | None = None
    instituicao: str | None = None
    quantidade: float
    preco_unitario: float
    valor_operacao: float
    codigo_negociacao: str = ""


class ImportResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    records_imported: int = Field(default=0, alias="recordsImported")
    records_deleted: int = Field(default=0, alias="recordsDeleted")
    errors: list[str] = Field(default_factory=list)
    message: str = ""

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True)
