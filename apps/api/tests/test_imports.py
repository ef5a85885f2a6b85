import importlib
import os
import sys
import tempfile
import unittest
from datetime import date


ACOES_CSV = (
    "Produto,Instituição,Conta,Código de Negociação,Quantidade,Preço de Fechamento,Valor Atualizado\n"
    'PETR4,XP,123,PETR4,100,"R$ 30,50","R$ 3.050,00"\n'
).encode("utf-8")

PROVENTOS_CSV = (
    "Produto,Pagamento,Tipo de Evento,Instituição,Quantidade,Preço unitário,Valor líquido\n"
    'ITSA4 - ITAUSA S.A.,15/03/2024,Dividendo,XP,100,"0,50","50,00"\n'
    'PETR4 - PETROBRAS,20/03/2024,Juros Sobre Capital Próprio,XP,10,"1,00","10,00"\n'
).encode("utf-8")

MOVIMENTACOES_CSV = (
    "Entrada/Saída;Data Movimentação;Movimentação;Produto;Instituição;"
    "Quantidade;Preço unitário;Valor da Operação\n"
    "Credito;10/01/2024;Compra;PETR4 - PETROLEO BRASILEIRO S.A.;XP;100;30,50;3.050,00\n"
    "Credito;12/01/2024;Juros;Tesouro Selic 2029;XP;-;-;-\n"
).encode("utf-8")

USER = "user@example.com"


class ImportOrchestrationTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tempdir = tempfile.TemporaryDirectory()
        os.environ["DB_PATH"] = os.path.join(self.tempdir.name, "test.db")
        sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
        import fintracker.config as config
        import fintracker.errors as errors
        import fintracker.imports as imports
        import fintracker.models as models
        import fintracker.storage as storage

        importlib.reload(config)
        self.errors = errors
        self.imports = imports
        self.models = models
        self.storage = storage
        self.storage.init_db()

    def tearDown(self) -> None:
        self.tempdir.cleanup()

    def _count(self, table: str, **where) -> int:
        with self.storage.transaction() as tx:
            return tx.count(table, where)

    def test_portfolio_import_replaces_the_snapshot(self) -> None:
        first = self.imports.import_portfolio(
            ACOES_CSV, "posicao.csv", USER, date(2024, 1, 31), self.models.TipoAtivo.ACAO
        )
        self.assertTrue(first.success)
        self.assertEqual(first.records_imported, 1)
        self.assertEqual(first.records_deleted, 0)

        second = self.imports.import_portfolio(
            ACOES_CSV, "posicao.csv", USER, date(2024, 1, 31), self.models.TipoAtivo.ACAO
        )
        self.assertEqual(second.records_imported, 1)
        self.assertEqual(second.records_deleted, 1)
        self.assertEqual(
            second.message,
            "Successfully imported 1 records. 1 existing records were replaced.",
        )
        self.assertEqual(self._count("portfolio_consolidado", user_id=USER), 1)

    def test_portfolio_snapshots_are_scoped_by_date_and_type(self) -> None:
        for ref, tipo in (
            (date(2024, 1, 31), self.models.TipoAtivo.ACAO),
            (date(2024, 2, 29), self.models.TipoAtivo.ACAO),
            (date(2024, 1, 31), self.models.TipoAtivo.BDR),
        ):
            result = self.imports.import_portfolio(ACOES_CSV, "posicao.csv", USER, ref, tipo)
            self.assertEqual(result.records_deleted, 0)
        self.assertEqual(self._count("portfolio_consolidado", user_id=USER), 3)

    def test_failed_portfolio_batch_keeps_previous_snapshot(self) -> None:
        self.imports.import_portfolio(
            ACOES_CSV, "posicao.csv", USER, date(2024, 1, 31), self.models.TipoAtivo.ACAO
        )
        broken = ACOES_CSV + "VALE3,XP,123,VALE3,abc,10,20\n".encode("utf-8")
        with self.assertRaises(self.errors.BatchParseError):
            self.imports.import_portfolio(
                broken, "posicao.csv", USER, date(2024, 1, 31), self.models.TipoAtivo.ACAO
            )
        self.assertEqual(self._count("portfolio_consolidado", user_id=USER), 1)

    def test_proventos_reimport_skips_duplicates(self) -> None:
        first = self.imports.import_proventos(PROVENTOS_CSV, "proventos.csv", USER)
        self.assertTrue(first.success)
        self.assertEqual(first.records_imported, 2)
        self.assertEqual(first.records_deleted, 0)

        second = self.imports.import_proventos(PROVENTOS_CSV, "proventos.csv", USER)
        self.assertTrue(second.success)
        self.assertEqual(second.records_imported, 0)
        self.assertEqual(second.records_deleted, 2)
        self.assertEqual(second.message, "No new records. 2 duplicates skipped.")
        self.assertEqual(self._count("proventos_consolidado", user_id=USER), 2)

    def test_proventos_are_scoped_per_user(self) -> None:
        self.imports.import_proventos(PROVENTOS_CSV, "proventos.csv", USER)
        other = self.imports.import_proventos(PROVENTOS_CSV, "proventos.csv", "other@example.com")
        self.assertEqual(other.records_imported, 2)

    def test_proventos_without_valid_rows(self) -> None:
        text = (
            "Produto,Pagamento,Tipo de Evento,Instituição,Quantidade,Preço unitário,Valor líquido\n"
            ",15/03/2024,Dividendo,XP,100,1,1\n"
        ).encode("utf-8")
        with self.assertRaises(self.errors.NoRecordsError) as ctx:
            self.imports.import_proventos(text, "proventos.csv", USER)
        self.assertEqual(ctx.exception.errors, ["Line 2: Missing 'Produto'"])

    def test_movements_are_appended_on_every_import(self) -> None:
        first = self.imports.import_movimentacoes(MOVIMENTACOES_CSV, "movimentacoes.csv", USER)
        self.assertTrue(first.success)
        self.assertEqual(first.records_imported, 1)
        self.assertEqual(first.records_deleted, 0)
        self.assertEqual(first.message, "Imported 1 movements. 1 rows skipped.")

        self.imports.import_movimentacoes(MOVIMENTACOES_CSV, "movimentacoes.csv", USER)
        self.assertEqual(self._count("movimentacoes", user_id=USER), 2)

    def test_movements_with_missing_columns_insert_nothing(self) -> None:
        text = "Produto;Quantidade;Valor da Operação\nPETR4;100;3.050,00\n".encode("utf-8")
        with self.assertRaises(self.errors.SchemaError) as ctx:
            self.imports.import_movimentacoes(text, "movimentacoes.csv", USER)
        self.assertIn("Entrada/Saída", ctx.exception.missing_columns)
        self.assertEqual(self._count("movimentacoes", user_id=USER), 0)

    def test_transaction_rolls_back_on_error(self) -> None:
        with self.assertRaises(RuntimeError):
            with self.storage.transaction() as tx:
                tx.create(
                    "proventos_consolidado",
                    {
                        "user_id": USER,
                        "codigo_negociacao": "ITSA4",
                        "produto_descricao": "ITSA4",
                        "data_pagamento": "2024-03-15",
                    },
                )
                raise RuntimeError("boom")
        self.assertEqual(self._count("proventos_consolidado", user_id=USER), 0)

    def test_constraint_violation_is_translated(self) -> None:
        with self.assertRaises(self.errors.ConstraintViolation):
            with self.storage.transaction() as tx:
                tx.create("movimentacoes", {"user_id": USER, "entrada_saida": "OUTRO"})


if __name__ == "__main__":
    unittest.main()
