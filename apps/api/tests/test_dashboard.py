import importlib
import os
import sys
import tempfile
import unittest
from datetime import date


class DashboardPeriodTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tempdir = tempfile.TemporaryDirectory()
        os.environ["DB_PATH"] = os.path.join(self.tempdir.name, "test.db")
        sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
        import fintracker.config as config
        import fintracker.dashboard as dashboard
        import fintracker.storage as storage

        importlib.reload(config)
        self.dashboard = dashboard
        storage.init_db()
        snapshots = [
            ("2021-06-30", "ACAO", 1000.0),
            ("2023-06-30", "ACAO", 2000.0),
            ("2023-06-30", "TESOURO", 500.0),
            ("2024-06-28", "FUNDO", 300.0),
        ]
        proventos = [
            ("2022-05-10", 10.0),
            ("2023-08-15", 20.0),
            ("2023-08-30", 5.25),
            ("2024-01-15", 7.0),
        ]
        with storage.transaction() as tx:
            tx.create_many(
                "portfolio_consolidado",
                [
                    {
                        "user_id": "user@example.com",
                        "data_base_ref": ref,
                        "tipo_ativo_categoria": tipo,
                        "valor_atualizado": value,
                    }
                    for ref, tipo, value in snapshots
                ],
            )
            tx.create_many(
                "proventos_consolidado",
                [
                    {
                        "user_id": "user@example.com",
                        "codigo_negociacao": "ITSA4",
                        "produto_descricao": "ITSA4 - ITAUSA S.A.",
                        "data_pagamento": paid,
                        "valor_liquido": value,
                    }
                    for paid, value in proventos
                ],
            )
        self.today = date(2024, 6, 30)

    def tearDown(self) -> None:
        self.tempdir.cleanup()

    def test_evolution_windows(self) -> None:
        full = self.dashboard.portfolio_evolution("user@example.com", "max", self.today)
        self.assertEqual(
            full["data"],
            [
                {"date": "2021-06-30", "value": 1000.0},
                {"date": "2023-06-30", "value": 2500.0},
                {"date": "2024-06-28", "value": 300.0},
            ],
        )
        recent = self.dashboard.portfolio_evolution("user@example.com", "2y", self.today)
        self.assertEqual([point["date"] for point in recent["data"]], ["2023-06-30", "2024-06-28"])

    def test_by_asset_type_fills_missing_types_with_zero(self) -> None:
        result = self.dashboard.portfolio_by_asset_type("user@example.com", "2y", self.today)
        self.assertEqual(result["dates"], ["2023-06-30", "2024-06-28"])
        self.assertEqual(result["series"]["ACAO"], [2000.0, 0.0])
        self.assertEqual(result["series"]["FUNDO"], [0.0, 300.0])
        self.assertEqual(result["series"]["ETF"], [0.0, 0.0])

    def test_proventos_grouped_by_month(self) -> None:
        result = self.dashboard.proventos_monthly("user@example.com", "1y", self.today)
        self.assertEqual(
            result["data"],
            [
                {"date": "2023-08-01", "value": 25.25},
                {"date": "2024-01-01", "value": 7.0},
            ],
        )
        everything = self.dashboard.proventos_monthly("user@example.com", "all", self.today)
        self.assertEqual(len(everything["data"]), 3)

    def test_other_users_are_not_included(self) -> None:
        result = self.dashboard.portfolio_evolution("other@example.com", "max", self.today)
        self.assertEqual(result["data"], [])

    def test_leap_day_window(self) -> None:
        self.assertEqual(self.dashboard._years_ago(date(2024, 2, 29), 1), date(2023, 2, 28))


if __name__ == "__main__":
    unittest.main()
