import os
import sys
import unittest
from datetime import date, datetime

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fintracker.errors import DateFormatError, ParseError  # noqa: E402
from fintracker.formatters import (  # noqa: E402
    detect_delimiter,
    extract_ticker,
    fix_mojibake,
    normalize_text,
    parse_ambiguous_number,
    parse_brazilian_date,
    sanitize_string,
    tokenize,
)


class AmbiguousNumberTest(unittest.TestCase):
    def test_brazilian_and_american_formats(self) -> None:
        self.assertEqual(parse_ambiguous_number("1.234,56"), 1234.56)
        self.assertEqual(parse_ambiguous_number("1,234.56"), 1234.56)
        self.assertEqual(parse_ambiguous_number("12,50"), 12.5)
        self.assertEqual(parse_ambiguous_number("1.000.000"), 1000000.0)
        self.assertEqual(parse_ambiguous_number("-1.234,56"), -1234.56)

    def test_currency_and_quotes_are_stripped(self) -> None:
        self.assertEqual(parse_ambiguous_number("R$ 3.050,00"), 3050.0)
        self.assertEqual(parse_ambiguous_number('"R$ 30,50"'), 30.5)
        self.assertEqual(parse_ambiguous_number("R$ 1.500,00"), 1500.0)

    def test_single_separator_without_two_decimals_is_grouping(self) -> None:
        self.assertEqual(parse_ambiguous_number("1.234"), 1234.0)
        self.assertEqual(parse_ambiguous_number("1,234"), 1234.0)

    def test_empty_markers(self) -> None:
        self.assertIsNone(parse_ambiguous_number(None))
        self.assertIsNone(parse_ambiguous_number(""))
        self.assertIsNone(parse_ambiguous_number("   "))
        self.assertIsNone(parse_ambiguous_number("  -  "))
        self.assertIsNone(parse_ambiguous_number("R$"))

    def test_native_numbers_pass_through(self) -> None:
        self.assertEqual(parse_ambiguous_number(12), 12.0)
        self.assertEqual(parse_ambiguous_number(0.5), 0.5)

    def test_exponent_literals_are_rejected(self) -> None:
        for raw in ("1e5", "2,5E3"):
            with self.subTest(raw=raw):
                with self.assertRaises(ParseError):
                    parse_ambiguous_number(raw)

    def test_garbage_raises(self) -> None:
        for raw in ("abc", "nan", "inf", "12a", "1_000"):
            with self.subTest(raw=raw):
                with self.assertRaises(ParseError) as ctx:
                    parse_ambiguous_number(raw)
                self.assertEqual(ctx.exception.raw_value, raw)


class BrazilianDateTest(unittest.TestCase):
    def test_valid_dates(self) -> None:
        self.assertEqual(parse_brazilian_date("05/03/2024"), date(2024, 3, 5))
        self.assertEqual(parse_brazilian_date("5/3/2024"), date(2024, 3, 5))
        self.assertEqual(parse_brazilian_date(" 29/02/2024 "), date(2024, 2, 29))

    def test_date_objects_pass_through(self) -> None:
        self.assertEqual(parse_brazilian_date(datetime(2024, 1, 31, 10, 0)), date(2024, 1, 31))
        self.assertEqual(parse_brazilian_date(date(2024, 1, 31)), date(2024, 1, 31))

    def test_empty_is_none(self) -> None:
        self.assertIsNone(parse_brazilian_date(None))
        self.assertIsNone(parse_brazilian_date(""))
        self.assertIsNone(parse_brazilian_date("-"))

    def test_invalid_dates_raise(self) -> None:
        for raw in ("2024-03-05", "31/02/2024", "29/02/2023", "00/01/2024", "05/13/2024"):
            with self.subTest(raw=raw):
                with self.assertRaises(DateFormatError):
                    parse_brazilian_date(raw)


class TextHelpersTest(unittest.TestCase):
    def test_tokenize_respects_quotes(self) -> None:
        self.assertEqual(
            tokenize('PETR4,XP,"R$ 3.050,00", 100 '),
            ["PETR4", "XP", "R$ 3.050,00", "100"],
        )

    def test_tokenize_quoted_delimiter(self) -> None:
        self.assertEqual(tokenize('a,"b,c",d', ","), ["a", "b,c", "d"])

    def test_tokenize_semicolon_and_trailing_empty(self) -> None:
        self.assertEqual(tokenize("a;b;", ";"), ["a", "b", ""])

    def test_detect_delimiter(self) -> None:
        self.assertEqual(detect_delimiter("Produto;Quantidade"), ";")
        self.assertEqual(detect_delimiter("Produto,Quantidade"), ",")

    def test_extract_ticker(self) -> None:
        self.assertEqual(extract_ticker("PETR4 - PETROLEO BRASILEIRO S.A."), "PETR4")
        self.assertEqual(extract_ticker("ITSA4"), "ITSA4")
        self.assertEqual(extract_ticker(None), "")
        self.assertEqual(extract_ticker(" - SEM CODIGO"), "")

    def test_sanitize_string(self) -> None:
        self.assertEqual(sanitize_string(123.0), "123")
        self.assertEqual(sanitize_string("  XP  "), "XP")
        self.assertIsNone(sanitize_string("-"))
        self.assertIsNone(sanitize_string(None))

    def test_normalize_and_mojibake(self) -> None:
        self.assertEqual(normalize_text(" Crédito "), "credito")
        self.assertEqual(fix_mojibake("CrÃ©dito"), "Crédito")
        self.assertEqual(fix_mojibake("Débito"), "Débito")


if __name__ == "__main__":
    unittest.main()
