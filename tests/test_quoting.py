from __future__ import annotations

import unittest
from datetime import date, time
from decimal import Decimal

import pandas as pd

import sqlbridge as sb


class IdentifierQuotingTests(unittest.TestCase):
    def test_valid_identifiers_stay_unquoted(self) -> None:
        self.assertEqual("city", sb.quote("city"))
        self.assertEqual("movie_id", sb.quote("movie_id"))
        self.assertEqual("", sb.quote(""))

    def test_invalid_identifiers_are_quoted(self) -> None:
        self.assertEqual('"City"', sb.quote("City"))
        self.assertEqual('"movie title"', sb.quote("movie title"))
        self.assertEqual('"1st"', sb.quote("1st"))

    def test_keywords_are_quoted(self) -> None:
        self.assertEqual('"select"', sb.quote("select"))
        self.assertEqual('"order"', sb.quote("order"))

    def test_embedded_quotes_are_doubled(self) -> None:
        self.assertEqual('"say ""hi"""', sb.quote('say "hi"'))

    def test_qualified_identifiers(self) -> None:
        self.assertEqual('public."City"', sb.quote(sb.Identifier("public", "City")))
        self.assertEqual("City", sb.Identifier("public", "City").name)

    def test_empty_identifier_components(self) -> None:
        with self.assertRaises(ValueError):
            sb.Identifier()
        with self.assertRaises(ValueError):
            sb.Identifier("public", "")


class LiteralQuotingTests(unittest.TestCase):
    def test_strings(self) -> None:
        self.assertEqual("'Hadley'", sb.quote_string("Hadley"))
        self.assertEqual("'O''Brien'", sb.quote_literal("O'Brien"))
        self.assertEqual("''", sb.quote_literal(""))

    def test_numbers(self) -> None:
        self.assertEqual("42", sb.quote_literal(42))
        self.assertEqual("-0.25", sb.quote_literal(-0.25))
        self.assertEqual("3.14", sb.quote_literal(Decimal("3.14")))
        self.assertEqual("NULL", sb.quote_literal(Decimal("NaN")))

    def test_missing_values(self) -> None:
        self.assertEqual("NULL", sb.quote_literal(None))
        self.assertEqual("NULL", sb.quote_literal(pd.NA))
        self.assertEqual("NULL", sb.quote_literal(pd.NaT))

    def test_booleans(self) -> None:
        self.assertEqual("TRUE", sb.quote_literal(True))
        self.assertEqual("FALSE", sb.quote_literal(False))

    def test_temporal_values(self) -> None:
        self.assertEqual("'2024-02-29'", sb.quote_literal(date(2024, 2, 29)))
        self.assertEqual("'12:30:00'", sb.quote_literal(time(12, 30)))
        self.assertEqual("'2024-02-29 12:30:00'", sb.quote_literal(pd.Timestamp("2024-02-29 12:30")))

    def test_collections(self) -> None:
        self.assertEqual("1, 'a', NULL", sb.quote_literal((1, "a", None)))

    def test_ansi_dialect(self) -> None:
        self.assertEqual('"City"', sb.ANSI.quote_identifier("City"))
        self.assertEqual("'x'", sb.ANSI.quote_literal("x"))


if __name__ == "__main__":
    unittest.main()
