from __future__ import annotations

import unittest

import sqlbridge as sb
from sqlbridge import qal
from sqlbridge.db import duckdb
from sqlbridge.qal import col
from tests import regression_suite


class DuckDBInterfaceTests(regression_suite.DatabaseTestCase):
    def setUp(self) -> None:
        self.db = duckdb.connect(private=True)
        self.db.write_table("city", {"name": ["Berlin", "Paris", "Rome"],
                                     "population": [3_645_000, 2_161_000, 2_873_000]})

    def tearDown(self) -> None:
        self.db.close()

    def test_query(self) -> None:
        df = self.db.query("SELECT name FROM city WHERE population > 2500000 ORDER BY name")
        self.assertEqual(["Berlin", "Rome"], df["name"].tolist())
        self.assertResultSetsEqual(3, self.db.execute_query("SELECT COUNT(*) FROM city"))

    def test_affected_rows(self) -> None:
        self.assertEqual(1, self.db.execute("DELETE FROM city WHERE name = 'Paris'"))
        self.assertIsNone(self.db.execute_query("UPDATE city SET population = 0 WHERE name = 'Rome'"))

    def test_schema_introspection(self) -> None:
        self.assertEqual(["city"], self.db.list_tables())
        self.assertEqual(["name", "population"], self.db.list_fields("city"))
        self.assertTrue(self.db.exists_table("city"))
        self.assertFalse(self.db.exists_table("country"))
        self.assertFalse(self.db.schema().is_view("city"))

    def test_transactions(self) -> None:
        with self.assertRaises(sb.DatabaseUserError):
            with self.db.transaction():
                self.db.execute("DELETE FROM city")
                self.db.execute("SELECT * FROM country")
        self.assertEqual(3, self.db.execute_query("SELECT COUNT(*) FROM city"))

        with self.db.transaction():
            self.db.execute("DELETE FROM city WHERE name = 'Rome'")
        self.assertEqual(2, self.db.execute_query("SELECT COUNT(*) FROM city"))

    def test_user_errors(self) -> None:
        with self.assertRaises(sb.DatabaseUserError):
            self.db.execute_query("SELEC 1")
        with self.assertRaises(sb.DatabaseUserError):
            self.db.write_table("city", {"name": ["Madrid"]})

    def test_overwrite(self) -> None:
        self.db.write_table("city", {"name": ["Madrid"], "founded": [852]}, overwrite=True)
        self.assertResultSetsEqual(("Madrid", 852), self.db.execute_query("SELECT * FROM city"))

    def test_system_information(self) -> None:
        self.assertEqual("DuckDB", self.db.database_system_name())
        self.assertGreaterEqual(self.db.database_system_version(), "0.1")

    def test_arithmetic_in_lazy_tables(self) -> None:
        shrunk = (qal.tbl(self.db, "city")
                  .mutate(change=col("population") - 1_000_000, loss=-(col("population") - 2_000_000))
                  .arrange("name")
                  .select("name", "change", "loss"))
        self.assertIn("population - 1000000 AS change", str(shrunk.sql()))
        self.assertIn("-(population - 2000000) AS loss", str(shrunk.sql()))
        self.assertFrameMatches(shrunk.collect(), {"name": ["Berlin", "Paris", "Rome"],
                                                   "change": [2_645_000, 1_161_000, 1_873_000],
                                                   "loss": [-1_645_000, -161_000, -873_000]}, ordered=False)


if __name__ == "__main__":
    unittest.main()
