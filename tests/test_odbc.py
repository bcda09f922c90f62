"""Tests for the ODBC bridge.

Actual ODBC connections require an installed driver manager along with a configured data source. The live tests only
run if the data source is named in the SQLBRIDGE_TEST_ODBC_DSN environment variable.
"""
from __future__ import annotations

import os
import unittest

from sqlbridge.db import odbc
from tests import regression_suite


class ConnectStringTests(unittest.TestCase):
    def test_driver_based_connection(self) -> None:
        connect_string = odbc.build_connect_string(driver="ODBC Driver 18 for SQL Server", server="localhost",
                                                   database="world", uid="sa", pwd="secret", port=1433)
        self.assertEqual("DRIVER={ODBC Driver 18 for SQL Server};SERVER=localhost;PORT=1433;DATABASE=world;UID=sa;"
                         "PWD=secret;", connect_string)

    def test_dsn_based_connection(self) -> None:
        self.assertEqual("DSN=warehouse;", odbc.build_connect_string(dsn="warehouse"))
        self.assertEqual("DSN=warehouse;UID=analyst;", odbc.build_connect_string(dsn="warehouse", uid="analyst"))

    def test_driver_braces_are_not_duplicated(self) -> None:
        self.assertEqual("DRIVER={SQLite3};", odbc.build_connect_string(driver="{SQLite3}"))

    def test_special_characters_are_braced(self) -> None:
        connect_string = odbc.build_connect_string(dsn="warehouse", pwd="a;b=c}")
        self.assertEqual("DSN=warehouse;PWD={a;b=c}}};", connect_string)
        self.assertEqual("DSN=warehouse;PWD={ padded };", odbc.build_connect_string(dsn="warehouse", pwd=" padded "))

    def test_additional_attributes(self) -> None:
        connect_string = odbc.build_connect_string(driver="PostgreSQL Unicode", database="world",
                                                   TrustServerCertificate="yes", Encrypt=None)
        self.assertEqual("DRIVER={PostgreSQL Unicode};DATABASE=world;TrustServerCertificate=yes;", connect_string)

    def test_missing_driver(self) -> None:
        with self.assertRaises(ValueError):
            odbc.build_connect_string(server="localhost", database="world")
        with self.assertRaises(ValueError):
            odbc.connect(server="localhost")


@regression_suite.skip_unless_odbc_dsn()
class ODBCInterfaceTests(regression_suite.DatabaseTestCase):
    table = "sqlbridge_odbc_city"

    def setUp(self) -> None:
        self.db = odbc.connect(dsn=os.environ[regression_suite.OdbcDsnEnvVar], private=True)
        self.db.remove_table(self.table, fail_if_missing=False)

    def tearDown(self) -> None:
        self.db.remove_table(self.table, fail_if_missing=False)
        self.db.close()

    def test_driver_catalog(self) -> None:
        self.assertIsInstance(odbc.list_drivers(), list)
        self.assertIn(os.environ[regression_suite.OdbcDsnEnvVar], odbc.list_data_sources())

    def test_write_and_read_table(self) -> None:
        self.db.write_table(self.table, {"name": ["Berlin", "Paris"], "population": [3_645_000, 2_161_000]})
        self.assertTrue(self.db.exists_table(self.table))
        self.assertEqual(["name", "population"], [field.lower() for field in self.db.list_fields(self.table)])
        self.assertResultSetsEqual([("Berlin", 3_645_000), ("Paris", 2_161_000)],
                                   self.db.read_table(self.table))

    def test_connection_is_valid(self) -> None:
        self.assertTrue(self.db.is_valid())
        self.assertTrue(self.db.database_system_name())


if __name__ == "__main__":
    unittest.main()
