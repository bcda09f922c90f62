from __future__ import annotations

import contextlib
import io
import json
import tempfile
import unittest
from pathlib import Path

from sqlbridge import cli
from sqlbridge.db import sqlite


class CommandLineTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(tmp_dir.cleanup)
        self.db_file = Path(tmp_dir.name) / "world.db"
        with sqlite.connect(self.db_file, private=True) as db:
            db.write_table("city", {"name": ["Berlin", "Paris"], "population": [3_645_000, 2_161_000]})

        self.config_file = Path(tmp_dir.name) / "sqlbridge.json"
        with open(self.config_file, "w") as f:
            json.dump({"connections": {"world": {"backend": "sqlite", "database": str(self.db_file)}}}, f)

    def run_cli(self, *args: str) -> tuple[int, str, str]:
        stdout, stderr = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
            exit_code = cli.main(list(args))
        return exit_code, stdout.getvalue(), stderr.getvalue()

    def test_list_tables(self) -> None:
        exit_code, output, _ = self.run_cli("--backend", "sqlite", "--database", str(self.db_file), "tables")
        self.assertEqual(0, exit_code)
        self.assertEqual("city\n", output)

    def test_list_fields_with_profile(self) -> None:
        exit_code, output, _ = self.run_cli("--profile", "world", "--config", str(self.config_file), "fields", "city")
        self.assertEqual(0, exit_code)
        self.assertEqual(["name", "population"], output.split())

    def test_query_with_parameters(self) -> None:
        exit_code, output, _ = self.run_cli("--profile", "world", "--config", str(self.config_file),
                                            "query", "SELECT name FROM city WHERE population > ?pop ORDER BY name",
                                            "-p", "pop=3000000", "--format", "csv")
        self.assertEqual(0, exit_code)
        self.assertEqual(["name", "Berlin"], output.split())

    def test_modifying_statement(self) -> None:
        exit_code, output, _ = self.run_cli("--backend", "sqlite", "--database", str(self.db_file),
                                            "query", "DELETE FROM city WHERE name = ?name", "-p", "name=Paris")
        self.assertEqual(0, exit_code)
        self.assertEqual("1 row(s) affected\n", output)

    def test_modifying_statement_with_returning(self) -> None:
        exit_code, output, _ = self.run_cli("--backend", "sqlite", "--database", str(self.db_file), "query",
                                            "INSERT INTO city VALUES (?name, ?pop) RETURNING name, population",
                                            "-p", "name=Rome", "-p", "pop=2873000", "--format", "csv")
        self.assertEqual(0, exit_code)
        self.assertEqual(["name,population", "Rome,2873000"], output.split())

        exit_code, output, _ = self.run_cli("--backend", "sqlite", "--database", str(self.db_file), "query",
                                            "DELETE FROM city WHERE population < 3000000 RETURNING name",
                                            "--format", "csv")
        self.assertEqual(0, exit_code)
        header, *names = output.split()
        self.assertEqual("name", header)
        self.assertCountEqual(["Paris", "Rome"], names)

    def test_errors_are_reported(self) -> None:
        exit_code, _, errors = self.run_cli("--backend", "sqlite", "--database", str(self.db_file),
                                            "query", "SELECT * FROM country")
        self.assertEqual(1, exit_code)
        self.assertIn("sqlbridge: error:", errors)

        exit_code, _, errors = self.run_cli("tables")
        self.assertEqual(1, exit_code)
        self.assertIn("--profile or --backend", errors)

    def test_parse_parameter(self) -> None:
        self.assertEqual(("id", 42), cli.parse_parameter("id=42"))
        self.assertEqual(("id", "42"), cli.parse_parameter('id="42"'))
        self.assertEqual(("name", "Berlin"), cli.parse_parameter("name=Berlin"))
        self.assertEqual(("expr", "a=b"), cli.parse_parameter("expr=a=b"))
        with self.assertRaises(ValueError):
            cli.parse_parameter("no-assignment")


if __name__ == "__main__":
    unittest.main()
