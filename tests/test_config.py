from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import sqlbridge as sb
from sqlbridge import config
from sqlbridge.db import sqlite
from sqlbridge.pool import PoolSettings


class ConfigTestCase(unittest.TestCase):
    def setUp(self) -> None:
        tmp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(tmp_dir.cleanup)
        self.tmp_dir = Path(tmp_dir.name)
        self.config_file = self.tmp_dir / "sqlbridge.json"

    def write_config(self, contents: dict | str) -> Path:
        with open(self.config_file, "w") as f:
            if isinstance(contents, str):
                f.write(contents)
            else:
                json.dump(contents, f)
        return self.config_file


class ProfileParsingTests(ConfigTestCase):
    def test_load_profiles(self) -> None:
        self.write_config({
            "connections": {
                "local": {"backend": "sqlite", "database": "dev.db", "pool": {"max_size": 4}},
                "warehouse": {"backend": "postgres", "connect_string": "dbname=dwh"},
            },
            "pool": {"min_size": 2, "max_size": 10},
        })
        profiles = config.load_profiles(self.config_file)
        self.assertEqual(["local", "warehouse"], sorted(profiles))

        local = profiles["local"]
        self.assertEqual("sqlite", local.backend)
        self.assertEqual({"database": "dev.db"}, local.params)
        self.assertEqual(PoolSettings(min_size=2, max_size=4), local.pool_settings)
        self.assertEqual(PoolSettings(min_size=2, max_size=10), profiles["warehouse"].pool_settings)

    def test_environment_variables_are_expanded(self) -> None:
        self.write_config({"connections": {
            "warehouse": {"backend": "postgres", "connect_string": "user=${DWH_USER} password=${DWH_PASSWORD}"},
        }})
        with mock.patch.dict(os.environ, {"DWH_USER": "analyst", "DWH_PASSWORD": "s3cret"}):
            profile = config.get_profile("warehouse", path=self.config_file)
        self.assertEqual("user=analyst password=s3cret", profile.params["connect_string"])

    def test_undefined_environment_variable(self) -> None:
        self.write_config({"connections": {"warehouse": {"backend": "postgres", "connect_string": "user=${NO_SUCH_VAR}"}}})
        with mock.patch.dict(os.environ, clear=True):
            with self.assertRaises(ValueError):
                config.load_profiles(self.config_file)

    def test_expand_nested_values(self) -> None:
        with mock.patch.dict(os.environ, {"HOST": "db.local"}):
            expanded = config.expand_env_vars({"servers": ["${HOST}", 5432], "options": {"host": "${HOST}"}})
        self.assertEqual({"servers": ["db.local", 5432], "options": {"host": "db.local"}}, expanded)

    def test_malformed_configurations(self) -> None:
        malformed_configs = [
            {},
            {"connections": []},
            {"connections": {"local": {"database": "dev.db"}}},
            {"connections": {"local": {"backend": "oracle"}}},
            {"connections": {"local": {"backend": "sqlite"}}, "pool": {"maximum": 3}},
            {"connections": {"local": {"backend": "sqlite"}}, "pool": []},
        ]
        for malformed in malformed_configs:
            with self.subTest("Config", config=malformed):
                self.write_config(malformed)
                with self.assertRaises(ValueError):
                    config.load_profiles(self.config_file)

    def test_invalid_json(self) -> None:
        self.write_config("{ not json")
        with self.assertRaises(ValueError):
            config.load_profiles(self.config_file)
        self.write_config("[1, 2, 3]")
        with self.assertRaises(ValueError):
            config.load_profiles(self.config_file)

    def test_unknown_profile(self) -> None:
        self.write_config({"connections": {"local": {"backend": "sqlite"}}})
        with self.assertRaises(ValueError):
            config.get_profile("remote", path=self.config_file)


class ConfigLocationTests(ConfigTestCase):
    def test_explicit_path(self) -> None:
        self.write_config({"connections": {}})
        self.assertEqual(self.config_file, config.locate_config(self.config_file))

    def test_environment_variable(self) -> None:
        self.write_config({"connections": {}})
        with mock.patch.dict(os.environ, {config.ConfigEnvVar: str(self.config_file)}):
            self.assertEqual(self.config_file, config.locate_config())

    def test_working_directory(self) -> None:
        default_file = self.tmp_dir / config.DefaultConfigFile
        default_file.write_text(json.dumps({"connections": {"local": {"backend": "sqlite"}}}))
        current_dir = os.getcwd()
        os.chdir(self.tmp_dir)
        self.addCleanup(os.chdir, current_dir)
        with mock.patch.dict(os.environ, clear=True):
            self.assertEqual(["local"], list(config.load_profiles()))

    def test_missing_file(self) -> None:
        with self.assertRaises(ValueError):
            config.locate_config(self.tmp_dir / "missing.json")


class ProfileConnectionTests(ConfigTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.db_file = self.tmp_dir / "dev.db"
        self.write_config({
            "connections": {"local": {"backend": "sqlite", "database": str(self.db_file)}},
            "pool": {"min_size": 1, "max_size": 2},
        })
        self.registry = sb.ConnectionRegistry.get_instance()
        self.registry.clear()

    def tearDown(self) -> None:
        self.registry.clear()

    def test_connect_profile(self) -> None:
        db = config.connect_profile("local", path=self.config_file)
        self.addCleanup(db.close)
        self.assertIsInstance(db, sqlite.SQLiteInterface)
        self.assertEqual(str(self.db_file), db.database_name())
        self.assertIs(db, self.registry.retrieve_database("local"))

    def test_connect_profile_with_overrides(self) -> None:
        db = sb.connect_profile("local", path=self.config_file, private=True, database=":memory:")
        self.addCleanup(db.close)
        self.assertEqual(":memory:", db.database_name())
        self.assertTrue(self.registry.empty())

    def test_pool_profile(self) -> None:
        pool = sb.pool_profile("local", path=self.config_file)
        self.addCleanup(pool.close)
        self.assertEqual(PoolSettings(min_size=1, max_size=2), pool.settings)
        pool.write_table("numbers", {"x": [1, 2, 3]})
        self.assertEqual(6, pool.execute_query("SELECT SUM(x) FROM numbers"))
        self.assertTrue(self.registry.empty())

    def test_pool_profile_with_settings(self) -> None:
        pool = sb.pool_profile("local", path=self.config_file, settings=PoolSettings(min_size=0, max_size=5))
        self.addCleanup(pool.close)
        self.assertEqual(5, pool.info()["max_size"])
        self.assertEqual(0, pool.info()["total"])


if __name__ == "__main__":
    unittest.main()
