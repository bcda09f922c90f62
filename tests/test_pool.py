from __future__ import annotations

import tempfile
import threading
import time
import unittest
from unittest import mock
import warnings
from pathlib import Path

import sqlbridge as sb
from sqlbridge import qal, util
from sqlbridge.db import sqlite
from sqlbridge.pool import Pool, PoolExhaustedError, PoolSettings, PoolWarning, create_pool
from tests import regression_suite


class PoolSettingsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        settings = PoolSettings()
        self.assertEqual(1, settings.min_size)
        self.assertIsNone(settings.max_size)
        self.assertEqual("SELECT 1", settings.validation_query)

    def test_invalid_settings(self) -> None:
        with self.assertRaises(ValueError):
            PoolSettings(min_size=-1)
        with self.assertRaises(ValueError):
            PoolSettings(min_size=3, max_size=2)
        with self.assertRaises(ValueError):
            PoolSettings(min_size=0, max_size=0)
        with self.assertRaises(ValueError):
            PoolSettings(acquire_timeout=-1)

    def test_from_dict(self) -> None:
        settings = PoolSettings.from_dict({"max_size": 4, "idle_timeout": 10})
        self.assertEqual(PoolSettings(max_size=4, idle_timeout=10), settings)
        with self.assertRaises(ValueError):
            PoolSettings.from_dict({"maximum": 4})


class PoolTests(regression_suite.DatabaseTestCase):
    def setUp(self) -> None:
        db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
        db_file.close()
        self.db_file = Path(db_file.name)
        self.addCleanup(self.db_file.unlink)
        self.opened: list[sb.Database] = []

    def make_pool(self, **settings) -> Pool:
        def factory() -> sb.Database:
            conn = sqlite.connect(self.db_file, private=True)
            self.opened.append(conn)
            return conn

        pool = Pool(factory, PoolSettings(**settings))
        self.addCleanup(pool.close)
        return pool

    def test_min_size_is_opened_eagerly(self) -> None:
        pool = self.make_pool(min_size=2)
        self.assertEqual(2, len(self.opened))
        self.assertEqual({"free": 2, "taken": 0, "total": 2, "min_size": 2, "max_size": None, "closed": False},
                         pool.info())

    def test_checkout_and_return(self) -> None:
        pool = self.make_pool(min_size=1)
        conn = pool.checkout()
        self.assertIs(self.opened[0], conn)
        self.assertEqual(1, pool.info()["taken"])
        pool.return_(conn)
        self.assertEqual(1, pool.info()["free"])
        self.assertEqual(0, pool.info()["taken"])

    def test_connections_are_reused_lifo(self) -> None:
        pool = self.make_pool(min_size=0)
        first = pool.checkout()
        second = pool.checkout()
        pool.return_(first)
        pool.return_(second)
        self.assertIs(second, pool.checkout())
        self.assertEqual(2, len(self.opened))

    def test_max_size_blocks_checkout(self) -> None:
        pool = self.make_pool(min_size=0, max_size=1)
        conn = pool.checkout()
        with self.assertRaises(PoolExhaustedError):
            pool.checkout(timeout=0.05)
        pool.return_(conn)
        self.assertIs(conn, pool.checkout(timeout=0.05))

    def test_waiting_checkout_is_served_by_return(self) -> None:
        pool = self.make_pool(min_size=1, max_size=1)
        conn = pool.checkout()
        timer = threading.Timer(0.05, pool.return_, args=(conn,))
        timer.start()
        self.addCleanup(timer.join)
        self.assertIs(conn, pool.checkout(timeout=5))

    def test_concurrent_requests(self) -> None:
        pool = self.make_pool(min_size=0, max_size=3)
        pool.execute("CREATE TABLE hits (worker INTEGER)")
        errors: list[Exception] = []

        def worker(idx: int) -> None:
            try:
                for _ in range(5):
                    with pool.connection() as conn:
                        conn.execute(conn.interpolate("INSERT INTO hits VALUES (?idx)", idx=idx))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual([], errors)
        self.assertEqual(30, pool.execute_query("SELECT COUNT(*) FROM hits"))
        self.assertLessEqual(len(self.opened), 3)

    def test_broken_connections_are_replaced(self) -> None:
        pool = self.make_pool(min_size=1, validation_interval=0)
        broken = pool.checkout()
        pool.return_(broken)
        broken.close()
        time.sleep(0.01)

        replacement = pool.checkout()
        self.assertIsNot(broken, replacement)
        self.assertTrue(replacement.is_valid())
        self.assertEqual(2, len(self.opened))

    def test_closed_connections_are_discarded_on_return(self) -> None:
        pool = self.make_pool(min_size=0)
        conn = pool.checkout()
        conn.close()
        pool.return_(conn)
        self.assertEqual(0, pool.info()["total"])

    def test_idle_connections_are_evicted(self) -> None:
        pool = self.make_pool(min_size=1, idle_timeout=0)
        first = pool.checkout()
        second = pool.checkout()
        pool.return_(second)
        pool.return_(first)
        time.sleep(0.01)

        conn = pool.checkout()
        self.assertIs(first, conn)
        self.assertTrue(second.closed)
        self.assertEqual(1, pool.info()["total"])

    def test_open_transaction_is_rolled_back(self) -> None:
        pool = self.make_pool(min_size=1)
        pool.execute("CREATE TABLE account (balance INTEGER)")
        conn = pool.checkout()
        conn.begin()
        conn.execute("INSERT INTO account VALUES (100)")
        with self.assertWarns(PoolWarning):
            pool.return_(conn)
        self.assertFalse(conn.in_transaction)
        self.assertEqual(0, pool.execute_query("SELECT COUNT(*) FROM account"))

    def test_transaction_context(self) -> None:
        pool = self.make_pool(min_size=1)
        pool.execute("CREATE TABLE account (balance INTEGER)")
        with self.assertRaises(sb.DatabaseUserError):
            with pool.transaction() as conn:
                conn.execute("INSERT INTO account VALUES (100)")
                conn.execute("INSERT INTO missing VALUES (1)")
        with pool.transaction() as conn:
            conn.execute("INSERT INTO account VALUES (50)")
        self.assertEqual(50, pool.execute_query("SELECT SUM(balance) FROM account"))
        self.assertEqual(0, pool.info()["taken"])

    def test_foreign_connections_are_rejected(self) -> None:
        pool = self.make_pool(min_size=0)
        stranger = sqlite.connect(private=True)
        self.addCleanup(stranger.close)
        with self.assertRaises(ValueError):
            pool.return_(stranger)

        conn = pool.checkout()
        pool.return_(conn)
        with self.assertRaises(ValueError):
            pool.return_(conn)

    def test_delegated_operations(self) -> None:
        pool = self.make_pool(min_size=1)
        pool.write_table("city", {"name": ["Berlin", "Paris"], "population": [3_645_000, 2_161_000]})
        self.assertEqual(["city"], pool.list_tables())
        self.assertTrue(pool.exists_table("city"))
        self.assertEqual(["name", "population"], pool.list_fields("city"))
        self.assertEqual(2, len(pool.read_table("city")))
        self.assertEqual(["Berlin"], pool.query("SELECT name FROM city WHERE population > 3000000")["name"].tolist())
        self.assertEqual("SELECT 'O''Brien'", str(pool.interpolate("SELECT ?name", name="O'Brien")))
        self.assertEqual(["name"], pool.run("SELECT name FROM city WHERE name = ?", ("Paris",)).columns)
        self.assertTrue(pool.remove_table("city"))
        self.assertEqual(0, pool.info()["taken"])

    def test_lazy_tables_on_pools(self) -> None:
        pool = self.make_pool(min_size=1)
        pool.write_table("city", {"name": ["Berlin", "Paris"], "population": [3_645_000, 2_161_000]})
        df = qal.tbl(pool, "city").filter(qal.col("population") < 3_000_000).collect()
        self.assertEqual(["Paris"], df["name"].tolist())
        self.assertEqual(["name", "population"], qal.tbl(pool, "city").columns)
        self.assertEqual(0, pool.info()["taken"])

    def test_quoting_on_exhausted_pool(self) -> None:
        pool = self.make_pool(min_size=1, max_size=1, acquire_timeout=0.05)
        conn = pool.checkout()
        self.addCleanup(pool.return_, conn)

        self.assertEqual("SELECT 'x'", str(sb.sql_interpolate(pool, "SELECT ?a", a="x")))
        self.assertEqual("SELECT 'O''Brien', 42", str(pool.interpolate("SELECT ?name, ?n", name="O'Brien", n=42)))
        self.assertEqual('"my table"', pool.quote_identifier("my table"))
        self.assertEqual("SELECT * FROM t", str(qal.tbl(pool, "t").sql()))
        city = qal.lazy_table("city")
        self.assertEqual(str(city.filter(qal.col("name") == "Rome").sql()),
                         str(qal.tbl(pool, "city").filter(qal.col("name") == "Rome").sql()))
        self.assertEqual(1, pool.info()["taken"])

    def test_concurrent_return_of_same_connection(self) -> None:
        pool = self.make_pool(min_size=1)
        conn = pool.checkout()
        conn.begin()
        rolling_back = threading.Event()
        proceed = threading.Event()
        rollback = conn.rollback

        def slow_rollback() -> None:
            rolling_back.set()
            proceed.wait(5)
            rollback()

        with warnings.catch_warnings(), mock.patch.object(conn, "rollback", side_effect=slow_rollback):
            warnings.simplefilter("ignore", PoolWarning)
            returner = threading.Thread(target=pool.return_, args=(conn,))
            returner.start()
            self.assertTrue(rolling_back.wait(5))
            with self.assertRaises(ValueError):
                pool.return_(conn)
            self.assertEqual(1, pool.info()["total"])
            proceed.set()
            returner.join()

        self.assertFalse(conn.in_transaction)
        self.assertEqual({"free": 1, "taken": 0, "total": 1},
                         {key: value for key, value in pool.info().items() if key in ("free", "taken", "total")})

    def test_idle_connections_are_evicted_on_return(self) -> None:
        pool = self.make_pool(min_size=1, idle_timeout=0)
        first = pool.checkout()
        second = pool.checkout()
        pool.return_(second)
        time.sleep(0.01)
        pool.return_(first)

        self.assertTrue(second.closed)
        self.assertFalse(first.closed)
        self.assertEqual(1, pool.info()["total"])

    def test_close(self) -> None:
        pool = self.make_pool(min_size=2)
        pool.close()
        self.assertTrue(pool.closed)
        self.assertTrue(all(conn.closed for conn in self.opened))
        self.assertTrue(pool.info()["closed"])
        with self.assertRaises(util.StateError):
            pool.checkout()
        pool.close()

    def test_close_with_taken_connections(self) -> None:
        pool = self.make_pool(min_size=1)
        conn = pool.checkout()
        with self.assertWarns(PoolWarning):
            pool.close()
        self.assertFalse(conn.closed)
        pool.return_(conn)
        self.assertTrue(conn.closed)

    def test_failing_factory(self) -> None:
        attempts = []

        def factory() -> sb.Database:
            attempts.append(1)
            raise sb.DatabaseServerError("connection refused")

        pool = Pool(factory, PoolSettings(min_size=0, max_size=1))
        self.addCleanup(pool.close)
        with self.assertRaises(sb.DatabaseServerError):
            pool.checkout()
        self.assertEqual(0, pool.info()["total"])
        with self.assertRaises(sb.DatabaseServerError):
            pool.checkout(timeout=0.05)
        self.assertEqual(2, len(attempts))


class CreatePoolTests(unittest.TestCase):
    def test_sqlite_pool(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            pool = create_pool("sqlite", database=Path(tmp_dir) / "app.db", settings=PoolSettings(min_size=1, max_size=2))
            with pool:
                with pool.connection() as conn:
                    self.assertIsInstance(conn, sqlite.SQLiteInterface)
                    conn.execute("CREATE TABLE t (x INTEGER)")
                self.assertEqual(["t"], pool.list_tables())
            self.assertTrue(pool.closed)

    def test_pool_connections_are_private(self) -> None:
        registry = sb.ConnectionRegistry.get_instance()
        registry.clear()
        with tempfile.TemporaryDirectory() as tmp_dir:
            with create_pool("sqlite", database=Path(tmp_dir) / "app.db", private=False):
                self.assertTrue(registry.empty())

    def test_in_memory_databases_warn(self) -> None:
        with self.assertWarns(PoolWarning):
            pool = create_pool("sqlite", settings=PoolSettings(min_size=0))
        pool.close()
        with warnings.catch_warnings():
            warnings.simplefilter("error", PoolWarning)
            with tempfile.TemporaryDirectory() as tmp_dir:
                create_pool("sqlite", database=Path(tmp_dir) / "app.db", settings=PoolSettings(min_size=0)).close()

    def test_unknown_backend(self) -> None:
        with self.assertRaises(ValueError):
            create_pool("oracle")


if __name__ == "__main__":
    unittest.main()
