from __future__ import annotations

import datetime
import io
import threading
import unittest

import numpy as np
import pandas as pd

from sqlbridge import util


class LoggerTests(unittest.TestCase):
    def test_disabled_logger_is_silent(self) -> None:
        out = io.StringIO()
        log = util.make_logger(False, file=out, prefix="pool")
        log("Opened connection")
        self.assertEqual("", out.getvalue())

    def test_static_and_dynamic_prefix(self) -> None:
        out = io.StringIO()
        util.make_logger(True, file=out, prefix="pool:")("Opened", 1, "connection")
        util.make_logger(True, file=out, prefix=lambda: "now")("Closed")
        self.assertEqual("pool: Opened 1 connection\nnow Closed\n", out.getvalue())

    def test_thread_name_is_included(self) -> None:
        out = io.StringIO()
        log = util.make_logger(True, file=out, with_thread=True)
        worker = threading.Thread(target=log, args=("checkout",), name="handler-1")
        worker.start()
        worker.join()
        self.assertEqual("[handler-1] checkout\n", out.getvalue())

    def test_print_if(self) -> None:
        out = io.StringIO()
        util.print_if(False, "hidden", file=out)
        util.print_if(True, "shown", file=out)
        self.assertEqual("shown\n", out.getvalue())


class VersionTests(unittest.TestCase):
    def test_comparison(self) -> None:
        self.assertGreater(util.Version("14.6"), util.Version("1.3.1"))
        self.assertLess(util.Version("16"), util.Version("16.2"))
        self.assertEqual(util.Version("3.45.1"), "3.45.1")
        self.assertNotEqual(util.Version("3.45"), "not a version")

    def test_parse_driver_versions(self) -> None:
        self.assertEqual(util.Version("16.2"), util.Version.parse("PostgreSQL 16.2 on x86_64-pc-linux-gnu"))
        self.assertEqual(util.Version("1.1.3"), util.Version.parse("v1.1.3-dev"))
        with self.assertRaises(ValueError):
            util.Version.parse("unknown")

    def test_formatting(self) -> None:
        self.assertEqual("16.2", str(util.Version([16, 2])))
        self.assertEqual("v16_2", util.Version("16.2").formatted(prefix="v", separator="_"))


class DataFrameHelperTests(unittest.TestCase):
    def test_as_df_from_columns_and_rows(self) -> None:
        from_columns = util.as_df({"name": ["Berlin", "Paris"], "population": [3_645_000, 2_161_000]})
        from_rows = util.as_df([{"name": "Berlin", "population": 3_645_000},
                                {"name": "Paris", "population": 2_161_000}])
        pd.testing.assert_frame_equal(from_columns, from_rows)
        self.assertTrue(util.as_df([]).empty)

    def test_as_df_rejects_ragged_rows(self) -> None:
        with self.assertRaises(ValueError):
            util.as_df([{"name": "Berlin"}, {"city": "Paris"}])
        with self.assertRaises(TypeError):
            util.as_df(42)

    def test_to_python(self) -> None:
        self.assertIsNone(util.to_python(np.nan))
        self.assertIsNone(util.to_python(pd.NA))
        self.assertIsNone(util.to_python(pd.NaT))
        self.assertIs(int, type(util.to_python(np.int64(42))))
        self.assertIs(True, util.to_python(np.bool_(True)))
        self.assertEqual(datetime.datetime(2024, 5, 1, 12, 30),
                         util.to_python(pd.Timestamp("2024-05-01 12:30")))
        self.assertEqual("Berlin", util.to_python("Berlin"))


if __name__ == "__main__":
    unittest.main()
