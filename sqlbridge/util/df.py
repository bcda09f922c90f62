"""Utilities to work with Pandas data frames"""

from __future__ import annotations

import math
from collections.abc import Collection, Mapping
from typing import Any

import numpy as np
import pandas as pd


def _df_from_list(data: Collection[Mapping[str, Any]]) -> pd.DataFrame:
    data_template = next(iter(data))
    df_container: dict[str, list[Any]] = {col: [] for col in data_template.keys()}
    for row in data:
        if row.keys() != data_template.keys():
            raise ValueError(f"All rows must have the same columns, but {dict(row)} differs from {dict(data_template)}")
        for key in df_container.keys():
            df_container[key].append(row[key])
    return pd.DataFrame(df_container)


def as_df(data: pd.DataFrame | Mapping[str, Collection[Any]] | Collection[Mapping[str, Any]]) -> pd.DataFrame:
    """Generates a new Pandas `DataFrame` from tabular data.

    The data can be supplied in one of three forms:

    - a data frame, which is returned as-is
    - a mapping from column names to equal-length collections of column values
    - a collection of dictionaries, each one describing a row. All dictionaries have to consist of exactly the same keys,
      each key becomes a column in the data frame.

    Raises
    ------
    TypeError
        If the data is neither of the supported forms
    ValueError
        If the rows of a collection of dictionaries do not agree on their columns
    """
    if isinstance(data, pd.DataFrame):
        return data
    if isinstance(data, Mapping):
        return pd.DataFrame(dict(data))
    if isinstance(data, Collection) and not isinstance(data, (str, bytes)):
        return _df_from_list(data) if data else pd.DataFrame()
    raise TypeError("Unexpected data type: " + str(type(data)))


def to_python(value: Any) -> Any:
    """Converts numpy and pandas scalars into plain Python objects that DB-API drivers accept.

    Missing values (*NaN*, *NaT*, `pd.NA`) become *None*.
    """
    if value is None or value is pd.NaT or value is pd.NA:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, pd.Timedelta):
        return value.to_pytimedelta()
    if isinstance(value, np.datetime64):
        return None if np.isnat(value) else pd.Timestamp(value).to_pydatetime()
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value
