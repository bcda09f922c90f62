"""Named connection profiles, such that connection parameters do not have to be spelled out in the code.

Profiles are stored in a JSON file of the following form:

.. code-block:: json

    {
        "connections": {
            "warehouse": {"backend": "postgres", "connect_string": "host=db dbname=dwh user=${DWH_USER}"},
            "local": {"backend": "sqlite", "database": "dev.db", "pool": {"max_size": 4}}
        },
        "pool": {"min_size": 1, "max_size": 10}
    }

Each connection names its backend along with the parameters of the backend's `connect` function. References to
environment variables of the form ``${VAR}`` are expanded when the file is loaded, which keeps passwords out of the file.
The top-level *pool* section provides the default `PoolSettings`, which can be refined by a *pool* entry of a connection.

The configuration file is located as follows: an explicitly given path takes precedence, otherwise the path in the
*SQLBRIDGE_CONFIG* environment variable is used. As a last resort, the file *.sqlbridge.json* in the current working
directory is read.
"""

from __future__ import annotations

import json
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from . import db as db_api
from .db import Database
from .pool import Pool, PoolSettings, create_pool

ConfigEnvVar = "SQLBRIDGE_CONFIG"
"""Environment variable that points to the configuration file."""

DefaultConfigFile = ".sqlbridge.json"
"""Name of the configuration file that is read from the working directory if no other file is given."""

_EnvVarPattern = re.compile(r"\$\{(?P<var>[A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(frozen=True)
class ConnectionProfile:
    """A named set of connection parameters.

    Attributes
    ----------
    name : str
        The name of the profile
    backend : str
        The database system, see `db.connect`
    params : dict[str, Any]
        The parameters for the backend's `connect` function, with all environment variables expanded
    pool_settings : PoolSettings
        The settings to use if a pool is created for this profile
    """
    name: str
    backend: str
    params: dict[str, Any] = field(default_factory=dict)
    pool_settings: PoolSettings = field(default_factory=PoolSettings)

    def connect(self, **overrides: Any) -> Database:
        """Opens a connection with the parameters of this profile. Keyword arguments replace the stored parameters."""
        params = {"name": self.name} | self.params | overrides
        return db_api.connect(self.backend, **params)

    def create_pool(self, *, settings: Optional[PoolSettings] = None, debug: bool = False, **overrides: Any) -> Pool:
        """Builds a pool of connections with the parameters of this profile."""
        params = self.params | overrides
        params.pop("name", None)
        return create_pool(self.backend, settings=settings or self.pool_settings, debug=debug, **params)


def expand_env_vars(value: Any) -> Any:
    """Replaces all ``${VAR}`` references in strings by the values of the corresponding environment variables.

    Dictionaries and lists are processed recursively, all other values are returned as-is.

    Raises
    ------
    ValueError
        If a referenced environment variable is not defined
    """
    match value:
        case str():
            def lookup(match: re.Match) -> str:
                var = match.group("var")
                if var not in os.environ:
                    raise ValueError(f"Environment variable '{var}' is referenced in the configuration, but not defined")
                return os.environ[var]
            return _EnvVarPattern.sub(lookup, value)
        case dict():
            return {key: expand_env_vars(val) for key, val in value.items()}
        case list():
            return [expand_env_vars(val) for val in value]
        case _:
            return value


def locate_config(path: Optional[str | Path] = None) -> Path:
    """Determines the configuration file to read.

    Raises
    ------
    ValueError
        If the file does not exist
    """
    if path:
        config_file = Path(path)
    elif os.getenv(ConfigEnvVar):
        config_file = Path(os.environ[ConfigEnvVar])
    else:
        config_file = Path(DefaultConfigFile)
    if not config_file.is_file():
        raise ValueError(f"Configuration file '{config_file}' not found. Your working directory is {os.getcwd()}. "
                         f"Either pass the path explicitly, set the {ConfigEnvVar} environment variable or create a "
                         f"{DefaultConfigFile} file in the working directory.")
    return config_file


def parse_profiles(config: Mapping[str, Any]) -> dict[str, ConnectionProfile]:
    """Creates connection profiles from the (already parsed) contents of a configuration file.

    Raises
    ------
    ValueError
        If the configuration is malformed
    """
    connections = config.get("connections")
    if not isinstance(connections, Mapping):
        raise ValueError("Configuration requires a 'connections' object")
    default_pool = config.get("pool", {})
    if not isinstance(default_pool, Mapping):
        raise ValueError("The 'pool' section of the configuration has to be an object")

    profiles: dict[str, ConnectionProfile] = {}
    for name, entry in connections.items():
        if not isinstance(entry, Mapping) or "backend" not in entry:
            raise ValueError(f"Connection '{name}' requires a 'backend' entry")
        params = expand_env_vars(dict(entry))
        backend = params.pop("backend")
        if backend.lower() not in db_api.Backends:
            raise ValueError(f"Connection '{name}' uses unknown backend '{backend}'. "
                             f"Allowed values are {sorted(db_api.Backends)}")
        pool_settings = PoolSettings.from_dict(dict(default_pool) | params.pop("pool", {}))
        profiles[name] = ConnectionProfile(name, backend, params, pool_settings)
    return profiles


def load_profiles(path: Optional[str | Path] = None) -> dict[str, ConnectionProfile]:
    """Reads all connection profiles from the configuration file. See the module documentation for the file format.

    Parameters
    ----------
    path : Optional[str | Path], optional
        The configuration file. If omitted, the file is located according to `locate_config`.

    Returns
    -------
    dict[str, ConnectionProfile]
        The profiles, indexed by their name

    Raises
    ------
    ValueError
        If the file cannot be found or is malformed, or if it references undefined environment variables
    """
    config_file = locate_config(path)
    with open(config_file, "r") as f:
        try:
            config = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Configuration file '{config_file}' is not valid JSON: {e}") from e
    if not isinstance(config, Mapping):
        raise ValueError(f"Configuration file '{config_file}' has to contain a JSON object")
    return parse_profiles(config)


def get_profile(name: str, *, path: Optional[str | Path] = None) -> ConnectionProfile:
    """Reads a single connection profile.

    Raises
    ------
    ValueError
        If there is no profile with the given name
    """
    profiles = load_profiles(path)
    if name not in profiles:
        raise ValueError(f"Unknown connection profile '{name}'. Available profiles are {sorted(profiles)}")
    return profiles[name]


def connect_profile(name: str, *, path: Optional[str | Path] = None, **overrides: Any) -> Database:
    """Opens a connection based on a named profile.

    Parameters
    ----------
    name : str
        The profile
    path : Optional[str | Path], optional
        The configuration file, see `load_profiles`
    **overrides : Any
        Connection parameters that replace the parameters of the profile, e.g. ``private=True``

    Examples
    --------
    >>> db = connect_profile("warehouse", debug=True)
    """
    return get_profile(name, path=path).connect(**overrides)


def pool_profile(name: str, *, path: Optional[str | Path] = None, settings: Optional[PoolSettings] = None,
                 debug: bool = False, **overrides: Any) -> Pool:
    """Builds a connection pool based on a named profile.

    Parameters
    ----------
    name : str
        The profile
    path : Optional[str | Path], optional
        The configuration file, see `load_profiles`
    settings : Optional[PoolSettings], optional
        Pool settings that replace the settings of the configuration file
    debug : bool, optional
        Whether the pool should log its activity
    **overrides : Any
        Connection parameters that replace the parameters of the profile
    """
    return get_profile(name, path=path).create_pool(settings=settings, debug=debug, **overrides)
