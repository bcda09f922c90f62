"""Contains various utilities that did not fit any other category."""
from __future__ import annotations

import functools
import re
from collections.abc import Sequence
from typing import Any

_VersionPattern = re.compile(r"(?P<ver>\d+(\.\d+)*)")


@functools.total_ordering
class Version:
    """Version numbers of database systems and drivers that compare component-wise, e.g. *14.6 > 1.3.1*.

    Versions are created from dotted strings (*"16.2"*), single integers or sequences of components. Database drivers
    report their versions in rather different shapes, so `parse` extracts the first dotted number from descriptions
    like *"PostgreSQL 16.2 on x86_64"* or *"v1.1.3-dev"*. Versions can be compared directly to strings and integers.
    """

    def __init__(self, ver: str | int | Sequence[str | int]) -> None:
        try:
            if isinstance(ver, str):
                components = ver.split(".")
            elif isinstance(ver, int):
                components = [ver]
            else:
                components = list(ver)
            self._version = tuple(int(component) for component in components)
        except (TypeError, ValueError):
            raise ValueError(f"Unknown version string: '{ver}'") from None
        if not self._version:
            raise ValueError(f"Unknown version string: '{ver}'")

    @staticmethod
    def parse(text: str) -> Version:
        """Extracts the first dotted version number from an arbitrary version description."""
        match = _VersionPattern.search(text)
        if not match:
            raise ValueError(f"No version number found in '{text}'")
        return Version(match.group("ver"))

    @property
    def components(self) -> tuple[int, ...]:
        return self._version

    def formatted(self, *, prefix: str = "", suffix: str = "", separator: str = ".") -> str:
        return prefix + separator.join(str(v) for v in self._version) + suffix

    def _coerce(self, other: Any) -> Version:
        return other if isinstance(other, Version) else Version(other)

    def __eq__(self, other: object) -> bool:
        try:
            return self._version == self._coerce(other)._version
        except ValueError:
            return False

    def __lt__(self, other: object) -> bool:
        # shorter versions are smaller if they are a prefix of the longer one, i.e. 16 < 16.2
        return self._version < self._coerce(other)._version

    def __hash__(self) -> int:
        return hash(self._version)

    def __len__(self) -> int:
        return len(self._version)

    def __repr__(self) -> str:
        return f"Version({self})"

    def __str__(self) -> str:
        return self.formatted()
