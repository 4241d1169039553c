"""Generation of unique scratch identifiers (schemas, databases) for test runs."""

from __future__ import annotations

import random
import re

__all__ = ["ScratchNameGenerator"]

_PREFIX_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


class ScratchNameGenerator:
    """Produce SQL-identifier-safe names from a private random source.

    Each generator owns its own :class:`random.Random`, so seeding one (for a
    reproducible run) never affects other users of the :mod:`random` module.
    """

    def __init__(self, prefix: str = "txretry", *, seed: int | None = None) -> None:
        if not _PREFIX_RE.match(prefix):
            raise ValueError(f"prefix must be a lowercase SQL identifier; got {prefix!r}")
        self._prefix = prefix
        self._random = random.Random(seed)
        self._issued: set[str] = set()

    @property
    def prefix(self) -> str:
        return self._prefix

    def next_name(self) -> str:
        while True:
            name = f"{self._prefix}_{self._random.getrandbits(48):012x}"
            if name not in self._issued:
                self._issued.add(name)
                return name

    def __call__(self) -> str:
        return self.next_name()
