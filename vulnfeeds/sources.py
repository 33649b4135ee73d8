"""The registry of vulnerability sources that can build the database."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from .rocky import Rocky
from .rootio import RootIO
from .store import Store
from .suse_cvrf import Distribution, SuseCVRF
from .ubuntu import Ubuntu
from .wolfi import Wolfi


class VulnSource(Protocol):
    """A source that loads its data from a directory into the store."""

    def name(self) -> str: ...

    def update(self, directory: str | Path) -> None: ...


def all_sources(store: Store | None = None) -> list[VulnSource]:
    """Return every source, in update order, all writing to the same store."""
    store = store if store is not None else Store()
    return [
        Ubuntu(store),
        Rocky(store),
        SuseCVRF(Distribution.SUSE_ENTERPRISE_LINUX, store),
        SuseCVRF(Distribution.OPENSUSE, store),
        Wolfi(store),
        RootIO(store),
    ]