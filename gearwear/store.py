"""
Transactional record stores.

Every transaction works on a private snapshot of the garage. Commit checks,
per written or claimed row, that nobody committed a newer version of that
row since the snapshot was taken (optimistic concurrency). The loser of a
race gets StaleVersion and nothing of its work becomes visible.
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, FrozenSet, Iterator, Optional, Tuple, Union

import yaml

from .errors import DatabaseFailure, InvalidRange, StaleVersion
from .garage import TABLES, Garage
from .loader import load_garage, save_garage

logger = logging.getLogger(__name__)

RowKey = Tuple[str, str]


class Transaction:
    """A private working copy of the garage plus the set of rows it wrote."""

    def __init__(self, garage: Garage, versions: Dict[RowKey, int]):
        self.garage = garage
        self._versions = versions
        self._written = set()

    def put(self, table: str, key: str, record) -> None:
        self.garage.table(table)[key] = record
        self._written.add((table, key))

    def remove(self, table: str, key: str) -> None:
        self.garage.table(table).pop(key, None)
        self._written.add((table, key))

    def claim(self, table: str, key: str) -> None:
        """
        Take scoped access to a row without changing it.

        Claimed rows take part in the commit-time version check, so two
        transactions claiming the same row cannot both commit.
        """
        self._written.add((table, key))

    def base_version(self, key: RowKey) -> int:
        return self._versions.get(key, 0)

    @property
    def written(self) -> FrozenSet[RowKey]:
        return frozenset(self._written)


class MemoryStore:
    """In-process store; the reference implementation of the store interface."""

    def __init__(self, garage: Optional[Garage] = None):
        self._garage = garage or Garage()
        self._versions: Dict[RowKey, int] = {}
        self._lock = threading.Lock()

    def begin(self) -> Transaction:
        with self._lock:
            return Transaction(self._garage.clone(), dict(self._versions))

    def commit(self, txn: Transaction) -> None:
        written = txn.written
        if not written:
            return
        with self._lock:
            stale = sorted(
                key for key in written if self._versions.get(key, 0) != txn.base_version(key)
            )
            if stale:
                raise StaleVersion(
                    "concurrent update of " + ", ".join(f"{t}:{k}" for t, k in stale)
                )
            merged = self._merge(txn)
            self._persist(merged)
            self._garage = merged
            for key in written:
                self._versions[key] = self._versions.get(key, 0) + 1
        logger.debug("committed %d rows", len(written))

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Scoped transaction: commits on normal exit, discards on any error."""
        txn = self.begin()
        try:
            yield txn
        except BaseException:
            logger.debug("rolled back %d rows", len(txn.written))
            raise
        self.commit(txn)

    def snapshot(self) -> Garage:
        """Read-only copy of the committed state."""
        with self._lock:
            return self._garage.clone()

    def _merge(self, txn: Transaction) -> Garage:
        merged = self._garage.shallow_copy()
        for table, key in txn.written:
            if table not in TABLES:
                continue  # claim on a virtual row, e.g. a mount slot
            source = txn.garage.table(table)
            if key in source:
                merged.table(table)[key] = source[key]
            else:
                merged.table(table).pop(key, None)
        return merged

    def _persist(self, garage: Garage) -> None:
        """Hook for durable stores; must raise DatabaseFailure on error."""


class YamlStore(MemoryStore):
    """Store persisted to a single garage YAML file after every commit."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        garage = None
        if self.path.exists():
            try:
                garage = load_garage(self.path)
            except (OSError, yaml.YAMLError, KeyError, ValueError, InvalidRange) as err:
                raise DatabaseFailure(f"cannot read {self.path}: {err}") from err
        super().__init__(garage)

    def _persist(self, garage: Garage) -> None:
        try:
            save_garage(self.path, garage)
        except (OSError, yaml.YAMLError) as err:
            raise DatabaseFailure(f"cannot write {self.path}: {err}") from err
