from __future__ import annotations

"""quorumcall.store - key-addressed record storage with per-record transactions.

Each record lives under a fixed reservation computed from :class:`Limits`;
a commit that would exceed it is rejected instead of growing the slot.

Operations on one record are serialised by a per-record lock. Work happens on
a detached copy inside :meth:`RecordStore.transaction`; the copy is written
back only when the ``with`` block exits cleanly, so a failing operation
leaves the stored record untouched.

With *root* set, committed records are also written as JSON files (one per
record, atomically replaced) and read back lazily.
"""

import hashlib
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .errors import RecordTooLarge, RequestAlreadyExists, RequestNotFound
from .records import Limits, RequestRecord

log = logging.getLogger(__name__)


def record_address(record_id: str) -> str:
    """Stable storage key for *record_id* (hex SHA-256 of ``b"request" || id``)."""
    return hashlib.sha256(b"request" + record_id.encode("utf-8")).hexdigest()


@dataclass
class Transaction:
    record_id: str
    record: Optional[RequestRecord]
    dirty: bool = False

    def insert(self, record: RequestRecord) -> None:
        if self.record is not None:
            raise RequestAlreadyExists(f"Request {self.record_id} already exists")
        self.put(record)

    def put(self, record: RequestRecord) -> None:
        if record.id != self.record_id:
            raise ValueError(f"record id {record.id!r} != transaction key {self.record_id!r}")
        self.record = record
        self.dirty = True

    def require(self) -> RequestRecord:
        if self.record is None:
            raise RequestNotFound(f"Request {self.record_id} does not exist")
        return self.record


class RecordStore:
    def __init__(self, root: Path | str | None = None, *, limits: Limits | None = None) -> None:
        self.root = Path(root) if root is not None else None
        self.limits = limits or Limits()
        self.space = self.limits.record_space
        self._snapshots: Dict[str, str] = {}
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        if self.root is not None:
            self.root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def _lock_for(self, record_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(record_id, threading.Lock())

    def _path(self, record_id: str) -> Path:
        assert self.root is not None
        return self.root / f"{record_address(record_id)}.json"

    def _load(self, record_id: str) -> Optional[RequestRecord]:
        raw = self._snapshots.get(record_id)
        if raw is None and self.root is not None:
            path = self._path(record_id)
            if path.exists():
                raw = path.read_text()
                self._snapshots[record_id] = raw
        if raw is None:
            return None
        return RequestRecord.model_validate_json(raw)

    def exists(self, record_id: str) -> bool:
        return self._load(record_id) is not None

    def get(self, record_id: str) -> RequestRecord:
        """Return a detached copy of the stored record."""
        record = self._load(record_id)
        if record is None:
            raise RequestNotFound(f"Request {record_id} does not exist")
        return record

    def ids(self) -> List[str]:
        """Ids of records loaded or committed by this process."""
        return sorted(self._snapshots)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    @contextmanager
    def transaction(self, record_id: str) -> Iterator[Transaction]:
        with self._lock_for(record_id):
            txn = Transaction(record_id=record_id, record=self._load(record_id))
            yield txn
            if txn.dirty and txn.record is not None:
                self._commit(txn.record)

    def _commit(self, record: RequestRecord) -> None:
        record.check_invariants()
        size = record.encoded_size()
        if size > self.space:
            raise RecordTooLarge(
                f"Request {record.id} needs {size} bytes, {self.space} reserved"
            )
        raw = record.model_dump_json()
        if self.root is not None:
            path = self._path(record.id)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(raw)
            os.replace(tmp, path)
        self._snapshots[record.id] = raw
        log.debug("Committed %s (%d/%d bytes)", record.id, size, self.space)
