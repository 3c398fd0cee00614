# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

"""
Run state persistence.

One JSON document per host identity at ``<state_dir>/<host_id>.json``:

    {"version": 1, "host_id": "...", "updated_at": "...",
     "records": {"<step>": {...RunRecord...}}}

Every ``put`` rewrites the document through a temp file that is flushed,
fsync'd and atomically renamed over the old one (then the directory is
fsync'd), so a crash never reads back an older status than the last
acknowledged write. Readers only ever see whole documents and never lock.
Writers must hold the host lock.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol

from ..provision.errors import InterruptedRunError, StoreError
from .lock import HostLock
from .models import RunRecord, StepStatus

log = logging.getLogger("kubeprov")

STATE_VERSION = 1

_SAFE_ID = re.compile(r"[^A-Za-z0-9_.-]+")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunStateStore(Protocol):
    def get(self, step_name: str) -> Optional[RunRecord]: ...
    def put(self, record: RunRecord) -> None: ...
    def snapshot(self) -> List[RunRecord]: ...
    def lock(self) -> contextlib.AbstractContextManager: ...
    def recover_interrupted(self) -> List[InterruptedRunError]: ...


class _BaseStore:
    """Shared behaviour: recovery of records left 'running' by a dead writer."""

    def recover_interrupted(self) -> List[InterruptedRunError]:
        recovered: List[InterruptedRunError] = []
        for rec in self.snapshot():
            if rec.status is StepStatus.RUNNING:
                err = InterruptedRunError(rec.step_name, rec.attempts)
                self.put(rec.copy(status=StepStatus.FAILED, last_error=err.message, finished_at=_now()))
                log.warning("step '%s' was interrupted by a previous run; marked failed", rec.step_name)
                recovered.append(err)
        return recovered


class MemoryRunStateStore(_BaseStore):
    """Process-local store for tests and dry runs."""

    def __init__(self, records: Optional[List[RunRecord]] = None):
        self._records: Dict[str, RunRecord] = {}
        for r in records or []:
            self._records[r.step_name] = r.copy()

    def get(self, step_name: str) -> Optional[RunRecord]:
        rec = self._records.get(step_name)
        return rec.copy() if rec else None

    def put(self, record: RunRecord) -> None:
        self._records[record.step_name] = record.copy()

    def snapshot(self) -> List[RunRecord]:
        return [r.copy() for r in self._records.values()]

    @contextlib.contextmanager
    def lock(self) -> Iterator["MemoryRunStateStore"]:
        yield self


class JsonRunStateStore(_BaseStore):
    def __init__(self, state_dir: str | Path, host_id: str):
        if not host_id:
            raise StoreError("host_id is required")
        self.state_dir = Path(state_dir).expanduser()
        self.host_id = host_id
        safe = _SAFE_ID.sub("_", host_id)
        self.path = self.state_dir / f"{safe}.json"
        self._lock = HostLock(self.state_dir / f"{safe}.lock", host_id)
        self._records: Optional[Dict[str, RunRecord]] = None

    # ------------------ load / save ------------------

    def _load(self) -> Dict[str, RunRecord]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError
            raise StoreError(f"Corrupted state file {self.path}: {e}") from e
        if not isinstance(doc, dict):
            raise StoreError(f"Corrupted state file {self.path}: expected an object, got {type(doc).__name__}")

        version = doc.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            raise StoreError(f"Unsupported state version {version} in {self.path}")
        raw_records = doc.get("records") or {}
        if not isinstance(raw_records, dict):
            raise StoreError(f"Corrupted state file {self.path}: 'records' must be an object")
        try:
            return {name: RunRecord.from_dict(raw) for name, raw in raw_records.items()}
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Corrupted record in {self.path}: {type(e).__name__}: {e}") from e

    def _records_view(self) -> Dict[str, RunRecord]:
        # The writer keeps a write-through cache; readers always go to disk.
        if self._lock.held:
            if self._records is None:
                self._records = self._load()
            return self._records
        return self._load()

    def _write(self, records: Dict[str, RunRecord]) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        doc = {
            "version": STATE_VERSION,
            "host_id": self.host_id,
            "updated_at": _now(),
            "records": {name: r.to_dict() for name, r in records.items()},
        }
        fd, tmp = tempfile.mkstemp(dir=self.state_dir, prefix=f".{self.path.stem}-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        self._fsync_dir()

    def _fsync_dir(self) -> None:
        dfd = os.open(self.state_dir, os.O_RDONLY)
        try:
            os.fsync(dfd)
        finally:
            os.close(dfd)

    # ------------------ public API ------------------

    def get(self, step_name: str) -> Optional[RunRecord]:
        rec = self._records_view().get(step_name)
        return rec.copy() if rec else None

    def put(self, record: RunRecord) -> None:
        if not self._lock.held:
            raise StoreError(
                f"Refusing to write state for '{self.host_id}' without holding the host lock"
            )
        records = dict(self._records_view())
        records[record.step_name] = record.copy()
        self._write(records)
        # cache only after the write is durable
        self._records = records

    def snapshot(self) -> List[RunRecord]:
        return [r.copy() for r in self._records_view().values()]

    @contextlib.contextmanager
    def lock(self) -> Iterator["JsonRunStateStore"]:
        self._lock.acquire()
        self._records = None
        try:
            yield self
        finally:
            self._records = None
            self._lock.release()

    def reset(self) -> bool:
        """Delete the persisted state for this host. Returns False if none existed."""
        with self.lock():
            if not self.path.exists():
                return False
            self.path.unlink()
            self._fsync_dir()
            return True
