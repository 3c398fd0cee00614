# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/state/lock.py
from __future__ import annotations

import fcntl
import os
from pathlib import Path
from typing import IO, Optional

from ..provision.errors import StoreLockedError


class HostLock:
    """
    Advisory, exclusive, non-blocking lock keyed by host identity.
    Held by the single writer for the whole run; readers never take it.
    The kernel drops it if the holder dies, so a crash never leaves it stale.
    """

    def __init__(self, path: str | Path, host_id: str):
        self.path = Path(path)
        self.host_id = host_id
        self._fh: Optional[IO] = None

    @property
    def held(self) -> bool:
        return self._fh is not None

    def acquire(self) -> None:
        if self._fh is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.path, "a+")
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            fh.seek(0)
            fh.truncate()
            fh.write(f"{os.getpid()}\n")
            fh.flush()
        except BlockingIOError as e:
            fh.close()
            raise StoreLockedError(self.host_id, str(self.path)) from e
        except OSError:
            fh.close()
            raise
        self._fh = fh

    def release(self) -> None:
        if self._fh is None:
            return
        try:
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
        finally:
            self._fh.close()
            self._fh = None

    def __enter__(self) -> "HostLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
