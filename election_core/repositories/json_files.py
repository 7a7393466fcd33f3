from __future__ import annotations

import json
import os
import threading
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from election_core.errors import validation_error

T = TypeVar("T")

ENTITY_FILES: dict[str, str] = {
    "contacts": "contacts.json",
    "vote_marks": "vote-marks.json",
    "poll_turnout": "poll-turnout.json",
    "election_lists": "election-lists.json",
    "voted": "scrutineering-voted.json",
}

_FORBIDDEN_ID_CHARS = ("/", "\\", "\x00")

# Shared by every AccountJsonFiles in the process, keyed by resolved path.
_LOCKS_GUARD = threading.Lock()
_LOCKS: dict[Path, threading.Lock] = {}


def _validate_account_id(account_id: str) -> str:
    value = str(account_id)
    if not value.strip() or value in {".", ".."} or any(x in value for x in _FORBIDDEN_ID_CHARS):
        raise validation_error("INVALID_ACCOUNT_ID", f"invalid account id: {account_id!r}")
    return value


def _lock_for(path: Path) -> threading.Lock:
    key = path.resolve()
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _LOCKS[key] = lock
        return lock


class AccountJsonFiles:
    """One JSON array file per account per entity.

    Writes go through a temp file plus os.replace, so readers never observe a
    partial file. Read-modify-write cycles hold a lock per resolved file path,
    shared by all instances in the process; separate processes are not
    coordinated.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, *, account_id: str, entity: str) -> Path:
        filename = ENTITY_FILES.get(entity)
        if filename is None:
            raise ValueError(f"unknown document entity: {entity}")
        return self._root / _validate_account_id(account_id) / filename

    @staticmethod
    def _read(path: Path) -> list[dict[str, Any]]:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        data = json.loads(raw)
        if not isinstance(data, list):
            return []
        return [row for row in data if isinstance(row, dict)]

    @staticmethod
    def _write(path: Path, rows: list[dict[str, Any]]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex[:8]}")
        try:
            tmp.write_text(json.dumps(rows, ensure_ascii=True, indent=2, default=str), encoding="utf-8")
            os.replace(tmp, path)
        finally:
            if tmp.exists():
                tmp.unlink()

    def read(self, *, account_id: str, entity: str) -> list[dict[str, Any]]:
        path = self.path_for(account_id=account_id, entity=entity)
        with _lock_for(path):
            return self._read(path)

    def write(self, *, account_id: str, entity: str, rows: list[dict[str, Any]]) -> None:
        path = self.path_for(account_id=account_id, entity=entity)
        with _lock_for(path):
            self._write(path, rows)

    def update(
        self,
        *,
        account_id: str,
        entity: str,
        fn: Callable[[list[dict[str, Any]]], T],
    ) -> T:
        """Apply ``fn`` to the rows in place and persist them under the file lock."""
        path = self.path_for(account_id=account_id, entity=entity)
        with _lock_for(path):
            rows = self._read(path)
            result = fn(rows)
            self._write(path, rows)
            return result
