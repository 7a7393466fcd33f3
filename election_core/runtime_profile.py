from __future__ import annotations

import os
import threading
from collections.abc import Mapping

SUPPORTED_BACKENDS = {"json", "pg"}


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str, *, default: int, minimum: int = 1) -> int:
    raw = value.strip()
    if not raw:
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return default
    return max(minimum, parsed)


class BackendProfile:
    """Per-store backend settings plus the relational readiness flag.

    Readiness is only flipped by whoever owns schema setup, and is read again
    on every call so a store never remembers which backend answered last.
    """

    def __init__(
        self,
        *,
        data_backend: str = "json",
        dsn: str = "",
        data_dir: str = ".local/shared-data",
        apply_schema: bool = True,
        page_size: int = 100,
    ) -> None:
        backend = data_backend.strip().lower() or "json"
        if backend not in SUPPORTED_BACKENDS:
            raise ValueError(f"unsupported DATA_BACKEND: {data_backend}")
        self.data_backend = backend
        self.dsn = dsn.strip()
        self.data_dir = data_dir
        self.apply_schema = apply_schema
        self.page_size = page_size
        self._ready = False
        self._lock = threading.Lock()

    @property
    def relational_configured(self) -> bool:
        return self.data_backend == "pg" and bool(self.dsn)

    def is_active_backend_ready(self) -> bool:
        with self._lock:
            return self.relational_configured and self._ready

    def mark_ready(self) -> None:
        with self._lock:
            self._ready = True

    def mark_unready(self) -> None:
        with self._lock:
            self._ready = False


def create_profile_from_env(environ: Mapping[str, str] | None = None) -> BackendProfile:
    env = os.environ if environ is None else environ
    dsn = env.get("DATABASE_URL", "").strip() or env.get("POSTGRES_DSN", "").strip()
    return BackendProfile(
        data_backend=env.get("DATA_BACKEND", "json"),
        dsn=dsn,
        data_dir=env.get("ELECTION_DATA_DIR", ".local/shared-data").strip() or ".local/shared-data",
        apply_schema=_as_bool(env.get("ELECTION_APPLY_SCHEMA", "true")),
        page_size=_as_int(env.get("ELECTION_LIST_PAGE_SIZE", ""), default=100),
    )
