from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from election_core.errors import BackendUnavailableError, ElectionError
from election_core.runtime_profile import BackendProfile

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_fallback_error(exc: Exception) -> bool:
    # Caller mistakes and audit violations mean the same thing on either backend.
    if isinstance(exc, BackendUnavailableError):
        return True
    return not isinstance(exc, ElectionError)


class BackendDispatcher:
    """Pick the relational or document implementation for one call."""

    def __init__(self, profile: BackendProfile, *, component: str) -> None:
        self._profile = profile
        self._component = component

    @property
    def profile(self) -> BackendProfile:
        return self._profile

    def relational_ready(self) -> bool:
        return self._profile.is_active_backend_ready()

    def run(
        self,
        operation: str,
        *,
        relational: Callable[[], T] | None,
        document: Callable[[], T],
    ) -> T:
        if relational is not None and self._profile.is_active_backend_ready():
            try:
                return relational()
            except Exception as exc:
                if not is_fallback_error(exc):
                    raise
                logger.warning(
                    "relational_backend_fallback component=%s operation=%s error=%s",
                    self._component,
                    operation,
                    f"{type(exc).__name__}: {exc}",
                )
        return document()

    def run_write(
        self,
        operation: str,
        *,
        relational: Callable[[], T] | None,
        document: Callable[[], T],
    ) -> T:
        if relational is not None and self._profile.is_active_backend_ready():
            logger.debug("audit_write component=%s operation=%s backend=relational", self._component, operation)
            return relational()
        logger.debug("audit_write component=%s operation=%s backend=document", self._component, operation)
        return document()

    def run_relational(self, operation: str, fn: Callable[[], T]) -> T:
        if not self._profile.is_active_backend_ready():
            raise BackendUnavailableError(f"{self._component}.{operation} requires the relational backend")
        return fn()
