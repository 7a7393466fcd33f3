from __future__ import annotations


class ElectionError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str = "validation",
        retryable: bool = False,
        http_status: int = 400,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status


class ImmutableRecordError(ElectionError):
    """Raised when an update or delete reaches an append-only audit table."""

    def __init__(self, message: str = "audit records are append-only") -> None:
        super().__init__(
            code="IMMUTABLE_RECORD",
            message=message,
            error_class="immutability",
            retryable=False,
            http_status=409,
        )


class BackendUnavailableError(ElectionError):
    def __init__(self, message: str = "relational backend is not ready") -> None:
        super().__init__(
            code="RELATIONAL_BACKEND_UNAVAILABLE",
            message=message,
            error_class="backend_unavailable",
            retryable=True,
            http_status=503,
        )


def validation_error(code: str, message: str) -> ElectionError:
    return ElectionError(
        code=code,
        message=message,
        error_class="validation",
        retryable=False,
        http_status=400,
    )


def duplicate_verification_code(code: str | None = None) -> ElectionError:
    detail = f": {code}" if code else ""
    return validation_error("DUPLICATE_VERIFICATION_CODE", f"verification code already in use{detail}")
