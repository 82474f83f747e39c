"""Typed service errors rendered by FastAPI as structured HTTP responses."""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException


class LedgerError(HTTPException):
    """Base error carrying a machine-readable code and a human message."""

    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str, *, code: Optional[str] = None):
        if code:
            self.code = code
        self.message = message
        super().__init__(
            status_code=type(self).status_code,
            detail={"code": self.code, "message": message},
        )


class NotFoundError(LedgerError):
    code = "not_found"
    status_code = 404


class ConflictError(LedgerError):
    code = "conflict"
    status_code = 409


class PreconditionFailedError(LedgerError):
    code = "precondition_failed"
    status_code = 412


class ValidationError(LedgerError):
    code = "validation_error"
    status_code = 422
