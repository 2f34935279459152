"""Error taxonomy surfaced by the consultation core"""

from fastapi import HTTPException


class AppError(HTTPException):
    """Base error: HTTP status, stable machine-readable kind and a human message"""

    status_code = 500
    kind = "internal_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(status_code=self.status_code, detail={"kind": self.kind, "message": message})

    def __str__(self) -> str:
        return self.message


class NotFoundError(AppError):
    status_code = 404
    kind = "not_found"


class BadRequestError(AppError):
    status_code = 400
    kind = "bad_request"


class ForbiddenError(AppError):
    status_code = 403
    kind = "forbidden"


class ConflictError(AppError):
    status_code = 409
    kind = "conflict"


class LedgerError(BadRequestError):
    """Ledger refused a debit that would take a balance below zero"""
