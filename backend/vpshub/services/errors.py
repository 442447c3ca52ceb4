from __future__ import annotations

import enum


class ErrorCode(str, enum.Enum):
    validation = "validation_error"
    not_found = "not_found"
    forbidden = "forbidden"
    invalid_amount = "invalid_amount"
    no_stock = "no_stock_available"
    provider = "provider_error"
    insufficient_funds = "insufficient_funds"
    already_in_progress = "already_in_progress"
    stale_stuck_state = "stale_stuck_state"
    internal = "internal_error"


class OrchestratorError(Exception):
    """Base for every error that crosses a service boundary as an outcome."""

    code: ErrorCode = ErrorCode.internal

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrchestratorError):
    code = ErrorCode.validation


class NotFound(ValidationError):
    code = ErrorCode.not_found


class InvalidAmount(ValidationError):
    code = ErrorCode.invalid_amount


class Forbidden(ValidationError):
    code = ErrorCode.forbidden


class NoStockAvailable(OrchestratorError):
    code = ErrorCode.no_stock


class InsufficientFunds(OrchestratorError):
    code = ErrorCode.insufficient_funds


class AlreadyInProgress(OrchestratorError):
    code = ErrorCode.already_in_progress


class StaleStuckState(OrchestratorError):
    code = ErrorCode.stale_stuck_state


def short_err(e: BaseException, size: int = 300) -> str:
    msg = str(e).strip().replace("\n", " ")
    if not msg:
        msg = e.__class__.__name__
    return msg[:size]
