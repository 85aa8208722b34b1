"""
Service-level exceptions. Each carries the HTTP status the API layer
answers with; main.py renders them into the {"code": -1, "msg": ...}
envelope.
"""

from decimal import Decimal


class ServiceError(Exception):
    """Base class for errors that map onto a specific HTTP status."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_content(self) -> dict:
        return {"code": -1, "msg": self.message}


class ValidationError(ServiceError):
    status_code = 400


class InsufficientBalance(ServiceError):
    status_code = 400

    def __init__(self, available_balance: Decimal, message: str = "Insufficient balance"):
        super().__init__(message)
        self.available_balance = available_balance

    def to_content(self) -> dict:
        content = super().to_content()
        content["available_balance"] = str(self.available_balance)
        return content


class Unauthorized(ServiceError):
    status_code = 401


class Forbidden(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    status_code = 409


class InvalidState(ServiceError):
    status_code = 409


class UpstreamError(ServiceError):
    """Payment gateway unreachable or erroring; safe to retry."""

    status_code = 502


class InternalError(ServiceError):
    status_code = 500
