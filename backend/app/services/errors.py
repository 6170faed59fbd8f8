"""
backend/app/services/errors.py

Purpose:
    Domain error taxonomy shared by the subscription and betslip services.
    Each error carries the HTTP status it maps to and a short public message;
    main.py turns them into JSON responses.
"""

from __future__ import annotations


class DomainError(Exception):
    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"


class InvalidTransitionError(DomainError):
    status_code = 400
    code = "invalid_transition"


class ValidationError(DomainError):
    status_code = 400
    code = "validation_error"


class ConflictError(DomainError):
    status_code = 409
    code = "conflict"


class InternalError(DomainError):
    status_code = 500
    code = "internal"
