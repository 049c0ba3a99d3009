"""
Error types raised by the service layer.

Each error carries the HTTP status the API answers with, so route handlers
never translate errors by hand.
"""


class StoreError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StoreError):
    status_code = 400


class AuthenticationError(StoreError):
    status_code = 401


class PermissionDeniedError(StoreError):
    status_code = 403


class NotFoundError(StoreError):
    status_code = 404


class ConflictError(StoreError):
    status_code = 409
