"""Application error taxonomy surfaced to API callers."""


class AppError(Exception):
    """Base class for errors that carry an HTTP status code."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    """Bad input; no state was created."""

    status_code = 400


class UnauthorizedError(AppError):
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")
        self.resource = resource


class ConflictError(AppError):
    status_code = 409


class PersistenceError(AppError):
    """Storage-layer failure; fatal to the current operation."""

    status_code = 500
