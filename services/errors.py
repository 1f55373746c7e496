"""Service-level exceptions."""


class ServiceError(Exception):
    """Base class for business rule failures shown to users as short messages."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    """Entity does not exist."""


class DuplicateError(ServiceError):
    """Uniqueness conflict at the store layer."""


class PermissionDeniedError(ServiceError):
    """Caller's role does not allow the operation."""


class InvalidStateError(ServiceError):
    """Entity exists but is not in a state that allows the operation."""
