from typing import Optional


class LedgerServiceError(Exception):
    pass


class ValidationFailedError(LedgerServiceError):
    def __init__(self, message: str, errors: Optional[list[dict]] = None):
        super().__init__(message)
        self.errors = errors or []


class InvalidDistributionError(ValidationFailedError):
    pass


class InvalidQueryError(ValidationFailedError):
    pass


class NotAuthenticatedError(LedgerServiceError):
    pass


class InvalidCredentialsError(NotAuthenticatedError):
    pass


class AdminNotFoundError(LedgerServiceError):
    pass


class DuplicateUsernameError(LedgerServiceError):
    pass


class StorageError(LedgerServiceError):
    pass
