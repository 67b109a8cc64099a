from typing import Dict, List, Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    error_type = "database"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        field_errors: Optional[Dict[str, List[str]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.field_errors = field_errors or {}


class DuplicateError(ServiceError):
    """Email or natural key already exists. Raised before any side effect."""

    error_type = "duplicate"

    def __init__(self, message: str, field_errors: Optional[Dict[str, List[str]]] = None) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT, field_errors)


class ValidationError(ServiceError):
    """Missing or invalid input, e.g. a class name absent from the class mapping."""

    error_type = "validation"

    def __init__(self, message: str, field_errors: Optional[Dict[str, List[str]]] = None) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST, field_errors)


class IdentityError(ServiceError):
    """The identity provisioner rejected a request. conflict=True when it reports the email as taken."""

    error_type = "auth"

    def __init__(
        self,
        message: str,
        conflict: bool = False,
        field_errors: Optional[Dict[str, List[str]]] = None,
    ) -> None:
        code = status.HTTP_409_CONFLICT if conflict else status.HTTP_502_BAD_GATEWAY
        super().__init__(message, code, field_errors)
        self.conflict = conflict


class DirectoryError(ServiceError):
    """A directory/ledger write failed after the identity existed. Compensation has already run."""

    error_type = "database"


class ConfigurationError(ServiceError):
    """Required server credentials are missing. Raised before any side effect."""

    error_type = "configuration"
