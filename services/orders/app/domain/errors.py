"""Error taxonomy for the order workflow.

Each error carries the HTTP status it is rendered with at the API boundary.
"""
from typing import Optional


class OrderError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrderError):
    """Rule-violating input. Carries every violated rule, not just the first."""
    status_code = 400

    def __init__(self, errors: list[str], message: str = "Validation failed"):
        super().__init__(f"{message}: {', '.join(errors)}" if errors else message)
        self.errors = list(errors)


class NotFoundError(OrderError):
    status_code = 404


class AuthorizationError(OrderError):
    status_code = 403


class ConflictError(OrderError):
    status_code = 409


class GatewayError(OrderError):
    status_code = 400

    def __init__(self, message: str, order_id: Optional[int] = None):
        super().__init__(message)
        self.order_id = order_id


class PersistenceError(OrderError):
    status_code = 500


class DirectoryUnavailableError(OrderError):
    """A collaborator service holding profiles or addresses could not answer."""
    status_code = 503
