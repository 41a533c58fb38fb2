"""
Domain errors raised by the work-order services.
Routes let them propagate; create_app() maps them to JSON responses.
"""


class WorkOrderError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(WorkOrderError):
    """Missing or invalid input. Raised before any mutation."""
    status_code = 400


class InvalidTransitionError(ValidationError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot change status from {current} to {target}")
        self.current = current
        self.target = target


class NotFoundError(WorkOrderError):
    status_code = 404


class ConflictError(WorkOrderError):
    status_code = 409


class AuthorizationError(WorkOrderError):
    status_code = 403


class DependencyFailure(WorkOrderError):
    """Document rendering or storage failed."""
    status_code = 502
