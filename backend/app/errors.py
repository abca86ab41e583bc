"""Error taxonomy shared by the domain modules.

Domain code raises these; ``main.py`` registers handlers that turn them into
``{"detail": ...}`` responses with the matching status code.
"""
from typing import Dict, Optional


class AppError(Exception):
    status_code = 500
    default_detail = "Internal error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_body(self) -> Dict:
        return {"detail": self.detail}


class ValidationError(AppError):
    """Malformed input, reported field by field."""

    status_code = 422
    default_detail = "Validation failed"

    def __init__(self, errors: Dict[str, str], detail: Optional[str] = None):
        self.errors = dict(errors)
        super().__init__(detail)

    def to_body(self) -> Dict:
        return {"detail": self.detail, "errors": self.errors}


class Unauthorized(AppError):
    # Never carries a reason: callers only learn they were denied.
    status_code = 403
    default_detail = "Not authorized"

    def __init__(self, status_code: int = 403):
        self.status_code = status_code
        super().__init__()


class NoOrganization(AppError):
    status_code = 403
    default_detail = "Profile is not linked to an organization"


class NotFound(AppError):
    status_code = 404
    default_detail = "Not found"


class ConflictError(AppError):
    status_code = 409
    default_detail = "Conflict"


class InvalidTransition(ConflictError):
    def __init__(self, current: Optional[str], target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid status transition: {current} -> {target}")


class CompletionBlocked(ConflictError):
    def __init__(self, validation):
        self.validation = validation
        super().__init__("Audit cannot be moved to Review status: " + " ".join(validation.errors))

    def to_body(self) -> Dict:
        return {"detail": self.detail, "validation": self.validation.as_dict()}


class DependencyFailure(AppError):
    status_code = 503
    default_detail = "Upstream dependency failed"
