from typing import Any, Dict, Optional

class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class NotFoundError(AppException):
    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            message=f"{entity} {entity_id} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details={"entity": entity, "id": entity_id}
        )

class InvalidStateError(AppException):
    def __init__(self, message: str, error_code: str = "INVALID_STATE", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=409,
            error_code=error_code,
            details=details
        )

class AlreadyTerminalError(InvalidStateError):
    """Raised when a transition is attempted on an approved or rejected item."""
    def __init__(self, entity: str, entity_id: Any, status: str):
        super().__init__(
            message=f"{entity} {entity_id} is already {status}",
            error_code="ALREADY_TERMINAL",
            details={"entity": entity, "id": entity_id, "status": status}
        )

class NotAuthorizedError(AppException):
    def __init__(self, message: str = "Approver is not entitled to act on this item"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="NOT_AUTHORIZED"
        )

class MissingAttachmentError(AppException):
    def __init__(self, request_id: int):
        super().__init__(
            message=f"Leave request {request_id} requires a medical certificate before approval",
            status_code=422,
            error_code="MISSING_ATTACHMENT",
            details={"request_id": request_id}
        )

class InvalidArgumentError(AppException):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=400,
            error_code="INVALID_ARGUMENT",
            details={"field": field} if field else None
        )

class ReservationConflictError(AppException):
    """
    Bounded retries were exhausted under contention.
    The caller should retry the whole operation, not a single step.
    """
    def __init__(self, operation: str, attempts: int):
        super().__init__(
            message=f"Could not commit {operation} after {attempts} attempts due to concurrent updates",
            status_code=409,
            error_code="RESERVATION_CONFLICT",
            details={"operation": operation, "attempts": attempts, "retryable": True}
        )
