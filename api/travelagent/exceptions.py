"""
Domain Exceptions - raised by the services, mapped to HTTP responses in main
"""
from typing import Any, Dict, List, Optional


class TravelAgentError(Exception):
    """Base class for all service errors"""
    status_code: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(TravelAgentError):
    """Destination, package or booking does not exist (or is not visible)"""
    status_code = 404


class InvalidStateError(TravelAgentError):
    """Requested transition is not allowed from the current booking state"""
    status_code = 409


class ValidationError(TravelAgentError):
    """Malformed search or booking parameters"""
    status_code = 422

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        self.errors = errors or []
        super().__init__(message)

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        """Build from a pydantic ValidationError, keeping the field details"""
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        summary = "; ".join(f"{e['field']}: {e['message']}" if e["field"] else e["message"] for e in errors)
        return cls(summary or "Invalid input", errors)


class InvalidInputError(ValidationError):
    """Invalid pricing input (negative price, fewer than one traveler)"""


class DependencyFailure(TravelAgentError):
    """An external collaborator (payment, email, cache) failed"""
    status_code = 502

    def __init__(self, dependency: str, message: str, original_error: Optional[Exception] = None):
        self.dependency = dependency
        self.original_error = original_error
        super().__init__(f"{dependency}: {message}")


class PaymentGatewayError(DependencyFailure):
    """Payment processor call failed"""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__("payments", message, original_error)


class NotificationError(DependencyFailure):
    """Email provider call failed"""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__("notifications", message, original_error)


class RefundAlreadyIssuedError(PaymentGatewayError):
    """The processor reports the charge was refunded by an earlier request"""
