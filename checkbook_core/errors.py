"""
Domain Errors Module

Error taxonomy shared by every component of the checkbook engine. Each
error carries the HTTP status the API layer answers with, so callers can
always tell a bad request from a missing entity, a duplicate, an exhausted
checkbook or a forbidden state change.

Hierarchy:
    CheckbookError
    ├── ValidationError   -> malformed input (serie, bounds, reason, status token)
    ├── NotFoundError     -> bank / checkbook / check / region absent
    ├── ConflictError     -> duplicate range, reference, bank code, region name
    ├── CapacityError     -> checkbook exhausted
    └── StateError        -> used checkbook mutation, forbidden transition
"""

from typing import Any, Dict, Optional


class CheckbookError(Exception):
    """Base class for all engine errors"""

    status_code = 400
    error_type = "checkbook_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses and log records"""
        result = {"error": self.error_type, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(CheckbookError):
    """Input is malformed or out of range"""

    status_code = 422
    error_type = "validation_error"


class NotFoundError(CheckbookError):
    """Referenced entity does not exist"""

    status_code = 404
    error_type = "not_found"

    def __init__(self, entity_type: str, entity_id: Any, message: Optional[str] = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            message or f"{entity_type} {entity_id} not found",
            {"entity_type": entity_type, "entity_id": str(entity_id)}
        )


class ConflictError(CheckbookError):
    """Uniqueness violation or unresolved concurrent write"""

    status_code = 409
    error_type = "conflict"


class CapacityError(CheckbookError):
    """Checkbook has no free slot left"""

    status_code = 409
    error_type = "capacity_exhausted"

    def __init__(self, checkbook_id: str, message: Optional[str] = None):
        self.checkbook_id = checkbook_id
        super().__init__(
            message or f"Checkbook {checkbook_id} exhausted",
            {"checkbook_id": checkbook_id}
        )


class StateError(CheckbookError):
    """Operation is not allowed in the entity's current state"""

    status_code = 409
    error_type = "invalid_state"
